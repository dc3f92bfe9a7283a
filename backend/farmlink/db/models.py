from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from farmlink.db.base import Base

# BIGINT identity on PostgreSQL, rowid alias on SQLite.
PrimaryKeyType = BigInteger().with_variant(Integer(), "sqlite")


class TankConfig(Base):
    __tablename__ = "tank_configs"
    __table_args__ = (
        UniqueConstraint("tank_id", name="uq_tank_configs_tank_id"),
        UniqueConstraint("sensor_id", name="uq_tank_configs_sensor_id"),
        CheckConstraint("tank_height_cm > 0", name="ck_tank_configs_height_positive"),
        CheckConstraint("tank_radius_cm > 0", name="ck_tank_configs_radius_positive"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    tank_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tank_height_cm: Mapped[float] = mapped_column(Float, nullable=False)
    tank_radius_cm: Mapped[float] = mapped_column(Float, nullable=False)
    max_capacity_liters: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_threshold_cm: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=20.0,
        server_default="20",
    )
    location: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default="")
    sensor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sensor_assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    pump_auto_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    pump_cooldown_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=60,
        server_default="60",
    )
    last_pump_start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class CropProfile(Base):
    __tablename__ = "crop_profiles"
    __table_args__ = (
        UniqueConstraint("crop_type", name="uq_crop_profiles_crop_type"),
        CheckConstraint("duration_days > 0", name="ck_crop_profiles_duration_positive"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    crop_type: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    stages: Mapped[list["CropProfileStage"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="CropProfileStage.stage_index",
    )


class CropProfileStage(Base):
    __tablename__ = "crop_profile_stages"
    __table_args__ = (
        UniqueConstraint("profile_id", "stage_index", name="uq_crop_profile_stages_profile_index"),
        CheckConstraint("start_day >= 1 AND end_day >= start_day", name="ck_crop_profile_stages_days"),
        CheckConstraint(
            "min_moisture >= 0 AND max_moisture <= 100 AND min_moisture <= max_moisture",
            name="ck_crop_profile_stages_moisture_band",
        ),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    profile_id: Mapped[int] = mapped_column(
        PrimaryKeyType,
        ForeignKey("crop_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_index: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    start_day: Mapped[int] = mapped_column(Integer, nullable=False)
    end_day: Mapped[int] = mapped_column(Integer, nullable=False)
    min_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    max_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    profile: Mapped[CropProfile] = relationship(back_populates="stages")


class ZoneConfig(Base):
    __tablename__ = "zone_configs"
    __table_args__ = (
        UniqueConstraint("zone_id", name="uq_zone_configs_zone_id"),
        UniqueConstraint("sensor_id", name="uq_zone_configs_sensor_id"),
        CheckConstraint(
            "min_moisture >= 0 AND max_moisture <= 100 AND min_moisture <= max_moisture",
            name="ck_zone_configs_moisture_band",
        ),
        Index("ix_zone_configs_crop_type_active", "crop_type", "is_active"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    zone_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    field_name: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default="")
    area: Mapped[float | None] = mapped_column(Float, nullable=True)
    crop_type: Mapped[str] = mapped_column(String(64), nullable=False)
    planting_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    min_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    max_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    irrigation_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )
    irrigation_duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=30,
        server_default="30",
    )
    irrigation_cooldown_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=120,
        server_default="120",
    )
    use_static_thresholds: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    sensor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sensor_assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    relay_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    last_irrigation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class WaterReading(Base):
    __tablename__ = "water_readings"
    __table_args__ = (
        CheckConstraint("relay_status IN ('on','off','unknown')", name="ck_water_readings_relay_status"),
        Index("ix_water_readings_tank_id_ts", "tank_id", "ts"),
        Index("ix_water_readings_sensor_id_ts", "sensor_id", "ts"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    tank_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    distance_cm: Mapped[float] = mapped_column(Float, nullable=False)
    water_level_cm: Mapped[float] = mapped_column(Float, nullable=False)
    fill_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    volume_liters: Mapped[int | None] = mapped_column(Integer, nullable=True)
    relay_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="unknown",
        server_default="unknown",
    )
    pump_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SoilMoistureReading(Base):
    __tablename__ = "soil_moisture_readings"
    __table_args__ = (
        CheckConstraint("relay_status IN ('on','off','auto')", name="ck_soil_moisture_readings_relay_status"),
        Index("ix_soil_moisture_readings_zone_id_ts", "zone_id", "ts"),
        Index("ix_soil_moisture_readings_sensor_id_ts", "sensor_id", "ts"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    zone_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    moisture_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    relay_status: Mapped[str] = mapped_column(String(16), nullable=False, default="auto", server_default="auto")
    irrigation_triggered: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    target_source: Mapped[str] = mapped_column(String(32), nullable=False)
    target_min_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    target_max_moisture: Mapped[float] = mapped_column(Float, nullable=False)
    stage_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EnvironmentalReading(Base):
    __tablename__ = "environmental_readings"
    __table_args__ = (Index("ix_environmental_readings_sensor_id_ts", "sensor_id", "ts"),)

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str] = mapped_column(String(128), nullable=False)
    temperature_celsius: Mapped[float | None] = mapped_column(Float, nullable=True)
    humidity_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PendingCommand(Base):
    __tablename__ = "pending_commands"
    __table_args__ = (
        CheckConstraint("action IN ('start','stop')", name="ck_pending_commands_action"),
        CheckConstraint("target IN ('water_pump','irrigation')", name="ck_pending_commands_target"),
        CheckConstraint(
            "status IN ('queued','dequeued','executed','failed')",
            name="ck_pending_commands_status",
        ),
        Index("ix_pending_commands_device_status_created", "device_id", "status", "created_at"),
        Index("ix_pending_commands_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    target: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger: Mapped[str] = mapped_column(String(64), nullable=False, default="manual", server_default="manual")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="queued", server_default="queued")
    delivery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dequeued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ActuationLog(Base):
    __tablename__ = "actuation_logs"
    __table_args__ = (
        CheckConstraint("config_kind IN ('tank','zone')", name="ck_actuation_logs_config_kind"),
        CheckConstraint("action IN ('start','stop')", name="ck_actuation_logs_action"),
        Index("ix_actuation_logs_config_ts", "config_kind", "config_id", "ts"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    config_kind: Mapped[str] = mapped_column(String(8), nullable=False)
    config_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    relay_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target: Mapped[str] = mapped_column(String(16), nullable=False)
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    trigger: Mapped[str] = mapped_column(String(64), nullable=False)
    # NULL for manual commands issued before the zone reported any reading.
    measured_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Equipment(Base):
    __tablename__ = "equipment"
    __table_args__ = (
        UniqueConstraint("device_id", name="uq_equipment_device_id"),
        CheckConstraint(
            "status IN ('operational','warning','critical','offline')",
            name="ck_equipment_status",
        ),
        Index("ix_equipment_last_heartbeat_at", "last_heartbeat_at"),
        Index("ix_equipment_status", "status"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    site: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sensor1: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    sensor2: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    sensor3: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="offline", server_default="offline")
    power_on: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    history: Mapped[list["EquipmentStatusHistory"]] = relationship(
        back_populates="equipment",
        cascade="all, delete-orphan",
    )


class EquipmentStatusHistory(Base):
    __tablename__ = "equipment_status_history"
    __table_args__ = (
        Index("ix_equipment_status_history_equipment_at", "equipment_id", "at"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, Identity(always=False), primary_key=True)
    equipment_id: Mapped[int] = mapped_column(
        PrimaryKeyType,
        ForeignKey("equipment.id", ondelete="CASCADE"),
        nullable=False,
    )
    sensor1: Mapped[bool] = mapped_column(Boolean, nullable=False)
    sensor2: Mapped[bool] = mapped_column(Boolean, nullable=False)
    sensor3: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    power_on: Mapped[bool] = mapped_column(Boolean, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    equipment: Mapped[Equipment] = relationship(back_populates="history")
