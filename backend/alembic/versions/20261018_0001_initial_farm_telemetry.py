"""initial farm telemetry schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tank_configs",
        _id_column(),
        sa.Column("tank_id", sa.String(length=64), nullable=False),
        sa.Column("tank_height_cm", sa.Float(), nullable=False),
        sa.Column("tank_radius_cm", sa.Float(), nullable=False),
        sa.Column("max_capacity_liters", sa.Float(), nullable=True),
        sa.Column("min_threshold_cm", sa.Float(), server_default=sa.text("20"), nullable=False),
        sa.Column("location", sa.String(length=128), server_default="", nullable=False),
        sa.Column("sensor_id", sa.String(length=64), nullable=True),
        sa.Column("sensor_assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("pump_auto_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("pump_cooldown_minutes", sa.Integer(), server_default=sa.text("60"), nullable=False),
        sa.Column("last_pump_start_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tank_id", name="uq_tank_configs_tank_id"),
        sa.UniqueConstraint("sensor_id", name="uq_tank_configs_sensor_id"),
        sa.CheckConstraint("tank_height_cm > 0", name="ck_tank_configs_height_positive"),
        sa.CheckConstraint("tank_radius_cm > 0", name="ck_tank_configs_radius_positive"),
    )

    op.create_table(
        "crop_profiles",
        _id_column(),
        sa.Column("crop_type", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("crop_type", name="uq_crop_profiles_crop_type"),
        sa.CheckConstraint("duration_days > 0", name="ck_crop_profiles_duration_positive"),
    )

    op.create_table(
        "crop_profile_stages",
        _id_column(),
        sa.Column("profile_id", sa.BigInteger(), nullable=False),
        sa.Column("stage_index", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("start_day", sa.Integer(), nullable=False),
        sa.Column("end_day", sa.Integer(), nullable=False),
        sa.Column("min_moisture", sa.Float(), nullable=False),
        sa.Column("max_moisture", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("is_critical", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.ForeignKeyConstraint(["profile_id"], ["crop_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("profile_id", "stage_index", name="uq_crop_profile_stages_profile_index"),
        sa.CheckConstraint("start_day >= 1 AND end_day >= start_day", name="ck_crop_profile_stages_days"),
        sa.CheckConstraint(
            "min_moisture >= 0 AND max_moisture <= 100 AND min_moisture <= max_moisture",
            name="ck_crop_profile_stages_moisture_band",
        ),
    )

    op.create_table(
        "zone_configs",
        _id_column(),
        sa.Column("zone_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("field_name", sa.String(length=128), server_default="", nullable=False),
        sa.Column("area", sa.Float(), nullable=True),
        sa.Column("crop_type", sa.String(length=64), nullable=False),
        sa.Column("planting_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("min_moisture", sa.Float(), nullable=False),
        sa.Column("max_moisture", sa.Float(), nullable=False),
        sa.Column("irrigation_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("irrigation_duration_minutes", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column("irrigation_cooldown_minutes", sa.Integer(), server_default=sa.text("120"), nullable=False),
        sa.Column("use_static_thresholds", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), nullable=True),
        sa.Column("sensor_assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("relay_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("last_irrigation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), server_default="", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("zone_id", name="uq_zone_configs_zone_id"),
        sa.UniqueConstraint("sensor_id", name="uq_zone_configs_sensor_id"),
        sa.CheckConstraint(
            "min_moisture >= 0 AND max_moisture <= 100 AND min_moisture <= max_moisture",
            name="ck_zone_configs_moisture_band",
        ),
    )
    op.create_index("ix_zone_configs_crop_type_active", "zone_configs", ["crop_type", "is_active"])

    op.create_table(
        "water_readings",
        _id_column(),
        sa.Column("tank_id", sa.String(length=64), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), nullable=False),
        sa.Column("distance_cm", sa.Float(), nullable=False),
        sa.Column("water_level_cm", sa.Float(), nullable=False),
        sa.Column("fill_percentage", sa.Integer(), nullable=True),
        sa.Column("volume_liters", sa.Integer(), nullable=True),
        sa.Column("relay_status", sa.String(length=16), server_default="unknown", nullable=False),
        sa.Column("pump_triggered", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("relay_status IN ('on','off','unknown')", name="ck_water_readings_relay_status"),
    )
    op.create_index("ix_water_readings_tank_id_ts", "water_readings", ["tank_id", "ts"])
    op.create_index("ix_water_readings_sensor_id_ts", "water_readings", ["sensor_id", "ts"])

    op.create_table(
        "soil_moisture_readings",
        _id_column(),
        sa.Column("zone_id", sa.String(length=64), nullable=False),
        sa.Column("sensor_id", sa.String(length=64), nullable=False),
        sa.Column("moisture_percentage", sa.Float(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("relay_status", sa.String(length=16), server_default="auto", nullable=False),
        sa.Column("irrigation_triggered", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("target_source", sa.String(length=32), nullable=False),
        sa.Column("target_min_moisture", sa.Float(), nullable=False),
        sa.Column("target_max_moisture", sa.Float(), nullable=False),
        sa.Column("stage_name", sa.String(length=64), nullable=True),
        sa.Column("stage_day", sa.Integer(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "relay_status IN ('on','off','auto')",
            name="ck_soil_moisture_readings_relay_status",
        ),
    )
    op.create_index("ix_soil_moisture_readings_zone_id_ts", "soil_moisture_readings", ["zone_id", "ts"])
    op.create_index("ix_soil_moisture_readings_sensor_id_ts", "soil_moisture_readings", ["sensor_id", "ts"])

    op.create_table(
        "environmental_readings",
        _id_column(),
        sa.Column("sensor_id", sa.String(length=64), nullable=False),
        sa.Column("location", sa.String(length=128), nullable=False),
        sa.Column("temperature_celsius", sa.Float(), nullable=True),
        sa.Column("humidity_percent", sa.Float(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_environmental_readings_sensor_id_ts", "environmental_readings", ["sensor_id", "ts"])

    op.create_table(
        "pending_commands",
        _id_column(),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=8), nullable=False),
        sa.Column("target", sa.String(length=16), nullable=False),
        sa.Column("trigger", sa.String(length=64), server_default="manual", nullable=False),
        sa.Column("status", sa.String(length=16), server_default="queued", nullable=False),
        sa.Column("delivery_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dequeued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("action IN ('start','stop')", name="ck_pending_commands_action"),
        sa.CheckConstraint("target IN ('water_pump','irrigation')", name="ck_pending_commands_target"),
        sa.CheckConstraint(
            "status IN ('queued','dequeued','executed','failed')",
            name="ck_pending_commands_status",
        ),
    )
    op.create_index(
        "ix_pending_commands_device_status_created",
        "pending_commands",
        ["device_id", "status", "created_at"],
    )
    op.create_index("ix_pending_commands_created_at", "pending_commands", ["created_at"])

    op.create_table(
        "actuation_logs",
        _id_column(),
        sa.Column("config_kind", sa.String(length=8), nullable=False),
        sa.Column("config_id", sa.String(length=64), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("target", sa.String(length=16), nullable=False),
        sa.Column("action", sa.String(length=8), nullable=False),
        sa.Column("trigger", sa.String(length=64), nullable=False),
        sa.Column("measured_value", sa.Float(), nullable=False),
        sa.Column("target_min", sa.Float(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("config_kind IN ('tank','zone')", name="ck_actuation_logs_config_kind"),
    )
    op.create_index("ix_actuation_logs_config_ts", "actuation_logs", ["config_kind", "config_id", "ts"])

    op.create_table(
        "equipment",
        _id_column(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("site", sa.String(length=128), nullable=True),
        sa.Column("sensor1", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sensor2", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sensor3", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="offline", nullable=False),
        sa.Column("power_on", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id", name="uq_equipment_device_id"),
        sa.CheckConstraint(
            "status IN ('operational','warning','critical','offline')",
            name="ck_equipment_status",
        ),
    )
    op.create_index("ix_equipment_last_heartbeat_at", "equipment", ["last_heartbeat_at"])
    op.create_index("ix_equipment_status", "equipment", ["status"])

    op.create_table(
        "equipment_status_history",
        _id_column(),
        sa.Column("equipment_id", sa.BigInteger(), nullable=False),
        sa.Column("sensor1", sa.Boolean(), nullable=False),
        sa.Column("sensor2", sa.Boolean(), nullable=False),
        sa.Column("sensor3", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("power_on", sa.Boolean(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_equipment_status_history_equipment_at",
        "equipment_status_history",
        ["equipment_id", "at"],
    )


def downgrade() -> None:
    op.drop_table("equipment_status_history")
    op.drop_table("equipment")
    op.drop_table("actuation_logs")
    op.drop_table("pending_commands")
    op.drop_table("environmental_readings")
    op.drop_table("soil_moisture_readings")
    op.drop_table("water_readings")
    op.drop_table("zone_configs")
    op.drop_table("crop_profile_stages")
    op.drop_table("crop_profiles")
    op.drop_table("tank_configs")
