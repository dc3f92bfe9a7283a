from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from farmlink.core.config import Settings, get_settings


def build_engine(settings: Settings) -> Engine:
    connect_args: dict[str, Any] = {}
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={settings.db_statement_timeout_ms}"
        connect_args["connect_timeout"] = max(1, int(settings.db_pool_timeout_seconds))
        engine_kwargs["pool_timeout"] = settings.db_pool_timeout_seconds
    elif settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.db_statement_timeout_ms / 1000.0
    return create_engine(settings.database_url, connect_args=connect_args, **engine_kwargs)


settings = get_settings()
engine = build_engine(settings)
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection(db: Session) -> tuple[bool, str | None]:
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except Exception as exc:
        return False, str(exc)
