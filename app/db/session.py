from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, settings
from app.db.base import Base


class Database:
    """
    Process-wide database handle: one pooled engine plus its session factory.

    Built once at application start, shared by every request and by the
    telemetry store, disposed at shutdown.

    Usage:
        database = Database.from_settings(settings)
        with database.session() as db:
            db.execute(text("SELECT 1"))
    """

    def __init__(self, url: str, **engine_kwargs: Any):
        self.url = url
        self.engine: Engine = create_engine(url, **engine_kwargs)
        self.session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
        )

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "Database":
        if not app_settings.DATABASE_URL:
            raise ValueError(
                "Database not configured. Set DATABASE_URL or DB_HOST/DB_USER/DB_PASSWORD."
            )
        if app_settings.DATABASE_URL.startswith("sqlite"):
            return cls(
                app_settings.DATABASE_URL,
                connect_args={"check_same_thread": False},
                echo=app_settings.DEBUG,
            )
        return cls(
            app_settings.DATABASE_URL,
            pool_pre_ping=app_settings.DB_POOL_PRE_PING,
            pool_size=app_settings.DB_POOL_SIZE,
            max_overflow=app_settings.DB_MAX_OVERFLOW,
            echo=app_settings.DEBUG,  # Log SQL queries in debug mode
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def create_all(self) -> None:
        # Importing the models registers their tables on Base.metadata
        import app.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> Optional[str]:
        """Run ``SELECT 1``; return None when reachable, the error text otherwise."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as exc:
            return str(exc)[:200]
        return None

    def dispose(self) -> None:
        self.engine.dispose()
