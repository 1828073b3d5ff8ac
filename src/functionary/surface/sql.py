"""Durable persistence backed by SQLite via SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Engine, String, Text, create_engine, delete
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from functionary.surface.base import ExitHooks, FlushCallback


class Base(DeclarativeBase):
    """Declarative base for surface storage models."""


class SurfaceValue(Base):
    """One persisted key/value pair."""

    __tablename__ = "functionary_surface"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class SqlSurfaceDelegate:
    """Delegate that keeps context across restarts, like browser storage does across page loads."""

    surface = "persistent"

    def __init__(
        self,
        db_url: str,
        *,
        prefix: str = "functionary_client_",
        exit_hooks: ExitHooks | None = None,
    ) -> None:
        self._engine: Engine = create_engine(db_url, future=True)
        Base.metadata.create_all(self._engine)
        self._prefix = prefix
        self._exit_hooks = exit_hooks if exit_hooks is not None else ExitHooks()

    def get(self, key: str) -> str | None:
        with Session(self._engine) as session:
            record = session.get(SurfaceValue, self._key(key))
            if record is None:
                return None
            return record.value

    def set(self, key: str, value: str) -> None:
        with Session(self._engine) as session:
            record = session.get(SurfaceValue, self._key(key))
            if record is None:
                session.add(SurfaceValue(key=self._key(key), value=value))
            else:
                record.value = value
                record.updated_at = datetime.now(UTC)
            session.commit()

    def remove(self, key: str) -> None:
        with Session(self._engine) as session:
            record = session.get(SurfaceValue, self._key(key))
            if record is not None:
                session.delete(record)
                session.commit()

    def clear(self) -> None:
        """Remove every value written under this delegate's prefix."""
        with Session(self._engine) as session:
            session.execute(delete(SurfaceValue).where(SurfaceValue.key.startswith(self._prefix)))
            session.commit()

    def on_exit(self, flush: FlushCallback) -> None:
        self._exit_hooks.register(flush)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"
