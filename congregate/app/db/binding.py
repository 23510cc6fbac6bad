"""Binding the access context into engine-visible session state.

The claims document must be written on the connection that runs the
governed statements. Binders only ever receive the session of an open
transaction; they never acquire a connection of their own.
"""

import json
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class ClaimsBinder(Protocol):
    """Writes and reads the claims document for the current transaction."""

    async def bind(self, session: AsyncSession, claims: dict[str, Any]) -> None:
        """Bind claims on the session's transaction connection.

        Args:
            session: Session with an open transaction
            claims: Claims document; empty dict for anonymous
        """
        ...

    async def read(self, session: AsyncSession) -> dict[str, Any]:
        """Read back the claims the engine currently sees."""
        ...


class PostgresClaimsBinder:
    """Transaction-local ``set_config`` on PostgreSQL.

    ``is_local = true`` makes the setting vanish at COMMIT or ROLLBACK, so a
    pooled connection never carries one request's claims into the next.
    """

    def __init__(self, setting_name: str = "request.jwt.claims") -> None:
        self._setting_name = setting_name

    async def bind(self, session: AsyncSession, claims: dict[str, Any]) -> None:
        await session.execute(
            text("SELECT set_config(:name, :claims, true)"),
            {"name": self._setting_name, "claims": json.dumps(claims, sort_keys=True)},
        )

    async def read(self, session: AsyncSession) -> dict[str, Any]:
        result = await session.execute(
            text("SELECT current_setting(:name, true)"), {"name": self._setting_name}
        )
        return _decode(result.scalar_one_or_none())


class SqliteClaimsBinder:
    """Per-connection temp table standing in for a session variable.

    Every bind overwrites the row, so the claims seen inside a transaction
    are always the ones bound at its start.
    """

    _TABLE = "session_claims"

    def __init__(self, setting_name: str = "request.jwt.claims") -> None:
        self._setting_name = setting_name

    async def bind(self, session: AsyncSession, claims: dict[str, Any]) -> None:
        await session.execute(
            text(
                f"CREATE TEMP TABLE IF NOT EXISTS {self._TABLE} "
                "(name TEXT PRIMARY KEY, claims TEXT NOT NULL)"
            )
        )
        await session.execute(
            text(
                f"INSERT INTO {self._TABLE} (name, claims) VALUES (:name, :claims) "
                "ON CONFLICT (name) DO UPDATE SET claims = excluded.claims"
            ),
            {"name": self._setting_name, "claims": json.dumps(claims, sort_keys=True)},
        )

    async def read(self, session: AsyncSession) -> dict[str, Any]:
        result = await session.execute(
            text(f"SELECT claims FROM {self._TABLE} WHERE name = :name"),
            {"name": self._setting_name},
        )
        return _decode(result.scalar_one_or_none())


def binder_for_dialect(dialect_name: str, setting_name: str = "request.jwt.claims") -> ClaimsBinder:
    """Pick the claims binder for a SQLAlchemy dialect.

    Raises:
        ValueError: If the dialect has no session-state mechanism.
    """
    if dialect_name == "postgresql":
        return PostgresClaimsBinder(setting_name)
    if dialect_name == "sqlite":
        return SqliteClaimsBinder(setting_name)
    raise ValueError(f"No claims binder for dialect '{dialect_name}'")


def _decode(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    decoded = json.loads(raw)
    return decoded if isinstance(decoded, dict) else {}
