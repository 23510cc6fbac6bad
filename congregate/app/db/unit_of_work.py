"""Context-scoped unit of work.

Every business operation runs as: open one transaction, bind the access
context on that transaction's connection, run the operation on the same
session, then commit or roll back. Binding outside that transaction is
never done: a pooled driver may hand the bind statement and the governed
statements to different physical connections, and the policy layer would
then evaluate stale or empty claims without raising anything.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from congregate.app.db.binding import ClaimsBinder, binder_for_dialect
from congregate.app.db.context import AccessContext
from congregate.app.db.models import Base
from congregate.app.db.policy import PolicyEvaluator, ScopePolicyEvaluator
from congregate.app.errors import Forbidden, OperationTimedOut
from congregate.app.utils.metrics import PrometheusUnitOfWorkMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class UnitOfWork:
    """Handle restricted to one bound transaction.

    Operations receive this instead of an engine or session factory, so
    every statement they issue runs on the connection the claims were bound
    to.
    """

    session: AsyncSession
    context: AccessContext | None
    dialect: str
    policy: PolicyEvaluator
    binder: ClaimsBinder

    @property
    def actor_id(self) -> UUID:
        """Actor id of the bound context.

        Raises:
            Forbidden: If the unit of work runs without a context.
        """
        if self.context is None:
            raise Forbidden("An authenticated actor is required")
        return self.context.actor_id

    def scoped(self, stmt: Select[Any], entity: type[Base]) -> Select[Any]:
        """Apply the policy row filter for ``entity`` to ``stmt``."""
        return self.policy.filter(self.context, stmt, entity)

    def require(self, action: str, group_id: UUID | None = None) -> None:
        """Raise Forbidden unless the bound context may perform ``action``."""
        self.policy.require(self.context, action, group_id)

    async def bound_claims(self) -> dict[str, Any]:
        """Claims document the engine sees on this transaction."""
        return await self.binder.read(self.session)


Operation = Callable[[UnitOfWork], Awaitable[T]]


class ContextScopedUnitOfWork:
    """Runs operations inside one transaction with the access context bound.

    Commits on normal return, rolls back on any raised error (cancellation
    included) and re-raises it unchanged. Never retries.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        binder: ClaimsBinder | None = None,
        policy: PolicyEvaluator | None = None,
        timeout_seconds: float | None = None,
        setting_name: str = "request.jwt.claims",
    ) -> None:
        """Initialize the unit of work.

        Args:
            engine: Async engine; its pool is the only shared resource
            binder: Claims binder (default: chosen from the engine dialect)
            policy: Policy evaluator (default: ScopePolicyEvaluator)
            timeout_seconds: Default deadline per run; None disables it
            setting_name: Session variable name the binder writes
        """
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        self._dialect = engine.dialect.name
        self._binder = binder or binder_for_dialect(self._dialect, setting_name)
        self._policy = policy or ScopePolicyEvaluator()
        self._timeout_seconds = timeout_seconds
        self._metrics = PrometheusUnitOfWorkMetrics()

    @property
    def dialect(self) -> str:
        return self._dialect

    async def run(
        self,
        ctx: AccessContext | None,
        op: Operation[T],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``op`` in a fresh transaction bound to ``ctx``.

        Args:
            ctx: Access context, or None for an anonymous binding
            op: Coroutine function receiving the bound UnitOfWork
            timeout: Deadline in seconds, overriding the default

        Returns:
            Whatever ``op`` returns, after commit

        Raises:
            OperationTimedOut: If the deadline passed; the transaction was rolled back
        """
        deadline = timeout if timeout is not None else self._timeout_seconds
        started = time.perf_counter()
        outcome = "rolled_back"

        try:
            if deadline is None:
                result = await self._run(ctx, op)
            else:
                result = await self._run_with_deadline(ctx, op, deadline)
            outcome = "committed"
            return result
        except OperationTimedOut:
            outcome = "timed_out"
            raise
        finally:
            self._metrics.record(outcome, (time.perf_counter() - started) * 1000)

    async def _run(self, ctx: AccessContext | None, op: Operation[T]) -> T:
        async with self._sessions() as session:
            async with session.begin():
                await self._bind(session, ctx)
                tx = UnitOfWork(
                    session=session,
                    context=ctx,
                    dialect=self._dialect,
                    policy=self._policy,
                    binder=self._binder,
                )
                return await op(tx)

    async def _bind(self, session: AsyncSession, ctx: AccessContext | None) -> None:
        claims = ctx.to_claims() if ctx is not None else {}
        try:
            await self._binder.bind(session, claims)
        except Exception:
            # Never continue with unbound or default claims
            logger.error(
                "Failed to bind access context",
                extra={"structured": {"role": claims.get("role"), "dialect": self._dialect}},
            )
            raise

        if ctx is None:
            logger.debug("Anonymous access context bound")
        else:
            logger.debug("Access context bound for role: %s", ctx.role.value)

    async def _run_with_deadline(
        self, ctx: AccessContext | None, op: Operation[T], deadline: float
    ) -> T:
        task = asyncio.ensure_future(self._run(ctx, op))
        try:
            done, _ = await asyncio.wait({task}, timeout=deadline)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done or not task.cancel():
            return task.result()

        # Wait for the rollback to finish before reporting the timeout
        with suppress(asyncio.CancelledError):
            await task

        logger.warning("Unit of work exceeded %.3fs deadline and was rolled back", deadline)
        raise OperationTimedOut(f"Operation exceeded {deadline:g}s and was rolled back")
