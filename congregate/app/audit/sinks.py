"""Activity sink implementations."""

import json
import logging

from congregate.app.audit.notary import ActivityEvent
from congregate.app.db.models import ActivityLog
from congregate.app.db.unit_of_work import ContextScopedUnitOfWork, UnitOfWork

logger = logging.getLogger(__name__)


class SqlActivitySink:
    """Writes activity events to the activity_log table.

    Each event gets its own unit of work bound to the acting context, so the
    row-level policies see the same actor that performed the operation.
    """

    def __init__(self, uow: ContextScopedUnitOfWork) -> None:
        self._uow = uow

    async def write(self, event: ActivityEvent) -> None:
        if event.actor is None:
            # System operations carry no actor to attribute
            logger.debug("Skipping activity without actor: %s", event.action)
            return

        async def op(tx: UnitOfWork) -> None:
            tx.session.add(
                ActivityLog(
                    actor_id=tx.actor_id,
                    action=event.action,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    metadata_=json.loads(json.dumps(event.metadata, default=str)),
                    created_at=event.occurred_at,
                )
            )

        await self._uow.run(event.actor, op)


class InMemoryActivitySink:
    """In-memory implementation of ActivitySink."""

    def __init__(self) -> None:
        self.events: list[ActivityEvent] = []

    async def write(self, event: ActivityEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [event.action for event in self.events]
