from typing import List
from sqlalchemy.orm import Session
from sqlalchemy import select
from medconnect.domain.notifications.models import OutboxEvent, OutboxEventType, OutboxStatus


class OutboxRepository:
    """Data access for the notification outbox"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        event_type: OutboxEventType,
        aggregate_id: str,
        payload: dict,
        max_attempts: int = 3
    ) -> OutboxEvent:
        """Stage an event in the caller's transaction; no commit here"""
        event = OutboxEvent(
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=OutboxStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
        )
        self.db.add(event)
        return event

    def list_pending(self, limit: int = 50) -> List[OutboxEvent]:
        """Oldest pending events first, skipping rows another worker holds"""
        result = self.db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    def list_for_aggregate(self, aggregate_id: str) -> List[OutboxEvent]:
        result = self.db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.aggregate_id == aggregate_id)
            .order_by(OutboxEvent.created_at)
        )
        return list(result.scalars().all())
