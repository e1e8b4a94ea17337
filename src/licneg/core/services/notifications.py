"""
Publisher notifications for negotiation transitions.

The engine records ``NegotiationEvent`` objects while it changes state and
hands them to a ``NotificationPublisher`` only after the transaction has
committed. Delivery is best-effort: a failing publisher is logged and
never undoes the transition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFound
from ..models import Notification, NotificationType

logger = logging.getLogger(__name__)

ROUND_ACTION_TEXT = {
    "propose": "proposed new terms",
    "counter": "countered with new terms",
    "accept": "accepted the terms",
    "reject": "rejected the terms",
}


@dataclass
class NegotiationEvent:
    """Domain event describing one negotiation transition."""

    publisher_id: int
    event_type: NotificationType
    negotiation_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


class NotificationPublisher(Protocol):
    async def publish(self, publisher_id: int, event_type: NotificationType, payload: Dict[str, Any]) -> None:
        ...


def format_price(price: Any) -> str:
    if isinstance(price, (int, float)) and not isinstance(price, bool):
        return f"${price:.4f}"
    return str(price) if price else "N/A"


def render_notification(event_type: NotificationType, payload: Dict[str, Any]) -> Tuple[str, str]:
    """Return the human-readable title and message for an event."""
    client = payload.get("client_name") or "Unknown client"
    if event_type == NotificationType.negotiation_initiated:
        return (
            f"New negotiation from {client}",
            f"{client} ({payload.get('partner_type')}) initiated a negotiation for "
            f"{payload.get('use_case')} use. Proposed price: {format_price(payload.get('proposed_price'))}",
        )
    if event_type == NotificationType.negotiation_round:
        round_number = payload.get("round_number")
        action = payload.get("action", "counter")
        message = f"{client} {ROUND_ACTION_TEXT.get(action, action)} in round {round_number}"
        if payload.get("proposed_price") is not None:
            message += f". Price: {format_price(payload['proposed_price'])}"
        return f"{client} - Round {round_number}", message
    if event_type == NotificationType.negotiation_accepted:
        message = f"Agreement reached with {client}. Final price: {format_price(payload.get('final_price'))}"
        return f"Negotiation accepted with {client}", message
    if event_type == NotificationType.negotiation_rejected:
        reason = payload.get("reason") or "Terms not acceptable"
        return (
            f"Negotiation rejected with {client}",
            f"Negotiation with {client} was rejected. Reason: {reason}",
        )
    if event_type == NotificationType.negotiation_timeout:
        return (
            f"Negotiation timeout with {client}",
            f"Negotiation with {client} has timed out without reaching an agreement.",
        )
    if event_type == NotificationType.license_created:
        return (
            f"New license created for {client}",
            f"License #{payload.get('policy_id')} has been created for {client}. "
            f"Price: {format_price(payload.get('price'))}",
        )
    return event_type.value, ""


class DatabaseNotificationPublisher:
    """Stores notifications as rows, each in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def publish(self, publisher_id: int, event_type: NotificationType, payload: Dict[str, Any]) -> None:
        title, message = render_notification(event_type, payload)
        if event_type == NotificationType.license_created:
            related = ("license", payload.get("policy_id"))
        else:
            related = ("negotiation", payload.get("negotiation_id"))
        async with self._session_factory() as db:
            db.add(
                Notification(
                    publisher_id=publisher_id,
                    type=event_type,
                    title=title,
                    message=message,
                    payload=payload,
                    related_entity_type=related[0],
                    related_entity_id=str(related[1]) if related[1] is not None else None,
                )
            )
            await db.commit()
        logger.info("Notification created publisher=%s type=%s title=%s", publisher_id, event_type.value, title)


async def dispatch_events(publisher: Optional[NotificationPublisher], events: Iterable[NegotiationEvent]) -> None:
    """Deliver events one by one; failures are logged and swallowed."""
    if publisher is None:
        return
    for event in events:
        payload = {"negotiation_id": event.negotiation_id, **event.payload}
        try:
            await publisher.publish(event.publisher_id, event.event_type, payload)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to deliver %s notification for negotiation %s",
                event.event_type.value,
                event.negotiation_id,
            )


async def list_notifications(
    db: AsyncSession,
    publisher_id: int,
    is_read: Optional[bool] = None,
    event_type: Optional[NotificationType] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Notification]:
    """Return a publisher's notifications, newest first."""
    stmt = select(Notification).where(Notification.publisher_id == publisher_id)
    if is_read is not None:
        stmt = stmt.where(Notification.is_read == is_read)
    if event_type is not None:
        stmt = stmt.where(Notification.type == event_type)
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_unread(db: AsyncSession, publisher_id: int) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.publisher_id == publisher_id, Notification.is_read.is_(False)
        )
    )
    return int(result.scalar_one())


async def mark_read(db: AsyncSession, notification_id: int) -> Notification:
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFound(f"Notification {notification_id} not found")
    notification.is_read = True
    await db.flush()
    return notification
