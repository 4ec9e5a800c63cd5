from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationType:
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_RESUBMITTED = "application_resubmitted"
    APPLICATION_IN_REVIEW = "application_in_review"
    APPLICATION_MORE_INFO = "application_more_info"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_ASSIGNED = "application_assigned"
    DUAL_AUTHORIZATION_PENDING = "dual_authorization_pending"
    DOCUMENT_VERIFIED = "document_verified"
    DOCUMENT_REJECTED = "document_rejected"


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    message: str
    application_id: str | None = None
    recipient_id: str | None = None
    document_id: str | None = None


async def dispatch(db: AsyncSession, event: NotificationEvent, *, reload: Iterable[Any] = ()) -> bool:
    """Best-effort delivery, called after the state change has been committed.

    Returns False when the notification could not be stored; the error is
    logged and never propagated to the caller. A failed write rolls the session
    back, so the objects in ``reload`` are refreshed for the caller to keep using.
    """
    try:
        db.add(
            Notification(
                recipient_id=event.recipient_id,
                type=event.type,
                application_id=event.application_id,
                document_id=event.document_id,
                message=event.message,
            )
        )
        await db.commit()
    except SQLAlchemyError as exc:
        logger.warning(
            "Notification dispatch failed type=%s application=%s: %s",
            event.type,
            event.application_id,
            exc,
        )
        await db.rollback()
        for obj in reload:
            await db.refresh(obj)
        return False
    return True
