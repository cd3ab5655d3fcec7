import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .db import SessionLocal
from .models import AuditLog

logger = logging.getLogger(__name__)


def write_audit(
    decision_id: str,
    ip: str,
    ua: str,
    event_id: Optional[str],
    subject: Optional[str],
    actor_user_id: Optional[str],
    status: str,
    reason: str,
):
    db = SessionLocal()
    try:
        db.add(AuditLog(
            decision_id=decision_id,
            ip=ip,
            user_agent=ua,
            event_id=event_id,
            subject=subject,
            actor_user_id=actor_user_id,
            status=status,
            reason_code=reason,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("failed to write audit row decision_id=%s", decision_id)
    finally:
        db.close()


def redact_token(token: str) -> str:
    # Enough to correlate audit rows without storing a redeemable secret.
    return token[:15]
