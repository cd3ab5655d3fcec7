import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .db import get_db
from .errors import Forbidden, NotFound
from .invites import create_invite_token
from .models import Attendee, AuditLog, Event, Registration
from .roles import SUPERADMIN, InviteRole, user_has_role
from .session import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def require_superadmin(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> str:
    if not user_has_role(db, user_id, SUPERADMIN):
        raise Forbidden("Superadmin only")
    return user_id


# -------------------------
# Invites
# -------------------------
class CreateInviteReq(BaseModel):
    role: InviteRole
    metadata: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None


@router.post("/invites")
def create_invite(
    req: CreateInviteReq,
    admin_id: str = Depends(require_superadmin),
    db: Session = Depends(get_db),
):
    token = create_invite_token(db, req.role, req.metadata, created_by=admin_id, expires_at=req.expires_at)
    return {"token": token, "role": req.role.value, "invite_url": f"{config.APP_BASE_URL}/invite/{token}"}


# -------------------------
# Events + registrations
# -------------------------
class CreateEventReq(BaseModel):
    name: str
    owner_user_id: Optional[str] = None
    venue_id: Optional[str] = None
    organizer_id: Optional[str] = None


@router.post("/events")
def create_event(
    req: CreateEventReq,
    admin_id: str = Depends(require_superadmin),
    db: Session = Depends(get_db),
):
    event = Event(
        name=req.name,
        owner_user_id=req.owner_user_id or admin_id,
        venue_id=req.venue_id,
        organizer_id=req.organizer_id,
    )
    db.add(event)
    db.commit()
    logger.info("created event %s owner=%s", event.id, event.owner_user_id)
    return {**event.to_dict(), "owner_user_id": event.owner_user_id}


class CreateRegistrationReq(BaseModel):
    name: str
    email: Optional[str] = None
    user_id: Optional[str] = None


@router.post("/events/{event_id}/registrations")
def create_registration(
    event_id: str,
    req: CreateRegistrationReq,
    admin_id: str = Depends(require_superadmin),
    db: Session = Depends(get_db),
):
    if db.get(Event, event_id) is None:
        raise NotFound("Event not found")
    attendee = Attendee(name=req.name, email=req.email, user_id=req.user_id)
    db.add(attendee)
    db.flush()
    registration = Registration(event_id=event_id, attendee_id=attendee.id)
    db.add(registration)
    db.commit()
    return {"registration_id": registration.id, "attendee_id": attendee.id, "event_id": event_id}


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(
    limit: int = 80,
    event_id: Optional[str] = None,
    admin_id: str = Depends(require_superadmin),
    db: Session = Depends(get_db),
):
    q = select(AuditLog, Event).join(Event, Event.id == AuditLog.event_id, isouter=True)
    if event_id:
        q = q.where(AuditLog.event_id == event_id)
    rows = db.execute(q.order_by(AuditLog.id.desc()).limit(limit)).all()

    return [
        {
            "created_at": str(log.created_at),
            "subject": log.subject,
            "event_id": log.event_id,
            "event_name": ev.name if ev else None,
            "actor_user_id": log.actor_user_id,
            "status": log.status,
            "reason_code": log.reason_code,
            "decision_id": log.decision_id,
        }
        for log, ev in rows
    ]
