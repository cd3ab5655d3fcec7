import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .errors import Forbidden, NotFound, Replay, WrongEvent
from .models import CheckIn, Event, EventDoorStaff, OrganizerUser, Registration, VenueUser, as_utc, utcnow
from .roles import SUPERADMIN, user_has_role
from .security import generate_pass_token, verify_pass_token

logger = logging.getLogger(__name__)

SINGLE_USE = "single_use"
PER_DAY = "per_day"


def issue_pass(db: Session, registration_id: str, requesting_user_id: str) -> str:
    """Sign a door pass for a registration owned by the requesting user.

    An attendee without a linked user account has no owner to compare against,
    so nobody can pull a pass for it.
    """
    registration = db.get(Registration, registration_id)
    if registration is None:
        raise NotFound("Registration not found")

    owner = registration.attendee.user_id if registration.attendee else None
    if owner is None or owner != requesting_user_id:
        logger.info("pass denied registration_id=%s user_id=%s", registration_id, requesting_user_id)
        raise Forbidden("Registration does not belong to you")

    return generate_pass_token(registration.id, registration.event_id, registration.attendee_id)


def can_scan_event(db: Session, user_id: str, event: Event) -> bool:
    if event.owner_user_id == user_id or user_has_role(db, user_id, SUPERADMIN):
        return True

    checks = [select(EventDoorStaff.id).where(EventDoorStaff.event_id == event.id, EventDoorStaff.user_id == user_id)]
    if event.venue_id:
        checks.append(select(VenueUser.id).where(VenueUser.venue_id == event.venue_id, VenueUser.user_id == user_id))
    if event.organizer_id:
        checks.append(select(OrganizerUser.id).where(
            OrganizerUser.organizer_id == event.organizer_id, OrganizerUser.user_id == user_id
        ))
    return any(db.execute(q.limit(1)).first() is not None for q in checks)


def require_scanner(db: Session, user_id: str, event_id: str) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    if not can_scan_event(db, user_id, event):
        logger.info("scanner access denied user_id=%s event_id=%s", user_id, event_id)
        raise Forbidden("No access to this event")
    return event


def checkin_scope(policy: Optional[str], now: datetime) -> str:
    policy = policy or config.CHECKIN_POLICY
    if policy == SINGLE_USE:
        return "event"
    if policy == PER_DAY:
        return now.date().isoformat()
    raise ValueError(f"unknown check-in policy: {policy}")


def _resolve_registration(
    db: Session,
    event_id: str,
    qr_token: Optional[str] = None,
    registration_id: Optional[str] = None,
) -> Registration:
    """Find the registration a scan refers to.

    A pass wins over a bare registration id; the id alone is the manual door
    path and is only trusted because the caller already passed require_scanner.
    """
    if qr_token:
        claims = verify_pass_token(qr_token)
        if claims.event_id != event_id:
            raise WrongEvent()
        registration = db.get(Registration, claims.registration_id)
        if registration is None or registration.attendee_id != claims.attendee_id:
            raise NotFound("Registration not found")
    elif registration_id:
        registration = db.get(Registration, registration_id)
        if registration is None:
            raise NotFound("Registration not found")
    else:
        raise ValueError("qr_token or registration_id required")

    if registration.event_id != event_id:
        raise WrongEvent()
    return registration


def record_checkin(
    db: Session,
    event_id: str,
    qr_token: Optional[str],
    staff_user_id: str,
    policy: Optional[str] = None,
    now: Optional[datetime] = None,
    registration_id: Optional[str] = None,
) -> CheckIn:
    """Check in the registration a door pass was issued for.

    The pass proves who the registration is; the unique (registration, scope)
    constraint on checkins decides whether this scan is the first one.
    """
    now = now or utcnow()
    registration = _resolve_registration(db, event_id, qr_token, registration_id)

    checkin = CheckIn(
        registration_id=registration.id,
        event_id=event_id,
        scope_key=checkin_scope(policy, now),
        checked_in_by=staff_user_id,
        checked_in_at=now,
    )
    db.add(checkin)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Replay()

    logger.info("checked in registration_id=%s event_id=%s by=%s manual=%s",
                registration.id, event_id, staff_user_id, not qr_token)
    return checkin


def preview_checkin(
    db: Session,
    event_id: str,
    qr_token: Optional[str] = None,
    registration_id: Optional[str] = None,
    policy: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    registration = _resolve_registration(db, event_id, qr_token, registration_id)
    existing = db.execute(
        select(CheckIn).where(
            CheckIn.registration_id == registration.id,
            CheckIn.scope_key == checkin_scope(policy, now or utcnow()),
        )
    ).scalar_one_or_none()

    attendee = registration.attendee
    return {
        "registration_id": registration.id,
        "event_id": registration.event_id,
        "attendee": {"id": attendee.id, "name": attendee.name, "email": attendee.email},
        "already_checked_in": existing is not None,
        "checked_in_at": as_utc(existing.checked_in_at).isoformat() if existing else None,
    }


def reset_checkin(
    db: Session,
    event_id: str,
    registration_id: str,
    policy: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    result = db.execute(
        delete(CheckIn).where(
            CheckIn.event_id == event_id,
            CheckIn.registration_id == registration_id,
            CheckIn.scope_key == checkin_scope(policy, now or utcnow()),
        )
    )
    db.commit()
    return result.rowcount > 0
