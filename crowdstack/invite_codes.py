import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .errors import CapacityExceeded, Expired, Forbidden, NotFound
from .models import Event, InviteQRCode, as_utc, utcnow

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L: codes get read aloud and typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_CREATE_ATTEMPTS = 5


def generate_invite_code() -> str:
    return "INV-" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def generate_qr_token() -> str:
    return f"inv_{secrets.token_hex(32)}"


def create_invite_qr_code(
    db: Session,
    event_id: str,
    created_by: str,
    creator_role: str,
    max_uses: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    promoter_id: Optional[str] = None,
) -> InviteQRCode:
    """Create a shareable invite code for an event.

    Uniqueness of the code and token is left to the unique constraints; a
    collision just retries with fresh random values.
    """
    if max_uses is not None and max_uses < 1:
        raise ValueError("max_uses must be at least 1")

    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        invite_qr = InviteQRCode(
            event_id=event_id,
            created_by=created_by,
            creator_role=creator_role,
            invite_code=generate_invite_code(),
            qr_token=generate_qr_token(),
            max_uses=max_uses,
            used_count=0,
            expires_at=as_utc(expires_at),
            promoter_id=promoter_id,
        )
        db.add(invite_qr)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("invite code collision on attempt %d for event_id=%s", attempt, event_id)
            continue
        logger.info("created invite code %s for event_id=%s max_uses=%s", invite_qr.invite_code, event_id, max_uses)
        return invite_qr

    raise RuntimeError("could not allocate a unique invite code")


def _load_code(db: Session, invite_code: str) -> Optional[InviteQRCode]:
    return db.execute(
        select(InviteQRCode)
        .options(joinedload(InviteQRCode.event))
        .where(InviteQRCode.invite_code == invite_code)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _check_code(invite_qr: InviteQRCode, now: datetime) -> None:
    # Expiry wins over capacity.
    if invite_qr.expires_at is not None and as_utc(invite_qr.expires_at) <= now:
        raise Expired("Invite code has expired")
    if invite_qr.max_uses is not None and invite_qr.used_count >= invite_qr.max_uses:
        raise CapacityExceeded()


def get_invite_code_details(
    db: Session, invite_code: str, now: Optional[datetime] = None
) -> tuple[InviteQRCode, Event]:
    invite_qr = _load_code(db, invite_code)
    if invite_qr is None:
        raise NotFound("Invalid invite code")
    _check_code(invite_qr, now or utcnow())
    return invite_qr, invite_qr.event


def use_invite_code(db: Session, invite_code: str, now: Optional[datetime] = None) -> InviteQRCode:
    """Count one use of an invite code.

    Capacity and expiry are part of the UPDATE's WHERE clause, so concurrent
    uses can never push used_count past max_uses.
    """
    now = now or utcnow()
    result = db.execute(
        update(InviteQRCode)
        .where(
            InviteQRCode.invite_code == invite_code,
            or_(InviteQRCode.max_uses.is_(None), InviteQRCode.used_count < InviteQRCode.max_uses),
            or_(InviteQRCode.expires_at.is_(None), InviteQRCode.expires_at > now),
        )
        .values(used_count=InviteQRCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.commit()
        return _load_code(db, invite_code)

    db.rollback()
    invite_qr = _load_code(db, invite_code)
    if invite_qr is None:
        raise NotFound("Invalid invite code")
    _check_code(invite_qr, now)
    raise CapacityExceeded()


def list_event_invite_codes(db: Session, event_id: str) -> list[InviteQRCode]:
    return list(db.execute(
        select(InviteQRCode)
        .where(InviteQRCode.event_id == event_id)
        .order_by(InviteQRCode.created_at.desc())
    ).scalars())


def delete_invite_qr_code(db: Session, code_id: str, event_id: str, user_id: str) -> None:
    invite_qr = db.get(InviteQRCode, code_id)
    if invite_qr is None or invite_qr.event_id != event_id:
        raise NotFound("Invite code not found")

    event = invite_qr.event
    if user_id not in (invite_qr.created_by, event.owner_user_id):
        raise Forbidden("You do not have permission to delete this invite code")

    db.delete(invite_qr)
    db.commit()
    logger.info("deleted invite code %s for event_id=%s", invite_qr.invite_code, event_id)
