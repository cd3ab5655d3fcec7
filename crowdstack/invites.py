import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AlreadyUsed, AssignmentFailed, Expired, GateError, NotFound
from .models import InviteToken, as_utc, utcnow
from .roles import InviteRole, assign_user_role

logger = logging.getLogger(__name__)


def generate_invite_token() -> str:
    return f"invite-{secrets.token_hex(32)}"


def create_invite_token(
    db: Session,
    role,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> str:
    role = InviteRole(role)
    token = generate_invite_token()
    db.add(InviteToken(
        token=token,
        role=role.value,
        meta=dict(metadata or {}),
        created_by=created_by,
        expires_at=as_utc(expires_at),
    ))
    db.commit()
    logger.info("created invite role=%s created_by=%s", role.value, created_by)
    return token


def get_invite_token(db: Session, token: str) -> Optional[InviteToken]:
    return db.execute(
        select(InviteToken).where(InviteToken.token == token).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def check_invite_token(invite: InviteToken, now: Optional[datetime] = None) -> None:
    """Raise if the invite can no longer be redeemed. Read-only."""
    now = now or utcnow()
    if invite.used_at is not None:
        raise AlreadyUsed()
    if invite.expires_at is not None and as_utc(invite.expires_at) <= now:
        raise Expired("Invite has expired")


def redeem_invite_token(db: Session, token: str, user_id: str, now: Optional[datetime] = None) -> InviteToken:
    """Consume an invite for ``user_id``.

    The unused/unexpired check and the write are one conditional UPDATE, so of
    any number of concurrent attempts on the same token at most one matches a
    row. When nothing matched, the row is read back only to say why.

    The caller commits. Rolling back leaves the invite unused, so a failed
    attempt can always be retried.
    """
    now = now or utcnow()
    result = db.execute(
        update(InviteToken)
        .where(
            InviteToken.token == token,
            InviteToken.used_at.is_(None),
            or_(InviteToken.expires_at.is_(None), InviteToken.expires_at > now),
        )
        .values(used_at=now, used_by=user_id)
        .execution_options(synchronize_session=False)
    )

    invite = get_invite_token(db, token)
    if result.rowcount == 1:
        return invite

    if invite is None:
        raise NotFound("Invalid invite token")
    check_invite_token(invite, now)
    # Matched nothing yet reads as redeemable: treat as a lost race.
    raise AlreadyUsed()


def accept_invite(db: Session, token: str, user_id: str) -> tuple[InviteToken, str]:
    """Redeem an invite and grant its role in one transaction.

    Returns the consumed invite and the destination path for its role.
    """
    try:
        invite = redeem_invite_token(db, token, user_id)
        destination = assign_user_role(db, user_id, invite.role, invite.meta)
        db.commit()
    except GateError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("invite acceptance failed: %s", e)
        raise AssignmentFailed() from e

    logger.info("invite accepted role=%s user_id=%s", invite.role, user_id)
    return invite, destination
