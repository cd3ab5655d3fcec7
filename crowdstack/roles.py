import enum
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .errors import AssignmentFailed
from .models import EventDoorStaff, EventPromoter, OrganizerUser, UserRole, VenueUser

logger = logging.getLogger(__name__)


class InviteRole(str, enum.Enum):
    VENUE_ADMIN = "venue_admin"
    EVENT_ORGANIZER = "event_organizer"
    PROMOTER = "promoter"
    DOOR_STAFF = "door_staff"


SUPERADMIN = "superadmin"

DESTINATIONS = {
    InviteRole.VENUE_ADMIN: "/app/venue",
    InviteRole.EVENT_ORGANIZER: "/app/organizer",
    InviteRole.PROMOTER: "/app/promoter",
    InviteRole.DOOR_STAFF: "/door",
}
DEFAULT_DESTINATION = "/me"


def destination_for(role) -> str:
    try:
        return DESTINATIONS[InviteRole(role)]
    except ValueError:
        return DEFAULT_DESTINATION


def redirect_url_for(role) -> str:
    return f"{config.APP_BASE_URL}{destination_for(role)}"


def _insert_ignore(db: Session, model, values: dict, conflict_cols: list[str]):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(values)
    else:
        raise RuntimeError(f"unsupported database dialect: {dialect}")
    db.execute(stmt.on_conflict_do_nothing(index_elements=conflict_cols))


def assign_user_role(db: Session, user_id: str, role, metadata: Optional[dict] = None) -> str:
    """Grant ``role`` to ``user_id`` and return where the user should land.

    Re-granting a role the user already holds is a no-op. Scope ids carried in
    the metadata link the user to their venue, organizer or event. A promoter
    invite may pre-assign them to an event via ``pre_assign_event_id``.
    Nothing is committed here; the caller owns the transaction.
    """
    role = InviteRole(role)
    metadata = metadata or {}
    try:
        _insert_ignore(
            db, UserRole,
            {UserRole.user_id: user_id, UserRole.role: role.value, UserRole.meta: metadata},
            ["user_id", "role"],
        )
        if role is InviteRole.VENUE_ADMIN and metadata.get("venue_id"):
            _insert_ignore(
                db, VenueUser,
                {VenueUser.venue_id: str(metadata["venue_id"]), VenueUser.user_id: user_id, VenueUser.role: "admin"},
                ["venue_id", "user_id"],
            )
        elif role is InviteRole.EVENT_ORGANIZER and metadata.get("organizer_id"):
            _insert_ignore(
                db, OrganizerUser,
                {OrganizerUser.organizer_id: str(metadata["organizer_id"]), OrganizerUser.user_id: user_id,
                 OrganizerUser.role: "admin"},
                ["organizer_id", "user_id"],
            )
        elif role is InviteRole.DOOR_STAFF and metadata.get("event_id"):
            _insert_ignore(
                db, EventDoorStaff,
                {EventDoorStaff.event_id: str(metadata["event_id"]), EventDoorStaff.user_id: user_id},
                ["event_id", "user_id"],
            )
        elif role is InviteRole.PROMOTER and metadata.get("pre_assign_event_id"):
            _insert_ignore(
                db, EventPromoter,
                {EventPromoter.event_id: str(metadata["pre_assign_event_id"]), EventPromoter.user_id: user_id},
                ["event_id", "user_id"],
            )
    except SQLAlchemyError as e:
        logger.error("role assignment failed user_id=%s role=%s: %s", user_id, role.value, e)
        raise AssignmentFailed() from e

    return destination_for(role)


def user_roles(db: Session, user_id: str) -> list[str]:
    return list(db.execute(select(UserRole.role).where(UserRole.user_id == user_id)).scalars())


def user_has_role(db: Session, user_id: str, *roles: str) -> bool:
    wanted = [r.value if isinstance(r, InviteRole) else r for r in roles]
    row = db.execute(
        select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role.in_(wanted)).limit(1)
    ).first()
    return row is not None
