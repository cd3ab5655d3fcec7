from datetime import datetime, timedelta, timezone

from jose import jwt

from crowdstack import config
from crowdstack.models import Attendee, Event, Registration, UserRole
from crowdstack.roles import assign_user_role


def session_token(user_id: str, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {"sub": user_id, "aud": config.AUTH_JWT_AUDIENCE, "role": "authenticated", "exp": exp}
    return jwt.encode(payload, config.AUTH_JWT_SECRET, algorithm="HS256")


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {session_token(user_id)}"}


def create_event(db, name="Test Event", owner_user_id="owner-1", **kw) -> Event:
    event = Event(name=name, owner_user_id=owner_user_id, **kw)
    db.add(event)
    db.commit()
    return event


def create_registration(db, event: Event, user_id=None, name="Guest") -> Registration:
    attendee = Attendee(name=name, email=f"{name.lower()}@example.com", user_id=user_id)
    db.add(attendee)
    db.flush()
    registration = Registration(event_id=event.id, attendee_id=attendee.id)
    db.add(registration)
    db.commit()
    return registration


def grant(db, user_id: str, role: str, metadata=None):
    if role == "superadmin":
        db.add(UserRole(user_id=user_id, role=role, meta={}))
    else:
        assign_user_role(db, user_id, role, metadata)
    db.commit()
