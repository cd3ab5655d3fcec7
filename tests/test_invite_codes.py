from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from crowdstack.db import SessionLocal
from crowdstack.errors import CapacityExceeded, Expired, NotFound
from crowdstack.invite_codes import CODE_ALPHABET, create_invite_qr_code, use_invite_code
from crowdstack.models import Event, InviteQRCode
from tests.helpers import auth, create_event, grant


def _past():
    return datetime.now(timezone.utc) - timedelta(hours=1)


def test_capacity_boundary(db):
    event = create_event(db)
    code = create_invite_qr_code(db, event.id, "owner-1", "event_organizer", max_uses=1).invite_code

    assert use_invite_code(db, code).used_count == 1
    with pytest.raises(CapacityExceeded):
        use_invite_code(db, code)

    db.expire_all()
    assert db.execute(select(InviteQRCode.used_count).where(InviteQRCode.invite_code == code)).scalar_one() == 1


def test_expired_code_rejected_regardless_of_uses(db):
    event = create_event(db)
    fresh = create_invite_qr_code(db, event.id, "owner-1", "event_organizer", max_uses=10, expires_at=_past())
    with pytest.raises(Expired):
        use_invite_code(db, fresh.invite_code)

    # Expired and also full: expiry is reported
    full = create_invite_qr_code(db, event.id, "owner-1", "event_organizer", max_uses=1, expires_at=_past())
    db.execute(InviteQRCode.__table__.update().where(InviteQRCode.id == full.id).values(used_count=1))
    db.commit()
    with pytest.raises(Expired):
        use_invite_code(db, full.invite_code)


def test_unknown_code(db):
    with pytest.raises(NotFound):
        use_invite_code(db, "INV-ZZZZZZ")


def test_unlimited_code_keeps_counting(db):
    event = create_event(db)
    code = create_invite_qr_code(db, event.id, "owner-1", "promoter").invite_code
    for _ in range(5):
        last = use_invite_code(db, code)
    assert last.used_count == 5
    assert last.max_uses is None


def test_code_format(db):
    event = create_event(db)
    invite_qr = create_invite_qr_code(db, event.id, "owner-1", "event_organizer")
    assert invite_qr.invite_code.startswith("INV-")
    assert all(c in CODE_ALPHABET for c in invite_qr.invite_code[4:])
    assert invite_qr.qr_token.startswith("inv_")


def test_concurrent_uses_never_exceed_cap(db):
    event = create_event(db)
    code = create_invite_qr_code(db, event.id, "owner-1", "event_organizer", max_uses=3).invite_code

    def one(_):
        s = SessionLocal()
        try:
            use_invite_code(s, code)
            return "ok"
        except CapacityExceeded:
            return "full"
        finally:
            s.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(one, range(10)))

    assert results.count("ok") == 3, results
    assert results.count("full") == 7, results
    db.expire_all()
    assert db.execute(select(InviteQRCode.used_count).where(InviteQRCode.invite_code == code)).scalar_one() == 3


def test_deleting_event_removes_its_codes(db):
    event = create_event(db)
    create_invite_qr_code(db, event.id, "owner-1", "event_organizer")
    create_invite_qr_code(db, event.id, "owner-1", "event_organizer")

    db.delete(db.get(Event, event.id))
    db.commit()
    assert db.execute(select(InviteQRCode)).scalars().all() == []


@pytest.mark.asyncio
async def test_owner_creates_and_redeems_over_http(client, db):
    event = create_event(db, owner_user_id="owner-1")

    r = await client.post(f"/events/{event.id}/invite-codes", json={"max_uses": 1}, headers=auth("owner-1"))
    assert r.status_code == 200, r.text
    invite_qr = r.json()["invite_qr"]
    assert invite_qr["used_count"] == 0
    assert invite_qr["max_uses"] == 1
    assert invite_qr["creator_role"] == "event_organizer"
    code = invite_qr["invite_code"]

    r = await client.get(f"/invite-codes/{code}")
    assert r.status_code == 200
    assert r.json()["event"]["id"] == event.id
    assert r.json()["invite"]["used_count"] == 0

    r = await client.post(f"/invite-codes/{code}/redeem")
    assert r.status_code == 200
    assert r.json()["invite"]["used_count"] == 1

    r = await client.post(f"/invite-codes/{code}/redeem")
    assert r.status_code == 400
    assert r.json()["reason_code"] == "MAX_USES_REACHED"

    r = await client.get(f"/invite-codes/{code}")
    assert r.status_code == 400
    assert r.json()["reason_code"] == "MAX_USES_REACHED"


@pytest.mark.asyncio
async def test_expired_code_over_http(client, db):
    event = create_event(db)
    code = create_invite_qr_code(db, event.id, "owner-1", "event_organizer", expires_at=_past()).invite_code

    r = await client.get(f"/invite-codes/{code}")
    assert r.status_code == 400
    assert r.json()["reason_code"] == "EXPIRED"

    r = await client.post(f"/invite-codes/{code}/redeem")
    assert r.status_code == 400
    assert r.json()["reason_code"] == "EXPIRED"

    r = await client.get("/invite-codes/INV-NOPE22")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_create_requires_event_owner(client, db):
    event = create_event(db, owner_user_id="owner-1")

    r = await client.post(f"/events/{event.id}/invite-codes", json={})
    assert r.status_code == 401

    r = await client.post(f"/events/{event.id}/invite-codes", json={}, headers=auth("someone-else"))
    assert r.status_code == 403

    r = await client.post("/events/evt_missing/invite-codes", json={}, headers=auth("owner-1"))
    assert r.status_code == 404

    r = await client.post(f"/events/{event.id}/invite-codes", json={"max_uses": 0}, headers=auth("owner-1"))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_venue_admin_creator_role_and_listing(client, db):
    event = create_event(db, owner_user_id="venue-owner", venue_id="v1")
    grant(db, "venue-owner", "venue_admin", {"venue_id": "v1"})

    r = await client.post(f"/events/{event.id}/invite-codes", json={"max_uses": 50}, headers=auth("venue-owner"))
    assert r.json()["invite_qr"]["creator_role"] == "venue_admin"

    r = await client.get(f"/events/{event.id}/invite-codes", headers=auth("venue-owner"))
    assert r.status_code == 200
    assert len(r.json()["invite_codes"]) == 1


@pytest.mark.asyncio
async def test_delete_code_permissions(client, db):
    event = create_event(db, owner_user_id="owner-1")
    invite_qr = create_invite_qr_code(db, event.id, "promoter-1", "promoter")

    r = await client.delete(f"/events/{event.id}/invite-codes/{invite_qr.id}", headers=auth("stranger"))
    assert r.status_code == 403

    r = await client.delete(f"/events/evt_other/invite-codes/{invite_qr.id}", headers=auth("owner-1"))
    assert r.status_code == 404

    r = await client.delete(f"/events/{event.id}/invite-codes/{invite_qr.id}", headers=auth("owner-1"))
    assert r.status_code == 200
    assert r.json() == {"deleted": True}
