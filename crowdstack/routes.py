import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import config, rate_limit
from .audit import redact_token, write_audit
from .cache import get_redis
from .db import get_db
from .errors import Forbidden, GateError, InvalidToken, NotFound
from .idempotency import get_cached_response, set_cached_response
from .invite_codes import (
    create_invite_qr_code,
    delete_invite_qr_code,
    get_invite_code_details,
    list_event_invite_codes,
    use_invite_code,
)
from .invites import accept_invite, check_invite_token, get_invite_token
from .models import Event
from .passes import issue_pass
from .roles import SUPERADMIN, InviteRole, redirect_url_for, user_has_role
from .session import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invites"])


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# -------------------------
# Role invites
# -------------------------
@router.get("/invites/{token}")
def fetch_invite(token: str, db: Session = Depends(get_db)):
    invite = get_invite_token(db, token)
    if invite is None:
        raise NotFound("Invite not found")
    check_invite_token(invite)
    return {"valid": True, "role": invite.role, "metadata": invite.meta}


@router.post("/invites/{token}/redeem")
async def redeem_invite(
    token: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    decision_id = str(uuid.uuid4())
    ip = client_ip(request)
    ua = request.headers.get("user-agent", "")
    scope = f"redeem:{user_id}"

    if idempotency_key:
        cached = await get_cached_response(redis, scope, idempotency_key)
        if cached:
            status_code, body = cached
            return JSONResponse(status_code=status_code, content=body)

    await rate_limit.enforce(redis, f"redeem:{ip}", config.REDEEM_RATE_LIMIT)

    try:
        invite, _ = await run_in_threadpool(accept_invite, db, token, user_id)
    except GateError as e:
        logger.info("invite redemption rejected user_id=%s reason=%s", user_id, e.reason_code)
        await run_in_threadpool(
            write_audit, decision_id, ip, ua, None, redact_token(token), user_id, "REJECTED", e.reason_code
        )
        if isinstance(e, NotFound):
            raise InvalidToken("Invalid invite token")
        raise

    resp = {"role": invite.role, "redirect_url": redirect_url_for(invite.role)}
    # Only successes are cached: a failed attempt leaves the invite unused and may be retried.
    if idempotency_key:
        await set_cached_response(redis, scope, idempotency_key, 200, resp)
    await run_in_threadpool(write_audit, decision_id, ip, ua, None, redact_token(token), user_id, "ACCEPTED", "OK")
    return resp


# -------------------------
# Event invite codes
# -------------------------
class CreateInviteCodeReq(BaseModel):
    max_uses: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None
    promoter_id: Optional[str] = None


def _owned_event(db: Session, event_id: str, user_id: str) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    if event.owner_user_id != user_id and not user_has_role(db, user_id, SUPERADMIN):
        raise Forbidden("Only the event owner can manage invite codes")
    return event


def _creator_role(db: Session, user_id: str, promoter_id: Optional[str]) -> str:
    if user_has_role(db, user_id, InviteRole.VENUE_ADMIN):
        return InviteRole.VENUE_ADMIN.value
    if promoter_id is None and user_has_role(db, user_id, InviteRole.PROMOTER):
        return InviteRole.PROMOTER.value
    return InviteRole.EVENT_ORGANIZER.value


@router.post("/events/{event_id}/invite-codes")
def create_event_invite_code(
    event_id: str,
    req: CreateInviteCodeReq,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    event = _owned_event(db, event_id, user_id)
    invite_qr = create_invite_qr_code(
        db,
        event.id,
        created_by=user_id,
        creator_role=_creator_role(db, user_id, req.promoter_id),
        max_uses=req.max_uses,
        expires_at=req.expires_at,
        promoter_id=req.promoter_id,
    )
    return {"invite_qr": invite_qr.to_dict()}


@router.get("/events/{event_id}/invite-codes")
def list_event_invite_codes_route(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    event = _owned_event(db, event_id, user_id)
    return {"invite_codes": [c.to_dict() for c in list_event_invite_codes(db, event.id)]}


@router.delete("/events/{event_id}/invite-codes/{code_id}")
def delete_event_invite_code(
    event_id: str,
    code_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    delete_invite_qr_code(db, code_id, event_id, user_id)
    return {"deleted": True}


def _invite_code_body(invite_qr, event: Event) -> dict:
    return {"invite": invite_qr.to_dict(), "event": event.to_dict()}


@router.get("/invite-codes/{code}")
def get_invite_code(code: str, db: Session = Depends(get_db)):
    invite_qr, event = get_invite_code_details(db, code)
    return _invite_code_body(invite_qr, event)


@router.post("/invite-codes/{code}/redeem")
async def redeem_invite_code(
    code: str,
    request: Request,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    decision_id = str(uuid.uuid4())
    ip = client_ip(request)
    ua = request.headers.get("user-agent", "")

    await rate_limit.enforce(redis, f"redeem:{ip}", config.REDEEM_RATE_LIMIT)
    try:
        invite_qr = await run_in_threadpool(use_invite_code, db, code)
    except GateError as e:
        await run_in_threadpool(write_audit, decision_id, ip, ua, None, code, None, "REJECTED", e.reason_code)
        raise

    await run_in_threadpool(write_audit, decision_id, ip, ua, invite_qr.event_id, code, None, "ACCEPTED", "OK")
    logger.info("invite code %s used %d/%s", invite_qr.invite_code, invite_qr.used_count, invite_qr.max_uses)
    return _invite_code_body(invite_qr, invite_qr.event)


# -------------------------
# Door passes
# -------------------------
@router.get("/registrations/{registration_id}/pass")
def get_pass(
    registration_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return {"qr_token": issue_pass(db, registration_id, user_id)}
