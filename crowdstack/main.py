import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, model_validator
from redis.asyncio import Redis
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import config, rate_limit
from .admin import router as admin_router
from .audit import write_audit
from .cache import get_redis
from .db import get_db, init_db
from .errors import TAMPER_ERRORS, GateError, client_reason
from .idempotency import get_cached_response, set_cached_response
from .passes import preview_checkin, record_checkin, require_scanner, reset_checkin
from .routes import client_ip
from .routes import router as invites_router
from .session import get_current_user_id

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="CrowdStack Gate", version="1.0.0", lifespan=lifespan)

app.include_router(invites_router)
app.include_router(admin_router)


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError):
    if isinstance(exc, TAMPER_ERRORS):
        logger.warning("%s %s rejected token: %s", request.method, request.url.path, exc.reason_code)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.reason_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "reason_code": client_reason(exc)},
    )


@app.get("/health")
def health():
    return {"status": "healthy", "service": "crowdstack-gate"}


class CheckinReq(BaseModel):
    qr_token: Optional[str] = None
    # Manual door check-in, for guests who cannot show their pass
    registration_id: Optional[str] = None

    @model_validator(mode="after")
    def _needs_subject(self):
        if not self.qr_token and not self.registration_id:
            raise ValueError("qr_token or registration_id required")
        return self


@app.get("/events/{event_id}/checkin/preview")
def checkin_preview(
    event_id: str,
    qr_token: Optional[str] = None,
    registration_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Show who a pass belongs to without checking them in."""
    if not qr_token and not registration_id:
        raise HTTPException(status_code=422, detail="qr_token or registration_id required")
    require_scanner(db, user_id, event_id)
    return preview_checkin(db, event_id, qr_token=qr_token, registration_id=registration_id)


@app.post("/events/{event_id}/checkin")
async def checkin(
    event_id: str,
    req: CheckinReq,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """Door scan: verify a pass, or take a registration id, and check it in.

    Scan outcomes (bad pass, wrong event, replay) come back as a REJECTED
    decision with a reason code; only auth and access failures are HTTP errors.
    """
    decision_id = str(uuid.uuid4())
    ip = client_ip(request)
    ua = request.headers.get("user-agent", "")
    scope = f"checkin:{event_id}:{user_id}"

    if idempotency_key:
        cached = await get_cached_response(redis, scope, idempotency_key)
        if cached:
            return cached[1]

    await rate_limit.enforce(redis, f"checkin:{user_id}", config.CHECKIN_RATE_LIMIT)
    await run_in_threadpool(require_scanner, db, user_id, event_id)

    try:
        ci = await run_in_threadpool(
            record_checkin, db, event_id, req.qr_token, user_id, registration_id=req.registration_id
        )
        resp = {"status": "ACCEPTED", "reason_code": "OK", "registration_id": ci.registration_id,
                "decision_id": decision_id}
    except GateError as e:
        if isinstance(e, TAMPER_ERRORS):
            logger.warning("door scan rejected token event_id=%s: %s", event_id, e.reason_code)
        resp = {"status": "REJECTED", "reason_code": client_reason(e), "registration_id": None,
                "decision_id": decision_id}

    if idempotency_key:
        await set_cached_response(redis, scope, idempotency_key, 200, resp)
    await run_in_threadpool(
        write_audit, decision_id, ip, ua, event_id, resp["registration_id"], user_id, resp["status"], resp["reason_code"]
    )
    return resp


@app.delete("/events/{event_id}/checkin/{registration_id}")
def undo_checkin(
    event_id: str,
    registration_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    require_scanner(db, user_id, event_id)
    reset = reset_checkin(db, event_id, registration_id)
    logger.info("check-in reset registration_id=%s event_id=%s by=%s reset=%s", registration_id, event_id, user_id, reset)
    return {"reset": reset}
