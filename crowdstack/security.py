import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwk, jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from jose.utils import base64url_encode

from . import config
from .errors import Expired, Malformed, SignatureMismatch

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("registration_id", "event_id", "attendee_id", "nonce")


@dataclass(frozen=True)
class PassClaims:
    registration_id: str
    event_id: str
    attendee_id: str
    nonce: str
    expires_at: datetime


def generate_pass_token(
    registration_id: str,
    event_id: str,
    attendee_id: str,
    secret: Optional[str] = None,
    ttl: Optional[timedelta] = None,
) -> str:
    """Sign a door pass for one registration.

    Each call embeds a fresh nonce, so two passes for the same registration differ
    byte for byte while both verify.
    """
    secret = secret or config.QR_PASS_SECRET
    if ttl is None:
        ttl = timedelta(minutes=config.QR_PASS_TTL_MINUTES)
    now = datetime.now(timezone.utc)
    payload = {
        "registration_id": registration_id,
        "event_id": event_id,
        "attendee_id": attendee_id,
        "nonce": str(uuid.uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _expected_signature(signing_input: str, secret: str) -> str:
    key = jwk.construct(secret, algorithm=ALGORITHM)
    return base64url_encode(key.sign(signing_input.encode("ascii"))).decode("ascii")


def verify_pass_token(qr_token: str, secret: Optional[str] = None) -> PassClaims:
    """Check a door pass and return its claims.

    Raises Malformed for input that is not a dotted ASCII token at all and
    SignatureMismatch when any byte was altered, separators included. A stale
    pass raises Expired. The signature is compared on the encoded text, so no
    edit to the token can decode to another valid triple.
    """
    secret = secret or config.QR_PASS_SECRET

    if not isinstance(qr_token, str) or not qr_token.isascii() or "." not in qr_token:
        raise Malformed()
    # A dotted token that lost or gained a segment was edited, not mangled
    segments = qr_token.split(".")
    if len(segments) != 3 or not all(segments):
        raise SignatureMismatch()

    header, payload, signature = segments
    expected = _expected_signature(f"{header}.{payload}", secret)
    if not hmac.compare_digest(expected, signature):
        raise SignatureMismatch()

    try:
        claims = jwt.decode(qr_token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise Expired("Pass has expired")
    except JWTError:
        raise Malformed()

    for k in REQUIRED_CLAIMS:
        if not isinstance(claims.get(k), str):
            raise Malformed()
    if not isinstance(claims.get("exp"), int):
        raise Malformed()

    return PassClaims(
        registration_id=claims["registration_id"],
        event_id=claims["event_id"],
        attendee_id=claims["attendee_id"],
        nonce=claims["nonce"],
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )
