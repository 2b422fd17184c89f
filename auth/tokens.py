"""
auth/tokens.py -- JWT and password hashing primitives.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email (as the subject), role, a random jti, and expiry.
       Verification returns None on any failure -- the service turns that into
       InvalidOrExpiredToken. The jti makes two tokens minted for the same
       user in the same second distinct, which the session table relies on.
       Email verification tokens are a separate JWT kind (purpose claim, no
       user_id) and are never accepted as access tokens.

  Passwords: bcrypt with a fixed cost factor from Settings.bcrypt_rounds.
       Bcrypt is the right choice for low-entropy secrets because its cost
       factor makes brute-force expensive. The _DUMMY_HASH constant enables
       timing equalization in the login path so response time does not reveal
       whether an email is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup; there is no hardcoded fallback [M6][M7].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("coursehub.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_EMAIL_VERIFICATION = "email_verification"
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _secret_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; longer input is cut to that length
    here and in verify_password() so both sides agree.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_secret_bytes(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_secret_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Timing equalization dummy hash [C1].
# Always call verify_password() even when the email does not exist --
# bcrypt's constant work factor equalizes timing.
_DUMMY_HASH: str = hash_password("coursehub_timing_dummy")


def check_password_or_dummy(plain: str, hashed: str | None) -> bool:
    """Verify against `hashed`, or burn the same bcrypt time and return False."""
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def token_expiry(now: datetime | None = None) -> datetime:
    """Return the expiry instant for a token issued at `now` (UTC)."""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=_settings.token_expire_seconds)


def create_access_token(user_id: int, email: str, role: str, expires_at: datetime | None = None) -> str:
    """Encode a signed JWT with user identity and expiry.

    Args:
        user_id:    Numeric user ID stored in the DB.
        email:      Login email, stored as the JWT subject claim.
        role:       User role ("student", "instructor", "admin", "parent").
        expires_at: Absolute expiry. Defaults to now + token_expire_seconds.
                    The service passes the same instant it writes to the
                    session row so both expire together.
    """
    payload = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "jti": secrets.token_urlsafe(16),
        "iat": datetime.now(timezone.utc),
        "exp": expires_at or token_expiry(),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature mismatch, a passed exp claim, and malformed input all return
    None. A valid payload without user_id/role is also rejected.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return payload


def create_email_verification_token(email: str) -> str:
    """Encode a signed, single-purpose JWT proving control of `email`.

    It carries no user_id or role, so decode_access_token() rejects it.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "purpose": _EMAIL_VERIFICATION,
        "jti": secrets.token_urlsafe(16),
        "iat": now,
        "exp": now + timedelta(seconds=_settings.email_verification_expire_seconds),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_email_verification_token(token: str) -> str | None:
    """Return the email a verification token was issued for, or None."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != _EMAIL_VERIFICATION or not payload.get("sub"):
        return None
    return payload["sub"]


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
