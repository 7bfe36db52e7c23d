"""
Authentication & authorization.

Passwords are hashed with bcrypt. Access tokens are compact HS256 JWTs signed
with JWT_SECRET and carrying {id, username, email, role, iat, exp}. Besides the
exp claim, verification enforces an independent ceiling on token age.
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import bcrypt

import config
from database import Store
from errors import (
    AuthorizationError,
    InvalidCredentials,
    InvalidPayload,
    InvalidSignature,
    MalformedToken,
    NoToken,
    TokenExpired,
    UserExists,
)
from schemas import LoginRequest, RegisterRequest, Role, User

logger = logging.getLogger(__name__)
security_log = logging.getLogger("security")

REQUIRED_CLAIMS = ("id", "username", "email", "role", "iat", "exp")


# --------------- Passwords ------------------------------------------------

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_SALT_ROUNDS)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # stored value is not a bcrypt hash
        return False


# --------------- Tokens ---------------------------------------------------

def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64url_encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    return f"{header_b64}.{payload_b64}.{_sign(f'{header_b64}.{payload_b64}'.encode(), secret)}"


def jwt_decode(token: str, secret: str, now: Optional[float] = None) -> dict:
    """Check structure, signature and age of a token and return its claims."""
    parts = token.split('.')
    if len(token) < 10 or len(parts) != 3:
        raise MalformedToken()
    header_b64, payload_b64, sig_b64 = parts
    try:
        header = json.loads(_b64url_decode(header_b64))
        payload = json.loads(_b64url_decode(payload_b64))
    except (ValueError, UnicodeDecodeError):
        raise MalformedToken()
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise MalformedToken()

    if header.get("alg") != "HS256":
        raise InvalidSignature()
    expected_sig = _sign(f"{header_b64}.{payload_b64}".encode(), secret)
    # bytes: header values may carry any latin-1 character
    if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8", "surrogateescape")):
        raise InvalidSignature()

    now = time.time() if now is None else now
    exp, iat = payload.get("exp"), payload.get("iat")
    if isinstance(exp, (int, float)) and now > exp:
        raise TokenExpired("Token has expired")
    if isinstance(iat, (int, float)) and now - iat > config.TOKEN_MAX_AGE_SECONDS:
        raise TokenExpired()
    return payload


def create_access_token(user: Dict[str, Any], now: Optional[float] = None) -> str:
    issued_at = int(time.time() if now is None else now)
    claims = {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
        "iat": issued_at,
        "exp": issued_at + config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }
    return jwt_encode(claims, config.JWT_SECRET)


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def verify_token(token: str, now: Optional[float] = None) -> Identity:
    payload = jwt_decode(token, config.JWT_SECRET, now=now)
    if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
        raise InvalidPayload()
    try:
        role = Role(payload["role"])
    except ValueError:
        raise InvalidPayload()
    return Identity(id=payload["id"], username=payload["username"], email=payload["email"], role=role)


def verify_authorization(header: Optional[str], now: Optional[float] = None) -> Identity:
    """Verify the raw value of an Authorization header."""
    if not header or not header.startswith("Bearer "):
        raise NoToken()
    return verify_token(header[len("Bearer "):].strip(), now=now)


# --------------- Authorization --------------------------------------------

CAPABILITIES = {
    "authenticated": frozenset(Role),
    "admin": frozenset({Role.ADMIN}),
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    code: Optional[str] = None
    message: str = ""

    def enforce(self) -> None:
        if not self.allowed:
            raise AuthorizationError(self.message, code=self.code)


def authorize(identity: Identity, capability: str) -> AccessDecision:
    roles = CAPABILITIES.get(capability)
    if roles is None:
        return AccessDecision(False, "FORBIDDEN", f"Unknown capability: {capability}")
    if identity.role not in roles:
        code = "ADMIN_REQUIRED" if capability == "admin" else "FORBIDDEN"
        return AccessDecision(False, code, "Admin access required" if capability == "admin" else "Access denied")
    return AccessDecision(True)


def authorize_admin(identity: Identity) -> AccessDecision:
    return authorize(identity, "admin")


# --------------- Credential store flows -----------------------------------

def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: user.get(k) for k in ("id", "username", "email", "fullName", "role", "isActive", "createdAt", "lastLogin")}


def find_user_by_email(store: Store, email: str) -> Optional[Dict[str, Any]]:
    email = email.lower()
    for u in store.list("users"):
        if u.get("email", "").lower() == email:
            return u
    return None


def register_user(store: Store, payload: RegisterRequest) -> Dict[str, Any]:
    for u in store.list("users"):
        if u.get("email", "").lower() == payload.email or u.get("username", "").lower() == payload.username:
            security_log.warning(
                "Registration attempt with existing %s: %s",
                "email" if u.get("email", "").lower() == payload.email else "username",
                payload.email,
            )
            raise UserExists()

    user = User(
        id=store.next_id("users"),
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name,
        role=Role.CUSTOMER,
        created_at=datetime.now(timezone.utc),
    ).model_dump(by_alias=True, mode="json")
    store.put("users", user)
    logger.info("Registered user %s (id=%s)", user["username"], user["id"])
    return user


def login_user(store: Store, payload: LoginRequest) -> Dict[str, Any]:
    """Check credentials and return {"token", "user"}.

    Unknown emails and wrong passwords raise the same InvalidCredentials so the
    response does not reveal which accounts exist.
    """
    user = find_user_by_email(store, payload.email)
    if not user:
        security_log.warning("Login attempt with non-existent email: %s", payload.email)
        raise InvalidCredentials()
    if not verify_password(payload.password, user.get("passwordHash", "")):
        security_log.warning("Failed login attempt - wrong password: user %s", user["id"])
        raise InvalidCredentials()
    if user.get("isActive") is False:
        security_log.warning("Login attempt on deactivated account: user %s", user["id"])
        raise AuthorizationError("Account is deactivated", code="ACCOUNT_DEACTIVATED")

    user["lastLogin"] = datetime.now(timezone.utc).isoformat()
    store.put("users", user)
    security_log.info("Successful login: user %s", user["id"])
    return {"token": create_access_token(user), "user": public_user(user)}
