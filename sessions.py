"""
Session resolution for the tutorials, jobs and admin cookie domains.

Each domain signs its tokens with its own secret and audience, so a token
minted by one sub-application never authenticates against another, even when
it is presented under a colliding cookie name. The main site has no session
domain of its own.
"""

import hashlib
import hmac
import logging
import os
import secrets
import time
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

from fastapi import Depends, HTTPException, Request, Response
from jose import JWTError, jwt

from config import (
    ADMIN_AUTH_SECRET,
    ALGORITHM,
    COOKIE_SECURE,
    GENERIC_COOKIE_NAME,
    JOBS_AUTH_SECRET,
    SESSION_MAX_AGE_SECONDS,
    TUTORIALS_AUTH_SECRET,
)
from database import get_db
from permissions import has_permission
from queries import parse_object_id

logger = logging.getLogger(__name__)


class Domain(NamedTuple):
    name: str
    secret: str
    override_env: str
    cookie_name: str
    collection: str


DOMAINS: Dict[str, Domain] = {
    "tutorials": Domain("tutorials", TUTORIALS_AUTH_SECRET, "TUTORIALS_SESSION_COOKIE_NAME", "tutorials-auth-token", "user"),
    "jobs": Domain("jobs", JOBS_AUTH_SECRET, "JOBS_SESSION_COOKIE_NAME", "jobs-auth-token", "user"),
    "admin": Domain("admin", ADMIN_AUTH_SECRET, "ADMIN_SESSION_COOKIE_NAME", "adminToken", "admin"),
}


class InvalidToken(Exception):
    pass


class Principal:
    def __init__(self, domain: str, id: str, role: Optional[str] = None, email: Optional[str] = None,
                 claims: Optional[Dict[str, Any]] = None):
        self.domain = domain
        self.id = id
        self.role = role
        self.email = email
        self.claims = claims or {}
        self.record: Optional[dict] = None

    def __repr__(self):
        return f"Principal(domain={self.domain!r}, id={self.id!r}, role={self.role!r})"


# ----------------- Passwords -----------------
PBKDF2_ITERATIONS = 260_000


def hash_password(raw: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", raw.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(raw: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    if "$" not in stored:
        # unsalted sha256 hex from accounts created before PBKDF2
        return hmac.compare_digest(hashlib.sha256(raw.encode()).hexdigest(), stored)
    try:
        _, iterations, salt, digest = stored.split("$", 3)
        candidate = hashlib.pbkdf2_hmac("sha256", raw.encode(), salt.encode(), int(iterations)).hex()
    except ValueError:
        return False
    return hmac.compare_digest(candidate, digest)


# ----------------- Cookies -----------------
def primary_cookie_name(domain: Domain) -> str:
    override = (os.getenv(domain.override_env) or "").strip()
    if override:
        return override
    return f"__Secure-{domain.cookie_name}" if COOKIE_SECURE else domain.cookie_name


def cookie_candidates(domain: Domain) -> List[str]:
    """Configured override first, then the domain's conventional names, then the generic fallback."""
    names = [
        (os.getenv(domain.override_env) or "").strip(),
        f"__Secure-{domain.cookie_name}",
        domain.cookie_name,
        GENERIC_COOKIE_NAME,
    ]
    unique: List[str] = []
    for name in names:
        if name and name not in unique:
            unique.append(name)
    return unique


def set_session_cookie(response: Response, domain: Domain, token: str) -> None:
    response.set_cookie(
        key=primary_cookie_name(domain),
        value=token,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
        path="/",
    )


def clear_session_cookie(response: Response, domain: Domain) -> None:
    for name in cookie_candidates(domain):
        if name == GENERIC_COOKIE_NAME:
            continue
        response.delete_cookie(key=name, path="/", httponly=True, samesite="lax", secure=COOKIE_SECURE)


# ----------------- Tokens -----------------
def issue_token(domain: Domain, subject: str, claims: Optional[Dict[str, Any]] = None,
                lifetime: int = SESSION_MAX_AGE_SECONDS) -> str:
    now = int(time.time())
    payload = dict(claims or {})
    payload.update({"sub": subject, "aud": domain.name, "iat": now, "exp": now + lifetime})
    return jwt.encode(payload, domain.secret, algorithm=ALGORITHM)


def decode_token(domain: Domain, token: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, domain.secret, algorithms=[ALGORITHM], audience=domain.name)
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc
    if claims.get("aud") != domain.name:
        raise InvalidToken("Token was issued for another domain")
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidToken("Token has no subject")
    return claims


def resolve_principal(domain: Domain, cookies: Mapping[str, str]) -> Optional[Principal]:
    """Try each candidate cookie in order; the first token that verifies wins."""
    for name in cookie_candidates(domain):
        token = cookies.get(name)
        if not token:
            continue
        try:
            claims = decode_token(domain, token)
        except InvalidToken as exc:
            logger.debug("Ignoring %s cookie %r: %s", domain.name, name, exc)
            continue
        return Principal(
            domain=domain.name,
            id=claims["sub"],
            role=claims.get("role"),
            email=claims.get("email"),
            claims=claims,
        )
    return None


# ----------------- Dependencies -----------------
def _load_record(db, domain: Domain, principal: Principal) -> Tuple[Optional[dict], Optional[Any]]:
    oid = parse_object_id(principal.id)
    if oid is None:
        return None, None
    return db[domain.collection].find_one({"_id": oid}), oid


def current_user(domain_name: str):
    domain = DOMAINS[domain_name]

    def dependency(request: Request, db=Depends(get_db)) -> Principal:
        principal = resolve_principal(domain, request.cookies)
        if principal is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        user, _ = _load_record(db, domain, principal)
        if not user:
            raise HTTPException(status_code=401, detail="User not found")
        if not user.get("isActive", True):
            raise HTTPException(status_code=403, detail="Account is deactivated")
        principal.record = user
        principal.role = user.get("role")
        principal.email = user.get("email")
        return principal

    return dependency


def require_role(domain_name: str, *roles: str):
    load_user = current_user(domain_name)

    def dependency(principal: Principal = Depends(load_user)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail=f"{' or '.join(r.title() for r in roles)} access required")
        return principal

    return dependency


def current_admin(request: Request, db=Depends(get_db)) -> Principal:
    domain = DOMAINS["admin"]
    principal = resolve_principal(domain, request.cookies)
    if principal is None:
        raise HTTPException(status_code=401, detail="Unauthorized - Admin session missing")
    admin, _ = _load_record(db, domain, principal)
    if not admin:
        raise HTTPException(status_code=404, detail="Admin not found")
    if not admin.get("isActive", True):
        raise HTTPException(status_code=403, detail="Admin account is deactivated")
    principal.record = admin
    principal.role = admin.get("role")
    principal.email = admin.get("email")
    return principal


def require_permission(permission: str):
    def dependency(admin: Principal = Depends(current_admin)) -> Principal:
        if not has_permission(admin.record, permission):
            raise HTTPException(
                status_code=403,
                detail=f"Forbidden - You do not have permission to access this resource ({permission} required)",
            )
        return admin

    return dependency
