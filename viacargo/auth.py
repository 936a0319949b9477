"""Who is operating the back-office, and for how long.

There are two ways in.  With SUPABASE_URL and SUPABASE_ANON_KEY set, the
operator signs in with e-mail and password against Supabase Auth; the
returned identity is linked to a row in `users`, and that row's id scopes
every order, transaction and goal.  Without Supabase, a single local
operator (VIACARGO_OPERATOR_USERNAME / VIACARGO_OPERATOR_PASSWORD) is
created at startup and checked with pbkdf2.

A successful sign-in issues an opaque token stored in `user_sessions`:
thirty days with "lembrar-me", one day otherwise.  Lookups go through a
short in-process cache so the auth middleware does not hit the database
on every request.
"""

import hashlib
import logging
import secrets
import time
from datetime import timedelta

import httpx
from fastapi import Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import AppConfig
from .domain import _utcnow
from .errors import AuthenticationError
from .models import User, UserSession

logger = logging.getLogger("viacargo.auth")

SESSION_COOKIE = "vc_session"
SESSION_TTL_REMEMBER = timedelta(days=30)
SESSION_TTL_SHORT = timedelta(hours=24)
PBKDF2_ROUNDS = 100_000

SIGN_IN_MESSAGES = (
    (("invalid login", "invalid credentials", "email not confirmed"), "E-mail ou senha incorretos. Tente novamente."),
    (("rate limit", "too many"), "Muitas tentativas. Aguarde alguns minutos e tente novamente."),
    (("user not found",), "Nenhuma conta encontrada com esse e-mail."),
)

_http_client: httpx.AsyncClient | None = None


def _get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=10,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class SessionCache:
    """Token -> user id for a few seconds.

    A revoked session can stay usable here for up to ``ttl`` seconds; the
    logout path drops its own token immediately.
    """

    def __init__(self, ttl: float = 30.0, max_entries: int = 500, clock=time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, tuple[int, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, token: str) -> int | None:
        hit = self._entries.get(token)
        if hit is None:
            return None
        user_id, expires = hit
        if self.clock() >= expires:
            del self._entries[token]
            return None
        return user_id

    def put(self, token: str, user_id: int) -> None:
        now = self.clock()
        if len(self._entries) >= self.max_entries:
            self._entries = {k: v for k, v in self._entries.items() if v[1] > now}
        self._entries[token] = (user_id, now + self.ttl)

    def drop(self, token: str) -> None:
        self._entries.pop(token, None)


session_cache = SessionCache()


# ── Passwords (local operator) ──

def _password_digest(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS).hex()


def hash_password(password: str) -> tuple[str, str]:
    """(digest, salt) for storage."""
    salt = secrets.token_hex(16)
    return _password_digest(password, salt), salt


def verify_password(password: str, stored_hash: str, stored_salt: str) -> bool:
    if not (stored_hash and stored_salt):
        return False
    return secrets.compare_digest(_password_digest(password, stored_salt), stored_hash)


# ── Supabase Auth ──

def sign_in_message(raw: str) -> str:
    """Portuguese text for a Supabase sign-in error; unknown errors pass through."""
    lowered = raw.lower()
    for needles, message in SIGN_IN_MESSAGES:
        if any(n in lowered for n in needles):
            return message
    return raw


async def supabase_sign_in(config: AppConfig, email: str, password: str) -> dict:
    """Supabase password grant. Returns the token payload, or ``{"error": ...}``."""
    if not config.supabase_enabled:
        return {"error": "Supabase não configurado"}
    try:
        r = await _get_http_client().post(
            f"{config.supabase_auth_url}/token",
            params={"grant_type": "password"},
            headers={"apikey": config.supabase_anon_key},
            json={"email": email, "password": password},
        )
    except httpx.HTTPError as e:
        logger.error(f"Supabase sign-in request failed: {e}")
        return {"error": "Serviço de autenticação indisponível. Tente novamente."}
    payload = r.json()
    if r.status_code == 200:
        return payload
    raw = payload.get("error_description") or payload.get("msg") or payload.get("message") or "Invalid credentials"
    logger.info(f"Supabase sign-in rejected ({r.status_code}): {raw}")
    return {"error": sign_in_message(raw)}


async def _user_where(db: AsyncSession, condition) -> User | None:
    return (await db.execute(select(User).where(condition))).scalar_one_or_none()


async def _unique_username(db: AsyncSession, wanted: str) -> str:
    candidate, n = wanted, 0
    while await _user_where(db, User.username == candidate) is not None:
        n += 1
        candidate = f"{wanted}{n}"
    return candidate


async def link_supabase_user(db: AsyncSession, identity: dict) -> User:
    """Local ``users`` row for a Supabase identity, matched by id, then e-mail.

    A first sign-in creates the row with a username derived from the e-mail.
    """
    sb_id = identity.get("id", "")
    email = (identity.get("email") or "").strip().lower()

    user = await _user_where(db, User.supabase_id == sb_id)
    if user is None and email:
        user = await _user_where(db, User.email == email)
    if user is None:
        username = await _unique_username(db, (email.split("@")[0] if email else sb_id)[:80])
        user = User(username=username, display_name=username, password_hash="", password_salt="")
        db.add(user)
        logger.info(f"Linked new Supabase identity as {username!r}")
    user.supabase_id = sb_id
    if email:
        user.email = email
    await db.commit()
    await db.refresh(user)
    return user


# ── Local operator account ──

async def ensure_operator(db: AsyncSession, username: str, password: str) -> User | None:
    """Create the local operator account if it does not exist yet."""
    username = (username or "").strip().lower()
    if not (username and password):
        return None
    existing = await _user_where(db, User.username == username)
    if existing is not None:
        return existing
    digest, salt = hash_password(password)
    user = User(username=username, display_name=username, password_hash=digest, password_salt=salt)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Bootstrapped operator account {username!r}")
    return user


async def authenticate_local(db: AsyncSession, username: str, password: str) -> User:
    user = await _user_where(db, User.username == (username or "").strip().lower())
    if user is None or not verify_password(password, user.password_hash, user.password_salt):
        raise AuthenticationError("sign_in")
    return user


# ── Sessions ──

async def create_session(db: AsyncSession, user_id: int, remember_me: bool = False,
                         request: Request | None = None) -> str:
    token = secrets.token_urlsafe(64)
    session = UserSession(
        token=token, user_id=user_id, remember_me=remember_me,
        expires_at=_utcnow() + (SESSION_TTL_REMEMBER if remember_me else SESSION_TTL_SHORT),
    )
    if request is not None:
        session.user_agent = (request.headers.get("user-agent") or "")[:256]
        session.ip_address = request.client.host if request.client else None
    db.add(session)
    await db.commit()
    session_cache.put(token, user_id)
    return token


async def get_user_id_from_session(db: AsyncSession, token: str | None) -> int | None:
    if not token:
        return None
    user_id = session_cache.get(token)
    if user_id is None:
        user_id = (await db.execute(
            select(UserSession.user_id).where(UserSession.token == token, UserSession.expires_at > _utcnow())
        )).scalar_one_or_none()
        if user_id is not None:
            session_cache.put(token, user_id)
    return user_id


async def destroy_session(db: AsyncSession, token: str | None) -> None:
    if not token:
        return
    session_cache.drop(token)
    await db.execute(delete(UserSession).where(UserSession.token == token))
    await db.commit()


async def cleanup_expired_sessions(db: AsyncSession) -> int:
    removed = (await db.execute(delete(UserSession).where(UserSession.expires_at <= _utcnow()))).rowcount
    await db.commit()
    if removed:
        logger.info(f"Removed {removed} expired session(s)")
    return removed


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(SESSION_COOKIE)
