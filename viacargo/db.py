import logging
import secrets
import ssl as _ssl_mod
import urllib.parse

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .models import Base

logger = logging.getLogger("viacargo.db")


def _sanitize_url(url: str) -> str:
    """Drop libpq SSL query params (asyncpg takes an SSL context instead)."""
    try:
        p = urllib.parse.urlsplit(url)
        qs = [(k, v) for k, v in urllib.parse.parse_qsl(p.query, keep_blank_values=True)
              if k.lower() not in {"sslmode", "sslrootcert", "sslcert", "sslkey"}]
        return urllib.parse.urlunsplit((p.scheme, p.netloc, p.path, urllib.parse.urlencode(qs), p.fragment))
    except ValueError:
        return url


def normalize_url(url: str) -> str:
    db_url = url.strip()
    if not db_url.startswith("postgres"):
        return db_url
    db_url = _sanitize_url(db_url)
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("postgresql://") and "+asyncpg" not in db_url:
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


# Supabase's transaction pooler presents a self-signed chain, so the DB
# connection skips verification.  The Auth REST calls (httpx) still verify.
_pg_ssl_ctx: _ssl_mod.SSLContext | None = None


def _get_ssl_ctx() -> _ssl_mod.SSLContext:
    global _pg_ssl_ctx
    if _pg_ssl_ctx is None:
        ctx = _ssl_mod.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = _ssl_mod.CERT_NONE
        _pg_ssl_ctx = ctx
    return _pg_ssl_ctx


def make_engine(url: str) -> AsyncEngine:
    db_url = normalize_url(url)
    if "asyncpg" not in db_url:
        return create_async_engine(db_url, echo=False, future=True)
    return create_async_engine(
        db_url, echo=False, future=True,
        connect_args={
            "ssl": _get_ssl_ctx(),
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
            "prepared_statement_name_func": lambda: f"__asyncpg_{secrets.token_hex(8)}__",
        },
        pool_size=2,
        max_overflow=3,
        pool_recycle=120,
        pool_pre_ping=True,
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
