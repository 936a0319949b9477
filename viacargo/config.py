"""Environment configuration and logging setup.

Everything is read from environment variables once, at import time of the
web app.  Tests build their own ``AppConfig`` instead of touching the
environment.
"""

import logging
import os
import sys
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger("viacargo.config").warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


@dataclass(frozen=True)
class AppConfig:
    database_url: str = "sqlite+aiosqlite:////tmp/viacargo.db"
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Operator account bootstrapped at startup when Supabase is not configured
    operator_username: str = ""
    operator_password: str = ""

    critical_days: int = 5
    warning_days: int = 10
    alert_cooldown_hours: int = 5
    alert_poll_seconds: int = 60

    currency: str = "BRL"
    locale: str = "pt-BR"
    log_level: str = "INFO"

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def supabase_auth_url(self) -> str:
        return f"{self.supabase_url}/auth/v1" if self.supabase_url else ""

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_config() -> AppConfig:
    return AppConfig(
        database_url=os.environ.get("DATABASE_URL", AppConfig.database_url).strip(),
        supabase_url=os.environ.get("SUPABASE_URL", "").rstrip("/"),
        supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY", ""),
        operator_username=os.environ.get("VIACARGO_OPERATOR_USERNAME", "").strip(),
        operator_password=os.environ.get("VIACARGO_OPERATOR_PASSWORD", ""),
        critical_days=_env_int("VIACARGO_CRITICAL_DAYS", AppConfig.critical_days),
        warning_days=_env_int("VIACARGO_WARNING_DAYS", AppConfig.warning_days),
        alert_cooldown_hours=_env_int("VIACARGO_ALERT_COOLDOWN_HOURS", AppConfig.alert_cooldown_hours),
        alert_poll_seconds=_env_int("VIACARGO_ALERT_POLL_SECONDS", AppConfig.alert_poll_seconds),
        currency=os.environ.get("VIACARGO_CURRENCY", AppConfig.currency),
        locale=os.environ.get("VIACARGO_LOCALE", AppConfig.locale),
        log_level=os.environ.get("LOG_LEVEL", AppConfig.log_level).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if any(getattr(h, "_viacargo", False) for h in root.handlers):
        root.setLevel(level)
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    handler._viacargo = True
    root.addHandler(handler)
    root.setLevel(level)
