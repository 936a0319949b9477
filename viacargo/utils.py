import math
import re
from datetime import date


def parse_iso_date(s: str | None) -> date | None:
    """Strict ``YYYY-MM-DD`` parse; anything else is None."""
    if not s or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", s.strip()):
        return None
    try:
        return date.fromisoformat(s.strip())
    except ValueError:
        return None


def today():
    return date.today()


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(key: str | None) -> tuple[int, int] | None:
    m = re.fullmatch(r"(\d{4})-(\d{1,2})", (key or "").strip())
    if not m:
        return None
    y, mo = int(m.group(1)), int(m.group(2))
    if not 1 <= mo <= 12:
        return None
    return y, mo


def shift_month(key: str, delta: int) -> str:
    y, m = parse_month_key(key) or (today().year, today().month)
    idx = y * 12 + (m - 1) + delta
    return f"{idx // 12:04d}-{idx % 12 + 1:02d}"


MONTH_NAMES = ["janeiro", "fevereiro", "março", "abril", "maio", "junho",
               "julho", "agosto", "setembro", "outubro", "novembro", "dezembro"]


def month_label(key: str) -> str:
    parsed = parse_month_key(key)
    if not parsed:
        return key
    return f"{MONTH_NAMES[parsed[1] - 1]} de {parsed[0]}"


def format_date_br(s: str | None) -> str:
    d = parse_iso_date(s)
    return d.strftime("%d/%m/%Y") if d else ""


def clean_phone(phone: str | None) -> str:
    return re.sub(r"\D", "", phone or "")


def whatsapp_link(phone: str | None) -> str:
    digits = clean_phone(phone)
    return f"https://wa.me/55{digits}" if digits else ""


def to_float(v, default: float = 0.0) -> float:
    """Form-friendly float: accepts ``1.234,56``, ``R$ 50`` and blanks; inf and nan become ``default``."""
    if v is None:
        return default
    if isinstance(v, (int, float)):
        return float(v) if math.isfinite(v) else default
    s = str(v).replace("R$", "").strip()
    if not s:
        return default
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    try:
        value = float(s)
    except ValueError:
        return default
    return value if math.isfinite(value) else default
