# services/payments/settings.py
import os
from flask import current_app, has_app_context


def cfg(key: str, default: str | None = None) -> str | None:
    """Env first, then Flask config."""
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        v = current_app.config.get(key, default)
        return None if v is None else str(v)
    return default


def cfg_bool(key: str, default: bool = False) -> bool:
    v = cfg(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def cfg_int(key: str, default: int) -> int:
    v = cfg(key)
    try:
        return int(v) if v not in (None, "") else default
    except ValueError:
        return default


def enabled_providers() -> list[str]:
    raw = cfg("PAYMENT_PROVIDERS") or "idram,arca"
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


def app_url() -> str:
    return (cfg("APP_URL") or "http://localhost:3000").rstrip("/")
