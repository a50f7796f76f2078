# settings.py — secrets + environment selection (env var first, then st.secrets)
from __future__ import annotations

import datetime as dt
import os
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import streamlit as st

DEFAULT_TIMEZONE = "America/Sao_Paulo"


class SupabaseConfigError(RuntimeError):
    pass


def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v:
        return v
    try:
        if name in st.secrets:
            v2 = st.secrets[name]
            if v2:
                return str(v2)
    except Exception:
        # no secrets.toml at all -> streamlit raises; env/default still apply
        pass
    return default


def app_env() -> str:
    env = (get_secret("APP_ENV", "prod") or "prod").lower().strip()
    return "dev" if env == "dev" else "prod"


def supabase_credentials() -> Tuple[str, str, str, Optional[str]]:
    """(env, url, anon_key, service_role_key_or_None) for the active APP_ENV."""
    env = app_env()
    suffix = env.upper()

    url = get_secret(f"SUPABASE_URL_{suffix}")
    anon = get_secret(f"SUPABASE_ANON_KEY_{suffix}")
    svc = get_secret(f"SUPABASE_SERVICE_ROLE_KEY_{suffix}") or get_secret("SUPABASE_SERVICE_ROLE_KEY")

    if not url or not anon:
        raise SupabaseConfigError(
            f"Missing Supabase credentials. Need SUPABASE_URL_{suffix} and SUPABASE_ANON_KEY_{suffix}."
        )

    return env, url.rstrip("/"), anon, svc


def app_timezone() -> ZoneInfo:
    name = get_secret("APP_TIMEZONE", DEFAULT_TIMEZONE) or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"[settings.app_timezone] unknown timezone {name!r}; using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def today_key(now: Optional[dt.datetime] = None) -> str:
    """Calendar day (YYYY-MM-DD) in APP_TIMEZONE. Drives session labels + history 'data'."""
    tz = app_timezone()
    if now is None:
        now = dt.datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(tz).strftime("%Y-%m-%d")


def site_url() -> str:
    return (get_secret("SITE_URL", "http://localhost:8501") or "").rstrip("/")


def allowed_price_ids() -> List[str]:
    """Optional whitelist of catalogue prices offered on the paywall (empty = all)."""
    raw = get_secret("STRIPE_PRICE_IDS", "") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]
