# cache.py — Session-scoped caching for Supabase data
#
# Reduces DB round-trips by caching the trade config, the active subscription
# and history listings in st.session_state. Each cache is invalidated
# explicitly when data changes.

import streamlit as st
from typing import Optional, Dict, Any, List, Callable

from engine import TradeConfig


# ============================================================
#  TRADE CONFIG CACHE
# ============================================================

def get_cached_config(
    user_id: str,
    loader_fn: Callable[[str], Optional[TradeConfig]],
) -> Optional[TradeConfig]:
    """
    Cache the user's TradeConfig. A user without a config is cached as None
    too, so the calculator does not re-query on every rerun.

    Usage:
        from cache import get_cached_config
        cfg = get_cached_config(USER_ID, load_user_config)
    """
    if not user_id:
        return None

    cache_key = f"_cache_config_{user_id}"

    if cache_key not in st.session_state:
        try:
            st.session_state[cache_key] = loader_fn(user_id)
        except Exception as e:
            print(f"[cache] get_cached_config loader error: {e!r}")
            return None

    return st.session_state[cache_key]


def set_cached_config(user_id: str, config: Optional[TradeConfig]) -> None:
    """Call after save_user_config() succeeds (avoids re-fetch)."""
    if not user_id:
        return
    st.session_state[f"_cache_config_{user_id}"] = config


def invalidate_config_cache(user_id: str) -> None:
    if not user_id:
        return
    st.session_state.pop(f"_cache_config_{user_id}", None)


# ============================================================
#  SUBSCRIPTION CACHE
# ============================================================

def get_cached_subscription(
    user_id: str,
    loader_fn: Callable[[str], Optional[Dict[str, Any]]],
) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None

    cache_key = f"_cache_subscription_{user_id}"

    if cache_key not in st.session_state:
        try:
            st.session_state[cache_key] = loader_fn(user_id)
        except Exception as e:
            print(f"[cache] get_cached_subscription loader error: {e!r}")
            return None

    return st.session_state[cache_key]


def invalidate_subscription_cache(user_id: str) -> None:
    """Call after returning from checkout / billing portal."""
    if not user_id:
        return
    st.session_state.pop(f"_cache_subscription_{user_id}", None)


# ============================================================
#  HISTORY CACHE (per filter combination)
# ============================================================

def _history_key(user_id: str, date_from: Optional[str], date_to: Optional[str], mode: str) -> str:
    return f"_cache_history_{user_id}_{date_from or '-'}_{date_to or '-'}_{mode}"


def get_cached_history(
    user_id: str,
    date_from: Optional[str],
    date_to: Optional[str],
    mode: str,
    loader_fn: Callable[..., List[Dict[str, Any]]],
) -> List[Dict[str, Any]]:
    """
    Usage:
        rows = get_cached_history(USER_ID, d0, d1, "real", list_history)
    """
    if not user_id:
        return []

    cache_key = _history_key(user_id, date_from, date_to, mode)

    if cache_key not in st.session_state:
        try:
            st.session_state[cache_key] = loader_fn(user_id, date_from, date_to, mode) or []
        except Exception as e:
            print(f"[cache] get_cached_history loader error: {e!r}")
            return []

    return st.session_state[cache_key]


def invalidate_history_cache(user_id: str) -> None:
    """
    Any save / edit / delete changes every filtered view, so drop them all.
    """
    if not user_id:
        return
    prefix = f"_cache_history_{user_id}_"
    keys_to_delete = [k for k in list(st.session_state.keys()) if k.startswith(prefix)]
    for k in keys_to_delete:
        del st.session_state[k]


# ============================================================
#  CONVENIENCE: Invalidate all caches for a user
# ============================================================

def invalidate_all_caches(user_id: str) -> None:
    if not user_id:
        return

    invalidate_config_cache(user_id)
    invalidate_subscription_cache(user_id)
    invalidate_history_cache(user_id)


def clear_all_user_caches() -> None:
    """
    Clear ALL user-specific caches regardless of user_id.
    Call on logout/login to ensure no data bleeds between users.
    """
    prefixes = (
        "_cache_config_",
        "_cache_subscription_",
        "_cache_history_",
    )
    keys_to_delete = [k for k in list(st.session_state.keys()) if any(k.startswith(p) for p in prefixes)]
    for k in keys_to_delete:
        del st.session_state[k]

    # live calculator belongs to the previous user
    st.session_state.pop("session_manager", None)
