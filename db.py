# db.py — persistence helpers for user_configs + session history + calculator_state + billing reads

from __future__ import annotations

from typing import Any, Dict, Optional, List
import datetime as dt
import json  # needed to decode jsonb coming back as strings

import time
import httpx

from engine import ConfigValidationError, Operation, TradeConfig
from history import (
    MODE_ALL,
    MODE_REAL,
    MODES,
    SessionSummary,
    history_row,
    normalize_mode,
    operation_rows,
    session_label,
)
from settings import today_key
from supabase_client import get_supabase, get_supabase_admin

ACTIVE_SUBSCRIPTION_STATUSES = ("trialing", "active")


class HistorySaveError(RuntimeError):
    """
    Session history could not be written.
    history_id is set when the session row exists but its operations do not.
    """

    def __init__(self, message: str, history_id: Optional[str] = None):
        super().__init__(message)
        self.history_id = history_id


def _sid(x: Any) -> str:
    """Safe id normalize (uuid.UUID -> str, None -> '')."""
    if x is None:
        return ""
    try:
        return str(x)
    except Exception:
        return ""

def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()

def _execute_with_retry(q, *, tries: int = 3, base_sleep: float = 0.2):
    """
    Retry wrapper for transient PostgREST/httpx read/connect hiccups (common on Streamlit Cloud).
    q must be a PostgREST query object that supports .execute().
    """
    last_err = None
    for attempt in range(tries):
        try:
            return q.execute()
        except (httpx.ReadError, httpx.ConnectError, httpx.TimeoutException) as e:
            last_err = e
            time.sleep(base_sleep * (2 ** attempt))  # 0.2, 0.4, 0.8
    raise last_err  # bubble after retries

def _json_field(raw: Any, default: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return default
    return raw if raw is not None else default

# ---------- USER CONFIG (user_configs) ----------

def load_user_config(user_id: str) -> Optional[TradeConfig]:
    """None when the user has never saved a config (or the row is unusable)."""
    user_id = _sid(user_id)
    if not user_id:
        return None

    sb = get_supabase()
    try:
        res = _execute_with_retry(
            sb.table("user_configs")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
        )
    except Exception as e:
        print(f"[db.load_user_config] error user={user_id}: {e!r}")
        return None

    if not res.data:
        return None

    row = dict(res.data[0])
    for key in ("entry", "daily_goal", "stop_loss"):
        row[key] = _json_field(row.get(key), row.get(key))

    try:
        return TradeConfig.from_dict(row)
    except (ConfigValidationError, TypeError, ValueError) as e:
        print(f"[db.load_user_config] unusable config row user={user_id}: {e!r}")
        return None


def save_user_config(user_id: str, config: TradeConfig) -> None:
    """Upsert on user_id. Raises so the Settings form can show the failure."""
    user_id = _sid(user_id)
    if not user_id:
        raise RuntimeError("Missing user_id. Refusing to save config.")

    payload = {"user_id": user_id, **config.to_dict(), "updated_at": _now_iso()}

    sb = get_supabase()
    _execute_with_retry(sb.table("user_configs").upsert(payload, on_conflict="user_id"))


def get_trade_mode(user_id: str) -> str:
    user_id = _sid(user_id)
    if not user_id:
        return MODE_REAL
    sb = get_supabase()
    try:
        res = (
            sb.table("user_configs")
            .select("trade_mode")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if res.data:
            return normalize_mode(res.data[0].get("trade_mode"))
    except Exception as e:
        print(f"[db.get_trade_mode] error: {e!r}")
    return MODE_REAL


def set_trade_mode(user_id: str, mode: str) -> None:
    """Best effort: the mode also lives in session_state, so a failure only loses it on refresh."""
    user_id = _sid(user_id)
    if not user_id:
        return
    sb = get_supabase()
    try:
        sb.table("user_configs").update(
            {"trade_mode": normalize_mode(mode), "updated_at": _now_iso()}
        ).eq("user_id", user_id).execute()
    except Exception as e:
        print(f"[db.set_trade_mode] error: {e!r}")

# ---------- SESSION HISTORY (historico_operacoes + operacoes_individuais) ----------

def count_sessions_on_day(user_id: str, day_key: str) -> int:
    """History rows for the user on day_key, across both modes."""
    sb = get_supabase()
    res = _execute_with_retry(
        sb.table("historico_operacoes")
        .select("id", count="exact")
        .eq("user_id", _sid(user_id))
        .eq("data", day_key)
    )
    if res.count is not None:
        return int(res.count)
    return len(res.data or [])


def save_session_history(user_id: str, summary: SessionSummary, day_key: Optional[str] = None) -> str:
    """
    Canonical session write:
      1) count today's sessions -> "Session N"
      2) insert the historico_operacoes row (id comes back)
      3) insert all operacoes_individuais rows in one batch

    Returns the new history id. Raises HistorySaveError.
    """
    user_id = _sid(user_id)
    if not user_id:
        raise HistorySaveError("Missing user_id. Refusing to save history.")
    if not summary.operations:
        raise HistorySaveError("Refusing to save a session with no operations.")

    day = day_key or today_key()
    sb = get_supabase()

    try:
        existing = count_sessions_on_day(user_id, day)
    except Exception as e:
        print(f"[db.save_session_history] count failed: {e!r}")
        raise HistorySaveError(f"Could not count today's sessions: {e}") from e

    label = session_label(existing)
    payload = history_row(user_id, day, label, summary)

    try:
        res = _execute_with_retry(sb.table("historico_operacoes").insert(payload))
    except Exception as e:
        print(f"[db.save_session_history] history insert failed: {e!r}")
        raise HistorySaveError(f"Could not save session: {e}") from e

    if not res.data:
        raise HistorySaveError("History insert returned no data.")

    history_id = _sid(res.data[0].get("id"))

    rows = operation_rows(user_id, history_id, summary.operations)
    try:
        _execute_with_retry(sb.table("operacoes_individuais").insert(rows))
    except Exception as e:
        print(f"[db.save_session_history] operations insert failed history_id={history_id}: {e!r}")
        raise HistorySaveError(
            f"Session saved but its operations were not: {e}", history_id=history_id
        ) from e

    return history_id


def list_history(
    user_id: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    mode: str = MODE_REAL,
) -> List[Dict[str, Any]]:
    """
    Session rows, newest day first.
      - only date_from      -> that single day
      - date_from + date_to -> inclusive range
      - mode "all"          -> both books
    """
    user_id = _sid(user_id)
    if not user_id:
        return []

    sb = get_supabase()
    q = sb.table("historico_operacoes").select("*").eq("user_id", user_id)

    if date_from and date_to:
        q = q.gte("data", date_from).lte("data", date_to)
    elif date_from:
        q = q.eq("data", date_from)

    m = str(mode or "").strip().lower()
    if m != MODE_ALL:
        q = q.eq("mode", normalize_mode(m))

    q = q.order("data", desc=True).order("created_at", desc=True)

    try:
        res = _execute_with_retry(q)
    except Exception as e:
        print(f"[db.list_history] error user={user_id}: {e!r}")
        return []

    rows = []
    for r in res.data or []:
        r = dict(r)
        r["operacoes"] = _json_field(r.get("operacoes"), [])
        if r.get("mode") not in MODES:
            r["mode"] = MODE_REAL
        rows.append(r)
    return rows


def list_session_operations(history_id: str) -> List[Operation]:
    """Operations of one session, oldest first."""
    history_id = _sid(history_id)
    if not history_id:
        return []

    sb = get_supabase()
    try:
        res = _execute_with_retry(
            sb.table("operacoes_individuais")
            .select("*")
            .eq("historico_id", history_id)
            .order("created_at", desc=False)
        )
    except Exception as e:
        print(f"[db.list_session_operations] error history_id={history_id}: {e!r}")
        return []

    ops: List[Operation] = []
    for i, r in enumerate(res.data or [], start=1):
        try:
            op = Operation.from_dict(r)
        except (TypeError, ValueError) as e:
            print(f"[db.list_session_operations] skipped bad row: {e!r}")
            continue
        op.sequence_id = i
        ops.append(op)
    return ops


def update_history_observation(history_id: str, text: str) -> None:
    history_id = _sid(history_id)
    if not history_id:
        raise RuntimeError("Missing history id.")
    sb = get_supabase()
    _execute_with_retry(
        sb.table("historico_operacoes")
        .update({"observacoes": (text or "").strip()})
        .eq("id", history_id)
    )


def delete_history_session(history_id: str) -> None:
    """Child operations first, then the session row."""
    history_id = _sid(history_id)
    if not history_id:
        raise RuntimeError("Missing history id.")
    sb = get_supabase()
    _execute_with_retry(sb.table("operacoes_individuais").delete().eq("historico_id", history_id))
    _execute_with_retry(sb.table("historico_operacoes").delete().eq("id", history_id))

# ---------- CALCULATOR STATE (live session survives refresh) ----------

def save_calculator_state(user_id: str, state: Dict[str, Any]) -> None:
    user_id = _sid(user_id)
    if not user_id or not isinstance(state, dict):
        print(f"[db.save_calculator_state] invalid args user_id={user_id} type(state)={type(state)}")
        return

    payload = {
        "user_id": user_id,
        "state_json": state,
        "day_key": today_key(),
        "updated_at": _now_iso(),
    }

    sb = get_supabase()
    try:
        sb.table("calculator_state").upsert(payload, on_conflict="user_id").execute()
    except Exception as e:
        print(f"[db.save_calculator_state] error user={user_id}: {e!r}")


def load_calculator_state(user_id: str) -> Optional[Dict[str, Any]]:
    """Only today's snapshot is returned; a stale one belongs to a finished day."""
    user_id = _sid(user_id)
    if not user_id:
        return None

    sb = get_supabase()
    try:
        res = (
            sb.table("calculator_state")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        print(f"[db.load_calculator_state] error user={user_id}: {e!r}")
        return None

    if not res.data:
        return None

    row = res.data[0]
    if str(row.get("day_key") or "") != today_key():
        return None

    state = _json_field(row.get("state_json"), {})
    return state if isinstance(state, dict) else None


def clear_calculator_state(user_id: str) -> None:
    user_id = _sid(user_id)
    if not user_id:
        return
    sb = get_supabase()
    try:
        sb.table("calculator_state").delete().eq("user_id", user_id).execute()
    except Exception as e:
        print(f"[db.clear_calculator_state] error user={user_id}: {e!r}")

# ---------- BILLING READS (rows written by the Stripe webhook) ----------

def get_active_subscription(user_id: str) -> Optional[Dict[str, Any]]:
    user_id = _sid(user_id)
    if not user_id:
        return None

    def _query(client):
        return _execute_with_retry(
            client.table("subscriptions")
            .select("*")
            .eq("user_id", user_id)
            .in_("status", list(ACTIVE_SUBSCRIPTION_STATUSES))
            .order("created", desc=True)
            .limit(1)
        )

    try:
        res = _query(get_supabase())
    except Exception as e:
        print(f"[db.get_active_subscription] anon read failed, trying admin: {e!r}")
        try:
            res = _query(get_supabase_admin())
        except Exception as e2:
            print(f"[db.get_active_subscription] admin read failed: {e2!r}")
            return None

    return res.data[0] if res.data else None


def list_active_prices() -> List[Dict[str, Any]]:
    """Active recurring prices with their product name, cheapest first."""
    sb = get_supabase()
    try:
        res = _execute_with_retry(
            sb.table("prices")
            .select("*, products(name, description, active)")
            .eq("active", True)
            .order("unit_amount", desc=False)
        )
    except Exception as e:
        print(f"[db.list_active_prices] error: {e!r}")
        return []

    out = []
    for r in res.data or []:
        product = r.get("products") or {}
        if isinstance(product, list):
            product = product[0] if product else {}
        if product and product.get("active") is False:
            continue
        out.append({
            "id": r.get("id"),
            "product_name": product.get("name") or r.get("description") or "Plan",
            "product_description": product.get("description") or "",
            "unit_amount": r.get("unit_amount"),
            "currency": (r.get("currency") or "brl").upper(),
            "interval": r.get("interval"),
            "interval_count": r.get("interval_count") or 1,
            "trial_period_days": r.get("trial_period_days"),
        })
    return out
