# app.py — gated calculator: config panel, stats, trade controls, operations table, mode toggle

import pandas as pd
import streamlit as st

from settings import app_env, app_timezone, today_key

# ---- Page meta (run first) ----
env_suffix = " (DEV)" if app_env() == "dev" else ""
st.set_page_config(
    page_title=f"Trade Calculator{env_suffix}",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---- Auth + paywall gates (hide everything until logged in and subscribed) ----
from auth import require_auth, current_user_id
user = require_auth()
USER_ID = current_user_id()

from subscription import require_subscription
st.session_state["subscription"] = require_subscription(USER_ID)

from typing import Optional

from cache import (
    get_cached_config,
    get_cached_history,
    invalidate_history_cache,
    set_cached_config,
)
from config_panel import render_config_form
from db import (
    HistorySaveError,
    clear_calculator_state,
    get_trade_mode,
    list_history,
    load_calculator_state,
    load_user_config,
    save_calculator_state,
    save_session_history,
    save_user_config,
    set_trade_mode,
)
from engine import TradeConfig
from history import MODE_ALL, MODE_LABELS, MODE_TRAINING, SessionSummary, summarize_history
from session_manager import SaveOutcome, SessionClosedError, SessionManager
from session_status import fmt_money, status_label
from sidebar import render_sidebar, update_sidebar_today_stats


# ============================================================
# HELPERS
# ============================================================
def _record(summary: SessionSummary) -> str:
    """Recorder handed to SessionManager: writes history, refreshes views."""
    history_id = save_session_history(USER_ID, summary)
    invalidate_history_cache(USER_ID)
    return history_id


def _refresh_today_stats() -> None:
    day = today_key()
    rows = get_cached_history(USER_ID, day, None, MODE_ALL, list_history)
    totals = summarize_history(rows)
    update_sidebar_today_stats(totals["total_profit"], totals["sessions"])


def _persist() -> None:
    mgr: SessionManager = st.session_state["session_manager"]
    save_calculator_state(USER_ID, mgr.export_state())


def _report_save(outcome: Optional[SaveOutcome]) -> None:
    if outcome is None or outcome.skipped:
        return
    if outcome.ok:
        st.toast("💾 Session saved to history.", icon="💾")
        return
    err = outcome.error
    if isinstance(err, HistorySaveError) and err.history_id:
        st.session_state["_save_error"] = "Session saved, but its operations were not."
    else:
        st.session_state["_save_error"] = f"Could not save session to history: {err}"


def _get_manager(config: TradeConfig) -> SessionManager:
    """
    One SessionManager per browser session. Restored from calculator_state
    on first load so a refresh does not lose today's operations.
    """
    mgr = st.session_state.get("session_manager")
    if mgr is not None:
        mgr.set_recorder(_record)
        if mgr.config != config:
            # config edited on Settings: bank the running session before starting over
            if mgr.has_unsaved_operations:
                outcome = mgr.save()
                _report_save(outcome)
                if not outcome.ok:
                    # keep the old session until it is banked (retried on the next run)
                    return mgr
            mgr.apply_config(config)
            clear_calculator_state(USER_ID)
        return mgr

    mgr = SessionManager(config=config, mode=get_trade_mode(USER_ID), recorder=_record)
    snapshot = load_calculator_state(USER_ID)
    if snapshot:
        mgr.import_state(snapshot)
    st.session_state["session_manager"] = mgr
    return mgr


# ============================================================
# CONFIG GATE (first run)
# ============================================================
config = get_cached_config(USER_ID, load_user_config)

if config is None:
    render_sidebar()
    st.title("📈 Binary Trade Calculator")
    st.caption("Manage your operations with position sizing, risk control and automatic Martingale recovery.")
    st.subheader("Set up your trading parameters")

    new_cfg = render_config_form(None, key_prefix="first_cfg")
    if new_cfg is not None:
        try:
            save_user_config(USER_ID, new_cfg)
        except Exception as e:
            print(f"[app] save_user_config error: {e!r}")
            st.error(f"Could not save configuration: {e}")
            st.stop()
        set_cached_config(USER_ID, new_cfg)
        st.toast("Configuration saved.", icon="✅")
        st.rerun()
    st.stop()

mgr = _get_manager(config)
st.session_state["trade_mode"] = mgr.mode
_refresh_today_stats()
render_sidebar()

# ============================================================
# HEADER + MODE TOGGLE
# ============================================================
cH, cM = st.columns([4, 1.4], vertical_alignment="center")
with cH:
    st.title("📈 Binary Trade Calculator")
    st.markdown(f"**{MODE_LABELS[mgr.mode]}**")
with cM:
    other = "Real Account" if mgr.mode == MODE_TRAINING else "Training"
    if st.button(f"🔁 Switch to {other}", use_container_width=True, key="btn_toggle_mode"):
        outcome = mgr.toggle_mode()
        _report_save(outcome)
        if outcome is None or outcome.ok:
            set_trade_mode(USER_ID, mgr.mode)
            st.toast(f"Mode changed to: {MODE_LABELS[mgr.mode]}", icon="🔁")
        _persist()
        st.rerun()

# ---- Pending save failure (survives the rerun that produced it) ----
save_error = st.session_state.get("_save_error")
if save_error:
    cE, cR = st.columns([4, 1], vertical_alignment="center")
    with cE:
        st.error(save_error)
    with cR:
        if mgr.has_unsaved_operations and st.button("Retry save", use_container_width=True, key="btn_retry_save"):
            st.session_state.pop("_save_error", None)
            _report_save(mgr.save())
            _persist()
            st.rerun()
        if st.button("Dismiss", use_container_width=True, key="btn_dismiss_save_error"):
            st.session_state.pop("_save_error", None)
            st.rerun()

# ============================================================
# STATS
# ============================================================
preview = mgr.session.preview()
state = mgr.session.state

c1, c2, c3, c4 = st.columns(4)
with c1:
    st.metric("Bankroll", fmt_money(preview["bankroll"]))
with c2:
    st.metric("Total Profit", fmt_money(preview["total_profit"], signed=True))
with c3:
    st.metric("Daily Goal", fmt_money(preview["goal_value"]))
with c4:
    st.metric("Status", status_label(preview["status"]))

progress = max(0.0, min(100.0, preview["progress_pct"]))
st.progress(progress / 100.0, text=f"Goal progress: {preview['progress_pct']:.1f}%")

if state.goal_reached:
    st.success("🎯 Daily goal reached! Time to close the day.")
elif state.stop_loss_reached:
    st.error("⚠️ Stop loss reached! Review your operations before continuing.")

# ============================================================
# TRADE CONTROLS
# ============================================================
st.markdown("---")
st.markdown(f"#### Next Entry: {fmt_money(preview['current_entry'])}")
st.caption(f"Stop loss limit: {fmt_money(preview['loss_limit'])}")

locked = mgr.terminal


def _act(action: str) -> None:
    try:
        if action == "win":
            delta = mgr.win()
        elif action == "loss":
            delta = mgr.loss()
        else:
            delta = mgr.conservative_loss()
    except SessionClosedError as e:
        st.warning(str(e))
        return

    op = delta.operation
    if op.outcome == "win":
        st.toast(f"✅ Win! {fmt_money(op.profit_loss, signed=True)}")
    elif op.conservative:
        st.toast(f"❌ Loss (Conservative)! {fmt_money(op.profit_loss)}")
    else:
        st.toast(f"❌ Loss (Martingale)! {fmt_money(op.profit_loss)}")

    if delta.reason == "goal":
        st.toast("🎯 Daily goal reached! Congratulations, time to close the day.", icon="🎯")
    elif delta.reason == "stop":
        st.toast("⚠️ Stop loss reached! Review your operations before continuing.", icon="⚠️")
    if delta.reason:
        _report_save(mgr.last_save)

    _persist()
    st.rerun()


b1, b2, b3 = st.columns(3)
with b1:
    if st.button("WIN ✅", use_container_width=True, key="btn_win", disabled=locked, type="primary"):
        _act("win")
with b2:
    if st.button("LOSS ❌ (Martingale)", use_container_width=True, key="btn_loss", disabled=locked):
        _act("loss")
with b3:
    if st.button("LOSS ❌ (Conservative)", use_container_width=True, key="btn_loss_conservative", disabled=locked):
        _act("conservative_loss")

# ---- Reset day (guarded) ----
if not st.session_state.get("_confirm_reset", False):
    if st.button("🔄 Reset Day", use_container_width=True, key="btn_reset_arm"):
        st.session_state["_confirm_reset"] = True
        st.rerun()
else:
    if mgr.has_unsaved_operations:
        st.warning("⚠️ Reset the bankroll for a new day? The current session will be saved to history first.")
    else:
        st.warning("⚠️ Reset the bankroll for a new day?")

    r1, r2, r3 = st.columns(3)
    with r1:
        do_save_reset = st.button("Yes, Save & Reset", type="primary", use_container_width=True, key="btn_reset_save")
    with r2:
        do_plain_reset = st.button("Reset without saving", use_container_width=True, key="btn_reset_nosave")
    with r3:
        if st.button("Cancel", use_container_width=True, key="btn_reset_cancel"):
            st.session_state["_confirm_reset"] = False
            st.rerun()

    if do_save_reset or do_plain_reset:
        st.session_state["_confirm_reset"] = False
        outcome = mgr.reset(save=bool(do_save_reset))
        _report_save(outcome)
        if outcome is not None and not outcome.ok:
            # session kept; the save-error banner offers a retry
            _persist()
            st.rerun()
        clear_calculator_state(USER_ID)
        st.toast("🔄 Bankroll reset for a new trading day.")
        st.rerun()

# ============================================================
# OPERATIONS (newest first)
# ============================================================
st.markdown("---")
st.markdown("### Operations")

ops = list(reversed(state.operations))
if not ops:
    st.caption("No operations yet. Register a win or loss to start.")
else:
    tz_name = str(app_timezone())
    df = pd.DataFrame([
        {
            "#": op.sequence_id,
            "Time": op.timestamp,
            "Entry": op.entry_value,
            "Result": "Win" if op.outcome == "win" else ("Loss (C)" if op.conservative else "Loss"),
            "P/L": op.profit_loss,
            "Bankroll": op.bankroll_after,
        }
        for op in ops
    ])
    df["Time"] = pd.to_datetime(df["Time"], utc=True, errors="coerce").dt.tz_convert(tz_name).dt.strftime("%H:%M:%S")

    st.dataframe(
        df,
        hide_index=True,
        use_container_width=True,
        column_config={
            "Entry": st.column_config.NumberColumn(format="R$ %.2f"),
            "P/L": st.column_config.NumberColumn(format="R$ %.2f"),
            "Bankroll": st.column_config.NumberColumn(format="R$ %.2f"),
        },
    )
