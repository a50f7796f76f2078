# config_panel.py — shared TradeConfig form (first-run panel on the calculator + Settings page)

from typing import Optional

import streamlit as st

from engine import (
    CURRENCY,
    PERCENTAGE,
    ConfigValidationError,
    TradeConfig,
    base_entry,
    build_trade_config,
    goal_value,
    loss_limit,
)
from session_status import fmt_money

# First-run defaults
DEFAULTS = {
    "payout": 85.0,
    "initial_bankroll": 500.0,
    "entry": (2.0, PERCENTAGE),
    "daily_goal": (3.0, PERCENTAGE),
    "stop_loss": (5.0, PERCENTAGE),
}

KIND_LABELS = {PERCENTAGE: "%", CURRENCY: "R$"}


def _rule_inputs(label: str, value: float, kind: str, key: str):
    c1, c2 = st.columns([3, 1])
    with c2:
        new_kind = st.radio(
            f"{label} type",
            options=[PERCENTAGE, CURRENCY],
            index=0 if kind == PERCENTAGE else 1,
            format_func=lambda k: KIND_LABELS[k],
            horizontal=True,
            key=f"{key}_kind",
            label_visibility="collapsed",
        )
    with c1:
        new_value = st.number_input(
            f"{label} ({KIND_LABELS[new_kind]})",
            min_value=0.0,
            value=float(value),
            step=0.5 if new_kind == PERCENTAGE else 1.0,
            key=f"{key}_value",
        )
    return new_value, new_kind


def render_config_form(current: Optional[TradeConfig], key_prefix: str = "cfg") -> Optional[TradeConfig]:
    """
    Render the config inputs. Returns a validated TradeConfig when the user
    submits valid values, None otherwise (errors are shown inline).
    """
    if current is not None:
        payout = current.payout_percent
        bankroll = current.initial_bankroll
        entry = (current.entry.value, current.entry.kind)
        goal = (current.daily_goal.value, current.daily_goal.kind)
        stop = (current.stop_loss.value, current.stop_loss.kind)
    else:
        payout = DEFAULTS["payout"]
        bankroll = DEFAULTS["initial_bankroll"]
        entry = DEFAULTS["entry"]
        goal = DEFAULTS["daily_goal"]
        stop = DEFAULTS["stop_loss"]

    c1, c2 = st.columns(2)
    with c1:
        payout_in = st.number_input(
            "Payout (%)", min_value=0.0, max_value=1000.0, value=float(payout), step=1.0,
            key=f"{key_prefix}_payout",
        )
    with c2:
        bankroll_in = st.number_input(
            "Initial Bankroll (R$)", min_value=0.0, value=float(bankroll), step=10.0,
            key=f"{key_prefix}_bankroll",
        )

    entry_v, entry_k = _rule_inputs("Entry per Operation", entry[0], entry[1], f"{key_prefix}_entry")
    goal_v, goal_k = _rule_inputs("Daily Goal", goal[0], goal[1], f"{key_prefix}_goal")
    stop_v, stop_k = _rule_inputs("Stop Loss", stop[0], stop[1], f"{key_prefix}_stop")

    # Live preview of what the rules resolve to
    try:
        draft = build_trade_config(payout_in, bankroll_in, entry_v, entry_k, goal_v, goal_k, stop_v, stop_k)
        st.caption(
            f"Base entry {fmt_money(base_entry(draft))} · "
            f"goal {fmt_money(goal_value(draft))} · "
            f"stop {fmt_money(loss_limit(draft))}"
        )
    except ConfigValidationError as e:
        st.caption(f"⚠️ {e}")

    if not st.button("Save Configuration", type="primary", use_container_width=True, key=f"{key_prefix}_submit"):
        return None

    try:
        return build_trade_config(payout_in, bankroll_in, entry_v, entry_k, goal_v, goal_k, stop_v, stop_k)
    except ConfigValidationError as e:
        st.error(str(e))
        return None
