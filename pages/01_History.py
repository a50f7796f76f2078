# 01_History.py — Session History for the Trade Calculator
# Filter by date / mode, review a session's operations, annotate, delete, export

import streamlit as st
import pandas as pd
import altair as alt
from datetime import date, datetime, timedelta
from typing import Any, Dict, List

st.set_page_config(
    page_title="History | Trade Calculator",
    page_icon="📜",
    layout="wide",
)

from auth import require_auth, current_user_id
from subscription import require_subscription
from sidebar import render_sidebar
from cache import get_cached_history, invalidate_history_cache
from db import (
    delete_history_session,
    list_history,
    list_session_operations,
    update_history_observation,
)
from history import MODE_ALL, MODE_LABELS, MODE_REAL, MODE_TRAINING, session_operations, summarize_history
from session_status import fmt_money, normalize_status, status_color, status_label
from settings import app_timezone

# ---------- Auth Gate ----------
user = require_auth()
USER_ID = current_user_id()
st.session_state["subscription"] = require_subscription(USER_ID)
render_sidebar()

# =============================================================================
# CONSTANTS
# =============================================================================

MODE_OPTIONS = [MODE_REAL, MODE_TRAINING, MODE_ALL]
MODE_OPTION_LABELS = {**MODE_LABELS, MODE_ALL: "All Modes"}

DATE_OPTIONS = ["All time", "Today", "Last 7 days", "Last 30 days", "This month", "Custom"]

# =============================================================================
# CUSTOM CSS
# =============================================================================

st.markdown("""
<style>
.session-card {
    border: 1px solid #2b2b2b;
    border-radius: 12px;
    padding: 14px 18px;
    margin-bottom: 4px;
    background: linear-gradient(135deg,#0f0f0f,#171717);
    color: #eaeaea;
}
.session-title { font-weight: 800; font-size: 1.02rem; }
.session-meta { color: #a0a0a0; font-size: .88rem; }
.session-pl { font-weight: 800; font-size: 1.1rem; }
</style>
""", unsafe_allow_html=True)

# =============================================================================
# HELPERS
# =============================================================================

def resolve_date_range(choice: str, today: date) -> tuple:
    """Map a preset to (date_from, date_to); None means unbounded / single day."""
    if choice == "Today":
        return today, None
    if choice == "Last 7 days":
        return today - timedelta(days=7), today
    if choice == "Last 30 days":
        return today - timedelta(days=30), today
    if choice == "This month":
        return today.replace(day=1), today
    return None, None


def sessions_to_dataframe(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """Convert session rows to a pandas DataFrame for export."""
    data = []
    for r in records:
        data.append({
            "Date": r.get("data", ""),
            "Session": r.get("sessao", ""),
            "Mode": MODE_LABELS.get(r.get("mode"), r.get("mode")),
            "Status": normalize_status(r.get("status")),
            "Initial Bankroll": float(r.get("banca_inicial") or 0.0),
            "Final Bankroll": float(r.get("banca_final") or 0.0),
            "Total Profit": float(r.get("lucro_total") or 0.0),
            "Operations": len(r.get("operacoes") or []),
            "Notes": r.get("observacoes") or "",
        })
    return pd.DataFrame(data)


def equity_dataframe(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """Cumulative profit per session, oldest first."""
    df = sessions_to_dataframe(records)
    if df.empty:
        return df
    df = df.iloc[::-1].reset_index(drop=True)
    df["#"] = df.index + 1
    df["Cumulative Profit"] = df["Total Profit"].cumsum()
    return df


# =============================================================================
# RENDER FUNCTIONS
# =============================================================================

def render_filters():
    c1, c2 = st.columns([2, 1])
    with c1:
        date_choice = st.selectbox("Period", DATE_OPTIONS, index=0, key="hist_period")
    with c2:
        mode = st.selectbox(
            "Mode",
            MODE_OPTIONS,
            index=0,
            format_func=lambda m: MODE_OPTION_LABELS[m],
            key="hist_mode",
        )

    today = datetime.now(app_timezone()).date()
    date_from, date_to = resolve_date_range(date_choice, today)

    if date_choice == "Custom":
        rng = st.date_input(
            "Range",
            value=(today - timedelta(days=7), today),
            max_value=today,
            key="hist_custom_range",
        )
        if isinstance(rng, (list, tuple)):
            if len(rng) == 2:
                date_from, date_to = rng[0], rng[1]
            elif len(rng) == 1:
                date_from, date_to = rng[0], None
        else:
            date_from, date_to = rng, None

    d0 = date_from.isoformat() if date_from else None
    d1 = date_to.isoformat() if date_to else None
    return d0, d1, mode


def render_summary_stats(records: List[Dict[str, Any]]):
    totals = summarize_history(records)
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        st.metric("Sessions", totals["sessions"])
    with c2:
        st.metric("Total Profit", fmt_money(totals["total_profit"], signed=True))
    with c3:
        st.metric("Goals / Stops", f"{totals['goals']} / {totals['stops']}")
    with c4:
        st.metric("Goal Rate", f"{totals['goal_rate']:.0f}%")


def render_equity_chart(records: List[Dict[str, Any]]):
    df = equity_dataframe(records)
    if len(df) < 2:
        return
    chart = (
        alt.Chart(df)
        .mark_line(point=True)
        .encode(
            x=alt.X("#:Q", title="Session", axis=alt.Axis(tickMinStep=1)),
            y=alt.Y("Cumulative Profit:Q", title="Cumulative Profit (R$)"),
            tooltip=[
                alt.Tooltip("Date:N"),
                alt.Tooltip("Session:N"),
                alt.Tooltip("Total Profit:Q", format=".2f"),
                alt.Tooltip("Cumulative Profit:Q", format=".2f"),
            ],
        )
        .properties(height=260)
    )
    st.altair_chart(chart, use_container_width=True)


def render_session_card(r: Dict[str, Any]):
    status = normalize_status(r.get("status"))
    pl = float(r.get("lucro_total") or 0.0)
    pl_color = "#22c55e" if pl >= 0 else "#ef4444"
    st.markdown(
        f"""
        <div class="session-card" style="border-left:4px solid {status_color(status)}">
          <div class="session-title">{r.get('data', '')} · {r.get('sessao', '')}</div>
          <div class="session-meta">{MODE_LABELS.get(r.get('mode'), '')} · {status_label(status)} ·
            {fmt_money(r.get('banca_inicial'))} → {fmt_money(r.get('banca_final'))}</div>
          <div class="session-pl" style="color:{pl_color}">{fmt_money(pl, signed=True)}</div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def render_session_detail(r: Dict[str, Any]):
    history_id = str(r.get("id") or "")

    ops = session_operations(list_session_operations(history_id), r.get("operacoes"))
    if ops:
        df = pd.DataFrame([
            {
                "#": op.sequence_id,
                "Entry": op.entry_value,
                "Result": "Win" if op.outcome == "win" else ("Loss (C)" if op.conservative else "Loss"),
                "P/L": op.profit_loss,
                "Bankroll": op.bankroll_after,
            }
            for op in ops
        ])
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
    else:
        st.caption("No individual operations recorded for this session.")

    # ---- Observation ----
    note = st.text_area(
        "Notes",
        value=r.get("observacoes") or "",
        key=f"obs_{history_id}",
        placeholder="What went well? What would you do differently?",
    )
    if st.button("Save Notes", key=f"obs_save_{history_id}"):
        try:
            update_history_observation(history_id, note)
        except Exception as e:
            print(f"[history] update_history_observation error: {e!r}")
            st.error(f"Could not save notes: {e}")
        else:
            invalidate_history_cache(USER_ID)
            st.toast("Notes saved.", icon="📝")
            st.rerun()

    # ---- Delete (guarded) ----
    confirm_key = f"_confirm_delete_{history_id}"
    if not st.session_state.get(confirm_key, False):
        if st.button("🗑️ Delete Session", key=f"del_arm_{history_id}"):
            st.session_state[confirm_key] = True
            st.rerun()
    else:
        st.warning("⚠️ Delete this session and all its operations? This cannot be undone.")
        cc1, cc2 = st.columns(2)
        with cc1:
            do_delete = st.button("Yes, Delete", type="primary", use_container_width=True, key=f"del_yes_{history_id}")
        with cc2:
            if st.button("Cancel", use_container_width=True, key=f"del_no_{history_id}"):
                st.session_state[confirm_key] = False
                st.rerun()

        if do_delete:
            st.session_state[confirm_key] = False
            try:
                delete_history_session(history_id)
            except Exception as e:
                print(f"[history] delete_history_session error: {e!r}")
                st.error(f"Could not delete session: {e}")
            else:
                invalidate_history_cache(USER_ID)
                st.toast("Session deleted.", icon="🗑️")
                st.rerun()


def render_export_button(records: List[Dict[str, Any]]):
    if not records:
        return
    csv = sessions_to_dataframe(records).to_csv(index=False)
    st.download_button(
        label="📥 Export to CSV",
        data=csv,
        file_name=f"trade_history_{datetime.now(app_timezone()).strftime('%Y%m%d')}.csv",
        mime="text/csv",
    )


def render_empty_state():
    st.info("📜 No sessions for this filter yet. Finished sessions appear here after a goal, a stop or a reset.")


# =============================================================================
# MAIN PAGE
# =============================================================================

def main():
    st.title("📜 Session History")

    date_from, date_to, mode = render_filters()
    records = get_cached_history(USER_ID, date_from, date_to, mode, list_history)

    if not records:
        render_empty_state()
        return

    render_summary_stats(records)
    render_equity_chart(records)
    render_export_button(records)

    st.markdown("---")

    selected = st.session_state.get("hist_selected")
    for r in records:
        rid = str(r.get("id") or "")
        render_session_card(r)
        if rid == selected:
            with st.expander("Details", expanded=True):
                render_session_detail(r)
                if st.button("Close", key=f"close_{rid}"):
                    st.session_state["hist_selected"] = None
                    st.rerun()
        elif st.button("View details", key=f"view_{rid}"):
            # only the selected session loads its operations
            st.session_state["hist_selected"] = rid
            st.rerun()


main()
