# sidebar.py — Navigation Sidebar for the Trade Calculator

import streamlit as st
from auth import sign_out, user_display_name
from history import MODE_LABELS, MODE_REAL
from session_status import fmt_money
from subscription import days_remaining


def _render_subscription_badge():
    sub = st.session_state.get("subscription") or {}
    status = str(sub.get("status") or "").lower()
    left = days_remaining(sub)

    if status == "trialing":
        if left is not None and left <= 1:
            st.warning("⏰ Trial ends today!", icon="⏰")
        elif left is not None and left <= 3:
            st.warning(f"⏰ {left} days left in trial", icon="⏰")
        elif left is not None:
            st.info(f"🎁 {left} days left in trial", icon="🎁")
        else:
            st.info("🎁 Free trial active", icon="🎁")
    elif status == "active":
        if sub.get("cancel_at_period_end") and left is not None:
            st.warning(f"Plan ends in {left} days", icon="⚠️")
        else:
            st.caption("✅ Subscription active")


def render_sidebar():
    """
    Render the sidebar with navigation, mode, today's stats and user info.

    Call this at the top of every page after require_auth() / require_subscription().
    """

    with st.sidebar:
        # ---------- Branding ----------
        st.markdown("## 📈 Trade Calculator")

        # ---------- User Info ----------
        user = st.session_state.get("user") or {}
        st.caption(f"👤 {user_display_name(user) or st.session_state.get('email', '')}")

        _render_subscription_badge()

        st.markdown("---")

        # ---------- Mode ----------
        mode = st.session_state.get("trade_mode", MODE_REAL)
        st.markdown(f"**Mode:** {MODE_LABELS.get(mode, MODE_LABELS[MODE_REAL])}")

        # ---------- Quick Stats ----------
        st.markdown("### 📊 Today")

        today_pl = float(st.session_state.get("today_pl", 0.0) or 0.0)
        today_sessions = int(st.session_state.get("today_sessions", 0) or 0)

        col1, col2 = st.columns(2)
        with col1:
            st.metric("P/L", fmt_money(today_pl, signed=True))
        with col2:
            st.metric("Sessions", today_sessions)

        st.markdown("---")

        # ---------- Navigation ----------
        st.markdown("### Navigation")

        if st.button("🧮 Calculator", use_container_width=True):
            st.switch_page("app.py")

        if st.button("📜 History", use_container_width=True):
            st.switch_page("pages/01_History.py")

        if st.button("⚙️ Settings", use_container_width=True):
            st.switch_page("pages/02_Settings.py")

        st.markdown("---")

        # ---------- Sign Out ----------
        if st.button("🚪 Sign Out", use_container_width=True):
            sign_out()


def update_sidebar_today_stats(profit_loss: float, sessions: int):
    """
    Update today's stats in sidebar.

    Call this when stats are loaded.
    """
    st.session_state["today_pl"] = profit_loss
    st.session_state["today_sessions"] = sessions
