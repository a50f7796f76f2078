# pages/02_Settings.py — trade configuration + subscription / billing portal

import streamlit as st
st.set_page_config(page_title="Settings", page_icon="⚙️", layout="wide")  # set FIRST

from auth import require_auth, current_user_id, user_display_name
user = require_auth()  # gate before anything renders
USER_ID = current_user_id()

from subscription import (
    BillingError,
    create_portal_link,
    days_remaining,
    period_end,
    require_subscription,
)
sub = require_subscription(USER_ID)
st.session_state["subscription"] = sub

from sidebar import render_sidebar
render_sidebar()  # only show after auth

from cache import get_cached_config, invalidate_all_caches, set_cached_config
from config_panel import render_config_form
from db import load_user_config, save_user_config
from settings import app_timezone

st.markdown("""
<style>
.card{border:1px solid #2b2b2b;border-radius:14px;padding:16px 18px;
      background:linear-gradient(135deg,#0f0f0f,#171717);color:#eaeaea;margin:8px 0 18px 0;}
.h{font-weight:900;font-size:1.05rem;margin-bottom:6px}
.help{color:#a0a0a0;font-size:.92rem}
.warning{color:#fbbf24;font-size:.88rem;margin-top:6px}
</style>
""", unsafe_allow_html=True)

st.title("Settings")

# ---------- Trade configuration ----------
with st.container():
    st.markdown('<div class="card">', unsafe_allow_html=True)
    st.markdown('<div class="h">Trade Configuration</div>', unsafe_allow_html=True)

    current = get_cached_config(USER_ID, load_user_config)

    mgr = st.session_state.get("session_manager")
    if mgr is not None and mgr.has_unsaved_operations:
        st.markdown(
            '<div class="warning">⚠️ <b>A session is running on the calculator.</b> '
            'Saving a new configuration banks it to history and starts a fresh session.</div>',
            unsafe_allow_html=True,
        )

    new_cfg = render_config_form(current, key_prefix="settings_cfg")
    if new_cfg is not None:
        try:
            save_user_config(USER_ID, new_cfg)
        except Exception as e:
            print(f"[settings] save_user_config error: {e!r}")
            st.error(f"Could not save configuration: {e}")
        else:
            set_cached_config(USER_ID, new_cfg)
            st.success("Configuration saved. The calculator picks it up on its next load.")

    st.markdown(
        '<div class="help">Each rule can be a percentage of the initial bankroll or a fixed amount. '
        'Payout is the broker\'s return on a winning entry.</div>',
        unsafe_allow_html=True,
    )
    st.markdown('</div>', unsafe_allow_html=True)

# ---------- Account ----------
with st.container():
    st.markdown('<div class="card">', unsafe_allow_html=True)
    st.markdown('<div class="h">Account</div>', unsafe_allow_html=True)
    st.markdown(f"**Name:** {user_display_name(user) or '—'}")
    st.markdown(f"**Email:** {st.session_state.get('email') or '—'}")
    st.markdown('</div>', unsafe_allow_html=True)

# ---------- Subscription ----------
with st.container():
    st.markdown('<div class="card">', unsafe_allow_html=True)
    st.markdown('<div class="h">Subscription</div>', unsafe_allow_html=True)

    status = str(sub.get("status") or "").lower()
    st.markdown(f"**Status:** {'Free trial' if status == 'trialing' else 'Active'}")

    end = period_end(sub)
    left = days_remaining(sub)
    if end is not None:
        end_local = end.astimezone(app_timezone()).strftime("%Y-%m-%d")
        label = "Trial ends" if status == "trialing" else ("Ends" if sub.get("cancel_at_period_end") else "Renews")
        st.markdown(f"**{label}:** {end_local} ({left} days)")

    if st.button("Manage Billing", type="primary", key="btn_portal"):
        try:
            st.session_state["portal_url"] = create_portal_link(str(st.session_state.get("access_token") or ""))
        except BillingError as e:
            st.error(str(e))

    portal_url = st.session_state.get("portal_url")
    if portal_url:
        st.link_button("Open billing portal →", portal_url)

    if st.button("Refresh account data", key="btn_refresh_sub"):
        invalidate_all_caches(USER_ID)  # subscription, config, history
        st.session_state.pop("portal_url", None)
        st.rerun()

    st.markdown('</div>', unsafe_allow_html=True)
