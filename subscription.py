# subscription.py — paywall gate + Stripe checkout / billing portal via Supabase edge functions
#
# The Stripe webhook (products / prices / subscriptions upserts) runs as an
# edge function outside this app. Here we only READ those tables and ask the
# edge functions for checkout / portal URLs.
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

import streamlit as st
import httpx

from settings import allowed_price_ids, site_url, supabase_credentials

ACTIVE_STATUSES = ("trialing", "active")
CHECKOUT_URL_FMT = "https://checkout.stripe.com/c/pay/{session_id}"


class BillingError(RuntimeError):
    pass


# ============================================================
# PURE HELPERS
# ============================================================
def is_subscription_active(sub: Optional[Dict[str, Any]]) -> bool:
    if not sub:
        return False
    return str(sub.get("status") or "").strip().lower() in ACTIVE_STATUSES


def _parse_ts(raw: Any) -> Optional[dt.datetime]:
    if not raw:
        return None
    if isinstance(raw, dt.datetime):
        ts = raw
    else:
        try:
            ts = dt.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts


def period_end(sub: Optional[Dict[str, Any]]) -> Optional[dt.datetime]:
    """trial_end while trialing, else current_period_end."""
    if not sub:
        return None
    if str(sub.get("status") or "").lower() == "trialing" and sub.get("trial_end"):
        return _parse_ts(sub.get("trial_end"))
    return _parse_ts(sub.get("current_period_end"))


def days_remaining(sub: Optional[Dict[str, Any]], now: Optional[dt.datetime] = None) -> Optional[int]:
    """Whole days left in the current period (never negative). None when unknown."""
    end = period_end(sub)
    if end is None:
        return None
    if now is None:
        now = dt.datetime.now(dt.timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    secs = (end - now).total_seconds()
    if secs <= 0:
        return 0
    return int(secs // 86400) + (1 if secs % 86400 else 0)


def format_price(price: Dict[str, Any]) -> str:
    """'BRL 29.90 / month' from a list_active_prices() row."""
    cents = price.get("unit_amount")
    currency = str(price.get("currency") or "").upper()
    amount = f"{(cents or 0) / 100:.2f}"
    interval = price.get("interval")
    if not interval:
        return f"{currency} {amount}"
    count = int(price.get("interval_count") or 1)
    per = interval if count == 1 else f"{count} {interval}s"
    return f"{currency} {amount} / {per}"


def filter_offered_prices(prices: List[Dict[str, Any]], allowed: List[str]) -> List[Dict[str, Any]]:
    if not allowed:
        return list(prices)
    return [p for p in prices if p.get("id") in allowed]


# ============================================================
# EDGE FUNCTIONS
# ============================================================
def _call_function(name: str, access_token: str, body: Dict[str, Any]) -> Dict[str, Any]:
    if not access_token:
        raise BillingError("You must be signed in to manage billing.")

    _, url, anon, _ = supabase_credentials()
    endpoint = f"{url}/functions/v1/{name}"
    headers = {
        "apikey": anon,
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }

    try:
        r = httpx.post(endpoint, headers=headers, json=body, timeout=30.0)
    except httpx.HTTPError as e:
        print(f"[subscription.{name}] request failed: {e!r}")
        raise BillingError(f"Billing service unreachable: {e}") from e

    try:
        data = r.json()
    except ValueError:
        data = {}

    if r.status_code >= 400 or (isinstance(data, dict) and data.get("error")):
        detail = data.get("error") if isinstance(data, dict) else None
        raise BillingError(f"Billing request failed: {detail or r.text or r.status_code}")

    if not isinstance(data, dict):
        raise BillingError("Billing service returned an unexpected response.")
    return data


def create_checkout_session(price_id: str, access_token: str) -> str:
    """Returns the Stripe Checkout URL for price_id."""
    if not price_id:
        raise BillingError("No plan selected.")
    data = _call_function(
        "create-checkout-session",
        access_token,
        {"priceId": price_id, "returnUrl": site_url()},
    )
    if data.get("url"):
        return str(data["url"])
    session_id = data.get("sessionId")
    if not session_id:
        raise BillingError("Checkout session was not created.")
    return CHECKOUT_URL_FMT.format(session_id=session_id)


def create_portal_link(access_token: str) -> str:
    """Returns the Stripe billing-portal URL for the signed-in customer."""
    data = _call_function("create-portal-link", access_token, {"returnUrl": site_url()})
    url = data.get("url")
    if not url:
        raise BillingError("Billing portal link was not created.")
    return str(url)


# ============================================================
# PAYWALL GATE
# ============================================================
def _render_paywall(user_id: str) -> None:
    from db import list_active_prices

    st.title("Choose your plan")
    st.caption("An active or trialing subscription is required to use the calculator.")

    prices = filter_offered_prices(list_active_prices(), allowed_price_ids())
    if not prices:
        st.warning("No plans are available right now. Please try again later.")
        return

    token = str(st.session_state.get("access_token") or "")
    cols = st.columns(min(len(prices), 3))
    for i, price in enumerate(prices):
        with cols[i % len(cols)]:
            with st.container(border=True):
                st.subheader(price["product_name"])
                if price.get("product_description"):
                    st.caption(price["product_description"])
                st.markdown(f"**{format_price(price)}**")
                if price.get("trial_period_days"):
                    st.caption(f"{price['trial_period_days']}-day free trial")

                if st.button("Subscribe", key=f"btn_checkout_{price['id']}", type="primary", use_container_width=True):
                    try:
                        st.session_state["checkout_url"] = create_checkout_session(price["id"], token)
                    except BillingError as e:
                        st.error(str(e))

    checkout_url = st.session_state.get("checkout_url")
    if checkout_url:
        st.link_button("Continue to checkout →", checkout_url, type="primary", use_container_width=True)

    if st.button("I already paid, refresh", use_container_width=True):
        from cache import invalidate_subscription_cache
        invalidate_subscription_cache(user_id)
        st.rerun()


def require_subscription(user_id: str) -> Dict[str, Any]:
    """
    Paywall gate. Call after require_auth() on every protected page.
    Returns the active subscription row; renders plans and stops otherwise.
    """
    from cache import get_cached_subscription
    from db import get_active_subscription

    sub = get_cached_subscription(user_id, get_active_subscription)
    if is_subscription_active(sub):
        return sub  # type: ignore[return-value]

    _render_paywall(user_id)
    st.stop()
    return {}
