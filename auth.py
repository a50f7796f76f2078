# auth.py — Session-state only auth (no cookies, no refresh persistence)
# Streamlit Cloud compatible. Hard refresh = re-login.
from __future__ import annotations

from typing import Any, Dict, Optional

import streamlit as st
import httpx

from settings import app_env, site_url, supabase_credentials
from supabase_client import reset_supabase_client

MIN_PASSWORD_LEN = 6


class AuthError(RuntimeError):
    pass


# ---------------- GoTrue REST ----------------
def _gotrue_headers() -> Dict[str, str]:
    _, _, key, _ = supabase_credentials()
    return {
        "apikey": key,
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
    }


def _gotrue_url(path: str) -> str:
    _, url, _, _ = supabase_credentials()
    return f"{url}/auth/v1/{path.lstrip('/')}"


def _raise_for_gotrue(r: httpx.Response, what: str) -> None:
    if r.status_code < 400:
        return
    error_detail = r.text
    try:
        error_json = r.json()
        error_detail = (
            error_json.get("error_description")
            or error_json.get("msg")
            or error_json.get("message")
            or r.text
        )
    except ValueError:
        pass
    raise AuthError(f"{what} failed: {error_detail}")


def gotrue_password_login(email: str, password: str) -> dict:
    """Direct REST call to Supabase GoTrue for password auth."""
    r = httpx.post(
        _gotrue_url("token?grant_type=password"),
        headers=_gotrue_headers(),
        json={"email": email, "password": password},
        timeout=20.0,
    )
    _raise_for_gotrue(r, "Login")
    return r.json()


def gotrue_sign_up(email: str, password: str, name: str) -> dict:
    """
    Create the account; the display name goes into user metadata.
    With email confirmation on, the response carries no access_token.
    """
    r = httpx.post(
        _gotrue_url("signup"),
        headers=_gotrue_headers(),
        json={"email": email, "password": password, "data": {"name": name}},
        timeout=20.0,
    )
    _raise_for_gotrue(r, "Sign up")
    return r.json()


def gotrue_recover(email: str) -> None:
    """Send the password-recovery email (link lands back on SITE_URL)."""
    r = httpx.post(
        _gotrue_url("recover"),
        headers=_gotrue_headers(),
        params={"redirect_to": site_url()},
        json={"email": email},
        timeout=20.0,
    )
    _raise_for_gotrue(r, "Password recovery")


def validate_credentials(email: str, password: str) -> Optional[str]:
    """Returns an error message, or None when the form input is usable."""
    email = (email or "").strip()
    if not email or "@" not in email:
        return "Please enter a valid email."
    if not password:
        return "Please enter your password."
    if len(password) < MIN_PASSWORD_LEN:
        return f"Password must be at least {MIN_PASSWORD_LEN} characters."
    return None


def user_display_name(user: Any) -> str:
    if not isinstance(user, dict):
        return ""
    meta = user.get("user_metadata") or {}
    name = str(meta.get("name") or "").strip()
    return name or str(user.get("email") or "")


# ---------------- Session state helpers ----------------
AUTH_DEFAULTS: Dict[str, Any] = {
    "authenticated": False,
    "access_token": None,
    "refresh_token": None,
    "user": None,
    "user_id": None,
    "email": None,
}


def _init_session_state():
    """Initialize all auth-related session state with defaults."""
    for key, value in AUTH_DEFAULTS.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _clear_auth_state():
    """Clear all auth-related session state."""
    for key, value in AUTH_DEFAULTS.items():
        st.session_state[key] = value

    # Next get_supabase() must not carry the old bearer token
    reset_supabase_client()

    # Clear all user data caches to prevent bleed between users
    from cache import clear_all_user_caches
    clear_all_user_caches()


def _store_login(data: dict, email: str) -> None:
    access_token = data.get("access_token")
    user_obj = data.get("user") or {}
    if not access_token:
        raise AuthError("Login failed: No access token received.")

    # Clear any stale caches from previous user BEFORE setting new auth
    _clear_auth_state()

    st.session_state["authenticated"] = True
    st.session_state["access_token"] = access_token
    st.session_state["refresh_token"] = data.get("refresh_token")
    st.session_state["user"] = user_obj
    st.session_state["user_id"] = str(user_obj.get("id") or "") if isinstance(user_obj, dict) else ""
    st.session_state["email"] = (
        (user_obj.get("email") or "").strip().lower() if isinstance(user_obj, dict) else email
    ) or email


# ---------------- UI helpers ----------------
def _hide_sidebar_while_logged_out():
    """Hide sidebar navigation when user is not logged in."""
    st.markdown(
        """
        <style>
            section[data-testid="stSidebar"] [data-testid="stSidebarNav"] {
                display: none !important;
            }
            div[data-testid="stToolbar"] {display: none !important;}
            footer {visibility: hidden !important;}
        </style>
        """,
        unsafe_allow_html=True,
    )


# ---------------- Logout ----------------
def sign_out():
    """Clear session and force re-render to login screen."""
    _clear_auth_state()
    st.rerun()


# ---------------- Login UI ----------------
def _sign_in_tab():
    email_input = st.text_input("Email", key="login_email_input")
    password_input = st.text_input("Password", type="password", key="login_password_input")

    if st.button("Sign In", type="primary", use_container_width=True, key="btn_sign_in"):
        problem = validate_credentials(email_input, password_input)
        if problem:
            st.error(problem)
            return
        email = email_input.strip().lower()
        try:
            data = gotrue_password_login(email, password_input)
            _store_login(data, email)
        except (AuthError, httpx.HTTPError) as e:
            st.error(str(e))
            return
        st.toast("Signed in.")
        st.rerun()


def _sign_up_tab():
    name_input = st.text_input("Name", key="signup_name_input")
    email_input = st.text_input("Email", key="signup_email_input")
    password_input = st.text_input("Password", type="password", key="signup_password_input")

    if st.button("Create Account", type="primary", use_container_width=True, key="btn_sign_up"):
        if not (name_input or "").strip():
            st.error("Please enter your name.")
            return
        problem = validate_credentials(email_input, password_input)
        if problem:
            st.error(problem)
            return
        email = email_input.strip().lower()
        try:
            data = gotrue_sign_up(email, password_input, name_input.strip())
        except (AuthError, httpx.HTTPError) as e:
            st.error(str(e))
            return

        if data.get("access_token"):
            _store_login(data, email)
            st.rerun()
        else:
            st.info("Account created. Check your email to confirm it, then sign in.")


def _reset_tab():
    email_input = st.text_input("Email", key="reset_email_input")
    if st.button("Send Reset Link", use_container_width=True, key="btn_reset"):
        email = (email_input or "").strip().lower()
        if not email or "@" not in email:
            st.error("Please enter a valid email.")
            return
        try:
            gotrue_recover(email)
        except (AuthError, httpx.HTTPError) as e:
            st.error(str(e))
            return
        st.success("Recovery link sent. Check your inbox.")


def _login_ui():
    """Render sign-in / sign-up / reset and stop the page."""
    _hide_sidebar_while_logged_out()

    st.title("Trade Calculator — Login")

    if app_env() == "dev":
        st.caption("🔧 Development Environment")

    tab_in, tab_up, tab_reset = st.tabs(["Sign In", "Create Account", "Forgot Password"])
    with tab_in:
        _sign_in_tab()
    with tab_up:
        _sign_up_tab()
    with tab_reset:
        _reset_tab()

    st.stop()


# ---------------- Main auth gate ----------------
def require_auth() -> dict:
    """
    Main authentication gate. Call at the top of every protected page.

    Returns the user object if authenticated.
    Shows login UI and stops execution if not authenticated.
    """
    _init_session_state()

    if not st.session_state.get("authenticated"):
        _login_ui()

    access_token = st.session_state.get("access_token")
    user = st.session_state.get("user")
    user_id = st.session_state.get("user_id")

    if not access_token or not user or not user_id:
        _clear_auth_state()
        _login_ui()

    return st.session_state["user"]


def current_user_id() -> str:
    return str(st.session_state.get("user_id") or "")
