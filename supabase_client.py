# supabase_client.py — per-session anon client + cached service-role admin client
from __future__ import annotations

import streamlit as st

from supabase import create_client, Client, ClientOptions

from settings import SupabaseConfigError, supabase_credentials


def _make_client(url: str, key: str) -> Client:
    """
    We are NOT using the SDK's local persistence/refresh.
    Auth is handled by auth.py (GoTrue REST) and kept in session_state.
    """
    opts = ClientOptions(
        persist_session=False,
        auto_refresh_token=False,
    )
    return create_client(url, key, options=opts)


def get_supabase() -> Client:
    """Per-Streamlit-session ANON client (RLS enforced)."""
    if st.session_state.get("supabase_client_anon") is not None:
        return st.session_state.supabase_client_anon

    _, url, anon, _ = supabase_credentials()
    client = _make_client(url, anon)

    # Requests run as the signed-in user so RLS sees auth.uid()
    token = st.session_state.get("access_token")
    if token:
        client.postgrest.auth(token)

    st.session_state.supabase_client_anon = client
    return client


def get_supabase_admin() -> Client:
    """Cached SERVICE ROLE client (bypasses RLS)."""
    if st.session_state.get("supabase_client_admin") is not None:
        return st.session_state.supabase_client_admin

    _, url, _, svc = supabase_credentials()
    if not svc:
        raise SupabaseConfigError(
            "Missing service role key. Provide SUPABASE_SERVICE_ROLE_KEY_DEV/PROD (or SUPABASE_SERVICE_ROLE_KEY)."
        )

    st.session_state.supabase_client_admin = _make_client(url, svc)
    return st.session_state.supabase_client_admin


def reset_supabase_client():
    """
    Force creation of a new anon client on next get_supabase() call.
    Call this after login/logout so no stale bearer token bleeds between users.
    """
    st.session_state.pop("supabase_client_anon", None)
