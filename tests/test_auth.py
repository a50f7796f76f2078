#!/usr/bin/env python3
"""
Test Suite for auth.py helpers (GoTrue REST calls are mocked)

Tests cover:
- Form validation
- Display name from user metadata
- Sign-up / login / recover payloads
- GoTrue error messages surfaced as AuthError
"""

import os
import sys
import unittest
from unittest.mock import patch

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth import (
    AuthError,
    gotrue_password_login,
    gotrue_recover,
    gotrue_sign_up,
    user_display_name,
    validate_credentials,
)

CREDS = ("prod", "https://proj.supabase.co", "anon-key", None)


class TestValidation(unittest.TestCase):

    def test_valid(self):
        self.assertIsNone(validate_credentials("trader@example.com", "secret1"))
        self.assertIsNone(validate_credentials("  trader@example.com ", "123456"))

    def test_bad_email(self):
        self.assertIn("email", validate_credentials("", "secret1"))
        self.assertIn("email", validate_credentials("trader.example.com", "secret1"))

    def test_password_rules(self):
        self.assertIn("password", validate_credentials("a@b.co", ""))
        self.assertIn("6", validate_credentials("a@b.co", "12345"))

    def test_display_name(self):
        self.assertEqual(user_display_name({"email": "a@b.co", "user_metadata": {"name": " Ana "}}), "Ana")
        self.assertEqual(user_display_name({"email": "a@b.co", "user_metadata": {}}), "a@b.co")
        self.assertEqual(user_display_name({"email": "a@b.co"}), "a@b.co")
        self.assertEqual(user_display_name(None), "")


class TestGoTrue(unittest.TestCase):

    def setUp(self):
        p = patch("auth.supabase_credentials", return_value=CREDS)
        p.start()
        self.addCleanup(p.stop)

    def respond(self, status=200, **kwargs):
        p = patch("auth.httpx.post", return_value=httpx.Response(status, **kwargs))
        mock = p.start()
        self.addCleanup(p.stop)
        return mock

    def test_login(self):
        post = self.respond(json={"access_token": "jwt", "user": {"id": "u1"}})
        data = gotrue_password_login("a@b.co", "secret1")
        self.assertEqual(data["access_token"], "jwt")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://proj.supabase.co/auth/v1/token?grant_type=password")
        self.assertEqual(kwargs["headers"]["apikey"], "anon-key")
        self.assertEqual(kwargs["json"], {"email": "a@b.co", "password": "secret1"})

    def test_login_error_description(self):
        self.respond(status=400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
        with self.assertRaises(AuthError) as ctx:
            gotrue_password_login("a@b.co", "wrong-pass")
        self.assertIn("Invalid login credentials", str(ctx.exception))

    def test_sign_up_sends_name(self):
        post = self.respond(json={"id": "u2", "email": "a@b.co"})
        data = gotrue_sign_up("a@b.co", "secret1", "Ana")
        self.assertNotIn("access_token", data)
        args, kwargs = post.call_args
        self.assertTrue(args[0].endswith("/auth/v1/signup"))
        self.assertEqual(kwargs["json"]["data"], {"name": "Ana"})

    def test_sign_up_existing_user(self):
        self.respond(status=422, json={"code": 422, "msg": "User already registered"})
        with self.assertRaises(AuthError) as ctx:
            gotrue_sign_up("a@b.co", "secret1", "Ana")
        self.assertIn("User already registered", str(ctx.exception))

    def test_recover_redirects_to_site(self):
        post = self.respond(json={})
        with patch("auth.site_url", return_value="https://app.example.com"):
            gotrue_recover("a@b.co")
        args, kwargs = post.call_args
        self.assertTrue(args[0].endswith("/auth/v1/recover"))
        self.assertEqual(kwargs["params"], {"redirect_to": "https://app.example.com"})
        self.assertEqual(kwargs["json"], {"email": "a@b.co"})

    def test_plain_text_error(self):
        self.respond(status=503, text="upstream unavailable")
        with self.assertRaises(AuthError) as ctx:
            gotrue_recover("a@b.co")
        self.assertIn("upstream unavailable", str(ctx.exception))


if __name__ == "__main__":
    unittest.main(verbosity=2)
