#!/usr/bin/env python3
"""
Test Suite for db.py persistence helpers (Supabase replaced by an in-memory fake)

Tests cover:
- user_configs load/save (json columns, legacy rows, bad rows)
- trade mode read/write
- session history write: "Session N" across modes, linked operation rows,
  partial failure reporting
- history listing filters (single day, range, mode, all) + ordering
- observation edit, delete order
- calculator_state snapshot (stale day ignored)
- subscription read with admin fallback, price catalogue
- retry wrapper
"""

import json
import os
import sys
import unittest
from unittest.mock import patch

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import db
from db import HistorySaveError
from engine import CURRENCY, PERCENTAGE, SizingRule, TradeConfig, TradeSession
from fake_supabase import FakeSupabase
from history import MODE_REAL, MODE_TRAINING, build_summary

TODAY = "2026-10-17"


def make_config() -> TradeConfig:
    return TradeConfig(
        payout_percent=80.0,
        initial_bankroll=1000.0,
        entry=SizingRule(2.0, PERCENTAGE),
        daily_goal=SizingRule(100.0, CURRENCY),
        stop_loss=SizingRule(5.0, PERCENTAGE),
    )


def make_summary(mode=MODE_REAL, wins=2):
    sess = TradeSession(make_config())
    for _ in range(wins):
        sess.win()
    sess.loss()
    return build_summary(sess, mode)


class DbTestCase(unittest.TestCase):
    tables = {}

    def setUp(self):
        self.fake = FakeSupabase(self.tables)
        patchers = [
            patch("db.get_supabase", return_value=self.fake),
            patch("db.today_key", return_value=TODAY),
            patch("db.time.sleep"),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)


class TestUserConfig(DbTestCase):

    def test_missing_config_is_none(self):
        self.assertIsNone(db.load_user_config("u1"))
        self.assertIsNone(db.load_user_config(""))

    def test_save_then_load(self):
        cfg = make_config()
        db.save_user_config("u1", cfg)
        row = self.fake.tables["user_configs"][0]
        self.assertEqual(row["user_id"], "u1")
        self.assertEqual(row["daily_goal"], {"value": 100.0, "type": "currency"})
        self.assertIn("updated_at", row)
        self.assertEqual(db.load_user_config("u1"), cfg)

    def test_save_is_upsert(self):
        db.save_user_config("u1", make_config())
        db.save_user_config("u1", make_config())
        self.assertEqual(len(self.fake.tables["user_configs"]), 1)

    def test_json_string_columns(self):
        self.fake.tables["user_configs"] = [{
            "user_id": "u1",
            "payout": 85,
            "initial_bankroll": 500,
            "entry": json.dumps({"value": 2, "type": "percentage"}),
            "daily_goal": json.dumps({"value": 30, "type": "currency"}),
            "stop_loss": json.dumps({"value": 5, "type": "percentage"}),
        }]
        cfg = db.load_user_config("u1")
        self.assertEqual(cfg.daily_goal, SizingRule(30.0, CURRENCY))
        self.assertEqual(cfg.payout_percent, 85.0)

    def test_unusable_row_is_none(self):
        self.fake.tables["user_configs"] = [{"user_id": "u1", "payout": 85}]
        self.assertIsNone(db.load_user_config("u1"))

    def test_row_without_stop_loss_is_none(self):
        row = {"user_id": "u1", **make_config().to_dict()}
        row["stop_loss"] = None
        self.fake.tables["user_configs"] = [row]
        self.assertIsNone(db.load_user_config("u1"))

    def test_zero_payout_row_is_none(self):
        self.fake.tables["user_configs"] = [{"user_id": "u1", **make_config().to_dict(), "payout": 0}]
        self.assertIsNone(db.load_user_config("u1"))

    def test_save_requires_user(self):
        with self.assertRaises(RuntimeError):
            db.save_user_config("", make_config())

    def test_trade_mode(self):
        self.assertEqual(db.get_trade_mode("u1"), MODE_REAL)
        db.save_user_config("u1", make_config())
        db.set_trade_mode("u1", "training")
        self.assertEqual(db.get_trade_mode("u1"), MODE_TRAINING)


class TestSaveHistory(DbTestCase):
    tables = {
        "historico_operacoes": [
            {"id": "old-1", "user_id": "u1", "data": TODAY, "mode": "real"},
            {"id": "old-2", "user_id": "u1", "data": TODAY, "mode": "training"},
            {"id": "old-3", "user_id": "u1", "data": "2026-10-16", "mode": "real"},
            {"id": "old-4", "user_id": "u2", "data": TODAY, "mode": "real"},
        ]
    }

    def test_count_sessions_on_day_spans_modes(self):
        self.assertEqual(db.count_sessions_on_day("u1", TODAY), 2)

    def test_save_labels_and_links(self):
        summary = make_summary()
        history_id = db.save_session_history("u1", summary)

        row = [r for r in self.fake.tables["historico_operacoes"] if r["id"] == history_id][0]
        self.assertEqual(row["sessao"], "Session 3")
        self.assertEqual(row["data"], TODAY)
        self.assertEqual(row["mode"], MODE_REAL)
        self.assertAlmostEqual(row["lucro_total"], summary.total_profit)
        self.assertEqual(len(json.loads(row["operacoes"])), 3)

        ops = self.fake.tables["operacoes_individuais"]
        self.assertEqual(len(ops), 3)
        self.assertTrue(all(o["historico_id"] == history_id for o in ops))
        self.assertEqual([o["result"] for o in ops], ["win", "win", "loss"])

        # session row first, then one batched operations insert
        writes = [c for c in self.fake.calls if c[1] == "insert"]
        self.assertEqual(writes, [("historico_operacoes", "insert"), ("operacoes_individuais", "insert")])

    def test_explicit_day_key(self):
        history_id = db.save_session_history("u1", make_summary(), day_key="2026-10-16")
        row = [r for r in self.fake.tables["historico_operacoes"] if r["id"] == history_id][0]
        self.assertEqual(row["sessao"], "Session 2")

    def test_operations_failure_reports_history_id(self):
        self.fake.fail("operacoes_individuais", "insert", RuntimeError("rls"))
        with self.assertRaises(HistorySaveError) as ctx:
            db.save_session_history("u1", make_summary())
        self.assertTrue(ctx.exception.history_id)

    def test_history_failure_has_no_id(self):
        self.fake.fail("historico_operacoes", "insert", RuntimeError("down"))
        with self.assertRaises(HistorySaveError) as ctx:
            db.save_session_history("u1", make_summary())
        self.assertIsNone(ctx.exception.history_id)
        self.assertNotIn("operacoes_individuais", self.fake.tables)

    def test_empty_session_refused(self):
        sess = TradeSession(make_config())
        with self.assertRaises(HistorySaveError):
            db.save_session_history("u1", build_summary(sess, MODE_REAL))


class TestListHistory(DbTestCase):
    tables = {
        "historico_operacoes": [
            {"id": "a", "user_id": "u1", "data": "2026-10-10", "mode": "real",
             "created_at": "2026-10-10T12:00:00+00:00", "operacoes": "[]"},
            {"id": "b", "user_id": "u1", "data": "2026-10-15", "mode": "training",
             "created_at": "2026-10-15T12:00:00+00:00", "operacoes": []},
            {"id": "c", "user_id": "u1", "data": "2026-10-15", "mode": "real",
             "created_at": "2026-10-15T13:00:00+00:00", "operacoes": json.dumps([{"id": 1, "result": "win"}])},
            {"id": "d", "user_id": "u1", "data": "2026-10-17", "mode": "real",
             "created_at": "2026-10-17T09:00:00+00:00", "operacoes": None},
            {"id": "e", "user_id": "u2", "data": "2026-10-17", "mode": "real",
             "created_at": "2026-10-17T09:00:00+00:00", "operacoes": None},
        ],
        "operacoes_individuais": [
            {"id": "o2", "historico_id": "c", "entry_value": 50, "result": "win", "profit_loss": 40,
             "bankroll_after": 1020, "created_at": "2026-10-15T13:00:02+00:00"},
            {"id": "o1", "historico_id": "c", "entry_value": 20, "result": "loss", "profit_loss": -20,
             "bankroll_after": 980, "created_at": "2026-10-15T13:00:01+00:00"},
            {"id": "o3", "historico_id": "b", "entry_value": 20, "result": "win", "profit_loss": 16,
             "bankroll_after": 1016, "created_at": "2026-10-15T12:00:01+00:00"},
        ],
    }

    def ids(self, rows):
        return [r["id"] for r in rows]

    def test_default_is_real_newest_first(self):
        self.assertEqual(self.ids(db.list_history("u1")), ["d", "c", "a"])

    def test_all_modes(self):
        self.assertEqual(self.ids(db.list_history("u1", mode="all")), ["d", "c", "b", "a"])

    def test_training_only(self):
        self.assertEqual(self.ids(db.list_history("u1", mode="training")), ["b"])

    def test_single_day(self):
        self.assertEqual(self.ids(db.list_history("u1", "2026-10-15", mode="all")), ["c", "b"])

    def test_inclusive_range(self):
        rows = db.list_history("u1", "2026-10-10", "2026-10-15")
        self.assertEqual(self.ids(rows), ["c", "a"])

    def test_operacoes_json_is_decoded(self):
        rows = {r["id"]: r for r in db.list_history("u1", mode="all")}
        self.assertEqual(rows["c"]["operacoes"], [{"id": 1, "result": "win"}])
        self.assertEqual(rows["a"]["operacoes"], [])
        self.assertEqual(rows["d"]["operacoes"], [])

    def test_read_failure_is_empty(self):
        self.fake.fail("historico_operacoes", "select", RuntimeError("down"))
        self.assertEqual(db.list_history("u1"), [])

    def test_session_operations_oldest_first(self):
        ops = db.list_session_operations("c")
        self.assertEqual([op.outcome for op in ops], ["loss", "win"])
        self.assertEqual([op.sequence_id for op in ops], [1, 2])
        self.assertAlmostEqual(ops[1].bankroll_after, 1020.0)

    def test_update_observation(self):
        db.update_history_observation("c", "  good discipline  ")
        row = [r for r in self.fake.tables["historico_operacoes"] if r["id"] == "c"][0]
        self.assertEqual(row["observacoes"], "good discipline")

    def test_delete_children_first(self):
        db.delete_history_session("c")
        deletes = [c for c in self.fake.calls if c[1] == "delete"]
        self.assertEqual(deletes, [("operacoes_individuais", "delete"), ("historico_operacoes", "delete")])
        self.assertNotIn("c", self.ids(self.fake.tables["historico_operacoes"]))
        self.assertEqual(self.ids(self.fake.tables["operacoes_individuais"]), ["o3"])


class TestCalculatorState(DbTestCase):

    def test_save_load_clear(self):
        db.save_calculator_state("u1", {"mode": "real", "session": {"bankroll": 1016.0}})
        self.assertEqual(db.load_calculator_state("u1")["session"]["bankroll"], 1016.0)
        db.save_calculator_state("u1", {"mode": "training"})
        self.assertEqual(len(self.fake.tables["calculator_state"]), 1)
        db.clear_calculator_state("u1")
        self.assertIsNone(db.load_calculator_state("u1"))

    def test_stale_day_is_ignored(self):
        self.fake.tables["calculator_state"] = [
            {"user_id": "u1", "day_key": "2026-10-16", "state_json": {"mode": "real"}}
        ]
        self.assertIsNone(db.load_calculator_state("u1"))


class TestBillingReads(DbTestCase):
    tables = {
        "subscriptions": [
            {"id": "s1", "user_id": "u1", "status": "canceled", "created": "2026-01-01"},
            {"id": "s2", "user_id": "u1", "status": "trialing", "created": "2026-10-01"},
            {"id": "s3", "user_id": "u2", "status": "active", "created": "2026-10-01"},
        ],
        "prices": [
            {"id": "p_year", "active": True, "unit_amount": 29900, "currency": "brl",
             "interval": "year", "products": {"name": "Pro", "active": True}},
            {"id": "p_month", "active": True, "unit_amount": 2990, "currency": "brl",
             "interval": "month", "products": {"name": "Pro", "active": True}},
            {"id": "p_old", "active": False, "unit_amount": 1000, "currency": "brl",
             "interval": "month", "products": {"name": "Legacy", "active": True}},
            {"id": "p_dead", "active": True, "unit_amount": 500, "currency": "brl",
             "interval": "month", "products": {"name": "Gone", "active": False}},
        ],
    }

    def test_active_subscription(self):
        self.assertEqual(db.get_active_subscription("u1")["id"], "s2")
        self.assertIsNone(db.get_active_subscription("nobody"))

    def test_subscription_admin_fallback(self):
        self.fake.fail("subscriptions", "select", RuntimeError("rls"))
        admin = FakeSupabase(self.tables)
        with patch("db.get_supabase_admin", return_value=admin):
            self.assertEqual(db.get_active_subscription("u1")["id"], "s2")

    def test_active_prices_cheapest_first(self):
        prices = db.list_active_prices()
        self.assertEqual([p["id"] for p in prices], ["p_month", "p_year"])
        self.assertEqual(prices[0]["product_name"], "Pro")
        self.assertEqual(prices[0]["currency"], "BRL")


class TestRetry(unittest.TestCase):

    def test_retries_transient_errors(self):
        class Flaky:
            calls = 0

            def execute(self):
                Flaky.calls += 1
                if Flaky.calls < 3:
                    raise httpx.ConnectError("reset")
                return "ok"

        with patch("db.time.sleep") as sleep:
            self.assertEqual(db._execute_with_retry(Flaky()), "ok")
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.2, 0.4])

    def test_bubbles_after_retries(self):
        class Down:
            def execute(self):
                raise httpx.ReadError("eof")

        with patch("db.time.sleep"):
            with self.assertRaises(httpx.ReadError):
                db._execute_with_retry(Down())

    def test_other_errors_are_not_retried(self):
        class Broken:
            calls = 0

            def execute(self):
                Broken.calls += 1
                raise ValueError("bad")

        with self.assertRaises(ValueError):
            db._execute_with_retry(Broken())
        self.assertEqual(Broken.calls, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
