# session_manager.py — action dispatch, mode tagging and history hand-off
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from engine import OperationDelta, TradeConfig, TradeSession
from history import MODE_REAL, MODE_TRAINING, SessionSummary, build_summary, normalize_mode

Recorder = Callable[[SessionSummary], Any]


class SessionClosedError(RuntimeError):
    """Trading action attempted after the goal or stop-loss was reached."""


class NoConfigError(RuntimeError):
    """Trading action attempted before a TradeConfig was loaded."""


@dataclass
class SaveOutcome:
    ok: bool
    result: Any = None
    error: Optional[Exception] = None
    skipped: bool = False


class SessionManager:
    """
    Drives one TradeSession for the signed-in user.

    This object is *pure logic*: no Streamlit, no Supabase calls.
    History is written through the injected `recorder` callable
    (e.g. a closure over db.save_session_history). A recorder failure
    is reported back, never rolled into the session state.
    """

    def __init__(
        self,
        config: Optional[TradeConfig] = None,
        mode: str = MODE_REAL,
        recorder: Optional[Recorder] = None,
    ):
        self.session: Optional[TradeSession] = TradeSession(config) if config is not None else None
        self.mode: str = normalize_mode(mode)
        self.recorder: Optional[Recorder] = recorder
        self.saved: bool = False
        self.last_error: Optional[Exception] = None
        self.last_save: Optional[SaveOutcome] = None

    # ---- config ----
    @property
    def config(self) -> Optional[TradeConfig]:
        return self.session.config if self.session is not None else None

    def apply_config(self, config: TradeConfig) -> None:
        """Swap config and start clean (the old session is not saved)."""
        self.session = TradeSession(config)
        self.saved = False

    def set_recorder(self, recorder: Optional[Recorder]) -> None:
        self.recorder = recorder

    def _require_session(self) -> TradeSession:
        if self.session is None:
            raise NoConfigError("No trade configuration loaded.")
        return self.session

    @property
    def terminal(self) -> bool:
        return bool(self.session is not None and self.session.terminal)

    @property
    def has_unsaved_operations(self) -> bool:
        return bool(self.session is not None and self.session.state.operations and not self.saved)

    # ============================================================
    # TRADING ACTIONS
    # ============================================================
    def win(self) -> OperationDelta:
        return self._dispatch("win")

    def loss(self) -> OperationDelta:
        return self._dispatch("loss")

    def conservative_loss(self) -> OperationDelta:
        return self._dispatch("conservative_loss")

    def _dispatch(self, action: str) -> OperationDelta:
        sess = self._require_session()
        if sess.terminal:
            raise SessionClosedError(f"Session already closed ({sess.status()}); reset to continue.")

        outcome = "win" if action == "win" else "loss"
        delta = sess.settle(outcome, conservative=action == "conservative_loss")

        # any new operation makes the session dirty again
        self.saved = False

        if delta.reason in ("goal", "stop"):
            self.save()
        return delta

    # ============================================================
    # PERSISTENCE HAND-OFF
    # ============================================================
    def save(self) -> SaveOutcome:
        """
        Hand the current session to the recorder.
        Skips empty sessions and sessions already saved.
        """
        sess = self.session
        if sess is None or not sess.state.operations or self.saved:
            outcome = SaveOutcome(ok=True, skipped=True)
            self.last_save = outcome
            return outcome

        if self.recorder is None:
            outcome = SaveOutcome(ok=True, skipped=True)
            self.last_save = outcome
            return outcome

        summary = build_summary(sess, self.mode)
        try:
            result = self.recorder(summary)
        except Exception as e:
            print(f"[SessionManager.save] recorder failed: {e!r}")
            self.last_error = e
            outcome = SaveOutcome(ok=False, error=e)
            self.last_save = outcome
            return outcome

        self.saved = True
        self.last_error = None
        outcome = SaveOutcome(ok=True, result=result)
        self.last_save = outcome
        return outcome

    # ============================================================
    # RESET / MODE
    # ============================================================
    def reset(self, save: bool = True) -> Optional[SaveOutcome]:
        """
        Start the day over. With save=True a failed write keeps the session
        (the caller can retry); save=False discards it.
        """
        sess = self._require_session()
        outcome = self.save() if save else None
        if outcome is not None and not outcome.ok:
            return outcome
        sess.reset()
        self.saved = False
        return outcome

    def set_mode(self, mode: str) -> Optional[SaveOutcome]:
        """Persist the outgoing session (if dirty), switch book, reset. Stays put if the save fails."""
        new_mode = normalize_mode(mode)
        if new_mode == self.mode:
            return None

        outcome = None
        if self.has_unsaved_operations:
            outcome = self.save()
            if not outcome.ok:
                return outcome

        self.mode = new_mode
        if self.session is not None:
            self.session.reset()
        self.saved = False
        return outcome

    def toggle_mode(self) -> Optional[SaveOutcome]:
        return self.set_mode(MODE_TRAINING if self.mode == MODE_REAL else MODE_REAL)

    # ============================================================
    # SNAPSHOT (live calculator survives a refresh)
    # ============================================================
    def export_state(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "saved": bool(self.saved),
            "config": self.config.to_dict() if self.config is not None else {},
            "session": self.session.export_state() if self.session is not None else {},
        }

    def import_state(self, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return
        if "mode" in data:
            self.mode = normalize_mode(data.get("mode"))
        self.saved = bool(data.get("saved", False))
        sess_state = data.get("session") or {}
        if self.session is None or not isinstance(sess_state, dict) or not sess_state:
            return
        # a snapshot taken under a different config would break the bankroll invariant
        snap_cfg = data.get("config") or {}
        if snap_cfg and snap_cfg != self.session.config.to_dict():
            print("[SessionManager.import_state] config changed since snapshot; starting fresh.")
            self.saved = False
            return
        try:
            self.session.import_state(sess_state)
        except (TypeError, ValueError, KeyError) as e:
            print(f"[SessionManager.import_state] session import suppressed: {e!r}")
