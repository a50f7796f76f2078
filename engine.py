# engine.py — Binary Trade Calculator core
# Position sizing + Martingale recovery ladder + daily goal / stop-loss
#
# RULES:
# - Win: profit = entry × payout%, next entry = base entry
# - Loss (Martingale): next entry = (entry + base target profit) / payout%
# - Loss (Conservative): same bookkeeping, next entry = base entry
# - Goal checked before stop-loss; stop-loss clamps bankroll at the limit
#
# The engine never refuses an action. Whoever dispatches actions
# (SessionManager) rejects them once the session is terminal.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, List, Dict, Any, Tuple
import math

SizingKind = Literal["percentage", "currency"]
Outcome = Literal["win", "loss"]

PERCENTAGE: SizingKind = "percentage"
CURRENCY: SizingKind = "currency"

STATUS_GOAL = "Meta"
STATUS_STOP = "Stop"
STATUS_OPEN = "Open"


class ConfigValidationError(ValueError):
    """Raised at the input boundary before a TradeConfig is built."""


# ============================================================
# DATA MODEL
# ============================================================
@dataclass(frozen=True)
class SizingRule:
    value: float
    kind: SizingKind = PERCENTAGE

    def to_dict(self) -> Dict[str, Any]:
        return {"value": float(self.value), "type": self.kind}


def _rule_parts(raw: Any) -> Tuple[Any, Any]:
    """
    (value, kind) from the stored JSON shape {"value": .., "type": ..} or a
    bare number (legacy configs stored plain percentages). Validation is
    left to build_trade_config.
    """
    if isinstance(raw, SizingRule):
        return raw.value, raw.kind
    if isinstance(raw, dict):
        return raw.get("value"), raw.get("type") or raw.get("kind") or PERCENTAGE
    return raw, PERCENTAGE


def resolve(rule: SizingRule, reference: float) -> float:
    """Turn a rule into an absolute amount. No clamping."""
    if rule.kind == PERCENTAGE:
        return float(reference) * float(rule.value) / 100.0
    return float(rule.value)


@dataclass(frozen=True)
class TradeConfig:
    payout_percent: float
    initial_bankroll: float
    entry: SizingRule
    daily_goal: SizingRule
    stop_loss: SizingRule

    def to_dict(self) -> Dict[str, Any]:
        """Column shape of the user_configs table."""
        return {
            "payout": float(self.payout_percent),
            "initial_bankroll": float(self.initial_bankroll),
            "entry": self.entry.to_dict(),
            "daily_goal": self.daily_goal.to_dict(),
            "stop_loss": self.stop_loss.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeConfig":
        """
        Build from a user_configs row. Also understands the old
        percentage-only shape (entryPercentage / dailyGoal / stopLoss numbers).
        Stored rows pass the same checks as form input.
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Trade config must be a mapping.")

        payout = data.get("payout", data.get("payout_percent"))
        bankroll = data.get("initial_bankroll", data.get("initialBankroll"))

        if "entryPercentage" in data and "entry" not in data:
            entry_raw: Any = {"value": data.get("entryPercentage"), "type": PERCENTAGE}
        else:
            entry_raw = data.get("entry")

        goal_raw = data.get("daily_goal", data.get("dailyGoal"))
        stop_raw = data.get("stop_loss", data.get("stopLoss"))

        missing = [
            name
            for name, raw in (
                ("payout", payout),
                ("initial_bankroll", bankroll),
                ("entry", entry_raw),
                ("daily_goal", goal_raw),
                ("stop_loss", stop_raw),
            )
            if raw is None
        ]
        if missing:
            raise ConfigValidationError(f"Trade config is missing {', '.join(missing)}.")

        entry_v, entry_k = _rule_parts(entry_raw)
        goal_v, goal_k = _rule_parts(goal_raw)
        stop_v, stop_k = _rule_parts(stop_raw)
        return build_trade_config(payout, bankroll, entry_v, entry_k, goal_v, goal_k, stop_v, stop_k)


def _parse_number(label: str, raw: Any) -> float:
    if isinstance(raw, str):
        raw = raw.strip().replace(",", ".")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{label} must be a number.")
    if not math.isfinite(v):
        raise ConfigValidationError(f"{label} must be a finite number.")
    return v


def build_trade_config(
    payout: Any,
    initial_bankroll: Any,
    entry_value: Any,
    entry_kind: str,
    goal_value: Any,
    goal_kind: str,
    stop_value: Any,
    stop_kind: str,
) -> TradeConfig:
    """
    Validate raw form input and build a TradeConfig.
    Raises ConfigValidationError naming the first bad field.
    """
    p = _parse_number("Payout", payout)
    b = _parse_number("Initial bankroll", initial_bankroll)
    e = _parse_number("Entry", entry_value)
    g = _parse_number("Daily goal", goal_value)
    s = _parse_number("Stop loss", stop_value)

    if p <= 0:
        raise ConfigValidationError("Payout must be greater than 0%.")
    if b <= 0:
        raise ConfigValidationError("Initial bankroll must be greater than 0.")
    if e <= 0:
        raise ConfigValidationError("Entry must be greater than 0.")
    if g <= 0:
        raise ConfigValidationError("Daily goal must be greater than 0.")
    if s <= 0:
        raise ConfigValidationError("Stop loss must be greater than 0.")

    kinds = {}
    for label, kind in (("Entry", entry_kind), ("Daily goal", goal_kind), ("Stop loss", stop_kind)):
        k = str(kind or "").strip().lower()
        if k not in (PERCENTAGE, CURRENCY):
            raise ConfigValidationError(f"{label} type must be 'percentage' or 'currency'.")
        kinds[label] = k

    return TradeConfig(
        payout_percent=p,
        initial_bankroll=b,
        entry=SizingRule(e, kinds["Entry"]),  # type: ignore[arg-type]
        daily_goal=SizingRule(g, kinds["Daily goal"]),  # type: ignore[arg-type]
        stop_loss=SizingRule(s, kinds["Stop loss"]),  # type: ignore[arg-type]
    )


@dataclass
class Operation:
    sequence_id: int
    entry_value: float
    outcome: Outcome
    profit_loss: float
    bankroll_after: float
    timestamp: str
    conservative: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.sequence_id),
            "entryValue": float(self.entry_value),
            "result": self.outcome,
            "profitLoss": float(self.profit_loss),
            "bankrollAfter": float(self.bankroll_after),
            "timestamp": self.timestamp,
            "conservative": bool(self.conservative),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Operation":
        outcome = "win" if str(d.get("result", d.get("outcome", "loss"))).lower() == "win" else "loss"
        return cls(
            sequence_id=int(d.get("id", d.get("sequence_id", 0)) or 0),
            entry_value=float(d.get("entryValue", d.get("entry_value", 0.0)) or 0.0),
            outcome=outcome,  # type: ignore[arg-type]
            profit_loss=float(d.get("profitLoss", d.get("profit_loss", 0.0)) or 0.0),
            bankroll_after=float(d.get("bankrollAfter", d.get("bankroll_after", 0.0)) or 0.0),
            timestamp=str(d.get("timestamp") or d.get("created_at") or ""),
            conservative=bool(d.get("conservative", False)),
        )


@dataclass
class SessionState:
    bankroll: float
    current_entry: float
    operations: List[Operation] = field(default_factory=list)
    cumulative_profit: float = 0.0
    goal_reached: bool = False
    stop_loss_reached: bool = False

    @property
    def terminal(self) -> bool:
        return self.goal_reached or self.stop_loss_reached


@dataclass
class OperationDelta:
    """Returned from each action to drive UI + persistence."""
    operation: Operation
    reason: Optional[str] = None  # "goal" | "stop" when this action flipped a flag
    status: str = STATUS_OPEN


# ============================================================
# PURE SIZING HELPERS
# ============================================================
def base_entry(config: TradeConfig) -> float:
    return resolve(config.entry, config.initial_bankroll)


def goal_value(config: TradeConfig) -> float:
    return resolve(config.daily_goal, config.initial_bankroll)


def loss_limit(config: TradeConfig) -> float:
    return resolve(config.stop_loss, config.initial_bankroll)


def win_profit(current_entry: float, config: TradeConfig) -> float:
    return current_entry * (config.payout_percent / 100.0)


def martingale_next_entry(current_entry: float, config: TradeConfig) -> float:
    """
    Size the next entry so a win recovers the loss just taken
    plus one base entry of target profit.
    """
    return (current_entry + base_entry(config)) / (config.payout_percent / 100.0)


def initial_state(config: TradeConfig) -> SessionState:
    return SessionState(
        bankroll=float(config.initial_bankroll),
        current_entry=base_entry(config),
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# SESSION
# ============================================================
class TradeSession:
    """
    One calculator session: a TradeConfig plus the SessionState it drives.

    Pure logic. No Streamlit, no Supabase.
    """

    def __init__(self, config: TradeConfig, state: Optional[SessionState] = None):
        self.config: TradeConfig = config
        self.state: SessionState = state if state is not None else initial_state(config)
        self._next_seq: int = len(self.state.operations) + 1

    # ---- derived values ----
    @property
    def base_entry(self) -> float:
        return base_entry(self.config)

    @property
    def goal_value(self) -> float:
        return goal_value(self.config)

    @property
    def loss_limit(self) -> float:
        return loss_limit(self.config)

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def status(self) -> str:
        if self.state.goal_reached:
            return STATUS_GOAL
        if self.state.stop_loss_reached:
            return STATUS_STOP
        return STATUS_OPEN

    def progress_pct(self) -> float:
        g = self.goal_value
        if g <= 0:
            return 0.0
        return self.state.cumulative_profit / g * 100.0

    def preview(self) -> Dict[str, Any]:
        """Snapshot for UI display."""
        return {
            "current_entry": self.state.current_entry,
            "bankroll": self.state.bankroll,
            "total_profit": self.state.cumulative_profit,
            "goal_value": self.goal_value,
            "loss_limit": self.loss_limit,
            "progress_pct": self.progress_pct(),
            "status": self.status(),
            "operations": len(self.state.operations),
        }

    # ============================================================
    # ACTIONS
    # ============================================================
    def win(self) -> OperationDelta:
        entry = self.state.current_entry
        profit = win_profit(entry, self.config)
        self.state.bankroll += profit
        op = self._append("win", entry, profit)
        self.state.current_entry = self.base_entry
        return self._finish(op)

    def loss(self) -> OperationDelta:
        """Martingale loss: escalate to the recovery entry."""
        entry = self.state.current_entry
        self.state.bankroll -= entry
        op = self._append("loss", entry, -entry)
        self.state.current_entry = martingale_next_entry(entry, self.config)
        return self._finish(op)

    def conservative_loss(self) -> OperationDelta:
        """Loss without escalation: next entry drops back to base."""
        entry = self.state.current_entry
        self.state.bankroll -= entry
        op = self._append("loss", entry, -entry, conservative=True)
        self.state.current_entry = self.base_entry
        return self._finish(op)

    def settle(self, outcome: str, conservative: bool = False) -> OperationDelta:
        if outcome == "win":
            return self.win()
        if conservative:
            return self.conservative_loss()
        return self.loss()

    def _append(self, outcome: Outcome, entry: float, pl: float, conservative: bool = False) -> Operation:
        op = Operation(
            sequence_id=self._next_seq,
            entry_value=entry,
            outcome=outcome,
            profit_loss=pl,
            bankroll_after=self.state.bankroll,
            timestamp=_now_iso(),
            conservative=conservative,
        )
        self._next_seq += 1
        self.state.operations.append(op)
        return op

    def _finish(self, op: Operation) -> OperationDelta:
        reason = self.evaluate()
        return OperationDelta(operation=op, reason=reason, status=self.status())

    # ============================================================
    # GOAL / STOP-LOSS EVALUATION
    # ============================================================
    def evaluate(self) -> Optional[str]:
        """
        Recompute cumulative profit and flip goal/stop flags.

        Returns "goal" or "stop" only on the call that flips a flag,
        so repeated calls never re-trigger persistence.
        """
        s = self.state
        if not s.operations:
            return None

        initial = float(self.config.initial_bankroll)
        cumulative = s.bankroll - initial

        # Terminal: keep the invariant, never flip the other flag
        if s.terminal:
            s.cumulative_profit = cumulative
            return None

        goal = self.goal_value
        limit = self.loss_limit

        if cumulative >= goal and not s.goal_reached:
            s.goal_reached = True
            s.cumulative_profit = cumulative
            return "goal"

        if cumulative <= -limit and not s.stop_loss_reached:
            s.stop_loss_reached = True
            s.bankroll = initial - limit
            s.cumulative_profit = -limit
            return "stop"

        s.cumulative_profit = cumulative
        return None

    # ============================================================
    # RESET
    # ============================================================
    def reset(self) -> None:
        self.state = initial_state(self.config)
        self._next_seq = 1

    # ============================================================
    # STATE PERSISTENCE
    # ============================================================
    def export_state(self) -> Dict[str, Any]:
        s = self.state
        return {
            "bankroll": s.bankroll,
            "current_entry": s.current_entry,
            "cumulative_profit": s.cumulative_profit,
            "goal_reached": s.goal_reached,
            "stop_loss_reached": s.stop_loss_reached,
            "operations": [op.to_dict() for op in s.operations],
        }

    def import_state(self, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return

        def _f(key: str, default: float) -> float:
            try:
                return float(data.get(key, default))
            except (TypeError, ValueError):
                return default

        ops: List[Operation] = []
        for raw in data.get("operations") or []:
            if isinstance(raw, dict):
                try:
                    ops.append(Operation.from_dict(raw))
                except (TypeError, ValueError) as e:
                    print(f"[engine.import_state] skipped bad operation: {e!r}")

        fresh = initial_state(self.config)
        self.state = SessionState(
            bankroll=_f("bankroll", fresh.bankroll),
            current_entry=_f("current_entry", fresh.current_entry),
            operations=ops,
            cumulative_profit=_f("cumulative_profit", 0.0),
            goal_reached=bool(data.get("goal_reached", False)),
            stop_loss_reached=bool(data.get("stop_loss_reached", False)),
        )
        self._next_seq = max((op.sequence_id for op in ops), default=0) + 1
