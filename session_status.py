# session_status.py — status classification + display formatting (NO state mutation)
from __future__ import annotations

from typing import Optional

from engine import STATUS_GOAL, STATUS_STOP, STATUS_OPEN

__all__ = ["normalize_status", "is_terminal_status", "status_label", "status_color", "fmt_money"]

DEFAULT_CURRENCY_SYMBOL = "R$"

# Older rows were written with Portuguese / lowercase variants
STATUS_ALIASES = {
    "meta": STATUS_GOAL,
    "goal": STATUS_GOAL,
    "stop": STATUS_STOP,
    "stop loss": STATUS_STOP,
    "stop_loss": STATUS_STOP,
    "open": STATUS_OPEN,
    "em aberto": STATUS_OPEN,
    "aberto": STATUS_OPEN,
    "": STATUS_OPEN,
}

STATUS_LABELS = {
    STATUS_GOAL: "🟢 Goal",
    STATUS_STOP: "🔴 Stop Loss",
    STATUS_OPEN: "🟡 Open",
}

STATUS_COLORS = {
    STATUS_GOAL: "#22c55e",
    STATUS_STOP: "#ef4444",
    STATUS_OPEN: "#eab308",
}


def normalize_status(status: Optional[str]) -> str:
    """Normalize a stored status string to its canonical form."""
    s = str(status or "").strip().lower()
    return STATUS_ALIASES.get(s, STATUS_OPEN)


def is_terminal_status(status: Optional[str]) -> bool:
    return normalize_status(status) in (STATUS_GOAL, STATUS_STOP)


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS[normalize_status(status)]


def status_color(status: Optional[str]) -> str:
    return STATUS_COLORS[normalize_status(status)]


def fmt_money(value: float, symbol: str = DEFAULT_CURRENCY_SYMBOL, signed: bool = False) -> str:
    """'R$ 1,234.56'; signed=True prefixes '+' on gains ('-' is always kept)."""
    try:
        v = float(value or 0.0)
    except (TypeError, ValueError):
        v = 0.0
    sign = "-" if v < 0 else ("+" if signed and v > 0 else "")
    return f"{sign}{symbol} {abs(v):,.2f}"
