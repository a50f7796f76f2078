# history.py — session summary + row payloads for the history tables
#
# Pure helpers. db.save_session_history() does the actual writes:
#   1) historico_operacoes   (one row per finished session)
#   2) operacoes_individuais (one row per operation, linked by historico_id)
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from engine import Operation, TradeSession, STATUS_GOAL
from session_status import is_terminal_status, normalize_status

MODE_REAL = "real"
MODE_TRAINING = "training"
MODES = (MODE_REAL, MODE_TRAINING)
MODE_ALL = "all"  # history filter only, never stored

MODE_LABELS = {
    MODE_REAL: "Real Account",
    MODE_TRAINING: "Training",
}


def normalize_mode(mode: Any) -> str:
    m = str(mode or "").strip().lower()
    return m if m in MODES else MODE_REAL


@dataclass
class SessionSummary:
    initial_bankroll: float
    final_bankroll: float
    total_profit: float
    status: str
    mode: str
    operations: List[Operation] = field(default_factory=list)


def build_summary(session: TradeSession, mode: str) -> SessionSummary:
    s = session.state
    return SessionSummary(
        initial_bankroll=float(session.config.initial_bankroll),
        final_bankroll=float(s.bankroll),
        total_profit=float(s.cumulative_profit),
        status=session.status(),
        mode=normalize_mode(mode),
        operations=list(s.operations),
    )


def session_label(existing_today: int) -> str:
    """Nth session of the calendar day -> 'Session N'."""
    return f"Session {max(0, int(existing_today)) + 1}"


def history_row(user_id: str, day_key: str, label: str, summary: SessionSummary) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "data": day_key,
        "sessao": label,
        "banca_inicial": summary.initial_bankroll,
        "banca_final": summary.final_bankroll,
        "lucro_total": summary.total_profit,
        "status": summary.status,
        "operacoes": json.dumps([op.to_dict() for op in summary.operations]),
        "mode": summary.mode,
    }


def operation_rows(user_id: str, history_id: str, operations: List[Operation]) -> List[Dict[str, Any]]:
    return [
        {
            "user_id": user_id,
            "historico_id": history_id,
            "entry_value": op.entry_value,
            "result": op.outcome,
            "profit_loss": op.profit_loss,
            "bankroll_after": op.bankroll_after,
            "created_at": op.timestamp,
        }
        for op in operations
    ]


def session_operations(table_ops: List[Operation], blob: Any) -> List[Operation]:
    """
    Operations of a stored session, oldest first. operacoes_individuais has
    no conservative column, so the flag comes from the session's operacoes
    json (same order, same length). Sessions without table rows fall back
    to the json alone.
    """
    from_blob = [Operation.from_dict(o) for o in (blob or []) if isinstance(o, dict)]
    if not table_ops:
        return from_blob
    if len(from_blob) == len(table_ops):
        for op, stored in zip(table_ops, from_blob):
            op.conservative = stored.conservative
    return list(table_ops)


def summarize_history(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals for the history header (sessions, profit, goal/stop counts, hit rate)."""
    total = len(records)
    profit = 0.0
    goals = 0
    stops = 0
    for r in records:
        try:
            profit += float(r.get("lucro_total") or 0.0)
        except (TypeError, ValueError):
            pass
        if not is_terminal_status(r.get("status")):
            continue
        if normalize_status(r.get("status")) == STATUS_GOAL:
            goals += 1
        else:
            stops += 1

    closed = goals + stops
    return {
        "sessions": total,
        "total_profit": profit,
        "goals": goals,
        "stops": stops,
        "goal_rate": (goals / closed * 100.0) if closed else 0.0,
    }
