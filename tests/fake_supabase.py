# fake_supabase.py — in-memory stand-in for the PostgREST query builder used by db.py
#
# Only the chain methods db.py calls are implemented:
#   table().select()/insert()/upsert()/update()/delete()
#          .eq()/.in_()/.gte()/.lte()/.order()/.limit()/.execute()

import copy
import itertools
from typing import Any, Dict, List, Optional


class FakeResult:
    def __init__(self, data: List[Dict[str, Any]], count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.count_mode: Optional[str] = None
        self.filters = []
        self.orders = []
        self._limit: Optional[int] = None

    # ---- verbs ----
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.op = "select"
        self.count_mode = count
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # ---- filters ----
    def eq(self, col, val):
        self.filters.append(lambda r: r.get(col) == val)
        return self

    def in_(self, col, vals):
        vals = list(vals)
        self.filters.append(lambda r: r.get(col) in vals)
        return self

    def gte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) >= val)
        return self

    def lte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) <= val)
        return self

    def order(self, col, desc: bool = False):
        self.orders.append((col, desc))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    # ---- run ----
    def _match(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self) -> FakeResult:
        self.client.calls.append((self.table, self.op))
        err = self.client.failures.get((self.table, self.op))
        if err is not None:
            raise err

        rows = self.client.tables.setdefault(self.table, [])

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            out = []
            for item in items:
                row = dict(item)
                row.setdefault("id", f"{self.table}-{next(self.client.ids)}")
                rows.append(row)
                out.append(copy.deepcopy(row))
            return FakeResult(out)

        if self.op == "upsert":
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            row = dict(self.payload)
            for existing in rows:
                if all(existing.get(k) == row.get(k) for k in keys):
                    existing.update(row)
                    return FakeResult([copy.deepcopy(existing)])
            rows.append(row)
            return FakeResult([copy.deepcopy(row)])

        matched = [r for r in rows if self._match(r)]

        if self.op == "update":
            for r in matched:
                r.update(self.payload)
            return FakeResult(copy.deepcopy(matched))

        if self.op == "delete":
            self.client.tables[self.table] = [r for r in rows if not self._match(r)]
            return FakeResult(copy.deepcopy(matched))

        for col, desc in reversed(self.orders):
            matched.sort(key=lambda r: (r.get(col) is None, r.get(col)), reverse=desc)
        total = len(matched)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResult(copy.deepcopy(matched), count=total if self.count_mode else None)


class FakeSupabase:
    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables or {})
        self.calls = []
        self.failures: Dict[tuple, Exception] = {}
        self.ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, err: Exception) -> None:
        self.failures[(table, op)] = err
