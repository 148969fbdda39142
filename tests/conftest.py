import json
import os
import re
import sys
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

# Ensure we can import from the parent directory
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read once; keep tests off real services
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-key")
os.environ["SMTP_HOST"] = ""
os.environ["EXPO_ACCESS_TOKEN"] = ""

from db import get_supabase
from main import app
from utils import CurrentUser, get_current_user


# --- In-memory stand-in for the async Supabase client ---

def _split_columns(columns: str) -> list[str]:
    parts, depth, current = [], 0, ""
    for ch in columns:
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
            continue
        depth += ch == "("
        depth -= ch == ")"
        current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _like(pattern: str):
    regex = "".join(".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern)
    return re.compile(f"^{regex}$", re.IGNORECASE | re.DOTALL)


def _norm(value):
    if isinstance(value, UUID):
        return str(value)
    return value


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.columns = "*"
        self.count_mode = None
        self.filters = []
        self.order_by = []
        self.window = None
        self.on_conflict = "id"
        self.ignore_duplicates = False

    # builders
    def select(self, columns="*", count=None):
        self.columns, self.count_mode = columns, count
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def upsert(self, rows, on_conflict="id", ignore_duplicates=False):
        self.op, self.payload = "upsert", rows
        self.on_conflict, self.ignore_duplicates = on_conflict, ignore_duplicates
        return self

    def update(self, changes):
        self.op, self.payload = "update", changes
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == _norm(value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != _norm(value))
        return self

    def in_(self, column, values):
        wanted = {_norm(v) for v in values}
        self.filters.append(lambda row: row.get(column) in wanted)
        return self

    def ilike(self, column, pattern):
        regex = _like(pattern)
        self.filters.append(lambda row: row.get(column) is not None and bool(regex.match(str(row[column]))))
        return self

    def or_(self, filters):
        checks = []
        for part in filters.split(","):
            column, op, value = part.split(".", 2)
            assert op == "ilike", f"unsupported or_ operator {op}"
            checks.append((column, _like(value)))
        self.filters.append(
            lambda row: any(row.get(c) is not None and regex.match(str(row[c])) for c, regex in checks)
        )
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) >= str(value))
        return self

    def is_(self, column, value):
        if value in (None, "null"):
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is value)
        return self

    def order(self, column, desc=False):
        self.order_by.append((column, desc))
        return self

    def range(self, start, end):
        self.window = (start, end + 1)
        return self

    def limit(self, n):
        self.window = (0, n)
        return self

    # execution
    def _matching(self):
        return [row for row in self.db.tables.setdefault(self.table, []) if all(f(row) for f in self.filters)]

    def _project(self, table, row, columns):
        out = {}
        for col in _split_columns(columns):
            if col == "*":
                out.update(row)
            elif "(" in col:
                alias, rest = col.split(":", 1)
                fk, inner = rest.split("(", 1)
                target = self.db.relations[(table, fk)]
                related = next((r for r in self.db.tables.get(target, []) if r.get("id") == row.get(fk)), None)
                out[alias] = self._project(target, related, inner[:-1]) if related else None
            else:
                out[col] = row.get(col)
        return dict(out)

    async def execute(self):
        rows = self.db.tables.setdefault(self.table, [])
        payload = json.loads(json.dumps(self.payload, default=str)) if self.payload is not None else None

        if self.op == "insert":
            created = [self.db.insert(self.table, r) for r in (payload if isinstance(payload, list) else [payload])]
            return FakeResponse([dict(r) for r in created])

        if self.op == "upsert":
            keys = [k.strip() for k in self.on_conflict.split(",")]
            written = []
            for r in payload if isinstance(payload, list) else [payload]:
                existing = next((x for x in rows if all(x.get(k) == r.get(k) for k in keys)), None)
                if existing is None:
                    written.append(dict(self.db.insert(self.table, r)))
                elif not self.ignore_duplicates:
                    existing.update(r)
                    written.append(dict(existing))
            return FakeResponse(written)

        if self.op == "delete":
            matched = self._matching()
            self.db.tables[self.table] = [r for r in rows if r not in matched]
            return FakeResponse([dict(r) for r in matched])

        if self.op == "update":
            if self.db.before_update:
                self.db.before_update(self.table, payload)
            matched = self._matching()
            for row in matched:
                row.update(payload)
            return FakeResponse([dict(r) for r in matched])

        matched = self._matching()
        if self.db.after_select:
            self.db.after_select(self.table)
        count = len(matched) if self.count_mode else None
        for column, desc in reversed(self.order_by):
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self.window:
            matched = matched[self.window[0]:self.window[1]]
        return FakeResponse([self._project(self.table, r, self.columns) for r in matched], count=count)


class FakeBucket:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    async def upload(self, path, file, file_options=None):
        self.db.uploads[(self.name, path)] = file
        return MagicMock(path=path)


class FakeStorage:
    def __init__(self, db):
        self.db = db

    def from_(self, bucket):
        return FakeBucket(self.db, bucket)


class FakeSupabase:
    relations = {
        ("bookings", "service_id"): "service",
        ("notification_recipient", "notification_id"): "notifications",
    }

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.next_id: dict[str, int] = {}
        self.uploads = {}
        self.before_update = None
        self.after_select = None
        self.storage = FakeStorage(self)
        self.auth = MagicMock()
        self.auth.get_user = AsyncMock()
        self.auth.sign_up = AsyncMock()
        self.auth.sign_in_with_password = AsyncMock()

    def table(self, name):
        return FakeQuery(self, name)

    def insert(self, table, row):
        row = dict(row)
        if row.get("id") is None:
            self.next_id[table] = self.next_id.get(table, 0) + 1
            row["id"] = self.next_id[table]
        self.tables.setdefault(table, []).append(row)
        return row

    def rows(self, table, **where):
        return [r for r in self.tables.get(table, []) if all(r.get(k) == v for k, v in where.items())]


# --- Fixtures ---

@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def client(fake_db):
    app.dependency_overrides[get_supabase] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def login_as():
    def _login(user_id: str, role: str, status: str = "Active"):
        user = CurrentUser(id=user_id, role=role, status=status)
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login


@pytest.fixture
def make_user(fake_db):
    def _make(role="Customer", status="Active", verification_status="Verified", created_at="2026-01-01T00:00:00+00:00"):
        user_id = str(uuid4())
        fake_db.insert("userprofile", {
            "id": user_id,
            "name": f"{role} {user_id[:4]}",
            "email": f"{user_id[:8]}@example.com",
            "role": role,
            "status": status,
            "push_token": None,
            "created_at": created_at,
        })
        if role == "Technician":
            fake_db.insert("technician", {
                "id": user_id,
                "name": f"Tech {user_id[:4]}",
                "phone": None,
                "experience_years": 3,
                "verification_status": verification_status,
                "verified_at": None,
                "id_proof": None,
                "certificate": None,
                "created_at": created_at,
            })
        return user_id

    return _make


@pytest.fixture
def make_service(fake_db):
    def _make(fixed_rate=250.0, name="Pipe Repair", is_active=True):
        return fake_db.insert("service", {
            "name": name,
            "description": None,
            "category": "Plumbing",
            "fixed_rate": fixed_rate,
            "is_active": is_active,
            "created_at": "2026-01-01T00:00:00+00:00",
            "updated_at": None,
        })["id"]

    return _make
