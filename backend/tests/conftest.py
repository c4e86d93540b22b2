"""
Pytest fixtures for fintrack backend tests.

Provides an in-process fake of the hosted project (REST tables under
/rest/v1 and auth under /auth/v1) served through httpx.MockTransport, the
stores wired against it, and a Flask app/test client.
"""

import json
import uuid

import httpx
import pytest

from fintrack import create_app
from fintrack.extensions import db
from fintrack.records import ALL_COLLECTIONS
from fintrack.services.auth_client import AuthClient
from fintrack.services.entity_service import EntityCache
from fintrack.services.remote_client import RemoteClient
from fintrack.services.session_service import SessionStore
from fintrack.time_utils import utcnow


SUPABASE_URL = "https://testproject.supabase.co"
ANON_KEY = "test-anon-key"
ADMIN_EMAIL = "admin@kiosc.com"
ADMIN_PASSWORD = "AdminPass1"

# (table, column, referenced table)
FOREIGN_KEYS = (
    ("Expenses", "supplier", "Suppliers"),
    ("Expenses", "paymentCenter", "PaymentCenters"),
    ("Expenses", "paymentType", "PaymentTypes"),
    ("Expenses", "program", "Programs"),
    ("JournalLines", "journalId", "JournalEntries"),
    ("PaymentCenterBudgets", "paymentCenterId", "PaymentCenters"),
)

NOT_NULL = {
    "Suppliers": ("code", "name"),
    "Expenses": ("date", "amount"),
    "JournalLines": ("journalId",),
    "PaymentCenterBudgets": ("paymentCenterId", "year"),
    "Users": ("email",),
    "AuditLog": ("entityType", "action"),
}

UNIQUE = {
    "Suppliers": ("code",),
    "Users": ("email",),
}


def _json(status: int, body=None) -> httpx.Response:
    if body is None:
        return httpx.Response(status)
    return httpx.Response(status, json=body)


class FakeBackend:
    """
    Minimal hosted project: PostgREST-style tables and GoTrue-style auth.

    - Equality filters (eq., is.null), select=id|*, limit
    - Primary key, unique, not-null and foreign-key (restrict) enforcement
    - Every request is logged in `requests`
    - `failures[(METHOD, table)] = (status, body)` forces an error response
    - `auth_failures[path] = (status, body)` does the same for an auth path
    - `missing_tables` answer like a table that does not exist
    - `offline = True` raises a transport error for every call
    """

    def __init__(self, anon_key: str = ANON_KEY):
        self.anon_key = anon_key
        self.tables = {name: [] for name in ALL_COLLECTIONS}
        self.missing_tables = set()
        self.failures = {}
        self.auth_failures = {}
        self.requests = []
        self.offline = False
        self.auth_offline = False
        self.root_status = 200
        self.token_ttl = 3600

        self.auth_users = {}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.recoveries = []
        self.signed_out = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def seed(self, table: str, *rows) -> None:
        for row in rows:
            self.tables[table].append(dict(row))

    def rows(self, table: str) -> list:
        return [dict(row) for row in self.tables[table]]

    def find(self, table: str, row_id):
        for row in self.tables[table]:
            if str(row.get("id")) == str(row_id):
                return row
        return None

    def add_auth_user(self, email: str, password: str, *, app_metadata=None, user_metadata=None) -> dict:
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "password": password,
            "app_metadata": dict(app_metadata or {"provider": "email"}),
            "user_metadata": dict(user_metadata or {}),
        }
        self.auth_users[email] = user
        return self._public_user(user)

    def revoke_refresh_tokens(self) -> None:
        self.refresh_tokens.clear()

    def table_calls(self, method: str | None = None, table: str | None = None) -> list:
        calls = []
        for request in self.requests:
            path = request.url.path
            if not path.startswith("/rest/v1/"):
                continue
            if method and request.method != method:
                continue
            if table and path != f"/rest/v1/{table}":
                continue
            calls.append(request)
        return calls

    def auth_calls(self, suffix: str) -> list:
        return [r for r in self.requests if r.url.path == f"/auth/v1{suffix}"]

    def clear_log(self) -> None:
        self.requests.clear()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.offline or (self.auth_offline and path.startswith("/auth/v1/")):
            raise httpx.ConnectError("Connection refused", request=request)

        if path == "/":
            return _json(self.root_status, {"status": self.root_status})
        if path.startswith("/auth/v1/"):
            return self._auth(request, path[len("/auth/v1"):])
        if path.startswith("/rest/v1"):
            if request.headers.get("apikey") != self.anon_key:
                return _json(401, {"message": "Invalid API key", "hint": "Double check your API key."})
            table = path[len("/rest/v1"):].strip("/")
            if not table:
                return _json(200, {"swagger": "2.0"})
            return self._rest(request, table)
        return _json(404, {"message": "Not found"})

    # ------------------------------------------------------------------
    # REST tables
    # ------------------------------------------------------------------

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        if table not in self.tables or table in self.missing_tables:
            return _json(404, {
                "code": "PGRST205",
                "message": f"Could not find the table 'public.{table}' in the schema cache",
                "details": None,
                "hint": None,
            })

        forced = self.failures.get((request.method, table))
        if forced is not None:
            status, body = forced
            return _json(status, body)

        params = dict(request.url.params)
        filters = {k: v for k, v in params.items() if k not in ("select", "order", "limit")}
        body = json.loads(request.content) if request.content else None

        if request.method == "GET":
            rows = [row for row in self.tables[table] if self._matches(row, filters)]
            if "limit" in params:
                rows = rows[: int(params["limit"])]
            if params.get("select", "*") != "*":
                columns = params["select"].split(",")
                rows = [{c: row.get(c) for c in columns} for row in rows]
            return _json(200, rows)

        if request.method == "POST":
            return self._insert(table, body if isinstance(body, list) else [body])

        if request.method == "PATCH":
            return self._update(table, filters, body or {})

        if request.method == "DELETE":
            return self._delete(table, filters)

        return _json(405, {"message": "Method not allowed"})

    @staticmethod
    def _matches(row: dict, filters: dict) -> bool:
        for column, expression in filters.items():
            operator, _, value = expression.partition(".")
            if operator == "eq" and str(row.get(column)) != value:
                return False
            if operator == "is" and value == "null" and row.get(column) is not None:
                return False
        return True

    def _violation(self, table: str, row: dict, *, exclude_id=None):
        for column in NOT_NULL.get(table, ()):
            if row.get(column) in (None, ""):
                return _json(400, {
                    "code": "23502",
                    "message": f'null value in column "{column}" of relation "{table}" violates not-null constraint',
                    "details": None,
                    "hint": None,
                })
        for column in ("id",) + UNIQUE.get(table, ()):
            value = row.get(column)
            if value is None:
                continue
            for other in self.tables[table]:
                if str(other.get("id")) == str(exclude_id):
                    continue
                if str(other.get(column)) == str(value):
                    name = f"{table}_pkey" if column == "id" else f"{table}_{column}_key"
                    return _json(409, {
                        "code": "23505",
                        "message": f'duplicate key value violates unique constraint "{name}"',
                        "details": f"Key ({column})=({value}) already exists.",
                        "hint": None,
                    })
        for source, column, target in FOREIGN_KEYS:
            if source != table or row.get(column) in (None, ""):
                continue
            if self.find(target, row[column]) is None:
                return _json(409, {
                    "code": "23503",
                    "message": f'insert or update on table "{table}" violates foreign key constraint "{table}_{column}_fkey"',
                    "details": f'Key ({column})=({row[column]}) is not present in table "{target}".',
                    "hint": None,
                })
        return None

    def _insert(self, table: str, rows: list) -> httpx.Response:
        staged = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            error = self._violation(table, row)
            if error is None:
                for other in staged:
                    if str(other["id"]) == str(row["id"]):
                        error = _json(409, {"code": "23505", "message": "duplicate key value violates unique constraint"})
            if error is not None:
                return error
            staged.append(row)
        self.tables[table].extend(staged)
        return _json(201, [dict(row) for row in staged])

    def _update(self, table: str, filters: dict, updates: dict) -> httpx.Response:
        updated = []
        for row in self.tables[table]:
            if not self._matches(row, filters):
                continue
            candidate = {**row, **updates}
            error = self._violation(table, candidate, exclude_id=row.get("id"))
            if error is not None:
                return error
            updated.append((row, candidate))
        for row, candidate in updated:
            row.clear()
            row.update(candidate)
        return _json(200, [dict(candidate) for _, candidate in updated])

    def _delete(self, table: str, filters: dict) -> httpx.Response:
        doomed = [row for row in self.tables[table] if self._matches(row, filters)]
        for source, column, target in FOREIGN_KEYS:
            if target != table:
                continue
            for row in doomed:
                if any(str(ref.get(column)) == str(row.get("id")) for ref in self.tables[source]):
                    return _json(409, {
                        "code": "23503",
                        "message": (
                            f'update or delete on table "{table}" violates foreign key constraint '
                            f'"{source}_{column}_fkey" on table "{source}"'
                        ),
                        "details": f'Key (id)=({row.get("id")}) is still referenced from table "{source}".',
                        "hint": None,
                    })
        ids = {id(row) for row in doomed}
        self.tables[table] = [row for row in self.tables[table] if id(row) not in ids]
        return _json(204)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    @staticmethod
    def _public_user(user: dict) -> dict:
        return {key: value for key, value in user.items() if key != "password"} | {
            "identities": [{"provider": "email"}],
        }

    def _issue_session(self, email: str) -> dict:
        access = f"access-{uuid.uuid4().hex}"
        refresh = f"refresh-{uuid.uuid4().hex}"
        self.access_tokens[access] = email
        self.refresh_tokens[refresh] = email
        return {
            "access_token": access,
            "refresh_token": refresh,
            "token_type": "bearer",
            "expires_in": self.token_ttl,
            "expires_at": int(utcnow().timestamp()) + self.token_ttl,
            "user": self._public_user(self.auth_users[email]),
        }

    def _bearer_email(self, request: httpx.Request):
        header = request.headers.get("Authorization", "")
        token = header.split(" ", 1)[1] if " " in header else ""
        return self.access_tokens.get(token)

    def _auth(self, request: httpx.Request, path: str) -> httpx.Response:
        forced = self.auth_failures.get(path)
        if forced is not None:
            return _json(*forced)
        body = json.loads(request.content) if request.content else {}

        if path == "/signup" and request.method == "POST":
            email = body.get("email")
            if email in self.auth_users:
                return _json(422, {"code": 422, "error_code": "user_already_exists", "msg": "User already registered"})
            if len(body.get("password") or "") < 6:
                return _json(422, {"code": 422, "error_code": "weak_password", "msg": "Password should be at least 6 characters."})
            user = self.add_auth_user(email, body["password"], user_metadata=body.get("data"))
            return _json(200, user)

        if path == "/token" and request.method == "POST":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                user = self.auth_users.get(body.get("email"))
                if user is None or user["password"] != body.get("password"):
                    return _json(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"})
                return _json(200, self._issue_session(user["email"]))
            if grant == "refresh_token":
                email = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if email is None:
                    return _json(400, {"error": "invalid_grant", "error_description": "Invalid Refresh Token: Refresh Token Not Found"})
                return _json(200, self._issue_session(email))
            return _json(400, {"error": "unsupported_grant_type"})

        if path == "/logout" and request.method == "POST":
            email = self._bearer_email(request)
            self.signed_out.append(email)
            return _json(204)

        if path == "/recover" and request.method == "POST":
            self.recoveries.append((body.get("email"), request.url.params.get("redirect_to")))
            return _json(200, {})

        if path == "/user" and request.method == "PUT":
            email = self._bearer_email(request)
            if email is None:
                return _json(401, {"code": 401, "error_code": "bad_jwt", "msg": "invalid JWT"})
            user = self.auth_users[email]
            if body.get("password"):
                user["password"] = body["password"]
            if body.get("data"):
                user["user_metadata"].update(body["data"])
            return _json(200, self._public_user(user))

        return _json(404, {"msg": "Not found"})


class MemoryStorage:
    """Dict-backed stand-in for DatabaseStorage in store-level tests."""

    def __init__(self, items=None):
        self.items = dict(items or {})

    def get_item(self, key):
        return self.items.get(key)

    def set_item(self, key, value):
        self.items[key] = value

    def remove_item(self, key):
        self.items.pop(key, None)

    def keys(self):
        return sorted(self.items)


def seed_reference_data(backend: FakeBackend) -> None:
    backend.seed(
        "PaymentCenters",
        {"id": "1", "name": "GDC", "description": "GDC Payment Center"},
        {"id": "2", "name": "VCES", "description": "VCES Payment Center"},
        {"id": "3", "name": "Commercial", "description": "Commercial Payment Center"},
        {"id": "4", "name": "Operation", "description": "Operation Payment Center"},
    )
    backend.seed(
        "PaymentTypes",
        {"id": "1", "name": "PO"},
        {"id": "2", "name": "Credit Card"},
        {"id": "3", "name": "Activiti"},
    )
    backend.seed(
        "ExpenseStatus",
        {"id": "1", "name": "Committed"},
        {"id": "2", "name": "Invoiced"},
        {"id": "3", "name": "Paid"},
    )
    backend.seed(
        "Programs",
        {"id": "PROG1", "name": "Program 1", "status": "Active"},
        {"id": "PROG2", "name": "Program 2", "status": "Active"},
    )
    backend.seed(
        "Suppliers",
        {"id": "SUP001", "code": "SUP001", "name": "Tech Solutions Inc", "status": "Active"},
        {"id": "SUP002", "code": "SUP002", "name": "Office Supplies Co", "status": "Active"},
    )


def seed_users(backend: FakeBackend) -> None:
    admin = backend.add_auth_user(ADMIN_EMAIL, ADMIN_PASSWORD)
    manager = backend.add_auth_user("john@kiosc.com", "ManagerPass1")
    viewer = backend.add_auth_user("viewer@kiosc.com", "ViewerPass1")
    backend.seed(
        "Users",
        {"id": admin["id"], "username": "admin", "name": "Administrator", "email": ADMIN_EMAIL,
         "role": "admin", "permissions": "admin,approve,delete,read,write", "status": "active"},
        {"id": manager["id"], "username": "manager", "name": "John Manager", "email": "john@kiosc.com",
         "role": "manager", "permissions": "read,write,approve", "status": "active"},
        {"id": viewer["id"], "username": "viewer", "name": "View Only", "email": "viewer@kiosc.com",
         "role": "viewer", "permissions": "read", "status": "active"},
    )


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def backend():
    """Fake hosted project with reference data and three users."""
    fake = FakeBackend()
    seed_reference_data(fake)
    seed_users(fake)
    return fake


@pytest.fixture
def empty_backend():
    return FakeBackend()


@pytest.fixture
def remote(backend):
    client = RemoteClient(SUPABASE_URL, ANON_KEY, transport=backend.transport())
    yield client
    client.close()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def auth(remote, storage):
    return AuthClient(remote, storage=storage)


@pytest.fixture
def session_store(auth, remote, storage):
    store = SessionStore(auth, remote, storage, admin_email=ADMIN_EMAIL)
    yield store
    store.close()


@pytest.fixture
def cache(remote, session_store):
    entity_cache = EntityCache(remote, actor_provider=session_store.current_identity)
    entity_cache.initialize_data()
    return entity_cache


@pytest.fixture
def signed_in(session_store):
    """Session store signed in as the administrator."""
    assert session_store.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    return session_store


def make_app(backend, **overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SUPABASE_URL': SUPABASE_URL,
        'SUPABASE_ANON_KEY': ANON_KEY,
        'ADMIN_EMAIL': ADMIN_EMAIL,
        'SESSION_RECONCILER_ENABLED': False,
        'BREAK_GLASS_ENABLED': False,
    }
    config.update(overrides)
    return create_app(config, transport=backend.transport())


@pytest.fixture
def app(backend):
    """Create application for testing."""
    app = make_app(backend)
    yield app
    app.extensions["fintrack"].shutdown()
    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def login(client, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD):
    """Helper to sign the workspace in through the API."""
    return client.post('/api/auth/login', json={'email': email, 'password': password})


@pytest.fixture
def admin_client(client):
    response = login(client)
    assert response.status_code == 200, response.get_json()
    return client
