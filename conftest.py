from __future__ import annotations

import json
import time
from datetime import date
from typing import Any, Dict, List, Optional

import jwt
import pytest
import requests
from fastapi.testclient import TestClient

from ekinpanel import settings
from ekinpanel.geocode import GeocodeResult
from ekinpanel.models import Asset, LogEntry, Role, parse_asset, parse_log
from ekinpanel.store import AuthError, AuthSession, StoreError

TEST_JWT_SECRET = "ekin-panel-test-secret-0123456789abcdef"


def make_token(user_id: str = "user-1", email: str = "ofis@ekinotomasyon.com.tr", *, expires_in: int = 3600) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def make_response(status_code: int = 200, payload: Any = None, *, text: Optional[str] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if text is not None:
        response._content = text.encode("utf-8")
    elif payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
    else:
        response._content = b""
    response.encoding = "utf-8"
    return response


class RecordingHttp:
    """Stands in for ``requests.Session``; replies are queued in call order."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def _next(self) -> requests.Response:
        if not self.responses:
            raise AssertionError("unexpected HTTP call")
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self._next()

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": "GET", "url": url, **kwargs})
        return self._next()


def asset(uid: str, **fields: Any) -> Asset:
    return parse_asset({"uid": uid, **fields})


class FakeStore:
    """In-memory replacement for ``PanelStore`` used through dependency overrides."""

    def __init__(self) -> None:
        self.access_token: Optional[str] = None
        self.assets: List[Asset] = []
        self.logs: List[LogEntry] = []
        self.roles: Dict[str, Role] = {}
        self.users: Dict[str, Dict[str, str]] = {}
        self.created: List[Dict[str, Any]] = []
        self.saved: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.inserted_logs: List[Dict[str, Any]] = []
        self.fail_with: Optional[str] = None
        self.signed_out = False

    def add_user(self, email: str, password: str, role: Role = Role.OFFICE, user_id: Optional[str] = None) -> str:
        user_id = user_id or f"user-{len(self.users) + 1}"
        self.users[email] = {"password": password, "user_id": user_id}
        self.roles[user_id] = role
        return user_id

    def sign_in(self, email: str, password: str) -> AuthSession:
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise AuthError("Invalid login credentials", 400)
        user_id = user["user_id"]
        return AuthSession(
            user_id=user_id,
            email=email,
            access_token=make_token(user_id, email),
            refresh_token="refresh-" + user_id,
        )

    def get_role(self, user_id: str) -> Role:
        return self.roles.get(user_id, Role.OFFICE)

    def sign_out(self) -> None:
        self.signed_out = True

    def _maybe_fail(self) -> None:
        if self.fail_with:
            raise StoreError(self.fail_with, 400)

    def list_assets(self) -> List[Asset]:
        self._maybe_fail()
        return list(self.assets)

    def get_asset(self, uid: str) -> Optional[Asset]:
        for item in self.assets:
            if item.uid == uid:
                return item
        return None

    def create_asset(self, payload: Dict[str, Any], contract: Any = None) -> None:
        self._maybe_fail()
        self.created.append({"payload": payload, "contract": contract})
        self.assets.insert(0, parse_asset(payload))

    def save_asset(self, uid: str, payload: Dict[str, Any], contract: Any = None) -> None:
        self._maybe_fail()
        self.saved.append({"uid": uid, "payload": payload, "contract": contract})

    def delete_asset_cascade(self, uid: str) -> None:
        self._maybe_fail()
        self.deleted.append(uid)
        self.assets = [item for item in self.assets if item.uid != uid]

    def list_logs(self, uid: str, limit: Optional[int] = None) -> List[LogEntry]:
        return [entry for entry in self.logs if entry.uid == uid][: limit or settings.LOG_LIMIT]

    def get_log(self, uid: str, log_id: int) -> Optional[LogEntry]:
        for entry in self.logs:
            if entry.uid == uid and entry.id == log_id:
                return entry
        return None

    def insert_log(self, payload: Dict[str, Any]) -> None:
        self._maybe_fail()
        self.inserted_logs.append(payload)
        self.logs.insert(0, parse_log(payload))

    def signed_url(self, bucket: str, path: str, *, expires_in: Optional[int] = None) -> str:
        return f"https://files.example.test/{bucket}/{path}?token=signed"


class FakeGateway:
    def __init__(self, results: Optional[List[GeocodeResult]] = None) -> None:
        self.results = results or []
        self.queries: List[str] = []
        self.lookup_error: Optional[Exception] = None

    def proxy_search(self, query: str, limit: int = settings.GEOCODE_PROXY_LIMIT) -> List[GeocodeResult]:
        self.queries.append(query)
        if len((query or "").strip()) < settings.GEOCODE_MIN_QUERY:
            return []
        return [item for item in self.results if item.is_valid][:limit]

    def lookup(self, query: str) -> Optional[GeocodeResult]:
        self.queries.append(query)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.results[0] if self.results else None


@pytest.fixture
def today() -> date:
    return date(2026, 3, 10)


@pytest.fixture
def fake_store() -> FakeStore:
    store = FakeStore()
    store.add_user("ofis@ekinotomasyon.com.tr", "ofis-pass", Role.OFFICE, user_id="office-1")
    store.add_user("admin@ekinotomasyon.com.tr", "admin-pass", Role.ADMIN, user_id="admin-1")
    return store


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway([GeocodeResult("Kızılay, Çankaya, Ankara", 39.9208, 32.8541)])


@pytest.fixture
def client(monkeypatch, fake_store, fake_gateway):
    from ekinpanel import main

    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    main.app.dependency_overrides[main.get_auth_store] = lambda: fake_store
    main.app.dependency_overrides[main.get_store] = lambda: fake_store
    main.app.dependency_overrides[main.get_gateway] = lambda: fake_gateway
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def login(test_client: TestClient, email: str = "ofis@ekinotomasyon.com.tr", password: str = "ofis-pass"):
    return test_client.post("/login", data={"email": email, "password": password}, follow_redirects=False)
