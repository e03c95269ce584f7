"""Thin client for the hosted data platform (auth, tables, storage buckets)."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from ekinpanel import settings
from ekinpanel.models import Asset, LogEntry, Role, parse_asset, parse_assets, parse_logs

log = logging.getLogger("uvicorn.error")

LIST_COLUMNS = "uid,customer_name,customer_phone,product_type,install_date,job_type,warranty_end,created_at"
_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9._-]")


class StoreError(Exception):
    """Raised when the hosted store rejects a request; ``str()`` is the store's own message."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(StoreError):
    """Raised for rejected credentials or an expired session."""


@dataclass
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None


@dataclass
class ContractUpload:
    filename: str
    data: bytes
    content_type: str = "application/pdf"


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME.sub("_", name or "")


def contract_object_path(uid: str, filename: str, *, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{uid.strip()}/contract_{stamp}_{sanitize_filename(filename)}"


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = (response.text or "").strip()
    return text or f"HTTP {response.status_code}"


class PanelStore:
    """Request/response wrapper over the platform's REST endpoints.

    One instance per request: it carries the signed-in user's access token so
    row-level security on the platform decides what the user may read or
    change. Nothing is cached between calls.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SUPABASE_ANON_KEY
        self.access_token = access_token
        self.http = http or requests.Session()
        self.timeout = timeout or settings.STORE_TIMEOUT_SEC
        if not self.base_url or not self.api_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, *, error_cls=StoreError, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = self._headers(kwargs.pop("headers", None))
        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            log.warning("Store request failed method=%s path=%s error=%s", method, path, exc)
            raise error_cls(str(exc)) from exc
        if response.status_code >= 400:
            message = _error_message(response)
            log.warning("Store rejected method=%s path=%s status=%s message=%s", method, path, response.status_code, message)
            raise error_cls(message, response.status_code)
        return response

    def _rows(self, response: requests.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return [row for row in data or [] if isinstance(row, dict)]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------
    def _session_from_payload(self, payload: Dict[str, Any]) -> AuthSession:
        user = payload.get("user") or {}
        access_token = payload.get("access_token")
        if not access_token or not user.get("id"):
            raise AuthError("Oturum açılamadı.")
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])
        return AuthSession(
            user_id=str(user["id"]),
            email=str(user.get("email") or ""),
            access_token=str(access_token),
            refresh_token=str(payload.get("refresh_token") or ""),
            expires_at=int(expires_at) if expires_at is not None else None,
        )

    def sign_in(self, email: str, password: str) -> AuthSession:
        response = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            error_cls=AuthError,
        )
        session = self._session_from_payload(response.json())
        self.access_token = session.access_token
        return session

    def refresh(self, refresh_token: str) -> AuthSession:
        response = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            error_cls=AuthError,
        )
        session = self._session_from_payload(response.json())
        self.access_token = session.access_token
        return session

    def sign_out(self) -> None:
        if not self.access_token:
            return
        self._request("POST", "/auth/v1/logout", error_cls=AuthError)
        self.access_token = None

    def get_role(self, user_id: str) -> Role:
        response = self._request(
            "GET",
            f"/rest/v1/{settings.PROFILES_TABLE}",
            params={"select": "role", "user_id": f"eq.{user_id}", "limit": "1"},
        )
        rows = self._rows(response)
        if not rows:
            return Role.OFFICE
        return Role.parse(rows[0].get("role"))

    def set_role(self, user_id: str, role: Role) -> None:
        self._request(
            "POST",
            f"/rest/v1/{settings.PROFILES_TABLE}",
            params={"on_conflict": "user_id"},
            json={"user_id": user_id, "role": role.value},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------
    def list_assets(self, columns: str = LIST_COLUMNS) -> List[Asset]:
        response = self._request(
            "GET",
            f"/rest/v1/{settings.ASSETS_TABLE}",
            params={"select": columns, "order": "created_at.desc"},
        )
        return parse_assets(self._rows(response))

    def get_asset(self, uid: str) -> Optional[Asset]:
        response = self._request(
            "GET",
            f"/rest/v1/{settings.ASSETS_TABLE}",
            params={"select": "*", "uid": f"eq.{uid}", "limit": "1"},
        )
        rows = self._rows(response)
        if not rows:
            return None
        return parse_asset(rows[0])

    def insert_asset(self, payload: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/rest/v1/{settings.ASSETS_TABLE}",
            json=payload,
            headers={"Prefer": "return=minimal"},
        )

    def update_asset(self, uid: str, payload: Dict[str, Any]) -> None:
        self._request(
            "PATCH",
            f"/rest/v1/{settings.ASSETS_TABLE}",
            params={"uid": f"eq.{uid}"},
            json=payload,
            headers={"Prefer": "return=minimal"},
        )

    def delete_asset(self, uid: str) -> None:
        self._request("DELETE", f"/rest/v1/{settings.ASSETS_TABLE}", params={"uid": f"eq.{uid}"})

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------
    def list_logs(self, uid: str, limit: Optional[int] = None) -> List[LogEntry]:
        response = self._request(
            "GET",
            f"/rest/v1/{settings.LOGS_TABLE}",
            params={
                "select": "*",
                "uid": f"eq.{uid}",
                "order": "created_at.desc",
                "limit": str(limit or settings.LOG_LIMIT),
            },
        )
        return parse_logs(self._rows(response))

    def get_log(self, uid: str, log_id: int) -> Optional[LogEntry]:
        response = self._request(
            "GET",
            f"/rest/v1/{settings.LOGS_TABLE}",
            params={"select": "*", "uid": f"eq.{uid}", "id": f"eq.{int(log_id)}", "limit": "1"},
        )
        rows = parse_logs(self._rows(response))
        return rows[0] if rows else None

    def insert_log(self, payload: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/rest/v1/{settings.LOGS_TABLE}",
            json=payload,
            headers={"Prefer": "return=minimal"},
        )

    def delete_logs(self, uid: str) -> None:
        self._request("DELETE", f"/rest/v1/{settings.LOGS_TABLE}", params={"uid": f"eq.{uid}"})

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def upload(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool = True) -> str:
        self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path, safe='/')}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )
        return path

    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        self._request("DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": list(paths)})

    def signed_url(self, bucket: str, path: str, *, expires_in: Optional[int] = None) -> str:
        response = self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{quote(path, safe='/')}",
            json={"expiresIn": int(expires_in or settings.SIGNED_URL_TTL)},
        )
        payload = response.json() if response.content else {}
        signed = None
        if isinstance(payload, dict):
            signed = payload.get("signedURL") or payload.get("signedUrl")
        if not signed:
            raise StoreError("Bağlantı oluşturulamadı.")
        if signed.startswith("http://") or signed.startswith("https://"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"

    # ------------------------------------------------------------------
    # Composite flows
    # ------------------------------------------------------------------
    def _upload_contract(self, uid: str, contract: ContractUpload) -> str:
        path = contract_object_path(uid, contract.filename)
        try:
            self.upload(settings.CONTRACTS_BUCKET, path, contract.data, content_type=contract.content_type)
        except StoreError as exc:
            raise StoreError(f"PDF yüklenemedi: {exc.message}", exc.status_code) from exc
        return path

    def _discard_contract(self, path: str) -> None:
        try:
            self.remove(settings.CONTRACTS_BUCKET, [path])
        except StoreError:
            log.exception("Failed to remove orphaned contract path=%s", path)

    def create_asset(self, payload: Dict[str, Any], contract: Optional[ContractUpload] = None) -> None:
        """Upload the contract (if any), then insert the row; undo the upload if the insert fails."""
        uploaded: Optional[str] = None
        if contract is not None:
            uploaded = self._upload_contract(payload["uid"], contract)
            payload = {**payload, "contract_pdf_path": uploaded}
        try:
            self.insert_asset(payload)
        except StoreError:
            if uploaded:
                self._discard_contract(uploaded)
            raise

    def save_asset(self, uid: str, payload: Dict[str, Any], contract: Optional[ContractUpload] = None) -> None:
        uploaded: Optional[str] = None
        if contract is not None:
            uploaded = self._upload_contract(uid, contract)
            payload = {**payload, "contract_pdf_path": uploaded}
        try:
            self.update_asset(uid, payload)
        except StoreError:
            if uploaded:
                self._discard_contract(uploaded)
            raise

    def delete_asset_cascade(self, uid: str) -> None:
        try:
            self.delete_logs(uid)
        except StoreError as exc:
            raise StoreError(f"Log silme hatası: {exc.message}", exc.status_code) from exc
        try:
            self.delete_asset(uid)
        except StoreError as exc:
            raise StoreError(f"Kayıt silme hatası: {exc.message}", exc.status_code) from exc


__all__ = [
    "AuthError",
    "AuthSession",
    "ContractUpload",
    "LIST_COLUMNS",
    "PanelStore",
    "StoreError",
    "contract_object_path",
    "sanitize_filename",
]
