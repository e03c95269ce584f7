from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from ekinpanel.auth_tokens import TokenError, decode_access_token, token_expires_soon
from ekinpanel.models import Role
from ekinpanel.store import AuthSession, PanelStore, StoreError

log = logging.getLogger("uvicorn.error")

Refresher = Callable[[str], AuthSession]


class SessionRequired(Exception):
    """Raised by the guard when a protected view is requested without a session."""


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    email: str
    access_token: str
    role: Role = Role.OFFICE

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def can_delete(self) -> bool:
        return self.is_admin


def start_session(request: Request, auth: AuthSession, role: Role) -> SessionContext:
    request.session.clear()
    request.session["user_id"] = auth.user_id
    request.session["email"] = auth.email
    request.session["access_token"] = auth.access_token
    request.session["refresh_token"] = auth.refresh_token
    request.session["role"] = role.value
    return SessionContext(user_id=auth.user_id, email=auth.email, access_token=auth.access_token, role=role)


def end_session(request: Request) -> None:
    request.session.clear()


def _refresh_with_store(refresh_token: str) -> AuthSession:
    return PanelStore().refresh(refresh_token)


def current_session(request: Request, refresher: Optional[Refresher] = None) -> Optional[SessionContext]:
    """Build the session context from the cookie, refreshing a stale token once."""
    access_token = request.session.get("access_token")
    if not access_token:
        return None
    try:
        claims = decode_access_token(access_token)
        stale = token_expires_soon(claims)
    except TokenError:
        claims = None
        stale = True
    if stale:
        refresh_token = request.session.get("refresh_token")
        if not refresh_token:
            request.session.clear()
            return None
        try:
            renewed = (refresher or _refresh_with_store)(refresh_token)
        except StoreError as exc:
            log.info("Session refresh failed user=%s error=%s", request.session.get("email"), exc)
            request.session.clear()
            return None
        request.session["access_token"] = renewed.access_token
        if renewed.refresh_token:
            request.session["refresh_token"] = renewed.refresh_token
        access_token = renewed.access_token
        try:
            claims = decode_access_token(access_token)
        except TokenError:
            request.session.clear()
            return None
    user_id = str(claims.get("sub"))
    if request.session.get("user_id") != user_id:
        request.session.clear()
        return None
    return SessionContext(
        user_id=user_id,
        email=str(request.session.get("email") or claims.get("email") or ""),
        access_token=access_token,
        role=Role.parse(request.session.get("role")),
    )


def require_session(request: Request) -> SessionContext:
    """The one guard every protected view goes through."""
    ctx = getattr(request.state, "panel_session", None)
    if isinstance(ctx, SessionContext):
        return ctx
    ctx = current_session(request)
    if ctx is None:
        raise SessionRequired()
    request.state.panel_session = ctx
    return ctx


__all__ = [
    "SessionContext",
    "SessionRequired",
    "current_session",
    "end_session",
    "require_session",
    "start_session",
]
