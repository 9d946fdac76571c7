from collections.abc import Callable
from http.cookies import CookieError, SimpleCookie
from urllib.parse import parse_qs

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.security import decode_access_token
from app.db.models import User
from app.db.session import SessionLocal
from app.services.discussion_service import ParticipantIdentity


def _strip_bearer(token: object) -> str | None:
    if not isinstance(token, str):
        return None
    token = token.strip()
    if token.lower().startswith("bearer "):
        token = token.split(" ", 1)[1].strip()
    return token or None


def _cookie_token(environ: dict, cookie_name: str) -> str | None:
    raw_cookie = environ.get("HTTP_COOKIE", "")
    if not isinstance(raw_cookie, str) or not raw_cookie:
        return None
    cookie = SimpleCookie()
    try:
        cookie.load(raw_cookie)
    except CookieError:
        return None
    morsel = cookie.get(cookie_name)
    return morsel.value if morsel and morsel.value else None


class SessionAuthenticator:
    """Resolves a connection's credential to a participant identity.

    Never raises for a missing or invalid credential; the connection is then
    anonymous and ``None`` is returned.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def resolve_token(self, environ: dict, auth: dict | None) -> str | None:
        settings = get_settings()
        token = _strip_bearer(auth.get("token")) if isinstance(auth, dict) else None
        if not token:
            token = _strip_bearer(environ.get("HTTP_AUTHORIZATION"))
        if not token:
            token = _cookie_token(environ, settings.access_token_cookie_name)
        if not token and settings.websocket_allow_query_token:
            query_token = parse_qs(environ.get("QUERY_STRING", "")).get("token", [None])[0]
            token = _strip_bearer(query_token)
        return token

    def identity_from_token(self, token: str | None) -> ParticipantIdentity | None:
        token = _strip_bearer(token)
        if not token:
            return None
        user_id = decode_access_token(token)
        if not user_id:
            return None
        db = self._session_factory()
        try:
            user = db.get(User, user_id)
            if not user:
                return None
            return ParticipantIdentity(user_id=user.id, nickname=user.nickname)
        finally:
            db.close()

    def authenticate(self, environ: dict, auth: dict | None = None) -> ParticipantIdentity | None:
        return self.identity_from_token(self.resolve_token(environ, auth))
