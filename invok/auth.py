"""Logging in to the platform and keeping the session in a local file."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import requests

from invok import host_manager

AUTH_FILE = ".serverless-cli-auth"


class AuthError(Exception):
    """A failed login, registration or session lookup."""

    def __init__(self, message: str, kind: str = "Authentication") -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind} error: {self.message}"


@dataclass(frozen=True)
class AuthSession:
    """The token and identity of the logged-in user."""

    token: str
    user_uuid: str
    email: str


def _require_str(data: Any, key: str) -> str:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object holding {key!r}")
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def auth_file_path() -> Path:
    """Where the session is stored: the working directory in Docker, else the home directory."""
    if os.environ.get("ENV", "") == "DOCKER":
        return Path(".") / AUTH_FILE
    try:
        home = Path.home()
    except RuntimeError:
        home = Path(".")
    return home / AUTH_FILE


def save_session(session: AuthSession) -> None:
    """Write the session to the auth file as pretty-printed JSON."""
    serialized = json.dumps(asdict(session), indent=2)
    try:
        auth_file_path().write_text(serialized, encoding="utf-8")
    except OSError as exc:
        raise AuthError(str(exc), "IO") from exc


def load_session() -> AuthSession:
    """Read the stored session; raises AuthError when not logged in."""
    path = auth_file_path()
    if not path.exists():
        raise AuthError("Not logged in. Please run 'cli login' first.")
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AuthError(str(exc), "IO") from exc
    try:
        data = json.loads(contents)
        return AuthSession(
            token=_require_str(data, "token"),
            user_uuid=_require_str(data, "user_uuid"),
            email=_require_str(data, "email"),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthError(str(exc), "JSON") from exc


def _authenticate(url: str, email: str, password: str) -> AuthSession:
    try:
        response = requests.post(url, json={"email": email, "password": password})
    except requests.RequestException as exc:
        raise AuthError(str(exc), "Network") from exc

    if not 200 <= response.status_code < 300:
        raise AuthError(response.text)

    try:
        payload = json.loads(response.text)
        user = payload["user"]
        session = AuthSession(
            token=_require_str(payload, "token"),
            user_uuid=_require_str(user, "uuid"),
            email=_require_str(user, "email"),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthError(str(exc), "JSON") from exc

    save_session(session)
    return session


def register(email: str, password: str) -> AuthSession:
    """Create an account, store the resulting session and return it."""
    return _authenticate(host_manager.auth_register_url(), email, password)


def login(email: str, password: str) -> AuthSession:
    """Log in, store the resulting session and return it."""
    return _authenticate(host_manager.auth_login_url(), email, password)


def logout() -> None:
    """Remove the stored session, if any."""
    path = auth_file_path()
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise AuthError(str(exc), "IO") from exc