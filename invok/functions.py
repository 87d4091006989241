"""Listing deployed functions and describing where they are served."""

from __future__ import annotations

import json
from typing import Any, Iterable

import requests

from invok import host_manager
from invok.auth import AuthError, load_session

REQUEST_TIMEOUT_SECS = 120

_BORDER = "+--------------------------------------+----------------------+---------+"
_HEADER = "| UUID                                 | Name                 | Runtime |"


class FunctionError(Exception):
    """A failed operation on serverless functions."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


def _api_error(response: requests.Response) -> FunctionError:
    status = f"{response.status_code} {response.reason or ''}".strip()
    return FunctionError(
        "Compression error", f"API error: Status code {status}. {response.text}"
    )


def _bearer_header(token: str) -> dict[str, str]:
    value = f"Bearer {token}"
    if any((ch < " " and ch != "\t") or ch == "\x7f" for ch in value):
        raise FunctionError("Compression error", "Invalid token format")
    return {"Authorization": value}


def _field(function: Any, key: str) -> str:
    if isinstance(function, dict):
        value = function.get(key)
        if isinstance(value, str):
            return value
    return "N/A"


def format_function_table(functions: Iterable[Any]) -> str:
    """Render functions as a text table of uuid, name and runtime."""
    lines = [_BORDER, _HEADER, _BORDER]
    for function in functions:
        uuid = _field(function, "uuid")
        name = _field(function, "name")
        runtime = _field(function, "runtime")
        lines.append(f"| {uuid:<36} | {name:<20} | {runtime:<7} |")
    lines.append(_BORDER)
    return "\n".join(lines)


def list_functions() -> list[Any]:
    """Fetch the user's functions, print them as a table and return them."""
    try:
        session = load_session()
    except AuthError as exc:
        raise FunctionError("Authentication error", str(exc)) from exc

    headers = _bearer_header(session.token)
    try:
        response = requests.get(
            host_manager.function_list_url(),
            headers=headers,
            timeout=REQUEST_TIMEOUT_SECS,
        )
    except requests.RequestException as exc:
        raise FunctionError("Network request error", str(exc)) from exc

    if not 200 <= response.status_code < 300:
        raise _api_error(response)

    try:
        functions = json.loads(response.text)
    except ValueError as exc:
        raise FunctionError("JSON parsing error", str(exc)) from exc
    if not isinstance(functions, list):
        raise FunctionError("JSON parsing error", "expected a list of functions")

    if not functions:
        print("No functions found.")
    else:
        print(format_function_table(functions))
    return functions


def generate_function_url(function_name: str, user_uuid: str) -> str:
    """The URL at which a deployed function is invoked."""
    return f"{host_manager.base_url()}/invok/{user_uuid}/{function_name}"