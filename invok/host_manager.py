"""Addresses of the platform's API endpoints."""

from __future__ import annotations

HOST_BASE = "https://freeserverless.com"


def base_url() -> str:
    """The base URL of the API server."""
    return HOST_BASE


def auth_login_url() -> str:
    return f"{HOST_BASE}/auth/login"


def auth_register_url() -> str:
    return f"{HOST_BASE}/auth/register"


def function_upload_url() -> str:
    return f"{HOST_BASE}/invok/deploy"


def function_list_url() -> str:
    return f"{HOST_BASE}/invok/list"