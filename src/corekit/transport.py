"""Outbound HTTP client collaborator."""

from __future__ import annotations

import logging

import httpx

from .logs import level_number

DEFAULT_TIMEOUT_SECONDS = 30.0


def user_agent(name: str, version: str | None) -> str:
    return f"{name}/{version}" if version else name


def create_http_client(
    *,
    name: str,
    version: str | None,
    logger: logging.Logger,
    log_level: str | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Async client that identifies the application and optionally logs each exchange."""
    merged_headers = {"User-Agent": user_agent(name, version), **(headers or {})}
    event_hooks: dict[str, list] = {"request": [], "response": []}

    exchange_level = level_number(log_level)
    if exchange_level is not None:

        async def log_request(request: httpx.Request) -> None:
            logger.log(exchange_level, "HTTP %s %s", request.method, request.url)

        async def log_response(response: httpx.Response) -> None:
            request = response.request
            logger.log(
                exchange_level,
                "HTTP %s %s -> %d",
                request.method,
                request.url,
                response.status_code,
            )

        event_hooks["request"].append(log_request)
        event_hooks["response"].append(log_response)

    return httpx.AsyncClient(
        timeout=timeout_seconds,
        headers=merged_headers,
        event_hooks=event_hooks,
        follow_redirects=True,
    )
