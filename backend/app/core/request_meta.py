"""
Request-scoped context: request id, client IP and user agent for tracking calls.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings


logger = logging.getLogger(__name__)


def _parse_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ip_address(value.strip()))
    except ValueError:
        return None


def _first_public_ip(forwarded_for: str) -> str | None:
    first_valid = None
    for candidate in forwarded_for.split(","):
        parsed = _parse_ip(candidate)
        if not parsed:
            continue
        if first_valid is None:
            first_valid = parsed
        if ip_address(parsed).is_global:
            return parsed
    return first_valid


def extract_client_ip(request: Request) -> str | None:
    """Client IP for click records; proxy headers count only when trusted."""
    peer = request.client.host if request.client else None
    if not settings.TRUST_PROXY_HEADERS:
        return _parse_ip(peer)
    for header in settings.TRUSTED_IP_HEADERS:
        raw = request.headers.get(header)
        if not raw:
            continue
        if header.lower() == "x-forwarded-for":
            parsed = _first_public_ip(raw)
        else:
            parsed = _parse_ip(raw.split(",")[0])
        if parsed:
            return parsed
    return _parse_ip(peer)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attaches request_id, client_ip and user_agent to request.state and echoes X-Request-Id.
    """

    async def dispatch(self, request, call_next):
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Request-Id")
            or str(uuid4())
        )
        request.state.request_id = request_id
        request.state.client_ip = extract_client_ip(request)
        request.state.user_agent = request.headers.get("User-Agent")

        logger.debug(
            "request.start",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "client_ip": request.state.client_ip,
            },
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
