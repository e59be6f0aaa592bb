"""
HTTP request helpers shared by the API views.

Usage:
    from core.helpers import get_client_ip

    ip = get_client_ip(request)  # stored on refund audit entries
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest


def get_client_ip(request: HttpRequest) -> str | None:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains and falls back to
    REMOTE_ADDR. Returns None when neither is present.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        return x_forwarded_for.split(",")[0].strip() or None
    return request.META.get("REMOTE_ADDR") or None
