"""Helper utilities (responses, request helpers)."""
from typing import Optional

from fastapi import Request


def format_response(data=None, success=True):
    return {"success": success, "data": data}


def get_client_ip(request: Request) -> str:
    """Return the connecting client's address, or 'unknown'.

    Forwarded headers are never read here; uvicorn rewrites ``request.client``
    from ``X-Forwarded-For`` only for proxies in ``FORWARDED_ALLOW_IPS``.
    """
    client = request.client
    if client and client.host:
        return client.host
    return "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent") or None
