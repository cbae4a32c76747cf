# interactbot/transport/security.py
"""
Access control for the operator-only endpoints (``GET /metrics``).

- METRICS_TOKEN set     → require ``Authorization: Bearer <token>``
- METRICS_TOKEN not set → only loopback and RFC1918 clients

``/interactions`` is authenticated by its Ed25519 signature instead, see
``interactbot.transport.signature``.
"""
from __future__ import annotations

import hmac
import ipaddress

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from interactbot.infra.logging_config import get_logger

logger = get_logger(__name__)

INTERNAL_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
    )
)

metrics_bearer_scheme = HTTPBearer(auto_error=False)


def is_internal_ip(host: str | None) -> bool:
    if not host:
        return False
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(addr in net for net in INTERNAL_NETWORKS)


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    token = request.app.state.settings.metrics_token

    if token:
        if credentials is None:
            logger.warning("Metrics endpoint accessed without token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not hmac.compare_digest(credentials.credentials, token):
            logger.warning("Invalid metrics token attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return

    client = request.client.host if request.client else None
    if not is_internal_ip(client):
        logger.warning(f"Metrics access denied from non-internal client: {client}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
