"""
Internal Service Authentication Middleware

API key authentication for the service-to-service calls that drive
reconciliation (statement import workers, back-office UI backend).

Settings:
    INTERNAL_API_KEY: Primary API key for internal services
    INTERNAL_API_KEYS: Comma-separated list of valid keys (for key rotation)

Usage:
    from middleware.internal_auth import require_internal_service

    @router.post("/{tenant_id}/batch")
    async def batch(..., service: InternalService = Depends(require_internal_service)):
        ...

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional, for logging)
"""

import secrets
import logging
from typing import Optional, List
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import get_settings

logger = logging.getLogger(__name__)

# Header names
API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"


@dataclass
class InternalService:
    """Represents an authenticated internal service"""
    name: str
    api_key_hash: str  # Last 8 chars of key for logging
    is_authenticated: bool = True


def _get_valid_api_keys() -> List[str]:
    return get_settings().internal_api_keys


def is_internal_auth_configured() -> bool:
    """Check if internal authentication is configured."""
    return len(_get_valid_api_keys()) > 0


def validate_internal_key(api_key: Optional[str]) -> bool:
    """
    Validate an internal API key against the configured keys.

    Returns:
        True if valid, False otherwise
    """
    if not api_key:
        return False

    valid_keys = _get_valid_api_keys()
    if not valid_keys:
        logger.warning("No valid API keys configured")
        return False

    # Constant-time comparison against every key
    matched = False
    for valid_key in valid_keys:
        if secrets.compare_digest(api_key.encode(), valid_key.encode()):
            matched = True
    return matched


api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def get_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency to authenticate internal service requests.

    Raises:
        HTTPException: 503 if no keys are configured, 401 if the key is
            missing or invalid
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER, "unknown")

    if not is_internal_auth_configured():
        logger.warning("No internal API keys configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal authentication not configured"
        )

    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_internal_key(api_key):
        logger.warning(f"Invalid API key from service: {service_name}, key ending: ...{api_key[-8:]}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    logger.debug(f"Internal service authenticated: {service_name}")

    return InternalService(
        name=service_name,
        api_key_hash=f"...{api_key[-8:]}"
    )


# Convenience alias - use directly as dependency
require_internal_service = get_internal_service
