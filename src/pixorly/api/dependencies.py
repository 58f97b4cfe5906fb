"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Clerk session authentication (JWT verified against the Clerk JWKS)
- Clerk webhook signature validation
- Access to collaborators stored on app.state
"""

from typing import Annotated, Callable

import jwt
import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from jwt import PyJWKClient

from pixorly.core.config import Settings
from pixorly.services.clerk_signature import validate_clerk_signature
from pixorly.uow import UnitOfWork

logger = structlog.get_logger()


def get_settings(request: Request) -> Settings:
    """Get application settings from app state.

    Returns:
        Settings instance loaded at startup
    """
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.users.get_by_external_id(subject)
    """
    return request.app.state.uow_factory


def get_gateway(request: Request):
    """Get the provider gateway (validation, pricing, generation) from app state."""
    return request.app.state.gateway


def get_scheduler(request: Request):
    """Get the task scheduler from app state."""
    return request.app.state.scheduler


def get_jwks_client(request: Request) -> PyJWKClient:
    """Get the cached Clerk JWKS client, creating it on first use."""
    client = getattr(request.app.state, "jwks_client", None)
    if client is None:
        settings = get_settings(request)
        if not settings.clerk_jwks_url:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication is not configured",
            )
        client = PyJWKClient(settings.clerk_jwks_url)
        request.app.state.jwks_client = client
    return client


async def get_current_subject(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Verify the Clerk session token and return its subject.

    Args:
        request: FastAPI Request object (settings and JWKS client live on app.state)
        authorization: `Bearer <session JWT>` header

    Returns:
        The `sub` claim (Clerk user id), used as the owning-user key

    Raises:
        HTTPException: 401 Unauthorized if the token is missing, expired or invalid
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = authorization[len("bearer ") :].strip()

    settings = get_settings(request)
    jwks_client = get_jwks_client(request)

    try:
        signing_key = jwks_client.get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=settings.clerk_issuer,
            options={
                "verify_aud": False,
                "verify_iss": settings.clerk_issuer is not None,
            },
        )
    except jwt.PyJWTError as e:
        logger.info("auth.token_rejected", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return subject


async def validate_webhook_signature(
    request: Request,
    svix_id: Annotated[str | None, Header()] = None,
    svix_timestamp: Annotated[str | None, Header()] = None,
    svix_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate Clerk webhook signature before processing request.

    Reads the raw request body and validates the Svix HMAC-SHA256 signature.
    If validation fails, raises 401 Unauthorized before any processing occurs.

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        HTTPException: 401 Unauthorized if headers are missing or the signature is invalid
    """
    if not (svix_id and svix_timestamp and svix_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Svix signature headers"
        )

    # Must be the exact bytes received for signature validation
    raw_body = await request.body()

    is_valid = validate_clerk_signature(
        raw_body=raw_body,
        msg_id=svix_id,
        timestamp=svix_timestamp,
        signature_header=svix_signature,
        secret=settings.clerk_webhook_secret,
    )

    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    return raw_body
