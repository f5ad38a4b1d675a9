"""Identity dependency backed by an externally supplied token verifier."""
from __future__ import annotations

from typing import Any, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from app.config import get_settings
from app.core.logging import get_logger
from app.utils.errors import error_response

logger = get_logger(__name__)

# verify(token) -> identity | None; the identity itself is opaque to this service.
IdentityVerifier = Callable[[str], Any]


def reject_all_tokens(token: str) -> None:
    """Default verifier until the auth collaborator is wired in."""

    return None


def _extract_bearer(authorization: str | None = Header(default=None)) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def current_identity(request: Request, token: str | None = Depends(_extract_bearer)) -> Any:
    """Return the verified identity, or ``None`` when anonymous access is allowed."""

    verifier: IdentityVerifier = getattr(request.app.state, "identity_verifier", reject_all_tokens)
    identity = verifier(token) if token else None

    if identity is None and get_settings().REQUIRE_IDENTITY:
        logger.info("Rejected request without a verified identity", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "A valid bearer token is required."),
        )
    return identity


__all__ = ["IdentityVerifier", "current_identity", "reject_all_tokens"]
