"""API routers for the payment gateway."""
from fastapi import APIRouter

from . import health, payments


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(payments.router)
    return api_router
