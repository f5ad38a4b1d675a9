"""Helpers for masking sensitive values before they reach logs or responses."""
from __future__ import annotations

import hashlib
from typing import Mapping


def mask_email(value: str | None) -> str | None:
    """Keep only the domain of an e-mail address."""

    if value is None:
        return None
    if "@" not in value:
        return "***@***"
    _, domain = value.split("@", 1)
    return f"***@{domain or '***'}"


def secret_fingerprint(secret: str | None) -> str | None:
    """Return a deterministic marker instead of the raw secret."""

    if not secret:
        return None
    return "sha256:" + hashlib.sha256(secret.encode("utf-8")).hexdigest()[:8]


def masked_secret_status(secrets_info: Mapping[str, str | None]) -> dict[str, str | None]:
    return {name: secret_fingerprint(secret) for name, secret in secrets_info.items()}


__all__ = ["mask_email", "secret_fingerprint", "masked_secret_status"]
