"""Request validation and normalisation."""
from __future__ import annotations

import hmac
from dataclasses import replace

from .config import AppConfig
from .models import ProvisionRequest


REQUIRED_FIELDS = (
    ("new_user_email", "NewUserEmail"),
    ("existing_user_email", "ExistingUserEmail"),
    ("new_user_first_name", "NewUserFirstName"),
    ("new_user_last_name", "NewUserLastName"),
)


class ValidationError(ValueError):
    """Raised when a required request field is missing."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class SecurityKeyMismatchError(PermissionError):
    """Raised when the shared secret does not match; the request is dropped."""


def check_security_key(request: ProvisionRequest, config: AppConfig) -> None:
    expected = config.security.security_key
    if not expected:
        return
    supplied = (request.security_key or "").strip()
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise SecurityKeyMismatchError("Security key does not match.")


def validate_request(request: ProvisionRequest, config: AppConfig) -> ProvisionRequest:
    """Return a normalised copy of ``request`` or raise.

    The security key is checked first so a blocked caller learns nothing about
    which fields were wrong.
    """

    check_security_key(request, config)

    for attribute, name in REQUIRED_FIELDS:
        if not (getattr(request, attribute) or "").strip():
            raise ValidationError(name, f"{name} is required.")

    first_name = request.new_user_first_name.strip()
    last_name = request.new_user_last_name.strip()
    display_name = (request.new_user_display_name or "").strip() or f"{first_name} {last_name}"
    tenant_id = (request.tenant_id or "").strip() or (config.default_tenant_id or "")

    return replace(
        request,
        new_user_email=request.new_user_email.strip(),
        existing_user_email=request.existing_user_email.strip(),
        new_user_first_name=first_name,
        new_user_last_name=last_name,
        new_user_display_name=display_name,
        tenant_id=tenant_id,
        ticket_id=(request.ticket_id or "").strip(),
    )


__all__ = [
    "REQUIRED_FIELDS",
    "SecurityKeyMismatchError",
    "ValidationError",
    "check_security_key",
    "validate_request",
]
