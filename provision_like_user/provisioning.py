"""Create a directory user that mirrors an existing user's licenses and groups."""
from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, List, Optional

from .config import AppConfig
from .exchange import ExchangeCommandError, ExchangeSession, exchange_session
from .graph_client import GraphClient, GraphClientError
from .models import (
    RESULT_FAILURE,
    RESULT_SUCCESS,
    DirectoryUser,
    GroupRef,
    GroupReplicationOutcome,
    ProvisionRequest,
    ProvisionResult,
    ReplicationOutcome,
)
from .validation import ValidationError, validate_request


logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 16
PASSWORD_SYMBOLS = "!@#$%^&*-_=+?"
_MAIL_ENABLED_MARKERS = ("mail-enabled", "mail enabled", "distribution list")
_NICKNAME_INVALID = re.compile(r"[^A-Za-z0-9!#$%&'*+\-/=?^_`{|}~.]")


class ProvisioningError(RuntimeError):
    """Base class for errors that stop a provisioning run."""


class NotFoundError(ProvisioningError):
    """Raised when the reference user does not exist in the directory."""


class CreationError(ProvisioningError):
    """Raised when the directory rejects the new user."""


class LicenseAssignmentError(ProvisioningError):
    """Raised when a single license cannot be granted."""


class GroupMembershipError(ProvisioningError):
    """Raised when a single group membership cannot be added."""


@dataclass
class ProvisionReport:
    """Final result plus the per-item bookkeeping behind it."""

    result: ProvisionResult
    created_user: Optional[DirectoryUser] = None
    licenses: ReplicationOutcome = field(default_factory=ReplicationOutcome)
    groups: GroupReplicationOutcome = field(default_factory=GroupReplicationOutcome)

    @property
    def licenses_assigned(self) -> int:
        return self.licenses.succeeded

    @property
    def licenses_skipped(self) -> int:
        return self.licenses.failed

    @property
    def security_groups_added(self) -> int:
        return self.groups.security_groups_added

    @property
    def mail_enabled_groups_added(self) -> int:
        return self.groups.mail_enabled_groups_added

    @property
    def groups_failed(self) -> int:
        return self.groups.groups_failed


def compose_result(message: str, result_code: int, ticket_id: str) -> ProvisionResult:
    return ProvisionResult(message=message, ticket_id=ticket_id or "", result_code=result_code)


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password with at least one upper, lower, digit and symbol."""

    classes = (string.ascii_uppercase, string.ascii_lowercase, string.digits, PASSWORD_SYMBOLS)
    if length < len(classes):
        raise ValueError(f"Password length must be at least {len(classes)}.")
    alphabet = "".join(classes)
    chars = [secrets.choice(group) for group in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(classes)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def mail_nickname(principal_name: str) -> str:
    local_part = principal_name.split("@", 1)[0]
    return _NICKNAME_INVALID.sub("", local_part) or "user"


def _is_mail_enabled_failure(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _MAIL_ENABLED_MARKERS)


class ProvisionLikeUser:
    """Runs one provisioning request end to end.

    Only reference lookup and user creation are fatal. License and group
    replication are best-effort: each item either succeeds or is recorded as
    a failure, and the created user is never rolled back.
    """

    def __init__(
        self,
        config: AppConfig,
        graph_factory: Optional[Callable[[Optional[str]], GraphClient]] = None,
        session_factory: Optional[Callable[[], ContextManager[Optional[ExchangeSession]]]] = None,
    ) -> None:
        self._config = config
        self._graph_factory = graph_factory or (
            lambda tenant_id: GraphClient(config.graph, tenant_id=tenant_id)
        )
        self._session_factory = session_factory or (lambda: exchange_session(config.exchange))

    def run(self, request: ProvisionRequest) -> ProvisionReport:
        """Provision the user described by ``request``.

        ``SecurityKeyMismatchError`` propagates to the caller; every other
        failure is reported through the returned result.
        """

        ticket_id = (request.ticket_id or "").strip()
        try:
            request = validate_request(request, self._config)
        except ValidationError as exc:
            logger.warning("Rejected provisioning request: %s", exc)
            return ProvisionReport(result=compose_result(str(exc), RESULT_FAILURE, ticket_id))

        try:
            client = self._graph_factory(request.tenant_id or None)
            reference = self._resolve_reference(client, request.existing_user_email)
            created = self._create_user(client, request)
        except (ProvisioningError, GraphClientError) as exc:
            logger.error(
                "Provisioning %s from %s failed: %s",
                request.new_user_email,
                request.existing_user_email,
                exc,
            )
            return ProvisionReport(result=compose_result(str(exc), RESULT_FAILURE, ticket_id))

        report = ProvisionReport(
            result=compose_result("", RESULT_SUCCESS, ticket_id),
            created_user=created,
        )
        report.licenses = self._replicate_licenses(client, reference, created)
        notes: List[str] = []
        report.groups = self._replicate_groups(client, reference, created, notes)

        message = (
            f"User {created.user_principal_name} was created based on "
            f"{reference.user_principal_name or request.existing_user_email}. "
            f"Licenses assigned: {report.licenses_assigned}, skipped: {report.licenses_skipped}. "
            f"Security groups added: {report.security_groups_added}, "
            f"mail-enabled groups added: {report.mail_enabled_groups_added}, "
            f"groups failed: {report.groups_failed}."
        )
        if notes:
            message = " ".join([message, *notes])
        report.result = compose_result(message, RESULT_SUCCESS, ticket_id)
        logger.info(message)
        return report

    # ------------------------------------------------------------------ #
    # Fatal steps                                                        #
    # ------------------------------------------------------------------ #
    def _resolve_reference(self, client: GraphClient, principal_name: str) -> DirectoryUser:
        try:
            data = client.get_user(principal_name)
        except GraphClientError as exc:
            raise NotFoundError(f"Unable to read existing user {principal_name}: {exc}") from exc
        if not data:
            raise NotFoundError(f"Existing user {principal_name} was not found in the directory.")
        reference = DirectoryUser.from_graph(data)
        logger.info(
            "Reference user %s has %s license(s).",
            reference.user_principal_name or principal_name,
            len(reference.assigned_licenses),
        )
        return reference

    def _create_user(self, client: GraphClient, request: ProvisionRequest) -> DirectoryUser:
        payload: Dict[str, Any] = {
            "accountEnabled": True,
            "displayName": request.new_user_display_name,
            "givenName": request.new_user_first_name,
            "surname": request.new_user_last_name,
            "mailNickname": mail_nickname(request.new_user_email),
            "userPrincipalName": request.new_user_email,
            "usageLocation": self._config.graph.usage_location,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": True,
                "password": generate_password(),
            },
        }
        try:
            data = client.create_user(payload)
        except GraphClientError as exc:
            raise CreationError(f"Failed to create user {request.new_user_email}: {exc}") from exc

        created = DirectoryUser.from_graph(data)
        if not created.user_principal_name:
            created = DirectoryUser(
                id=created.id,
                display_name=created.display_name or request.new_user_display_name or "",
                user_principal_name=request.new_user_email,
            )
        logger.info("Created user %s (id=%s).", created.user_principal_name, created.id)
        return created

    # ------------------------------------------------------------------ #
    # Best-effort steps                                                  #
    # ------------------------------------------------------------------ #
    def _available_seats(self, client: GraphClient) -> Optional[Dict[str, int]]:
        if not self._config.graph.check_license_availability:
            return None
        try:
            skus = client.list_subscribed_skus()
        except GraphClientError as exc:
            logger.warning("Unable to read subscribed SKUs; assigning without a seat check: %s", exc)
            return None
        seats: Dict[str, int] = {}
        for sku in skus:
            enabled = int((sku.get("prepaidUnits") or {}).get("enabled") or 0)
            consumed = int(sku.get("consumedUnits") or 0)
            seats[str(sku.get("skuId"))] = enabled - consumed
        return seats

    def _assign_license(self, client: GraphClient, user: DirectoryUser, sku_id: str) -> None:
        try:
            client.assign_license(user.id, sku_id)
        except GraphClientError as exc:
            raise LicenseAssignmentError(str(exc)) from exc

    def _replicate_licenses(
        self, client: GraphClient, reference: DirectoryUser, created: DirectoryUser
    ) -> ReplicationOutcome:
        outcome = ReplicationOutcome()
        if not reference.assigned_licenses:
            return outcome

        seats = self._available_seats(client)
        for sku_id in reference.assigned_licenses:
            if seats is not None and seats.get(sku_id, 0) <= 0:
                logger.warning("Skipping license %s for %s: no available seats.", sku_id, created.user_principal_name)
                outcome.record_failure(sku_id, "No available seats.")
                continue
            try:
                self._assign_license(client, created, sku_id)
            except LicenseAssignmentError as exc:
                logger.warning("Skipping license %s for %s: %s", sku_id, created.user_principal_name, exc)
                outcome.record_failure(sku_id, str(exc))
                continue
            except Exception as exc:
                logger.exception(
                    "Unexpected error assigning license %s to %s: %s", sku_id, created.user_principal_name, exc
                )
                outcome.record_failure(sku_id, str(exc))
                continue
            logger.info("Assigned license %s to %s.", sku_id, created.user_principal_name)
            outcome.record_success()
        return outcome

    def _add_group_member(
        self,
        client: GraphClient,
        session: Optional[ExchangeSession],
        group: GroupRef,
        user: DirectoryUser,
    ) -> bool:
        """Add ``user`` to ``group``; returns ``True`` when the mail system was used."""

        try:
            client.add_user_to_group(user.id, group.id)
            return False
        except GraphClientError as exc:
            if not (_is_mail_enabled_failure(exc) or group.is_mail_enabled):
                raise GroupMembershipError(str(exc)) from exc
            if session is None:
                raise GroupMembershipError(
                    f"Mail-enabled group requires Exchange Online, which is unavailable: {exc}"
                ) from exc

        try:
            session.add_distribution_group_member(group.mail_identity, user.user_principal_name)
        except ExchangeCommandError as exc:
            raise GroupMembershipError(str(exc)) from exc
        return True

    def _replicate_groups(
        self,
        client: GraphClient,
        reference: DirectoryUser,
        created: DirectoryUser,
        notes: List[str],
    ) -> GroupReplicationOutcome:
        outcome = GroupReplicationOutcome()
        try:
            memberships = [GroupRef.from_graph(item) for item in client.list_member_of(reference.id)]
        except GraphClientError as exc:
            logger.error("Unable to list group memberships of %s: %s", reference.user_principal_name, exc)
            notes.append(f"Group memberships could not be read: {exc}")
            return outcome

        groups = [group for group in memberships if group.is_group]
        if not groups:
            return outcome

        with self._session_factory() as session:
            for group in groups:
                try:
                    via_mail = self._add_group_member(client, session, group, created)
                except GroupMembershipError as exc:
                    logger.error(
                        "Failed to add %s to group %s (%s): %s",
                        created.user_principal_name,
                        group.label,
                        group.id,
                        exc,
                    )
                    outcome.failures.append((group.id, str(exc)))
                    continue
                except Exception as exc:
                    logger.exception(
                        "Unexpected error adding %s to group %s (%s): %s",
                        created.user_principal_name,
                        group.label,
                        group.id,
                        exc,
                    )
                    outcome.failures.append((group.id, str(exc)))
                    continue
                if via_mail:
                    outcome.mail_enabled_groups_added += 1
                    logger.info("Added %s to mail-enabled group %s.", created.user_principal_name, group.label)
                else:
                    outcome.security_groups_added += 1
                    logger.info("Added %s to group %s (%s).", created.user_principal_name, group.label, group.id)
        return outcome


__all__ = [
    "CreationError",
    "GroupMembershipError",
    "LicenseAssignmentError",
    "NotFoundError",
    "ProvisionLikeUser",
    "ProvisionReport",
    "ProvisioningError",
    "compose_result",
    "generate_password",
    "mail_nickname",
]
