"""Data models for provisioning requests, directory objects and results."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


GROUP_ODATA_TYPE = "#microsoft.graph.group"
RESULT_SUCCESS = 200
RESULT_FAILURE = 500


def _clean(value: Any) -> str:
    return str(value or "").strip()


@dataclass
class ProvisionRequest:
    """One invocation's worth of input for cloning a reference user."""

    new_user_email: str = ""
    existing_user_email: str = ""
    new_user_first_name: str = ""
    new_user_last_name: str = ""
    new_user_display_name: Optional[str] = None
    tenant_id: Optional[str] = None
    ticket_id: str = ""
    security_key: Optional[str] = None

    _FIELDS = {
        "newuseremail": "new_user_email",
        "existinguseremail": "existing_user_email",
        "newuserfirstname": "new_user_first_name",
        "newuserlastname": "new_user_last_name",
        "newuserdisplayname": "new_user_display_name",
        "tenantid": "tenant_id",
        "ticketid": "ticket_id",
        "securitykey": "security_key",
    }

    @classmethod
    def from_payload(
        cls, data: Optional[Dict[str, Any]], header_security_key: Optional[str] = None
    ) -> "ProvisionRequest":
        """Build a request from the PascalCase JSON body; keys match case-insensitively.

        A ``SecurityKey`` header wins over a key supplied in the body.
        """

        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            attribute = cls._FIELDS.get(str(key).replace("_", "").lower())
            if attribute and value is not None:
                values[attribute] = str(value)
        if header_security_key is not None:
            values["security_key"] = header_security_key
        values.setdefault("ticket_id", "")
        return cls(**values)


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    display_name: str
    user_principal_name: str
    assigned_licenses: Tuple[str, ...] = ()

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "DirectoryUser":
        skus = tuple(
            str(entry["skuId"])
            for entry in data.get("assignedLicenses") or []
            if entry.get("skuId")
        )
        return cls(
            id=str(data.get("id") or ""),
            display_name=str(data.get("displayName") or ""),
            user_principal_name=str(data.get("userPrincipalName") or ""),
            assigned_licenses=skus,
        )


@dataclass(frozen=True)
class GroupRef:
    """A directory object returned by a ``memberOf`` listing."""

    id: str
    odata_type: str
    display_name: str = ""
    mail: Optional[str] = None
    mail_enabled: bool = False
    security_enabled: bool = False
    group_types: Tuple[str, ...] = ()

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "GroupRef":
        return cls(
            id=str(data.get("id") or ""),
            odata_type=str(data.get("@odata.type") or ""),
            display_name=str(data.get("displayName") or ""),
            mail=data.get("mail") or None,
            mail_enabled=bool(data.get("mailEnabled")),
            security_enabled=bool(data.get("securityEnabled")),
            group_types=tuple(data.get("groupTypes") or ()),
        )

    @property
    def is_group(self) -> bool:
        return self.odata_type == GROUP_ODATA_TYPE

    @property
    def is_mail_enabled(self) -> bool:
        """Distribution lists and mail-enabled security groups; Microsoft 365 groups excluded."""

        return self.mail_enabled and "Unified" not in self.group_types

    @property
    def mail_identity(self) -> str:
        return self.mail or self.display_name or self.id

    @property
    def label(self) -> str:
        return self.display_name or self.id


@dataclass
class ReplicationOutcome:
    """Running tally of a best-effort pass over a sequence of items."""

    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def record_success(self) -> None:
        self.succeeded += 1

    def record_failure(self, item: str, reason: str) -> None:
        self.failed += 1
        self.failures.append((item, reason))

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed


@dataclass
class GroupReplicationOutcome:
    security_groups_added: int = 0
    mail_enabled_groups_added: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def groups_failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class ProvisionResult:
    message: str
    ticket_id: str
    result_code: int

    @property
    def result_status(self) -> str:
        return "Success" if self.result_code == RESULT_SUCCESS else "Failure"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Message": self.message,
            "TicketId": self.ticket_id,
            "ResultCode": self.result_code,
            "ResultStatus": self.result_status,
        }


__all__ = [
    "DirectoryUser",
    "GroupRef",
    "GroupReplicationOutcome",
    "ProvisionRequest",
    "ProvisionResult",
    "ReplicationOutcome",
    "RESULT_FAILURE",
    "RESULT_SUCCESS",
]
