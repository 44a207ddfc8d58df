import contextlib
from typing import Any, Dict, List, Optional

import pytest

from provision_like_user.config import AppConfig, ExchangeConfig, GraphConfig, SecurityConfig
from provision_like_user.graph_client import GraphError
from provision_like_user.provisioning import ProvisionLikeUser


REFERENCE_UPN = "jane.smith@contoso.com"
NEW_UPN = "john.doe@contoso.com"
MAIL_ENABLED_ERROR = GraphError(
    400,
    "Request_BadRequest",
    "Cannot Update a mail-enabled security groups and or distribution list.",
)


def security_group(group_id: str, name: str) -> Dict[str, Any]:
    return {
        "@odata.type": "#microsoft.graph.group",
        "id": group_id,
        "displayName": name,
        "mailEnabled": False,
        "securityEnabled": True,
        "groupTypes": [],
    }


def distribution_list(group_id: str, name: str, mail: str) -> Dict[str, Any]:
    return {
        "@odata.type": "#microsoft.graph.group",
        "id": group_id,
        "displayName": name,
        "mail": mail,
        "mailEnabled": True,
        "securityEnabled": False,
        "groupTypes": [],
    }


class FakeGraphClient:
    """In-memory stand-in for ``GraphClient`` that records every call."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.member_of: List[Dict[str, Any]] = []
        self.subscribed_skus: List[Dict[str, Any]] = []
        self.create_error: Optional[Exception] = None
        self.license_errors: Dict[str, Exception] = {}
        self.group_errors: Dict[str, Exception] = {}
        self.created_payloads: List[Dict[str, Any]] = []
        self.license_calls: List[tuple] = []
        self.group_calls: List[tuple] = []

    def add_reference_user(self, upn: str = REFERENCE_UPN, skus: tuple = ()) -> Dict[str, Any]:
        user = {
            "id": "ref-id",
            "displayName": "Jane Smith",
            "userPrincipalName": upn,
            "assignedLicenses": [{"skuId": sku, "disabledPlans": []} for sku in skus],
        }
        self.users[upn] = user
        return user

    def get_user(self, principal_name: str) -> Optional[Dict[str, Any]]:
        return self.users.get(principal_name)

    def list_subscribed_skus(self) -> List[Dict[str, Any]]:
        return self.subscribed_skus

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.created_payloads.append(payload)
        if self.create_error:
            raise self.create_error
        if payload["userPrincipalName"] in self.users:
            raise GraphError(
                400,
                "Request_BadRequest",
                "Another object with the same value for property userPrincipalName already exists.",
            )
        user = {
            "id": f"new-{len(self.created_payloads)}",
            "displayName": payload["displayName"],
            "userPrincipalName": payload["userPrincipalName"],
        }
        self.users[payload["userPrincipalName"]] = user
        return user

    def assign_license(self, user_id: str, sku_id: str) -> Dict[str, Any]:
        self.license_calls.append((user_id, sku_id))
        if sku_id in self.license_errors:
            raise self.license_errors[sku_id]
        return {"id": user_id}

    def list_member_of(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self.member_of)

    def add_user_to_group(self, user_id: str, group_id: str) -> None:
        self.group_calls.append((user_id, group_id))
        if group_id in self.group_errors:
            raise self.group_errors[group_id]


class FakeExchangeSession:
    def __init__(self) -> None:
        self.added: List[tuple] = []
        self.errors: Dict[str, Exception] = {}
        self.closed = False

    def add_distribution_group_member(self, identity: str, member: str) -> None:
        if identity in self.errors:
            raise self.errors[identity]
        self.added.append((identity, member))

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig(
        graph=GraphConfig(
            tenant_id="11111111-2222-3333-4444-555555555555",
            client_id="client",
            client_secret="secret",
        ),
        exchange=ExchangeConfig(organization="contoso.onmicrosoft.com", cert_thumbprint="ABC", app_id="client"),
        security=SecurityConfig(),
    )


@pytest.fixture()
def graph() -> FakeGraphClient:
    return FakeGraphClient()


@pytest.fixture()
def exchange() -> FakeExchangeSession:
    return FakeExchangeSession()


@pytest.fixture()
def make_provisioner(app_config, graph, exchange):
    """Build a provisioner wired to the fakes; ``exchange_available`` toggles the mail session."""

    tenants: List[Optional[str]] = []

    def _factory(exchange_available: bool = True, config: Optional[AppConfig] = None) -> ProvisionLikeUser:
        @contextlib.contextmanager
        def _session():
            if not exchange_available:
                yield None
                return
            try:
                yield exchange
            finally:
                exchange.close()

        def _graph(tenant_id):
            tenants.append(tenant_id)
            return graph

        provisioner = ProvisionLikeUser(config or app_config, graph_factory=_graph, session_factory=_session)
        provisioner.tenants = tenants
        return provisioner

    return _factory
