"""Microsoft Graph directory helper utilities."""
from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

import msal
import requests

from .config import GraphConfig


GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30
USER_SELECT = "id,displayName,userPrincipalName,mail,givenName,surname,assignedLicenses"
MEMBER_OF_SELECT = "id,displayName,mail,mailEnabled,securityEnabled,groupTypes"


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class GraphConfigurationError(GraphClientError):
    """Raised when the Microsoft Graph integration is not configured."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class GraphClient:
    """Lightweight Microsoft Graph client for user, license and group calls."""

    def __init__(
        self,
        config: GraphConfig,
        tenant_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not config.has_credentials:
            raise GraphConfigurationError(
                "Microsoft Graph credentials are not configured. "
                "Provide tenant_id, client_id, and client_secret."
            )

        self._config = config
        self.tenant_id = tenant_id or config.tenant_id
        self._authority = f"https://login.microsoftonline.com/{self.tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=config.client_secret,
            authority=self._authority,
        )
        self._token_lock = threading.Lock()
        self._session = session or requests.Session()

    # ------------------------------------------------------------------ #
    # Token handling / HTTP helpers                                      #
    # ------------------------------------------------------------------ #
    def _acquire_token(self) -> str:
        with self._token_lock:
            result = self._app.acquire_token_silent(GRAPH_SCOPE, account=None)
            if not result:
                result = self._app.acquire_token_for_client(scopes=GRAPH_SCOPE)

        if "access_token" not in result:
            raise GraphError(
                status_code=0,
                error=result.get("error", "token_error"),
                description=result.get("error_description", "Unable to acquire Graph token."),
            )
        return str(result["access_token"])

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else GRAPH_BASE_URL + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._acquire_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        try:
            response = self._session.request(
                method,
                url,
                timeout=REQUEST_TIMEOUT,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, "TransportError", str(exc)) from exc
        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def _collect(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Follow ``@odata.nextLink`` paging and return every item in order."""

        items: List[Dict[str, Any]] = []
        result = self._request("GET", path, params=params)
        items.extend(result.get("value", []))
        next_link = result.get("@odata.nextLink")
        while next_link:
            result = self._request("GET", next_link)
            items.extend(result.get("value", []))
            next_link = result.get("@odata.nextLink")
        return items

    # ------------------------------------------------------------------ #
    # Licenses                                                           #
    # ------------------------------------------------------------------ #
    def list_subscribed_skus(self) -> List[Dict[str, Any]]:
        result = self._request(
            "GET",
            "/subscribedSkus",
            params={"$select": "id,skuId,skuPartNumber,capabilityStatus,prepaidUnits,consumedUnits"},
        )
        return result.get("value", [])

    def assign_license(self, user_id: str, sku_id: str) -> Dict[str, Any]:
        payload = {
            "addLicenses": [{"skuId": sku_id, "disabledPlans": []}],
            "removeLicenses": [],
        }
        return self._request("POST", f"/users/{user_id}/assignLicense", json=payload)

    # ------------------------------------------------------------------ #
    # Users                                                              #
    # ------------------------------------------------------------------ #
    def get_user(self, principal_name: str) -> Optional[Dict[str, Any]]:
        """Return the user addressed by principal name, or ``None`` when absent."""

        cleaned = (principal_name or "").strip()
        if not cleaned:
            return None
        escaped = requests.utils.quote(cleaned, safe="@")
        try:
            return self._request("GET", f"/users/{escaped}", params={"$select": USER_SELECT})
        except GraphError as exc:
            if exc.status_code == 404:
                return None
            raise

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/users", json=payload)

    # ------------------------------------------------------------------ #
    # Groups                                                             #
    # ------------------------------------------------------------------ #
    def list_member_of(self, user_id: str) -> List[Dict[str, Any]]:
        """Return the directory objects (groups, roles, ...) the user belongs to."""

        return self._collect(f"/users/{user_id}/memberOf", params={"$select": MEMBER_OF_SELECT})

    def add_user_to_group(self, user_id: str, group_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{user_id}"}
        self._request("POST", f"/groups/{group_id}/members/$ref", json=payload)


__all__ = [
    "GraphClient",
    "GraphClientError",
    "GraphConfigurationError",
    "GraphError",
]
