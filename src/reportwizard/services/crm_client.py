from __future__ import annotations

"""HubSpot CRM metadata client (objects, properties, property groups)."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.models import CRMObject, ObjectProperties, PropertyGroup, PropertyMeta
from ..errors import CRMAuthError, InputError, UpstreamError
from ..observability.metrics import CRM_CALLS

logger = logging.getLogger(__name__)

STANDARD_OBJECTS: List[CRMObject] = [
    CRMObject(id="contacts", label="Contacts"),
    CRMObject(id="companies", label="Companies"),
    CRMObject(id="deals", label="Deals"),
    CRMObject(id="tickets", label="Tickets"),
    CRMObject(id="marketing_events", label="Marketing Events"),
]


@dataclass
class HubSpotConfig:
    base_url: str = "https://api.hubapi.com"
    connect_timeout: float = 3.0
    read_timeout: float = 20.0

    @staticmethod
    def from_env() -> "HubSpotConfig":
        return HubSpotConfig(
            base_url=os.getenv("HUBSPOT_BASE_URL", "https://api.hubapi.com").rstrip("/"),
            connect_timeout=float(os.getenv("HUBSPOT_CONNECT_TIMEOUT", "3")),
            read_timeout=float(os.getenv("HUBSPOT_READ_TIMEOUT", "20")),
        )


def _build_session() -> requests.Session:
    session = requests.Session()
    # Metadata reads only; idempotent GETs are safe to retry at the transport level.
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class HubSpotClient:
    def __init__(
        self,
        token: Optional[str],
        config: Optional[HubSpotConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not token or not token.strip():
            raise InputError("Token is required")
        self._token = token.strip()
        self._cfg = config or HubSpotConfig.from_env()
        self._session = session or _build_session()

    def _get(self, path: str, endpoint: str) -> Dict[str, Any]:
        url = f"{self._cfg.base_url}{path}"
        try:
            resp = self._session.get(
                url,
                headers={"Authorization": f"Bearer {self._token}", "Content-Type": "application/json"},
                timeout=(self._cfg.connect_timeout, self._cfg.read_timeout),
            )
        except requests.exceptions.RequestException as exc:
            CRM_CALLS.labels(endpoint=endpoint, outcome="error").inc()
            raise UpstreamError(f"HubSpot request failed: {exc}") from exc
        if resp.status_code in (401, 403):
            CRM_CALLS.labels(endpoint=endpoint, outcome="unauthorized").inc()
            raise CRMAuthError("HubSpot rejected the access token")
        if resp.status_code >= 400:
            CRM_CALLS.labels(endpoint=endpoint, outcome="error").inc()
            raise UpstreamError(_error_message(resp))
        CRM_CALLS.labels(endpoint=endpoint, outcome="ok").inc()
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("HubSpot returned a non-JSON response") from exc
        if not isinstance(data, dict):
            raise UpstreamError("HubSpot returned an unexpected response body")
        return data

    def list_objects(self) -> List[CRMObject]:
        """Standard object types followed by the portal's custom schemas.

        A failing schema lookup degrades to the standard list.
        """
        custom: List[CRMObject] = []
        try:
            data = self._get("/crm/v3/schemas", "schemas")
            for schema in _entries(data):
                if not (schema.get("objectTypeId") or schema.get("name")):
                    continue
                labels = schema.get("labels") if isinstance(schema.get("labels"), dict) else {}
                custom.append(
                    CRMObject(
                        id=str(schema.get("objectTypeId") or schema.get("name")),
                        label=labels.get("plural") or schema.get("name") or str(schema.get("objectTypeId")),
                    )
                )
        except CRMAuthError:
            raise
        except UpstreamError as exc:
            logger.info("Error fetching custom objects: %s", exc)
        return [*STANDARD_OBJECTS, *custom]

    def object_properties(self, object_type: str) -> ObjectProperties:
        props = self._get(f"/crm/v3/properties/{object_type}", "properties")
        groups = self._get(f"/crm/v3/properties/{object_type}/groups", "groups")
        return ObjectProperties(
            properties=[
                PropertyMeta(
                    name=p["name"],
                    label=p.get("label") or p["name"],
                    group_name=p.get("groupName"),
                    type=p.get("type"),
                    field_type=p.get("fieldType"),
                )
                for p in _entries(props)
                if p.get("name") and not p.get("hidden")
            ],
            groups=[
                PropertyGroup(name=g["name"], label=g.get("label") or g["name"])
                for g in _entries(groups)
                if g.get("name")
            ],
        )

    def properties_for(self, object_types: Iterable[str]) -> Dict[str, ObjectProperties]:
        types = [t for t in object_types if t]
        if not types:
            raise InputError("At least one object type is required")
        return {t: self.object_properties(t) for t in types}


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HubSpot error {resp.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HubSpot error {resp.status_code}"


def _entries(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Object entries of a HubSpot ``results`` list; anything else is skipped."""
    results = data.get("results")
    if not isinstance(results, list):
        return []
    return [r for r in results if isinstance(r, dict)]
