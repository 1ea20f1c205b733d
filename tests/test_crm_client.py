from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest
import requests

from src.reportwizard.errors import CRMAuthError, InputError, UpstreamError
from src.reportwizard.services.crm_client import STANDARD_OBJECTS, HubSpotClient, HubSpotConfig


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, routes: Dict[str, Any]) -> None:
        self.routes = routes
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    def get(self, url: str, headers=None, timeout=None):
        self.calls.append((url, headers or {}))
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(404, {"message": "not found"})
        return route


BASE = "https://crm.test"


def _client(routes: Dict[str, Any]) -> Tuple[HubSpotClient, FakeSession]:
    session = FakeSession(routes)
    return HubSpotClient(" pat-123 ", HubSpotConfig(base_url=BASE), session=session), session


def test_token_required():
    with pytest.raises(InputError, match="Token is required"):
        HubSpotClient("  ")


def test_list_objects_appends_custom_schemas():
    client, session = _client(
        {
            f"{BASE}/crm/v3/schemas": FakeResponse(
                200,
                {"results": [{"objectTypeId": "2-123", "name": "pets", "labels": {"plural": "Pets"}}]},
            )
        }
    )
    objects = client.list_objects()
    assert [o.id for o in objects] == [o.id for o in STANDARD_OBJECTS] + ["2-123"]
    assert objects[-1].label == "Pets"
    assert session.calls[0][1]["Authorization"] == "Bearer pat-123"


def test_custom_schema_failure_degrades_to_standard_objects():
    client, _ = _client({f"{BASE}/crm/v3/schemas": FakeResponse(500, {"message": "boom"})})
    assert client.list_objects() == STANDARD_OBJECTS


def test_network_error_on_schemas_degrades_too():
    client, _ = _client({f"{BASE}/crm/v3/schemas": requests.exceptions.ConnectionError("down")})
    assert client.list_objects() == STANDARD_OBJECTS


def test_invalid_token_surfaces():
    client, _ = _client({f"{BASE}/crm/v3/schemas": FakeResponse(401, {"message": "expired"})})
    with pytest.raises(CRMAuthError) as exc:
        client.list_objects()
    assert exc.value.status_code == 401


def test_hidden_properties_are_removed():
    client, _ = _client(
        {
            f"{BASE}/crm/v3/properties/deals": FakeResponse(
                200,
                {
                    "results": [
                        {"name": "amount", "label": "Amount", "type": "number", "fieldType": "number", "groupName": "dealinformation"},
                        {"name": "hs_object_source_detail_3", "label": "Internal", "type": "string", "hidden": True},
                        {"name": "dealname"},
                    ]
                },
            ),
            f"{BASE}/crm/v3/properties/deals/groups": FakeResponse(
                200, {"results": [{"name": "dealinformation", "label": "Deal information"}]}
            ),
        }
    )
    result = client.properties_for(["deals"])
    props = result["deals"].properties
    assert [p.name for p in props] == ["amount", "dealname"]
    assert props[0].group_name == "dealinformation"
    assert props[1].label == "dealname"
    assert result["deals"].groups[0].label == "Deal information"


def test_properties_error_uses_hubspot_message():
    client, _ = _client({f"{BASE}/crm/v3/properties/pets": FakeResponse(400, {"message": "Unknown object type"})})
    with pytest.raises(UpstreamError, match="Unknown object type"):
        client.object_properties("pets")


def test_properties_require_object_types():
    client, _ = _client({})
    with pytest.raises(InputError):
        client.properties_for([])


def test_hidden_property_never_reaches_prompts():
    from src.reportwizard.domain.models import PropertyRef, SessionState
    from src.reportwizard.services.prompt_registry import build_prompt, build_report_prompt
    from src.reportwizard.services.story_pipeline import StoryPipelineController

    client, _ = _client(
        {
            f"{BASE}/crm/v3/properties/deals": FakeResponse(
                200,
                {
                    "results": [
                        {"name": "amount", "label": "Amount", "type": "number"},
                        {"name": "hs_secret_score", "label": "Secret", "type": "number", "hidden": True},
                    ]
                },
            ),
            f"{BASE}/crm/v3/properties/deals/groups": FakeResponse(200, {"results": []}),
        }
    )
    ctl = StoryPipelineController(SessionState())
    ctl.select_objects(["deals"])
    ctl.load_metadata(client.properties_for(["deals"]))
    ctl.select_properties(ctl.state.available_properties["deals"])
    with pytest.raises(InputError):
        ctl.select_properties([PropertyRef(object_type="deals", name="hs_secret_score", label="Secret")])

    context = ctl.context()
    assert "hs_secret_score" not in build_prompt("business_focus", context)
    assert "hs_secret_score" not in build_report_prompt(context)


def test_malformed_property_entries_are_skipped():
    client, _ = _client(
        {
            f"{BASE}/crm/v3/properties/deals": FakeResponse(
                200,
                {"results": [{"label": "No name"}, "junk", {"name": "amount", "label": "Amount"}]},
            ),
            f"{BASE}/crm/v3/properties/deals/groups": FakeResponse(200, {"results": [{"label": "Unnamed"}]}),
        }
    )
    result = client.object_properties("deals")
    assert [p.name for p in result.properties] == ["amount"]
    assert result.groups == []


def test_non_object_body_is_an_upstream_error():
    client, _ = _client({f"{BASE}/crm/v3/properties/deals": FakeResponse(200, ["amount"])})
    with pytest.raises(UpstreamError, match="unexpected response body"):
        client.object_properties("deals")


def test_unnamed_custom_schemas_are_skipped():
    client, _ = _client(
        {f"{BASE}/crm/v3/schemas": FakeResponse(200, {"results": [{"labels": {"plural": "Ghosts"}}, "junk"]})}
    )
    assert client.list_objects() == STANDARD_OBJECTS
