from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi.testclient import TestClient

from src.reportwizard.domain.models import CRMObject, ObjectProperties, PropertyGroup, PropertyMeta, PropertyRef
from src.reportwizard.errors import CRMAuthError, InputError, UpstreamError
from src.reportwizard.services.prompt_registry import StepContext

GROUNDING = {
    "business_focus": {"grounding_properties": ["amount", "dealstage"]},
    "metric_type": {"viable_because": "amount is numeric"},
    "comparison_dimension": {"property_used": "dealstage"},
    "output_format": {"visualization_types": ["bar"]},
}

DEFAULT_LABELS = {
    "business_focus": ["Revenue Growth", "Pipeline Health"],
    "metric_type": ["Total Value", "Count"],
    "comparison_dimension": ["By Stage", "Over Time"],
    "output_format": ["Bar Chart", "Table"],
    "audience": ["Executives", "Sales Reps"],
    "goal": ["Forecast", "Coach"],
    "timeframe": ["This Quarter", "This Year"],
}

DEAL_PROPERTIES = [
    PropertyMeta(name="amount", label="Amount", type="number", field_type="number", group_name="dealinformation"),
    PropertyMeta(name="dealstage", label="Deal Stage", type="enumeration", field_type="select"),
    PropertyMeta(name="closedate", label="Close Date", type="datetime", field_type="date"),
]


def make_options(step: str, labels: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    out = []
    for idx, label in enumerate(labels or DEFAULT_LABELS[step]):
        item: Dict[str, Any] = {"id": idx + 1, "label": label, "description": f"{label} description"}
        item.update(GROUNDING.get(step, {}))
        out.append(item)
    return out


def make_context(**overrides: Any) -> StepContext:
    values: Dict[str, Any] = {
        "selected_objects": ["deals"],
        "selected_properties": [
            PropertyRef(object_type="deals", name="amount", label="Amount", type="number"),
            PropertyRef(object_type="deals", name="dealstage", label="Deal Stage", type="enumeration"),
        ],
        "business_profile": None,
        "previous_choices": {},
    }
    values.update(overrides)
    return StepContext(**values)


class FakeGateway:
    """In-process stand-in for the LLM gateway."""

    def __init__(self) -> None:
        self.profile: Any = {
            "inferred_profile": {"industry": "SaaS", "industry_confidence": "high", "sales_motion": "B2B"},
            "data_richness": {"strongest_object": "deals"},
            "business_questions_possible": ["Which stage stalls?"],
        }
        self.options: Dict[str, Any] = {}
        self.reports: Any = [
            {"title": "Pipeline by stage", "confidence": "high", "properties_used": ["amount", "dealstage"]},
            {"title": "Deal count", "confidence": "medium", "properties_used": ["dealstage"]},
            {"title": "Close rate", "properties_used": []},
        ]
        self.fail_steps: Set[str] = set()
        self.fail_profile = False
        self.calls: List[Tuple[str, Any]] = []
        self.keys: List[Optional[str]] = []
        self.before_step = None

    def infer_profile(self, context: StepContext) -> Dict[str, Any]:
        self.calls.append(("profile", list(context.selected_objects)))
        if self.fail_profile:
            raise UpstreamError("profile unavailable")
        return self.profile

    def step_options(self, step: str, context: StepContext, variant: str = "story") -> Any:
        self.calls.append(("step", (step, dict(context.previous_choices))))
        if self.before_step is not None:
            self.before_step(step)
        if step in self.fail_steps:
            raise UpstreamError(f"{step} unavailable")
        if step in self.options:
            return self.options[step]
        return {"options": make_options(step)}

    def generate_reports(self, context: StepContext, variant: str = "story") -> Any:
        self.calls.append(("reports", dict(context.previous_choices)))
        return self.reports

    def step_calls(self) -> List[str]:
        return [c[1][0] for c in self.calls if c[0] == "step"]


class FakeHubSpotClient:
    """Stand-in for HubSpotClient; the token 'bad' behaves like a revoked key."""

    def __init__(self, token: Optional[str]) -> None:
        if not token:
            raise InputError("Token is required")
        self.token = token

    def list_objects(self) -> List[CRMObject]:
        if self.token == "bad":
            raise CRMAuthError("HubSpot rejected the access token")
        return [CRMObject(id="contacts", label="Contacts"), CRMObject(id="deals", label="Deals")]

    def properties_for(self, object_types: List[str]) -> Dict[str, ObjectProperties]:
        if not object_types:
            raise InputError("At least one object type is required")
        groups = [PropertyGroup(name="dealinformation", label="Deal information")]
        return {t: ObjectProperties(properties=list(DEAL_PROPERTIES), groups=groups) for t in object_types}


def signup(client: TestClient, email: str, password: str = "correct-horse") -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Solve a captcha and create an account, returning auth headers and token payload."""
    res = client.get("/auth/captcha")
    assert res.status_code == 200, res.text
    answer = _fetch_captcha_answer(res.cookies.get("rw_captcha"))
    assert answer, "captcha answer missing from store"
    res = client.post(
        "/auth/signup",
        json={"email": email, "password": password, "confirmPassword": password, "captcha": answer},
    )
    assert res.status_code == 201, res.text
    data = res.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data


def _fetch_captcha_answer(captcha_id: Optional[str]) -> Optional[str]:
    from src.reportwizard.security import captcha

    entry = captcha.CAPTCHA_STORE.get(captcha_id or "")
    return entry.answer if entry else None


def headers_for(client: TestClient, email: str) -> Dict[str, str]:
    headers, _ = signup(client, email)
    return headers
