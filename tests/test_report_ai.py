import pytest

from src.reportwizard.errors import ShapeValidationError
from src.reportwizard.services import report_ai

from .utils import FakeGateway, make_context, make_options


def test_generate_reports_unwraps_reports_key(monkeypatch):
    seen = {}

    def fake_invoke(prompt, *, purpose, system=None, api_key=None, llm=None):
        seen.update(purpose=purpose, system=system, api_key=api_key)
        return {"reports": [{"title": "A"}]}

    monkeypatch.setattr(report_ai, "invoke_json", fake_invoke)
    out = report_ai.LLMReportGateway("sk-user").generate_reports(make_context())
    assert out == [{"title": "A"}]
    assert seen == {"purpose": "report_generation", "system": report_ai.REPORTS_SYSTEM, "api_key": "sk-user"}


def test_generate_reports_leaves_other_shapes_alone(monkeypatch):
    monkeypatch.setattr(report_ai, "invoke_json", lambda *_a, **_k: {"suggestions": []})
    assert report_ai.LLMReportGateway().generate_reports(make_context()) == {"suggestions": []}


def test_infer_profile_requires_object(monkeypatch):
    monkeypatch.setattr(report_ai, "invoke_json", lambda *_a, **_k: ["not", "a", "profile"])
    with pytest.raises(ShapeValidationError):
        report_ai.LLMReportGateway().infer_profile(make_context())


def test_step_options_prompt_targets_step(monkeypatch):
    prompts = []

    def fake_invoke(prompt, **kwargs):
        prompts.append((prompt, kwargs["purpose"]))
        return {"options": make_options("output_format")}

    monkeypatch.setattr(report_ai, "invoke_json", fake_invoke)
    report_ai.LLMReportGateway().step_options("output_format", make_context())
    assert "Current Choice Step: output_format" in prompts[0][0]
    assert prompts[0][1] == "story_step"


def test_fetch_step_options_decodes():
    gateway = FakeGateway()
    out = report_ai.fetch_step_options(gateway, "comparison_dimension", make_context())
    assert [o["label"] for o in out] == ["By Stage", "Over Time"]
    assert out[0]["property_used"] == "dealstage"
