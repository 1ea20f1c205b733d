from src.reportwizard.domain.models import (
    BusinessProfile,
    PipelinePhase,
    PipelineStatus,
    SessionState,
    StoryOption,
)
from src.reportwizard.services.story_view import render_state, story_line


def test_fresh_state_renders_no_steps():
    view = render_state(SessionState())
    assert view["phase"] == "not_started"
    assert view["steps"] == []
    assert view["choices"] == []
    assert view["canGenerate"] is False
    assert view["storyLine"] == "Discovery → Analysis → Insight → Report"
    assert view["suggestions"] == {"count": 0, "groups": []}


def test_resolved_and_open_steps_are_rendered():
    state = SessionState(
        story_path={"business_focus": "Revenue Growth"},
        step_options={
            "business_focus": [StoryOption(id="1", label="Revenue Growth", description="d")],
            "metric_type": [StoryOption(id="1", label="Total Value", description="d", viable_because="x")],
        },
        pipeline=PipelineStatus(phase=PipelinePhase.STEP_COMPLETE, step="metric_type", seq=2),
    )
    view = render_state(state)
    assert [(s["step"], s["status"]) for s in view["steps"]] == [
        ("business_focus", "resolved"),
        ("metric_type", "open"),
    ]
    assert view["steps"][1]["options"][0]["viable_because"] == "x"
    assert view["storyLine"].startswith("Revenue Growth → Analysis")
    assert view["choices"] == [{"stepId": "business_focus", "label": "Revenue Growth"}]


def test_failed_step_exposes_reason():
    state = SessionState(pipeline=PipelineStatus(phase=PipelinePhase.FAILED, step="business_focus", reason="boom"))
    view = render_state(state)
    assert view["error"] == "boom"
    assert view["steps"][0]["status"] == "failed"
    assert view["loading"] is False


def test_profile_summary_and_suggestion_groups():
    state = SessionState(
        business_profile=BusinessProfile(
            inferred_profile={"industry": "SaaS", "industry_confidence": "high", "industry_signals": ["a", "b", "c", "d"]},
            business_questions_possible=["q1", "q2"],
        ),
        suggestions=[{"title": "A", "confidence": "low"}, {"title": "B", "confidence": "high"}],
    )
    view = render_state(state)
    assert view["profile"]["industry"] == "SaaS"
    assert view["profile"]["confidence"] == "HIGH"
    assert view["profile"]["signals"] == ["a", "b", "c"]
    assert view["profile"]["questionCount"] == 2
    groups = view["suggestions"]["groups"]
    assert [g["bucket"] for g in groups] == ["high", "low"]
    assert groups[0]["title"] == "Ready to Build"


def test_simple_variant_story_line_uses_step_titles():
    assert story_line(SessionState(variant="simple")) == "Audience → Goal → Timeframe"
