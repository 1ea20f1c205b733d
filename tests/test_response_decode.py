import pytest

from src.reportwizard.errors import ShapeValidationError
from src.reportwizard.services.response_decode import Bare, FirstValue, OptionsKey, classify, decode_options

OPTION = {"id": 1, "label": "Revenue", "description": "Money in"}


def test_classify_variants():
    assert isinstance(classify([OPTION]), Bare)
    assert isinstance(classify({"options": [OPTION]}), OptionsKey)
    payload = classify({"choices": [OPTION]})
    assert isinstance(payload, FirstValue)
    assert payload.key == "choices"


def test_options_key_wins_over_first_value():
    raw = {"other": [{"id": "x", "label": "Wrong", "description": "d"}], "options": [OPTION]}
    assert decode_options(raw)[0]["label"] == "Revenue"


def test_ids_are_stringified_and_extras_kept():
    out = decode_options([dict(OPTION, viable_because="numeric")], ("id", "label", "description", "viable_because"))
    assert out == [{"id": "1", "label": "Revenue", "description": "Money in", "viable_because": "numeric"}]


@pytest.mark.parametrize(
    "raw",
    [
        "just text",
        {"message": "sorry"},
        {},
        None,
        42,
    ],
)
def test_unrecognized_shapes_are_rejected(raw):
    with pytest.raises(ShapeValidationError):
        decode_options(raw)


def test_empty_list_is_rejected():
    with pytest.raises(ShapeValidationError, match="non-empty"):
        decode_options({"options": []})


def test_missing_required_field_is_rejected():
    with pytest.raises(ShapeValidationError, match="grounding_properties"):
        decode_options([OPTION], ("id", "label", "description", "grounding_properties"))


def test_non_object_items_are_rejected():
    with pytest.raises(ShapeValidationError, match="not an object"):
        decode_options(["Revenue"])


OPTIONS = [
    {"id": "a", "label": "Revenue", "description": "Money in"},
    {"id": "b", "label": "Pipeline", "description": "Deals in flight"},
    {"id": "c", "label": "Retention", "description": "Customers kept"},
]


@pytest.mark.parametrize("wrap", [lambda arr: arr, lambda arr: {"options": arr}, lambda arr: {"anyKey": arr}])
def test_every_shape_decodes_to_the_same_ordered_options(wrap):
    out = decode_options(wrap(OPTIONS))
    assert out == decode_options(OPTIONS)
    assert [o["label"] for o in out] == ["Revenue", "Pipeline", "Retention"]
