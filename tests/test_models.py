"""Tests for schema data structures."""

import itertools

import pytest

from cached_json.models import (
    OMITTED,
    ClassSchema,
    Computed,
    ExposureLevel,
    FieldKind,
    NamedAttribute,
    RenderRequest,
    json_field,
    reference,
)


class Thing:
    def __init__(self):
        self.id = 1
        self.color = "red"

    def shout(self):
        return "HEY"


def test_exposure_levels_are_ordered():
    assert ExposureLevel.SHORT < ExposureLevel.PUBLIC < ExposureLevel.ALL


@pytest.mark.parametrize(
    "value,expected",
    [
        ("short", ExposureLevel.SHORT),
        ("Public", ExposureLevel.PUBLIC),
        (" ALL ", ExposureLevel.ALL),
        (ExposureLevel.PUBLIC, ExposureLevel.PUBLIC),
        (2, ExposureLevel.ALL),
    ],
)
def test_exposure_level_parse(value, expected):
    assert ExposureLevel.parse(value) is expected


def test_exposure_level_parse_rejects_unknown_name():
    with pytest.raises(ValueError):
        ExposureLevel.parse("secret")


def test_json_field_defaults():
    spec = json_field("color")
    assert spec.definition == NamedAttribute("color")
    assert spec.kind is FieldKind.SCALAR
    assert spec.min_exposure is ExposureLevel.SHORT
    assert spec.versions is None
    assert spec.trusted is False
    assert spec.markdown is False


def test_json_field_definitions():
    assert json_field("colour", "color").definition == NamedAttribute("color")

    fn = lambda thing: thing.color.upper()  # noqa: E731
    computed = json_field("upper", fn)
    assert isinstance(computed.definition, Computed)
    assert computed.definition.resolve(Thing()) == "RED"

    with pytest.raises(TypeError):
        json_field("bad", 42)


def test_named_attribute_calls_bound_methods():
    assert NamedAttribute("shout").resolve(Thing()) == "HEY"
    assert NamedAttribute("color").resolve(Thing()) == "red"


def test_json_field_versions():
    assert json_field("a", version="v3").versions == frozenset({"v3"})
    assert json_field("a", versions=["v2", "v3"]).versions == frozenset({"v2", "v3"})
    with pytest.raises(ValueError):
        json_field("a", version="v1", versions=["v2"])


def test_reference_shorthand():
    spec = reference("friends", exposure="public")
    assert spec.is_reference
    assert spec.min_exposure is ExposureLevel.PUBLIC


def test_visibility_is_monotonic_in_exposure():
    """A field visible at a level stays visible at every higher level."""
    specs = [
        json_field("a", exposure=level, versions=versions)
        for level in ExposureLevel
        for versions in (None, ["v1"], ["v1", "v2"])
    ]
    for spec, version in itertools.product(specs, ["v1", "v2", "v9"]):
        for low, high in itertools.combinations(sorted(ExposureLevel), 2):
            if spec.is_visible(version, low):
                assert spec.is_visible(version, high)


def test_version_filtering():
    restricted = json_field("born", versions=["v2", "v3"])
    unrestricted = json_field("name")
    for version in ["v1", "v2", "v3", "v4"]:
        assert restricted.is_visible(version, ExposureLevel.ALL) == (version in {"v2", "v3"})
        assert unrestricted.is_visible(version, ExposureLevel.SHORT)


def test_class_schema_rejects_duplicate_names():
    with pytest.raises(ValueError):
        ClassSchema(cls=Thing, fields=(json_field("color"), json_field("color")))


def test_class_schema_helpers():
    schema = ClassSchema(
        cls=Thing,
        fields=(
            json_field("color", version="v1"),
            json_field("shout", versions=["v2", "v3"]),
            reference("parts"),
        ),
    )
    assert schema.known_versions == frozenset({"v1", "v2", "v3"})
    assert [spec.name for spec in schema.scalar_fields] == ["color", "shout"]
    assert [spec.name for spec in schema.reference_fields] == ["parts"]
    assert schema.field("shout").versions == frozenset({"v2", "v3"})
    assert schema.instance_id(Thing()) == 1
    assert schema.hides(Thing()) is False
    with pytest.raises(KeyError):
        schema.field("nope")


def test_render_request_descend_copies_visited():
    root = RenderRequest(version="v1", exposure=ExposureLevel.ALL)
    left = root.descend(("Thing", 1), ExposureLevel.SHORT)
    right = root.descend(("Thing", 2))

    assert root.visited == frozenset()
    assert left.visited == frozenset({("Thing", 1)})
    assert right.visited == frozenset({("Thing", 2)})
    assert left.exposure is ExposureLevel.SHORT
    assert right.exposure is ExposureLevel.ALL
    assert left.is_child and left.depth == 1
    assert not root.is_child


def test_omitted_is_a_falsy_singleton():
    assert not OMITTED
    assert repr(OMITTED) == "OMITTED"
    assert type(OMITTED)() is OMITTED
