#!filepath: tests/modules/test_descriptor.py
from pathlib import Path

import pytest

from desim.modules.descriptor import (
    ModuleDescriptor,
    creates_output,
    define_parameter,
    expects_input,
    load_descriptor,
)
from desim.utils.errors import NameMismatch, ParseError


YAML_DESCRIPTOR = """
defineModule:
  name: fire
  version: 1.2
  timeUnit: year
  parameters:
    - paramName: spreadRate
      defaultValue: 0.2
      min: 0
      max: 1
      paramDesc: probability of spread
  inputObjects:
    - objectName: landscape
      objectClass: DataFrame
  outputObjects:
    - objectName: burnMap
  reqdPkgs: [landscape_mod]
"""


def test_yaml_descriptor_with_camel_case_keys():
    d = load_descriptor(YAML_DESCRIPTOR, key="fire")
    assert d.name == "fire"
    assert d.version == "1.2"
    assert d.timeunit == "year"
    assert d.defaults() == {"spreadRate": 0.2}
    assert d.input_names == ["landscape"]
    assert d.output_names == ["burnMap"]
    assert d.required_packages == ["landscape_mod"]
    assert not d.is_parent


def test_descriptor_file_sets_path(tmp_path: Path):
    f = tmp_path / "fire.yml"
    f.write_text(YAML_DESCRIPTOR, encoding="utf-8")
    d = load_descriptor(f, key="fire")
    assert d.path == str(tmp_path)


def test_na_timeunit_is_none():
    assert load_descriptor({"name": "m", "timeunit": "NA"}).timeunit is None


def test_name_mismatch():
    with pytest.raises(NameMismatch) as exc:
        load_descriptor({"name": "fire"}, key="burn")
    assert "Module name metadata (fire) does not match its registration key (burn)" in str(exc.value)


@pytest.mark.parametrize(
    "source",
    [
        "name: [unclosed",
        "- just\n- a list",
        {"name": "m", "unknown_field": 1},
        {"version": "1"},
        {"name": "  "},
    ],
)
def test_malformed_descriptor(source):
    with pytest.raises(ParseError):
        load_descriptor(source)


def test_unreadable_file(tmp_path: Path):
    with pytest.raises(ParseError):
        load_descriptor(tmp_path / "missing.yml")


def test_helpers_build_specs():
    d = ModuleDescriptor(
        name="m",
        parameters=[define_parameter("n", 3, min=1, max=5)],
        input_objects=[expects_input("a", "DataFrame")],
        output_objects=[creates_output("b")],
    )
    p = d.parameter("n")
    assert p.in_range(3) and not p.in_range(9)
    assert p.in_range(None) and p.in_range("text")
    assert d.parameter("missing") is None
    assert d.input_objects[0].object_class == "DataFrame"
    assert d.parameter_names == ["n"]
