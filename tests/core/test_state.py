#!filepath: tests/core/test_state.py
import pytest

from desim.core.events import NORMAL, Event
from desim.core.state import SimState, SimTimes, module_state, param, set_param
from desim.modules.descriptor import load_descriptor


def test_object_access():
    state = SimState(objects={"a": 1})
    state["b"] = 2
    assert "a" in state and state["b"] == 2
    assert sorted(state) == ["a", "b"]
    del state["a"]
    assert state.get("a", "missing") == "missing"

    with pytest.raises(KeyError, match="not in the simulation state"):
        state["nope"]


def test_times_validation():
    with pytest.raises(ValueError):
        SimTimes(start=5, end=1)


def test_time_accessors_convert_units():
    state = SimState(times=SimTimes(start=0, end=2, current=1, timeunit="year"))
    assert state.time() == 1
    assert state.time("month") == pytest.approx(12.0)
    assert state.end("day") == pytest.approx(730.5)


def test_schedule_event_none_time_is_skipped():
    state = SimState()
    assert state.schedule_event(None, "m", "plot") is None
    assert len(state.queue) == 0


def test_schedule_event_uses_module_timeunit():
    state = SimState(times=SimTimes(start=0, end=100, current=0, timeunit="month"))
    state.descriptors["yearly"] = load_descriptor({"name": "yearly", "timeunit": "year"})

    e = state.schedule_event(1, "yearly", "tick")
    assert e.time == pytest.approx(12.0)
    assert e.priority == NORMAL

    e = state.schedule_event(1, "yearly", "tick", unit="month")
    assert e.time == pytest.approx(1.0)


def test_time_defaults_to_the_executing_module_unit():
    state = SimState(times=SimTimes(start=0, end=100, current=24, timeunit="month"))
    state.descriptors["yearly"] = load_descriptor({"name": "yearly", "timeunit": "year"})
    assert state.time() == 24

    state.current = Event(24, "yearly", "tick")
    assert state.time() == pytest.approx(2.0)
    assert state.now == 24

    e = state.schedule_event(state.time() + 1, "yearly", "tick")
    assert e.time == pytest.approx(36.0)


def test_param_accessors():
    state = SimState(params={"fire": {"rate": 0.5}})
    assert param(state, "fire", "rate") == 0.5
    assert param(state, "fire", "missing", None) is None
    with pytest.raises(KeyError):
        param(state, "fire", "missing")

    set_param(state, "fire", "rate", 0.9)
    assert state.params["fire"]["rate"] == 0.9


def test_module_state_is_created_on_demand():
    state = SimState()
    module_state(state, "m")["n"] = 1
    assert state.module_states == {"m": {"n": 1}}


def test_copy_is_independent():
    state = SimState(objects={"xs": [1, 2]})
    state.schedule_event(1, "m", "x")
    clone = state.copy()

    clone["xs"].append(3)
    clone.queue.pop_next()

    assert state["xs"] == [1, 2]
    assert len(state.queue) == 1


def test_supplied_elsewhere():
    state = SimState(objects={"given": 1})
    state.descriptors["producer"] = load_descriptor(
        {"name": "producer", "output_objects": [{"object_name": "made"}]}
    )
    assert state.supplied_elsewhere("given")
    assert state.supplied_elsewhere("made", "consumer")
    assert not state.supplied_elsewhere("made", "producer")
    assert not state.supplied_elsewhere("nothing")
