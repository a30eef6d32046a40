#!filepath: tests/core/test_event_queue.py
import math
import random

import pytest

from desim.core.event_queue import EventQueue
from desim.core.events import FIRST, HIGHEST, LAST, LOWEST, NORMAL, Event
from desim.core.state import SimState
from desim.utils.errors import InvalidScheduleTime


def drain(q: EventQueue):
    out = []
    while True:
        e = q.pop_next()
        if e is None:
            return out
        q.advance_time_if_needed(e)
        out.append(e)


def test_pop_order_is_time_priority_then_insertion():
    q = EventQueue()
    q.add(2.0, "a", "x", NORMAL)
    q.add(1.0, "b", "x", LAST)
    q.add(1.0, "c", "x", FIRST)
    q.add(1.0, "d", "x", FIRST)
    q.add(0.5, "e", "x", LOWEST)

    order = [e.module_name for e in drain(q)]
    assert order == ["e", "c", "d", "b", "a"]


def test_pop_order_is_sorted_for_random_insertions():
    rng = random.Random(7)
    q = EventQueue()
    for i in range(200):
        q.add(rng.choice([0.0, 1.0, 2.5, 3.0]), f"m{i}", "x", rng.choice([HIGHEST, FIRST, NORMAL, LAST]))

    popped = drain(q)
    keys = [(e.time, e.priority, e.seq) for e in popped]
    assert keys == sorted(keys)
    assert len({e.seq for e in popped}) == 200


def test_clock_never_goes_backwards():
    q = EventQueue(now=1.0)
    q.add(3.0, "a", "x")
    e = q.pop_next()
    assert q.advance_time_if_needed(e) == 3.0
    assert q.advance_time_if_needed(Event(2.0, "b", "x")) == 3.0


@pytest.mark.parametrize("bad", [0.5, math.nan, math.inf, None, "soon"])
def test_invalid_time_is_rejected(bad):
    q = EventQueue(now=1.0)
    with pytest.raises(InvalidScheduleTime):
        q.add(bad, "m", "x")
    assert len(q) == 0


def test_event_at_current_time_is_allowed():
    q = EventQueue(now=1.0)
    q.add(1.0, "m", "x")
    assert q.peek().time == 1.0


def test_remove_by_module_and_type():
    q = EventQueue()
    q.add(1.0, "a", "x")
    q.add(2.0, "a", "y")
    q.add(3.0, "b", "x")
    assert q.remove(module_name="a", event_type="x") == 1
    assert [e.label() for e in q.events()] == ["a:y", "b:x"]
    assert q.remove(event_type="x") == 1
    assert q.remove(module_name="missing") == 0
    assert len(q) == 1


def test_to_frame_lists_pending_events_in_order():
    q = EventQueue()
    q.add(2.0, "a", "later")
    q.add(1.0, "b", "sooner")
    df = q.to_frame()
    assert list(df.columns) == ["time", "module_name", "event_type", "priority"]
    assert df["event_type"].tolist() == ["sooner", "later"]


# ---------------------------------------------------------------------
# conditional events
# ---------------------------------------------------------------------
def test_conditional_fires_exactly_once():
    state = SimState()
    state["x"] = 0
    state.schedule_conditional("m", "fire", lambda s: s["x"] >= 2)

    fired = []
    for value in [1, 2, 3, 4]:
        state["x"] = value
        fired.extend(state.queue.promote_conditionals(state))

    assert [e.label() for e in fired] == ["m:fire"]
    assert fired[0].time == state.now
    assert state.queue.conditionals() == ()


def test_conditional_respects_min_and_max_time():
    q = EventQueue()
    state = SimState()
    q.schedule_conditional("m", "late", lambda s: True, min_time=5.0)
    q.schedule_conditional("m", "gone", lambda s: True, max_time=1.0)

    q.advance_to(2.0)
    assert q.promote_conditionals(state) == []
    # "gone" expired, "late" still waiting
    assert [c.event_type for c in q.conditionals()] == ["late"]

    q.advance_to(5.0)
    assert [e.event_type for e in q.promote_conditionals(state)] == ["late"]


def test_conditional_predicate_must_be_callable():
    with pytest.raises(TypeError):
        EventQueue().schedule_conditional("m", "x", predicate=True)
