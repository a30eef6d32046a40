#!filepath: tests/observability/test_instrumentation.py

import time

from loguru import logger

from desim.observability.instrumentation import Instrumentation


def test_instrumentation_timer():
    inst = Instrumentation(enabled=True)

    with inst.timer("gen:grow"):
        time.sleep(0.01)
    with inst.timer("gen:grow"):
        pass

    assert inst.timeline["gen:grow"] > 0
    assert inst.calls["gen:grow"] == 2


def test_timer_without_record():
    inst = Instrumentation(enabled=True)
    with inst.timer("scope", record=False):
        pass
    assert inst.timeline == {}
    assert inst.last_elapsed >= 0.0


def test_timer_records_on_exception():
    inst = Instrumentation(enabled=True)
    try:
        with inst.timer("boom"):
            raise RuntimeError("x")
    except RuntimeError:
        pass
    assert "boom" in inst.timeline


def test_instrumentation_metrics():
    inst = Instrumentation(enabled=True)
    inst.metrics.record("rows", 123)
    inst.metrics.increment("events")
    inst.metrics.increment("events")

    assert inst.metrics.metrics["rows"] == 123
    assert inst.metrics.get("events") == 2


def test_disabled_instrumentation_records_nothing():
    inst = Instrumentation(enabled=False)
    with inst.timer("x"):
        pass
    inst.metrics.increment("events")
    assert inst.timeline == {}
    assert inst.metrics.metrics == {}


def test_generate_timeline_report():
    inst = Instrumentation(enabled=True)

    with inst.timer("phase_X"):
        time.sleep(0.005)

    captured = []
    sink_id = logger.add(lambda msg: captured.append(str(msg)))

    inst.generate_timeline_report("t=0..10 year")

    logger.remove(sink_id)

    output = "\n".join(captured)

    assert "phase_X" in output
    assert "x1" in output
    assert "Simulation timeline for t=0..10 year" in output

    inst.reset()
    assert inst.timeline == {} and inst.calls == {}
