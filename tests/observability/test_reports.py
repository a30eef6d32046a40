#!filepath: tests/observability/test_reports.py

from conftest import Generator, Observer
from desim.observability.reports import COMPLETED_COLUMNS, completed_frame, elapsed_time


def test_completed_frame_converts_units(engine):
    state = engine.run(engine.init([Generator()], times={"end": 2}))
    df = completed_frame(state, unit="month")

    assert list(df.columns) == COMPLETED_COLUMNS
    grows = df.loc[df["event_type"] == "grow", "time"].tolist()
    assert grows == [12.0, 24.0]
    assert not df["cached"].any()


def test_completed_log_is_bounded(registry):
    from desim.config.engine_config import EngineConfig
    from desim.engine.simulation import SimEngine

    engine = SimEngine(registry=registry, config=EngineConfig(n_completed=3, timeline_report=False))
    state = engine.run(engine.init([Generator()], times={"end": 10}))
    assert len(state.completed) == 3
    assert [c.event.time for c in state.completed] == [8, 9, 10]


def test_elapsed_time_summaries(engine):
    state = engine.run(engine.init([Observer(), Generator()], times={"end": 3}))

    by_event = elapsed_time(state)
    assert set(by_event.columns) == {"module_name", "event_type", "elapsed", "n"}
    row = by_event[(by_event["module_name"] == "gen") & (by_event["event_type"] == "grow")]
    assert int(row["n"].iloc[0]) == 3

    by_module = elapsed_time(state, by="module")
    assert by_module.set_index("module_name").loc["use", "n"] == 4


def test_elapsed_time_empty():
    from desim.core.state import SimState

    assert elapsed_time(SimState()).empty
