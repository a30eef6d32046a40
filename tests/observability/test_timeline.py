#!filepath: tests/observability/test_timeline.py

from loguru import logger

from desim.observability.timeline_reporter import TimelineReporter


def test_timeline_log_output():
    tl = {
        "fire:burn": 1.23,
        "veg:grow": 2.34,
    }
    reporter = TimelineReporter(tl, "t=0..5 year", calls={"fire:burn": 4})

    captured = []

    # 临时添加一个 sink 捕获 Loguru 输出
    sink_id = logger.add(lambda msg: captured.append(str(msg)))

    reporter.print()

    logger.remove(sink_id)  # 恢复

    # 断言日志确实包含 timeline 内容
    output = "\n".join(captured)

    assert "Simulation timeline for t=0..5 year" in output
    assert "fire:burn" in output
    assert "1.23" in output
    assert "x4" in output
    assert "veg:grow" in output
    assert "3.570s" in output
