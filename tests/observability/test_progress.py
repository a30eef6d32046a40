#!filepath: tests/observability/test_progress.py

from desim.observability.progress import ProgressReporter


def test_progress_no_crash():
    p = ProgressReporter(enabled=True)
    p.start("simulation", 100, "year")
    p.update("simulation", 20, 100, "year")
    p.update("simulation", 0, 0)
    p.done("simulation")


def test_progress_disabled():
    p = ProgressReporter(enabled=False)
    # Should not crash, and should do nothing
    p.start("Task", 10)
    p.update("Task", 3, 10)
    p.done("Task")
