#!filepath: tests/cache/test_cached.py
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from desim.cache.cached import Granularity, cached, run_cached
from desim.cache.repo import MISS, CacheRepo
from desim.core.state import SimState


# 闭包捕获的值属于函数身份，所以调用记录通过 omit_args 传入
def slow(x, y=1, calls=None):
    calls.append(x)
    return x * y


@pytest.fixture
def repo(tmp_path: Path) -> CacheRepo:
    return CacheRepo(tmp_path / "cache")


def test_run_cached_executes_once(repo, captured_logs):
    calls = []

    assert run_cached(slow, 3, y=2, calls=calls, repo=repo, omit_args=["calls"]) == 6
    assert run_cached(slow, 3, y=2, calls=calls, repo=repo, omit_args=["calls"]) == 6
    assert calls == [3]

    output = "\n".join(captured_logs)
    assert "executed, saving to cache" in output
    assert "recovered from cache" in output

    assert run_cached(slow, 4, y=2, calls=calls, repo=repo, omit_args=["calls"]) == 8
    assert calls == [3, 4]


def test_omit_args_do_not_change_the_key(repo):
    calls = []

    run_cached(slow, 1, calls=calls, repo=repo, omit_args=["calls"])
    run_cached(slow, 1, calls=[], repo=repo, omit_args=["calls"])
    assert calls == [1]


def test_closures_with_different_captured_values_do_not_share_entries(repo):
    def make_multiplier(k):
        def multiply(x):
            return x * k

        return multiply

    assert run_cached(make_multiplier(2), 3, repo=repo) == 6
    assert run_cached(make_multiplier(10), 3, repo=repo) == 30
    assert run_cached(make_multiplier(2), 3, repo=repo) == 6
    assert len(repo) == 2


def test_nested_lambdas_are_part_of_the_key(repo):
    def doubled(xs):
        return list(map(lambda v: v * 2, xs))

    def tripled(xs):
        return list(map(lambda v: v * 3, xs))

    # 只有嵌套 lambda 的常量不同
    tripled.__qualname__ = doubled.__qualname__

    assert run_cached(doubled, [1, 2], repo=repo) == [2, 4]
    assert run_cached(tripled, [1, 2], repo=repo) == [3, 6]


SCALE = 2


def scaled(x):
    return x * SCALE


def test_referenced_globals_are_part_of_the_key(repo, monkeypatch):
    assert run_cached(scaled, 5, repo=repo) == 10
    monkeypatch.setitem(globals(), "SCALE", 7)
    assert run_cached(scaled, 5, repo=repo) == 35


def test_states_differing_only_in_rng_execute_once(repo):
    calls = []

    def total(state, calls=None):
        calls.append(1)
        return sum(state["x"])

    a = SimState(objects={"x": [1, 2, 3]}, seed=1)
    b = SimState(objects={"x": [1, 2, 3]}, seed=2)
    b.rng.random()

    assert run_cached(total, a, calls=calls, repo=repo, omit_args=["calls"]) == 6
    assert run_cached(total, b, calls=calls, repo=repo, omit_args=["calls"]) == 6
    assert calls == [1]


def test_not_older_than_forces_rerun(repo):
    calls = []

    def count(calls=None):
        calls.append(1)
        return len(calls)

    run_cached(count, calls=calls, repo=repo, omit_args=["calls"])
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert run_cached(count, calls=calls, repo=repo, omit_args=["calls"], not_older_than=future) == 2
    assert run_cached(count, calls=calls, repo=repo, omit_args=["calls"]) == 2
    assert len(calls) == 2


def test_undigestable_input_runs_without_cache(repo, captured_logs):
    loop = []
    loop.append(loop)

    def fn(x):
        return "ran"

    assert run_cached(fn, loop, repo=repo) == "ran"
    assert len(repo) == 0
    assert any("executing without cache" in line for line in captured_logs)


def test_unpicklable_result_is_not_cached(repo):
    def fn():
        return lambda: 1

    result = run_cached(fn, repo=repo)
    assert callable(result)
    assert len(repo) == 0


def test_decorator_and_tags(repo):
    @cached(repo, granularity=Granularity.EVENT, tags={"module": "fire"})
    def square(x):
        return x * x

    assert square(4) == 16
    assert square(4) == 16

    (cache_id,) = repo.ids()
    tags = repo.tags(cache_id)
    assert tags["granularity"] == "event"
    assert tags["module"] == "fire"
    assert "created_at" in tags and "accessed" in tags


def test_lookup_miss(repo):
    assert repo.lookup("nothing") is MISS
    assert not MISS
    with pytest.raises(KeyError):
        repo.load_from_cache("nothing")
