#!filepath: tests/cache/test_digest.py
import random
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from desim.cache.digest import ALGORITHMS, DigestOptions, all_equal, digest, hash_bytes, robust_digestible
from desim.core.state import SimState
from desim.utils.errors import CacheDigestFailure


def test_digest_is_order_independent_for_mappings():
    assert digest({"a": 1, "b": [1, 2]}) == digest({"b": [1, 2], "a": 1})
    assert digest([1, 2]) != digest([2, 1])
    assert digest((1, 2)) != digest([1, 2])


def test_hidden_and_timestamp_keys_are_ignored():
    base = {"value": 1}
    assert digest(base) == digest({"value": 1, "._cache": "x", "timestamp": datetime.now()})


def test_rng_is_stripped():
    assert digest({"rng": np.random.default_rng(1)}) == digest({"rng": np.random.default_rng(2)})
    assert digest({"rng": random.Random(1)}) == digest({"rng": random.Random(99)})


def test_dataframes_and_arrays():
    df = pd.DataFrame({"a": [1, 2], "b": [0.5, 1.5]})
    assert digest(df) == digest(df.copy())
    assert digest(df) != digest(df.assign(b=[0.5, 2.5]))
    assert digest(np.arange(4)) != digest(np.arange(4).astype(float))


def test_file_paths_digest_content(tmp_path: Path):
    f = tmp_path / "in.txt"
    f.write_text("one")
    first = digest(f)
    f.write_text("two")
    assert digest(f) != first

    g = tmp_path / "copy" / "in.txt"
    g.parent.mkdir()
    g.write_text("two")
    assert digest(f) == digest(g)


def test_functions_digest_by_code():
    def f(x):
        return x + 1

    def g(x):
        return x + 2

    assert digest(f) != digest(g)
    assert digest(f) == digest(f)


def test_closure_values_change_the_digest():
    def make(k):
        return lambda x: x * k

    assert digest(make(2)) == digest(make(2))
    assert digest(make(2)) != digest(make(3))


def test_recursive_function_digests():
    def fact(n):
        return 1 if n <= 1 else n * fact(n - 1)

    assert digest(fact) == digest(fact)


def test_self_reference_fails():
    loop = []
    loop.append(loop)
    with pytest.raises(CacheDigestFailure):
        digest(loop)


def test_state_digest_ignores_rng_and_meta():
    a = SimState(objects={"x": 1}, seed=1)
    b = SimState(objects={"x": 1}, seed=2)
    b.meta["._created"] = datetime.now() + timedelta(days=1)
    assert all_equal(a, b)

    b["x"] = 2
    assert not all_equal(a, b)


@pytest.mark.parametrize("algo", ALGORITHMS)
def test_all_algorithms(algo):
    opts = DigestOptions(algo=algo)
    assert digest({"a": 1}, opts) == digest({"a": 1}, opts)
    assert isinstance(hash_bytes(b"abc", algo), str)


def test_unknown_algorithm():
    with pytest.raises(CacheDigestFailure):
        DigestOptions(algo="md4")


def test_robust_digestible_is_json_friendly():
    tree = robust_digestible({"when": datetime(2024, 1, 1), "nan": float("nan")})
    assert tree["__map__"][0][0] == "nan"
