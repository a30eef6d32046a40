#!filepath: tests/modules/test_resolver.py
import itertools

import pytest

from desim.modules.base import SimModule, handles
from desim.modules.descriptor import load_descriptor
from desim.modules.resolver import (
    CHILD_EDGE,
    MISSING_PACKAGE,
    OBJECT_EDGE,
    UNDECLARED_USE,
    UNMET_INPUT,
    UNUSED_INPUT,
    UNUSED_OUTPUT,
    UNUSED_PARAM,
    build_dependency_graph,
    diagnose,
    expand_groups,
    resolve_load_order,
)
from desim.utils.errors import CyclicDependency, CyclicModuleGroup


def d(name, inputs=(), outputs=(), **kw):
    return load_descriptor(
        {
            "name": name,
            "input_objects": [{"object_name": o} for o in inputs],
            "output_objects": [{"object_name": o} for o in outputs],
            **kw,
        }
    )


# ---------------------------------------------------------------------
# load order
# ---------------------------------------------------------------------
def test_producer_before_consumer_for_every_permutation():
    mods = [d("gen", outputs=["x"]), d("mid", inputs=["x"], outputs=["y"]), d("use", inputs=["y"])]
    for perm in itertools.permutations(mods):
        assert resolve_load_order(list(perm)) == ["gen", "mid", "use"]


def test_independent_modules_keep_caller_order():
    mods = [d("b"), d("a"), d("c")]
    assert resolve_load_order(mods) == ["b", "a", "c"]


def test_object_cycle_falls_back_to_caller_order(captured_logs):
    mods = [d("a", inputs=["y"], outputs=["x"]), d("b", inputs=["x"], outputs=["y"])]
    assert resolve_load_order(mods) == ["a", "b"]
    assert any("dependency cycle" in line for line in captured_logs)


def test_package_cycle_is_fatal():
    mods = [d("a", required_packages=["b"]), d("b", required_packages=["a"])]
    with pytest.raises(CyclicDependency):
        resolve_load_order(mods)


def test_package_edge_orders_modules():
    mods = [d("user", required_packages=["base"]), d("base")]
    assert resolve_load_order(mods) == ["base", "user"]


def test_duplicates_are_skipped_with_warning(captured_logs):
    assert resolve_load_order([d("a"), d("b"), d("a")]) == ["a", "b"]
    assert any("Duplicate module, a, specified. Skipping loading it twice." in line for line in captured_logs)


# ---------------------------------------------------------------------
# groups
# ---------------------------------------------------------------------
def test_parent_expands_into_children_and_disappears():
    table = {
        "grp": load_descriptor({"name": "grp", "child_modules": ["a", "sub"], "path": "/mods/grp"}),
        "sub": load_descriptor({"name": "sub", "child_modules": ["b"]}),
        "a": d("a"),
        "b": d("b"),
    }
    groups = []
    out = expand_groups(["grp", "a"], table.__getitem__, groups_out=groups)

    assert [x.name for x in out] == ["a", "b"]
    assert all(x.path == "/mods/grp" for x in out)
    assert [g.name for g in groups] == ["grp", "sub"]


def test_self_referencing_group_fails():
    table = {
        "g1": load_descriptor({"name": "g1", "child_modules": ["g2"]}),
        "g2": load_descriptor({"name": "g2", "child_modules": ["g1"]}),
    }
    with pytest.raises(CyclicModuleGroup):
        expand_groups(["g1"], table.__getitem__)


def test_dependency_graph_edges():
    grp = load_descriptor({"name": "grp", "child_modules": ["gen", "use"]})
    mods = [d("gen", outputs=["x"]), d("use", inputs=["x"], outputs=["x"])]
    graph = build_dependency_graph(mods, [grp])

    assert graph.successors("gen", [OBJECT_EDGE]) == ["use"]
    assert graph.predecessors("use", [OBJECT_EDGE]) == ["gen"]
    assert graph.successors("grp", [CHILD_EDGE]) == ["gen", "use"]

    edges = graph.edge_list()
    assert list(edges.columns) == ["from", "to", "kind", "object_name", "object_class"]
    # use -> use self loop is not an edge
    assert not ((edges["from"] == "use") & (edges["to"] == "use")).any()


# ---------------------------------------------------------------------
# diagnostics
# ---------------------------------------------------------------------
def test_static_diagnostics():
    mods = [
        d("gen", outputs=["x", "extra"]),
        d("use", inputs=["x", "given", "ghost"], required_packages=["surely_not_installed_pkg"]),
    ]
    diags = diagnose(mods, supplied=["given"])
    kinds = {(x.kind, x.module_name, x.object_name) for x in diags}

    assert (UNMET_INPUT, "use", "ghost") in kinds
    assert (UNMET_INPUT, "use", "given") not in kinds
    assert (UNUSED_OUTPUT, "gen", "extra") in kinds
    assert (MISSING_PACKAGE, "use", "surely_not_installed_pkg") in kinds


class Sloppy(SimModule):
    metadata = {
        "name": "sloppy",
        "parameters": [{"name": "usedParam"}, {"name": "deadParam"}],
        "input_objects": [{"object_name": "declared_in"}, {"object_name": "never_read"}],
        "output_objects": [{"object_name": "declared_out"}],
    }

    @handles("init")
    def init(self, state):
        rate = state.params["sloppy"]["usedParam"]
        state["declared_out"] = state["declared_in"] * rate
        state["secret_out"] = state.get("secret_in")


def test_code_diagnostics():
    module = Sloppy()
    diags = diagnose([module.descriptor()], supplied=["declared_in", "never_read"], modules={"sloppy": module})
    found = {(x.kind, x.object_name) for x in diags}

    assert (UNDECLARED_USE, "secret_in") in found
    assert (UNDECLARED_USE, "secret_out") in found
    assert (UNUSED_INPUT, "never_read") in found
    assert (UNUSED_PARAM, "deadParam") in found
    assert (UNUSED_PARAM, "usedParam") not in found
    assert (UNDECLARED_USE, "declared_in") not in found
