#!filepath: desim/modules/resolver.py
from __future__ import annotations

import importlib.util
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import pandas as pd

from desim.modules.code_checks import scan_objects
from desim.modules.descriptor import ModuleDescriptor
from desim.utils.errors import CyclicDependency, CyclicModuleGroup, UnmetInputObject
from desim.utils.logger import logs


# ----------------------------------------------------------------------
# Diagnostics
# ----------------------------------------------------------------------
UNMET_INPUT = "unmet_input"
UNUSED_OUTPUT = "unused_output"
UNDECLARED_USE = "undeclared_use"
UNUSED_INPUT = "unused_input"
UNUSED_PARAM = "unused_param"
MISSING_PACKAGE = "missing_package"

WARNING = "warning"
INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    module_name: str
    message: str
    object_name: Optional[str] = None
    level: str = WARNING

    @property
    def category(self) -> Optional[type]:
        """unmet_input 对应 UnmetInputObject 警告类别；其余为 None"""
        return UnmetInputObject if self.kind == UNMET_INPUT else None

    def log(self) -> None:
        if self.level == WARNING:
            logs.warning(f"[Resolver] {self.message}")
        else:
            logs.info(f"[Resolver] {self.message}")


# ----------------------------------------------------------------------
# Dependency graph
# ----------------------------------------------------------------------
OBJECT_EDGE = "object"
PACKAGE_EDGE = "package"
CHILD_EDGE = "child"


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    kind: str
    object_name: Optional[str] = None
    object_class: Optional[str] = None


@dataclass
class DependencyGraph:
    """
    nodes = 模块名；A -> B：
      - object  : A 输出的对象是 B 的输入（自环忽略）
      - package : B 的 required_packages 包含 A
      - child   : B 是分组 A 的直接子模块
    """

    nodes: List[str] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def successors(self, name: str, kinds: Optional[Iterable[str]] = None) -> List[str]:
        kinds = set(kinds) if kinds is not None else None
        out: List[str] = []
        for e in self.edges:
            if e.source == name and (kinds is None or e.kind in kinds) and e.target not in out:
                out.append(e.target)
        return out

    def predecessors(self, name: str, kinds: Optional[Iterable[str]] = None) -> List[str]:
        kinds = set(kinds) if kinds is not None else None
        out: List[str] = []
        for e in self.edges:
            if e.target == name and (kinds is None or e.kind in kinds) and e.source not in out:
                out.append(e.source)
        return out

    def edge_list(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "from": e.source,
                    "to": e.target,
                    "kind": e.kind,
                    "object_name": e.object_name,
                    "object_class": e.object_class,
                }
                for e in self.edges
            ],
            columns=["from", "to", "kind", "object_name", "object_class"],
        )


def build_dependency_graph(
    descriptors: Sequence[ModuleDescriptor],
    groups: Sequence[ModuleDescriptor] = (),
) -> DependencyGraph:
    names = [d.name for d in descriptors]
    name_set = set(names)
    edges: List[Edge] = []

    for producer in descriptors:
        for out in producer.output_objects:
            for consumer in descriptors:
                if consumer.name == producer.name:
                    continue
                if out.object_name in consumer.input_names:
                    edges.append(
                        Edge(producer.name, consumer.name, OBJECT_EDGE, out.object_name, out.object_class)
                    )

    for d in descriptors:
        for pkg in d.required_packages:
            if pkg in name_set and pkg != d.name:
                edges.append(Edge(pkg, d.name, PACKAGE_EDGE))

    for g in groups:
        for child in g.child_modules:
            edges.append(Edge(g.name, child, CHILD_EDGE))

    return DependencyGraph(nodes=names, edges=edges)


# ----------------------------------------------------------------------
# Group expansion
# ----------------------------------------------------------------------
DescriptorLookup = Callable[[str], ModuleDescriptor]


def dedupe(descriptors: Iterable[ModuleDescriptor]) -> List[ModuleDescriptor]:
    seen: Set[str] = set()
    out: List[ModuleDescriptor] = []
    for d in descriptors:
        if d.name in seen:
            logs.warning(f"[Resolver] Duplicate module, {d.name}, specified. Skipping loading it twice.")
            continue
        seen.add(d.name)
        out.append(d)
    return out


def expand_groups(
    items: Sequence[Union[str, ModuleDescriptor]],
    lookup: Optional[DescriptorLookup] = None,
    *,
    groups_out: Optional[List[ModuleDescriptor]] = None,
) -> List[ModuleDescriptor]:
    """
    递归展开父模块：
      - 父模块被其子模块替换（自身移除）
      - 子模块继承父模块的 path
      - 直接或间接把自己列为子模块 → CyclicModuleGroup
      - 展开后重名的模块保留第一次出现
    groups_out: 传入列表时收集被展开的父模块（用于依赖图的 child 边）
    """

    def resolve(item) -> ModuleDescriptor:
        if isinstance(item, ModuleDescriptor):
            return item
        if lookup is None:
            raise TypeError(f"Module '{item}' given by name but no lookup was provided")
        return lookup(item)

    def walk(desc: ModuleDescriptor, chain: Tuple[str, ...]) -> List[ModuleDescriptor]:
        if desc.name in chain:
            raise CyclicModuleGroup(chain + (desc.name,))
        if not desc.is_parent:
            return [desc]
        if groups_out is not None:
            groups_out.append(desc)
        out: List[ModuleDescriptor] = []
        for child_name in desc.child_modules:
            child = resolve(child_name)
            if desc.path is not None:
                child = child.model_copy(update={"path": desc.path})
            out.extend(walk(child, chain + (desc.name,)))
        return out

    expanded: List[ModuleDescriptor] = []
    for item in items:
        expanded.extend(walk(resolve(item), ()))
    return dedupe(expanded)


# ----------------------------------------------------------------------
# Load order
# ----------------------------------------------------------------------
def resolve_load_order(descriptors: Sequence[ModuleDescriptor]) -> List[str]:
    """
    稳定拓扑排序（Kahn，候选按调用方顺序取最早者）

      - package 边（required_packages）必须满足，成环 → CyclicDependency
      - object 边尽量满足；成环时按调用方顺序打破并给出 warning
    """
    descriptors = dedupe(descriptors)
    names = [d.name for d in descriptors]
    index = {n: i for i, n in enumerate(names)}

    graph = build_dependency_graph(descriptors)
    hard: Set[Tuple[str, str]] = {(e.source, e.target) for e in graph.edges if e.kind == PACKAGE_EDGE}
    soft: Set[Tuple[str, str]] = {(e.source, e.target) for e in graph.edges if e.kind == OBJECT_EDGE}
    every = hard | soft

    indeg_all: Dict[str, int] = {n: 0 for n in names}
    indeg_hard: Dict[str, int] = {n: 0 for n in names}
    for _, t in every:
        indeg_all[t] += 1
    for _, t in hard:
        indeg_hard[t] += 1

    remaining = set(names)
    order: List[str] = []
    while remaining:
        ready = [n for n in remaining if indeg_all[n] == 0]
        if not ready:
            ready = [n for n in remaining if indeg_hard[n] == 0]
            if not ready:
                raise CyclicDependency(sorted(remaining, key=index.get))
            cycle = sorted(remaining, key=index.get)
            logs.warning(
                f"[Resolver] object dependency cycle among {cycle}; "
                f"using caller order for '{min(ready, key=index.get)}'"
            )
        nxt = min(ready, key=index.get)
        order.append(nxt)
        remaining.discard(nxt)
        for s, t in every:
            if s == nxt and t in remaining:
                indeg_all[t] -= 1
                if (s, t) in hard:
                    indeg_hard[t] -= 1

    logs.debug(f"[Resolver] load order: {order}")
    return order


# ----------------------------------------------------------------------
# Diagnose
# ----------------------------------------------------------------------
def _package_available(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def diagnose(
    descriptors: Sequence[ModuleDescriptor],
    supplied: Iterable[str] = (),
    modules: Optional[Mapping[str, object]] = None,
) -> List[Diagnostic]:
    """
    静态检查模块契约（全部非致命）：

      - unmet_input     : 输入没有任何模块产出，也没有外部提供
      - unused_output   : 输出没有任何其它模块消费（info）
      - missing_package : required_packages 既不是模块也无法 import
      - undeclared_use  : 代码里读 / 写了未声明的对象（需提供 modules）
      - unused_input    : 声明了输入但代码里从未读取（需提供 modules）
      - unused_param    : 声明了参数但代码里从未引用（需提供 modules）
    """
    supplied = set(supplied)
    names = {d.name for d in descriptors}
    produced: Dict[str, Set[str]] = {}
    consumed: Dict[str, Set[str]] = {}
    for d in descriptors:
        for o in d.output_names:
            produced.setdefault(o, set()).add(d.name)
        for i in d.input_names:
            consumed.setdefault(i, set()).add(d.name)

    out: List[Diagnostic] = []
    for d in descriptors:
        for obj in d.input_names:
            producers = produced.get(obj, set()) - {d.name}
            if not producers and obj not in supplied:
                out.append(
                    Diagnostic(
                        UNMET_INPUT, d.name,
                        f"{d.name}: input object '{obj}' is not produced by any module "
                        f"and was not supplied",
                        obj,
                    )
                )
        for obj in d.output_names:
            if not (consumed.get(obj, set()) - {d.name}):
                out.append(
                    Diagnostic(
                        UNUSED_OUTPUT, d.name,
                        f"{d.name}: output object '{obj}' is not used by any other module",
                        obj, INFO,
                    )
                )
        for pkg in d.required_packages:
            if pkg not in names and not _package_available(pkg):
                out.append(
                    Diagnostic(MISSING_PACKAGE, d.name, f"{d.name}: required package '{pkg}' is not available", pkg)
                )

        module = (modules or {}).get(d.name)
        if module is not None:
            out.extend(_code_diagnostics(d, module))

    return out


def _code_diagnostics(d: ModuleDescriptor, module) -> List[Diagnostic]:
    usage = scan_objects(module.source_objects())
    if not usage.scanned:
        return []

    declared_in = set(d.input_names)
    declared_out = set(d.output_names)
    out: List[Diagnostic] = []

    for obj in sorted(usage.reads - declared_in - declared_out):
        out.append(
            Diagnostic(
                UNDECLARED_USE, d.name,
                f"{d.name}: '{obj}' is used from state inside the module, "
                f"but is not declared in input_objects",
                obj,
            )
        )
    for obj in sorted(usage.writes - declared_out):
        out.append(
            Diagnostic(
                UNDECLARED_USE, d.name,
                f"{d.name}: '{obj}' is assigned to state inside the module, "
                f"but is not declared in output_objects",
                obj,
            )
        )
    for obj in sorted(declared_in - usage.reads - usage.writes):
        out.append(
            Diagnostic(
                UNUSED_INPUT, d.name,
                f"{d.name}: '{obj}' is declared in input_objects, but is not used in the module",
                obj, INFO,
            )
        )
    for p in d.parameters:
        if p.name.startswith("."):
            continue
        if p.name not in usage.strings:
            out.append(
                Diagnostic(
                    UNUSED_PARAM, d.name,
                    f"{d.name}: parameter '{p.name}' is declared, but is not used in the module",
                    p.name, INFO,
                )
            )
    return out
