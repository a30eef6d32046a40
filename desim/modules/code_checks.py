#!filepath: desim/modules/code_checks.py
"""
Static scan of a module's handler source.

Finds which state objects a module reads and writes, and which string
literals it mentions (used to tell whether a declared parameter is ever
referenced). Recognised forms::

    state["x"]            read / write
    state.objects["x"]    read / write
    state.get("x")        read
    "x" in state          read

The ``metadata`` class attribute is skipped so that declarations do not
count as usage.
"""
from __future__ import annotations

import ast
import inspect
import textwrap
from dataclasses import dataclass, field
from typing import Iterable, Optional, Set

from desim.utils.logger import logs


STATE_NAMES = ("state", "sim")


@dataclass
class CodeUsage:
    reads: Set[str] = field(default_factory=set)
    writes: Set[str] = field(default_factory=set)
    strings: Set[str] = field(default_factory=set)
    scanned: bool = False


def _const_str(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def _is_state(node: ast.AST) -> bool:
    if isinstance(node, ast.Name):
        return node.id in STATE_NAMES
    # state.objects[...]
    if isinstance(node, ast.Attribute) and node.attr == "objects":
        return _is_state(node.value)
    return False


class _Visitor(ast.NodeVisitor):
    def __init__(self, usage: CodeUsage):
        self.usage = usage

    def visit_Assign(self, node: ast.Assign):
        if any(isinstance(t, ast.Name) and t.id == "metadata" for t in node.targets):
            return
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign):
        if isinstance(node.target, ast.Name) and node.target.id == "metadata":
            return
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript):
        if _is_state(node.value):
            name = _const_str(node.slice)
            if name is not None:
                if isinstance(node.ctx, ast.Store):
                    self.usage.writes.add(name)
                else:
                    self.usage.reads.add(name)
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call):
        func = node.func
        if isinstance(func, ast.Attribute) and func.attr == "get" and _is_state(func.value) and node.args:
            name = _const_str(node.args[0])
            if name is not None:
                self.usage.reads.add(name)
        self.generic_visit(node)

    def visit_Compare(self, node: ast.Compare):
        if (
            len(node.ops) == 1
            and isinstance(node.ops[0], (ast.In, ast.NotIn))
            and _is_state(node.comparators[0])
        ):
            name = _const_str(node.left)
            if name is not None:
                self.usage.reads.add(name)
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant):
        if isinstance(node.value, str):
            self.usage.strings.add(node.value)


def scan_source(source: str, usage: Optional[CodeUsage] = None) -> CodeUsage:
    usage = usage or CodeUsage()
    tree = ast.parse(textwrap.dedent(source))
    _Visitor(usage).visit(tree)
    usage.scanned = True
    return usage


def scan_objects(objects: Iterable) -> CodeUsage:
    """
    对类 / 函数逐个取源码扫描；取不到源码（交互式定义、内建）时跳过。
    """
    usage = CodeUsage()
    for obj in objects:
        try:
            source = inspect.getsource(obj)
        except (OSError, TypeError):
            logs.debug(f"[CodeCheck] no source for {obj!r}; skipped")
            continue
        try:
            scan_source(source, usage)
        except SyntaxError as exc:
            logs.debug(f"[CodeCheck] cannot parse source of {obj!r}: {exc}")
    return usage
