from .base import HandlerModule, SimModule, handles
from .descriptor import (
    RESERVED_PARAMS,
    InputObjectSpec,
    ModuleDescriptor,
    OutputObjectSpec,
    ParameterSpec,
    creates_output,
    define_parameter,
    expects_input,
    load_descriptor,
)
from .registry import ModuleRegistry, default_registry, register_module
from .resolver import (
    DependencyGraph,
    Diagnostic,
    build_dependency_graph,
    diagnose,
    expand_groups,
    resolve_load_order,
)

__all__ = [
    "SimModule", "HandlerModule", "handles",
    "ModuleDescriptor", "ParameterSpec", "InputObjectSpec", "OutputObjectSpec",
    "RESERVED_PARAMS", "define_parameter", "expects_input", "creates_output", "load_descriptor",
    "ModuleRegistry", "default_registry", "register_module",
    "DependencyGraph", "Diagnostic", "build_dependency_graph", "diagnose",
    "expand_groups", "resolve_load_order",
]
