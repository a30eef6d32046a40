#!filepath: desim/modules/registry.py
from __future__ import annotations

from typing import Dict, Iterator, Optional, Type

from desim.modules.base import SimModule
from desim.modules.descriptor import DescriptorSource, ModuleDescriptor, load_descriptor
from desim.utils.errors import ModuleNotRegistered
from desim.utils.logger import logs


class ModuleRegistry:
    """
    name → (SimModule, ModuleDescriptor)

    - 可执行模块：register(module)
    - 纯分组（只有 child_modules，没有 handler）：register_group(metadata)
    - parent：查不到时回退到 parent；注册只写入自身，parent 不会被修改
    """

    def __init__(self, parent: Optional["ModuleRegistry"] = None) -> None:
        self.parent = parent
        self._modules: Dict[str, SimModule] = {}
        self._descriptors: Dict[str, ModuleDescriptor] = {}

    def child(self) -> "ModuleRegistry":
        """以自身为 parent 的新 registry（每个 SimEngine 一个）"""
        return ModuleRegistry(parent=self)

    # ------------------------------------------------------------------
    def register(self, module: SimModule, key: Optional[str] = None) -> SimModule:
        key = key or module.name or None
        desc = load_descriptor(module.metadata, key=key) if module.metadata is not None else module.descriptor()
        if desc.name in self._descriptors:
            logs.debug(f"[Registry] replacing module '{desc.name}'")
        module._descriptor = desc
        self._modules[desc.name] = module
        self._descriptors[desc.name] = desc
        return module

    def register_group(self, metadata: DescriptorSource, key: Optional[str] = None) -> ModuleDescriptor:
        desc = load_descriptor(metadata, key=key)
        if not desc.is_parent:
            raise ValueError(f"Module group '{desc.name}' declares no child_modules")
        self._descriptors[desc.name] = desc
        return desc

    # ------------------------------------------------------------------
    def get(self, name: str) -> SimModule:
        if name in self._modules:
            return self._modules[name]
        if name not in self._descriptors and self.parent is not None and self.parent._has_module(name):
            return self.parent.get(name)
        raise ModuleNotRegistered(name, self._module_names())

    def descriptor(self, name: str) -> ModuleDescriptor:
        if name in self._descriptors:
            return self._descriptors[name]
        if self.parent is not None and name in self.parent:
            return self.parent.descriptor(name)
        raise ModuleNotRegistered(name, self.names())

    def _has_module(self, name: str) -> bool:
        if name in self._modules:
            return True
        return name not in self._descriptors and self.parent is not None and self.parent._has_module(name)

    def _module_names(self) -> list:
        inherited = self.parent._module_names() if self.parent is not None else []
        return list(dict.fromkeys(inherited + list(self._modules)))

    def names(self) -> list:
        inherited = self.parent.names() if self.parent is not None else []
        return list(dict.fromkeys(inherited + list(self._descriptors)))

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors or (self.parent is not None and name in self.parent)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self.names())


# ------------------------------------------------------------------
# Global registry + 注册装饰器
# ------------------------------------------------------------------
_DEFAULT_REGISTRY = ModuleRegistry()


def default_registry() -> ModuleRegistry:
    return _DEFAULT_REGISTRY


def register_module(name: Optional[str] = None, registry: Optional[ModuleRegistry] = None):
    def _wrap(cls: Type[SimModule]):
        (registry or _DEFAULT_REGISTRY).register(cls(), key=name)
        return cls

    return _wrap
