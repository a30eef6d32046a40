#!filepath: desim/modules/base.py
from __future__ import annotations

from abc import ABC
from typing import Any, Callable, ClassVar, Dict, Iterable, Mapping, Optional

from desim.modules.descriptor import DescriptorSource, ModuleDescriptor, load_descriptor
from desim.utils.errors import UndefinedEventType

from desim.core.state import SimState


Handler = Callable[..., Any]


def handles(*event_types: str):
    """
    把方法登记为一个或多个事件类型的 handler。

        class Fire(SimModule):
            @handles("init")
            def init(self, state): ...
    """
    if not event_types:
        raise ValueError("handles() needs at least one event type")

    def _wrap(fn):
        fn.__desim_events__ = tuple(event_types)
        return fn

    return _wrap


class SimModule(ABC):
    """
    SimModule（FINAL / FROZEN）

    模块 = 能力接口，而不是运行时扫描的源文件：
      - descriptor() -> ModuleDescriptor
      - dispatch(event_type, state) -> state
      - input_objects(state)：初始化阶段给未提供的输入对象填默认值

    设计原则：
      - 模块实例无状态；所有可变数据放在 SimState（module_state / param 访问）
      - handler 返回 None（或任何非 SimState 的值）视为返回同一个 state
      - 未登记的 event_type → UndefinedEventType，除非子类实现 default_handler
    """

    metadata: ClassVar[Optional[DescriptorSource]] = None
    # 注册 key（对应原“文件名”）；为空时使用 descriptor.name
    name: ClassVar[str] = ""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        for klass in reversed(type(self).__mro__):
            for attr, value in vars(klass).items():
                for event_type in getattr(value, "__desim_events__", ()):
                    self._handlers[event_type] = getattr(self, attr)
        self._descriptor: Optional[ModuleDescriptor] = None

    # ------------------------------------------------------------------
    def descriptor(self) -> ModuleDescriptor:
        if self._descriptor is None:
            if self.metadata is None:
                raise NotImplementedError(f"{type(self).__name__} declares no metadata")
            self._descriptor = load_descriptor(self.metadata, key=self.name or None)
        return self._descriptor

    @property
    def module_name(self) -> str:
        return self.descriptor().name

    def event_types(self) -> tuple:
        return tuple(self._handlers)

    def has_handler(self, event_type: str) -> bool:
        return event_type in self._handlers or self._has_default()

    def _has_default(self) -> bool:
        return type(self).default_handler is not SimModule.default_handler

    # ------------------------------------------------------------------
    def dispatch(self, event_type: str, state: "SimState") -> "SimState":
        handler = self._handlers.get(event_type)
        if handler is not None:
            result = handler(state)
        elif self._has_default():
            result = self.default_handler(event_type, state)
        else:
            raise UndefinedEventType(self.module_name, event_type)
        return result if isinstance(result, SimState) else state

    def default_handler(self, event_type: str, state: "SimState") -> Optional["SimState"]:
        raise UndefinedEventType(self.module_name, event_type)

    def input_objects(self, state: "SimState") -> Optional["SimState"]:
        return None

    def code(self) -> Dict[str, Any]:
        """决定模块行为的函数（缓存 key 的一部分）；绑定的实例不参与 digest"""
        return {
            "type": type(self),
            "handlers": dict(self._handlers),
            "input_objects": self.input_objects,
            "default_handler": self.default_handler,
        }

    def source_objects(self) -> Iterable[Any]:
        """静态代码检查扫描的对象"""
        return (type(self),)

    def __repr__(self) -> str:
        label = self.name or (self._descriptor.name if self._descriptor else type(self).__name__)
        return f"<{type(self).__name__} {label}>"


class HandlerModule(SimModule):
    """
    无需子类化的模块：descriptor + {event_type: fn(state)}。
    """

    def __init__(
        self,
        metadata: DescriptorSource,
        handlers: Mapping[str, Handler],
        input_objects: Optional[Handler] = None,
        default: Optional[Callable[[str, Any], Any]] = None,
    ) -> None:
        super().__init__()
        self.metadata = metadata
        self._handlers.update(handlers)
        self._input_objects = input_objects
        self._default = default

    def _has_default(self) -> bool:
        return self._default is not None

    def default_handler(self, event_type, state):
        if self._default is None:
            return super().default_handler(event_type, state)
        return self._default(event_type, state)

    def input_objects(self, state):
        if self._input_objects is None:
            return None
        return self._input_objects(state)

    def code(self):
        code = super().code()
        code.update(input_objects=self._input_objects, default_handler=self._default)
        return code

    def source_objects(self):
        objs = list(self._handlers.values())
        if self._input_objects is not None:
            objs.append(self._input_objects)
        return objs
