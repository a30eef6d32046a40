#!filepath: desim/modules/descriptor.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from desim.utils.errors import NameMismatch, ParseError


# 以 "." 开头的保留参数（引擎或核心模块会读取）
RESERVED_PARAMS = (
    ".plotInitialTime",
    ".plotInterval",
    ".saveInitialTime",
    ".saveInterval",
    ".useCache",
    ".seed",
)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class ParameterSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(validation_alias=_alias("name", "paramName"))
    default: Any = Field(default=None, validation_alias=_alias("default", "defaultValue"))
    min: Any = None
    max: Any = None
    description: str = Field(default="", validation_alias=_alias("description", "paramDesc", "desc"))

    def in_range(self, value: Any) -> bool:
        """None / 非数值不做范围检查"""
        if value is None or isinstance(value, (str, bool, list, dict, tuple)):
            return True
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


class InputObjectSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    object_name: str = Field(validation_alias=_alias("object_name", "objectName", "name"))
    object_class: str = Field(default="ANY", validation_alias=_alias("object_class", "objectClass", "class"))
    description: str = Field(default="", validation_alias=_alias("description", "desc", "sourceDescription"))
    source_url: Optional[str] = Field(default=None, validation_alias=_alias("source_url", "sourceURL"))


class OutputObjectSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    object_name: str = Field(validation_alias=_alias("object_name", "objectName", "name"))
    object_class: str = Field(default="ANY", validation_alias=_alias("object_class", "objectClass", "class"))
    description: str = Field(default="", validation_alias=_alias("description", "desc"))


class ModuleDescriptor(BaseModel):
    """
    ModuleDescriptor（FINAL / FROZEN）

    模块契约：
      - name 必须等于注册 key，否则 NameMismatch
      - child_modules 非空 = 父模块（module group），展开后自身被移除
      - input_objects / output_objects 决定依赖图的对象边
      - required_packages 中出现的模块名 = 硬依赖边
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str
    version: str = "0.0.1"
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    timeunit: Optional[str] = Field(default=None, validation_alias=_alias("timeunit", "timeUnit"))
    parameters: List[ParameterSpec] = Field(default_factory=list)
    input_objects: List[InputObjectSpec] = Field(
        default_factory=list, validation_alias=_alias("input_objects", "inputObjects")
    )
    output_objects: List[OutputObjectSpec] = Field(
        default_factory=list, validation_alias=_alias("output_objects", "outputObjects")
    )
    child_modules: List[str] = Field(
        default_factory=list, validation_alias=_alias("child_modules", "childModules")
    )
    required_packages: List[str] = Field(
        default_factory=list, validation_alias=_alias("required_packages", "reqdPkgs")
    )
    path: Optional[str] = None

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, v):
        return v if isinstance(v, str) else str(v)

    @field_validator("timeunit", mode="before")
    @classmethod
    def _na_timeunit(cls, v):
        if isinstance(v, str) and v.upper() == "NA":
            return None
        return v

    @field_validator("name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("module name must not be empty")
        return v

    # ------------------------------------------------------------------
    @property
    def is_parent(self) -> bool:
        return bool(self.child_modules)

    @property
    def input_names(self) -> List[str]:
        return [o.object_name for o in self.input_objects]

    @property
    def output_names(self) -> List[str]:
        return [o.object_name for o in self.output_objects]

    @property
    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    def parameter(self, name: str) -> Optional[ParameterSpec]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def defaults(self) -> Dict[str, Any]:
        return {p.name: p.default for p in self.parameters}


# ----------------------------------------------------------------------
# 声明辅助函数
# ----------------------------------------------------------------------
def define_parameter(name: str, default: Any = None, min: Any = None, max: Any = None, description: str = "") -> ParameterSpec:
    return ParameterSpec(name=name, default=default, min=min, max=max, description=description)


def expects_input(object_name: str, object_class: str = "ANY", description: str = "", source_url: Optional[str] = None) -> InputObjectSpec:
    return InputObjectSpec(
        object_name=object_name,
        object_class=object_class,
        description=description,
        source_url=source_url,
    )


def creates_output(object_name: str, object_class: str = "ANY", description: str = "") -> OutputObjectSpec:
    return OutputObjectSpec(object_name=object_name, object_class=object_class, description=description)


# ----------------------------------------------------------------------
# 解析
# ----------------------------------------------------------------------
DescriptorSource = Union[ModuleDescriptor, Mapping, str, Path]

_WRAPPER_KEYS = ("metadata", "defineModule")


def _raw_from_source(source: DescriptorSource) -> tuple[dict, Optional[str]]:
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ParseError(f"Cannot read module descriptor {source}: {exc}") from exc
        raw, _ = _raw_from_source(text)
        return raw, str(source.parent)

    if isinstance(source, str):
        try:
            raw = yaml.safe_load(source)
        except yaml.YAMLError as exc:
            raise ParseError(f"Malformed module descriptor: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise ParseError(f"Module descriptor must be a mapping, got {type(raw).__name__}")
        return dict(raw), None

    if isinstance(source, Mapping):
        return dict(source), None

    raise ParseError(f"Unsupported descriptor source: {type(source).__name__}")


def load_descriptor(source: DescriptorSource, key: Optional[str] = None) -> ModuleDescriptor:
    """
    source → ModuleDescriptor

    source:
        ModuleDescriptor / dict / YAML 文本 / .yml 文件路径
        允许外层包一层 {metadata: {...}}
    key:
        注册 key（通常是文件名 stem）；给出时必须等于 descriptor.name
    """
    if isinstance(source, ModuleDescriptor):
        desc = source.model_copy(deep=True)
    else:
        raw, parent_dir = _raw_from_source(source)
        if len(raw) == 1 and next(iter(raw)) in _WRAPPER_KEYS:
            inner = next(iter(raw.values()))
            if not isinstance(inner, Mapping):
                raise ParseError("Module metadata block must be a mapping")
            raw = dict(inner)
        if parent_dir is not None and raw.get("path") is None:
            raw["path"] = parent_dir
        try:
            desc = ModuleDescriptor.model_validate(raw)
        except ValidationError as exc:
            label = raw.get("name", key or "<unnamed>")
            raise ParseError(f"Invalid descriptor for module '{label}': {exc}") from exc

    if key is not None and desc.name != key:
        raise NameMismatch(desc.name, key)
    return desc
