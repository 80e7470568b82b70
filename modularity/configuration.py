"""
Modularity - Hierarchical Configuration

A read-only configuration tree shared by every module.

Keys are case-insensitive and paths use ``:`` or ``.`` as separators, so
``Modules:Orders:Port``, ``modules.orders.port`` and the environment variable
``MODULARITY_MODULES__ORDERS__PORT`` all address the same value.

Usage:
    configuration = (
        ConfigurationBuilder()
        .add_mapping({"Modules": {"Orders": {"Port": 8080}}})
        .add_json_file("appsettings.json", optional=True)
        .add_env_file(".env")
        .add_environment_variables(prefix="MODULARITY_")
        .build()
    )

    port = configuration.get("Modules:Orders:Port", 8000)
    options = configuration.get_section("Modules:Orders").bind(OrdersOptions)
"""

from __future__ import annotations

import copy
import json
import os
import re
import typing
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from dotenv import dotenv_values
from pydantic import BaseModel, ValidationError

from modularity.errors import ConfigurationError
from observability.logging import get_logger

logger = get_logger("modularity.configuration")

TModel = TypeVar("TModel", bound=BaseModel)

PATH_SEPARATOR = ":"
ENV_SECTION_SEPARATOR = "__"
_PATH_SPLIT = re.compile(r"[:.]")

_MISSING = object()


def split_path(path: str) -> List[str]:
    """Split ``a:b.c`` into ``["a", "b", "c"]``, dropping empty segments."""
    return [segment for segment in _PATH_SPLIT.split(path) if segment]


def _find_key(mapping: Mapping[str, Any], key: str) -> Optional[str]:
    if key in mapping:
        return key
    folded = key.casefold()
    for candidate in mapping:
        if str(candidate).casefold() == folded:
            return candidate
    return None


def _lookup(tree: Any, segments: List[str]) -> Any:
    node = tree
    for segment in segments:
        if not isinstance(node, Mapping):
            return _MISSING
        key = _find_key(node, segment)
        if key is None:
            return _MISSING
        node = node[key]
    return node


def deep_merge(target: MutableMapping[str, Any], source: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Merge ``source`` into ``target`` in place; ``source`` wins on conflicts."""
    for key, value in source.items():
        existing_key = _find_key(target, str(key))
        if existing_key is None:
            target[key] = copy.deepcopy(value)
            continue
        existing = target[existing_key]
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            deep_merge(existing, value)
        else:
            target[existing_key] = copy.deepcopy(value)
    return target


def _nest(flat: Mapping[str, Any], separator: str) -> Dict[str, Any]:
    """``{"A__B": 1}`` → ``{"A": {"B": 1}}``."""
    tree: Dict[str, Any] = {}
    for flat_key, value in flat.items():
        segments = [segment for segment in flat_key.split(separator) if segment]
        if not segments:
            continue
        nested: Any = value
        for segment in reversed(segments):
            nested = {segment: nested}
        deep_merge(tree, nested)
    return tree


# =============================================================================
# CONFIGURATION TREE
# =============================================================================


class ConfigurationSection:
    """A node of the configuration tree addressed by its full path."""

    __slots__ = ("_root", "_segments")

    def __init__(self, root: Mapping[str, Any], path: Union[str, List[str]] = ""):
        self._root = root
        self._segments = split_path(path) if isinstance(path, str) else list(path)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def path(self) -> str:
        return PATH_SEPARATOR.join(self._segments)

    @property
    def key(self) -> str:
        return self._segments[-1] if self._segments else ""

    def _node(self) -> Any:
        return _lookup(self._root, self._segments)

    @property
    def value(self) -> Any:
        """Leaf value of this section, or None for missing or nested sections."""
        node = self._node()
        if node is _MISSING or isinstance(node, Mapping):
            return None
        return node

    def exists(self) -> bool:
        node = self._node()
        if node is _MISSING:
            return False
        if isinstance(node, Mapping):
            return bool(node)
        return True

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _full_path(self, path: str) -> str:
        return PATH_SEPARATOR.join(self._segments + split_path(path))

    def get(self, path: str, default: Any = None) -> Any:
        """Leaf value at ``path`` relative to this section."""
        node = _lookup(self._root, self._segments + split_path(path))
        if node is _MISSING or isinstance(node, Mapping):
            return default
        return node

    def get_required(self, path: str) -> Any:
        """Leaf value at ``path``; missing or blank values raise ConfigurationError."""
        value = self.get(path, _MISSING)
        if value is _MISSING or value is None or (isinstance(value, str) and not value.strip()):
            full_path = self._full_path(path)
            raise ConfigurationError(
                f"Required configuration value '{full_path}' is missing.",
                config_key=full_path,
                suggestions=[
                    f"Set '{full_path}' in a configuration file or the environment."
                ],
            )
        return value

    def get_section(self, path: str) -> "ConfigurationSection":
        """Sub-section at ``path``. Always returns a section; see ``exists()``."""
        return ConfigurationSection(self._root, self._segments + split_path(path))

    def children(self) -> List["ConfigurationSection"]:
        node = self._node()
        if not isinstance(node, Mapping):
            return []
        return [
            ConfigurationSection(self._root, self._segments + [str(key)])
            for key in node
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the subtree ({} for leaves and missing sections)."""
        node = self._node()
        if not isinstance(node, Mapping):
            return {}
        return copy.deepcopy(dict(node))

    def __getitem__(self, path: str) -> Any:
        return self.get(path)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return self.get_section(path).exists()

    def __iter__(self) -> Iterator["ConfigurationSection"]:
        return iter(self.children())

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    def bind(self, model_type: Type[TModel]) -> TModel:
        """
        Bind this section onto a pydantic model.

        Field names match keys case-insensitively and ignoring underscores
        (``MaxRetries`` binds ``max_retries``). Nested models bind recursively.
        Missing keys keep the model defaults.

        Raises:
            ConfigurationError: The section does not validate against the model.
        """
        data = _match_fields(model_type, self.to_dict())
        try:
            return model_type.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration section '{self.path or '<root>'}' is invalid for "
                f"{model_type.__name__}: {e.error_count()} error(s)",
                config_key=self.path or None,
                cause=e,
            ) from e

    def __repr__(self) -> str:
        return f"ConfigurationSection({self.path!r})"


class Configuration(ConfigurationSection):
    """Root of a read-only configuration tree."""

    __slots__ = ()

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        super().__init__(_expand_paths(data or {}), [])

    def __repr__(self) -> str:
        return f"Configuration(keys={[child.key for child in self.children()]})"


def _normalize_field_name(name: str) -> str:
    return name.replace("_", "").replace("-", "").casefold()


def _nested_model(annotation: Any) -> Optional[Type[BaseModel]]:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    for argument in typing.get_args(annotation):
        if isinstance(argument, type) and issubclass(argument, BaseModel):
            return argument
    return None


def _match_fields(model_type: Type[BaseModel], data: Mapping[str, Any]) -> Dict[str, Any]:
    lookup: Dict[str, Tuple[str, Any]] = {}
    for field_name, field_info in model_type.model_fields.items():
        target = field_info.alias or field_name
        lookup[_normalize_field_name(field_name)] = (target, field_info)
        if field_info.alias:
            lookup[_normalize_field_name(field_info.alias)] = (target, field_info)

    bound: Dict[str, Any] = {}
    for key, value in data.items():
        match = lookup.get(_normalize_field_name(str(key)))
        if match is None:
            bound[key] = value
            continue
        target, field_info = match
        nested = _nested_model(field_info.annotation)
        if nested is not None and isinstance(value, Mapping):
            value = _match_fields(nested, value)
        bound[target] = value
    return bound


# =============================================================================
# BUILDER
# =============================================================================


class ConfigurationBuilder:
    """
    Layers configuration sources into one Configuration.

    Sources are read when ``build()`` is called, in the order they were added;
    later sources override earlier ones key by key.
    """

    def __init__(self) -> None:
        self._sources: List[Tuple[str, Callable[[], Mapping[str, Any]]]] = []

    def add_source(self, name: str, loader: Callable[[], Mapping[str, Any]]) -> "ConfigurationBuilder":
        self._sources.append((name, loader))
        return self

    def add_mapping(self, data: Mapping[str, Any]) -> "ConfigurationBuilder":
        """Add an in-memory mapping (nested dicts, or flat ``a:b`` keys)."""
        snapshot = _expand_paths(data)
        return self.add_source("mapping", lambda: snapshot)

    def add_json_file(
        self,
        path: Union[str, Path],
        optional: bool = False,
    ) -> "ConfigurationBuilder":
        """Add a JSON file. A missing file is an error unless ``optional``."""
        file_path = Path(path)

        def load() -> Mapping[str, Any]:
            if not file_path.exists():
                if optional:
                    return {}
                raise ConfigurationError(
                    f"Configuration file not found: {file_path}",
                    config_key=str(file_path),
                )
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Configuration file is not valid JSON: {file_path}",
                    config_key=str(file_path),
                    cause=e,
                ) from e
            if not isinstance(data, Mapping):
                raise ConfigurationError(
                    f"Configuration file must contain a JSON object: {file_path}",
                    config_key=str(file_path),
                )
            return data

        return self.add_source(f"json:{file_path}", load)

    def add_env_file(
        self,
        path: Union[str, Path] = ".env",
        prefix: str = "",
        optional: bool = True,
    ) -> "ConfigurationBuilder":
        """Add a dotenv file; ``__`` in keys separates sections."""
        file_path = Path(path)

        def load() -> Mapping[str, Any]:
            if not file_path.exists():
                if optional:
                    return {}
                raise ConfigurationError(
                    f"Environment file not found: {file_path}",
                    config_key=str(file_path),
                )
            values = {
                key: value
                for key, value in dotenv_values(file_path).items()
                if value is not None
            }
            return _nest(_strip_prefix(values, prefix), ENV_SECTION_SEPARATOR)

        return self.add_source(f"dotenv:{file_path}", load)

    def add_environment_variables(self, prefix: str = "") -> "ConfigurationBuilder":
        """Add process environment variables starting with ``prefix`` (prefix removed)."""
        return self.add_source(
            f"env:{prefix or '*'}",
            lambda: _nest(_strip_prefix(os.environ, prefix), ENV_SECTION_SEPARATOR),
        )

    def build(self) -> Configuration:
        merged: Dict[str, Any] = {}
        for name, loader in self._sources:
            deep_merge(merged, loader())
            logger.debug("configuration_source_loaded", source=name)
        return Configuration(merged)


def _strip_prefix(values: Mapping[str, Any], prefix: str) -> Dict[str, Any]:
    if not prefix:
        return dict(values)
    folded = prefix.casefold()
    return {
        key[len(prefix):]: value
        for key, value in values.items()
        if key.casefold().startswith(folded) and len(key) > len(prefix)
    }


def _expand_paths(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Expand ``{"A:B": 1}`` keys into nested sections, recursively."""
    tree: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            value = _expand_paths(value)
        segments = split_path(str(key)) or [str(key)]
        nested: Any = value
        for segment in reversed(segments):
            nested = {segment: nested}
        deep_merge(tree, nested)
    return tree


__all__ = [
    "Configuration",
    "ConfigurationSection",
    "ConfigurationBuilder",
    "deep_merge",
    "split_path",
]
