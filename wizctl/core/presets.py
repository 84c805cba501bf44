"""Colour preset loading and validation for YAML-based wizctl presets."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from wizctl.core.errors import PresetLoadError, PresetValidationError, PropertyValidationError
from wizctl.core.model import LightProperties

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# Preset names such as "on"/"off" must stay strings, not YAML 1.1 booleans.
for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise PresetValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedPresets:
    presets: dict[str, LightProperties]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("wizctl.schemas").joinpath("presets.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _preset_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "wizctl/presets", xdg_data / "wizctl/presets"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PresetLoadError(f"Could not read preset file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise PresetValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise PresetValidationError(f"Preset file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "on"}:
            return True
        if lowered in {"false", "off"}:
            return False
    raise PresetValidationError(f"{context} must be boolean true/false")


def _build_presets(doc: dict[str, Any], source: Path | Traversable) -> dict[str, LightProperties]:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise PresetValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    presets: dict[str, LightProperties] = {}
    for name, values in doc["presets"].items():
        values = dict(values)
        if "state" in values:
            values["state"] = _normalize_bool(values["state"], context=f"{name}.state")
        try:
            presets[name.lower()] = LightProperties.from_mapping(values).validate()
        except PropertyValidationError as exc:
            raise PresetValidationError(f"Preset '{name}' in {source}: {exc}") from exc
    return presets


def _iter_packaged_preset_paths() -> list[Traversable]:
    preset_root = resources.files("wizctl.presets")
    return [item for item in preset_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_preset_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _preset_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_presets() -> LoadedPresets:
    presets: dict[str, LightProperties] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_preset_paths(), key=lambda p: p.name):
        presets.update(_build_presets(_read_yaml(path), path))

    for path in _iter_user_preset_paths():
        for name, properties in _build_presets(_read_yaml(path), path).items():
            if name in presets:
                warning = f"User preset '{name}' from {path.name} overrides an earlier definition"
                LOGGER.warning(warning)
                warnings.append(warning)
            presets[name] = properties

    return LoadedPresets(presets=presets, warnings=tuple(warnings))
