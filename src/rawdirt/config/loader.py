from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Sequence, Tuple, Type

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from rawdirt.config.models import AppConfig, ConfigLoadRequest

logger = logging.getLogger(__name__)

EXAMPLE_CONFIG_PATH = Path("examples/config.yaml")

# Created next to the config directory when the default data/ layout is used.
DATA_SUBDIRECTORIES = ("config", "local-cache", "logs")


def _prepare_data_layout(yaml_path: Path) -> None:
    if yaml_path.parent.name != "config":
        return
    data_root = yaml_path.parent.parent
    for name in DATA_SUBDIRECTORIES:
        (data_root / name).mkdir(parents=True, exist_ok=True)


def _seed_from_example(yaml_path: Path) -> None:
    if yaml_path.exists() or not EXAMPLE_CONFIG_PATH.exists():
        return
    yaml_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(EXAMPLE_CONFIG_PATH, yaml_path)
    logger.info("Created config file from example. path=%s", yaml_path)


def _read_yaml(yaml_path: Path) -> Dict[str, Any]:
    if not yaml_path.exists():
        return {}
    data = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _check_override_path(model: Type[BaseModel], segments: Sequence[str]) -> None:
    """Raise KeyError for unknown fields and TypeError when a non-leaf is not a section."""
    dotted = ".".join(segments)
    current: Type[BaseModel] = model
    for position, segment in enumerate(segments):
        field = current.model_fields.get(segment)
        if field is None:
            raise KeyError(f"Unknown configuration key path: {dotted}")
        if position == len(segments) - 1:
            return
        annotation = field.annotation
        if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
            raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")
        current = annotation


def _env_overrides(environ: Mapping[str, str], prefix: str) -> Iterator[Tuple[Sequence[str], str]]:
    for name, value in sorted(environ.items()):
        if not name.startswith(prefix):
            continue
        segments = [part.lower() for part in name[len(prefix) :].split("__") if part]
        if not segments:
            raise ValueError(f"Invalid environment variable override name: {name}")
        _check_override_path(AppConfig, segments)
        yield segments, value


def _set_path(config: Dict[str, Any], segments: Sequence[str], value: Any) -> None:
    section: Dict[str, Any] = config
    for segment in segments[:-1]:
        child = section.setdefault(segment, {})
        if not isinstance(child, dict):
            raise TypeError(f"Configuration key path does not point to a mapping: {'.'.join(segments)}")
        section = child
    # Strings are coerced to the field type during validation.
    section[segments[-1]] = value


class YamlConfigLoader:
    """
    Builds AppConfig from a YAML file, an optional .env file and the process environment.

    Environment variables named `<prefix><SECTION>__<FIELD>` override YAML values. A
    .env file only fills variables that are not already set.
    """

    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        yaml_path = Path(request.yaml_path)
        _prepare_data_layout(yaml_path)
        _seed_from_example(yaml_path)
        config = _read_yaml(yaml_path)

        if request.dotenv_path is not None and Path(request.dotenv_path).exists():
            load_dotenv(dotenv_path=request.dotenv_path, override=False)

        for segments, value in _env_overrides(os.environ, request.env_prefix):
            _set_path(config, segments, value)
        return AppConfig.model_validate(config)
