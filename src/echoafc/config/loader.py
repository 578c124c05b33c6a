"""Load pipeline configs from JSON files, Python references or dictionaries."""

from __future__ import annotations

import importlib
import importlib.util
import json
from pathlib import Path
from types import ModuleType
from typing import Any

from echoafc.config.schema import (
    AreaConfig,
    ExtractionConfig,
    PipelineConfig,
    SegmentationConfig,
)


_SECTIONS = {
    "extraction": ExtractionConfig,
    "segmentation": SegmentationConfig,
    "area": AreaConfig,
}


def _load_module(module_ref: str) -> ModuleType:
    path = Path(module_ref).expanduser()
    if not path.exists():
        return importlib.import_module(module_ref)
    spec = importlib.util.spec_from_file_location(f"_echoafc_cfg_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Could not load config module from path: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_object(reference: str) -> Any:
    """Resolve `module_or_path:attribute[.attribute...]`."""

    module_ref, sep, attr = reference.partition(":")
    if not sep or not attr:
        raise ValueError(f"Config reference must look like 'module_or_path:attribute', got {reference!r}.")
    value: Any = _load_module(module_ref)
    for part in attr.split("."):
        value = getattr(value, part)
    return value


def default_pipeline_config() -> PipelineConfig:
    return PipelineConfig()


def load_pipeline_config(config_ref: str | None) -> PipelineConfig:
    """Build a PipelineConfig from `config_ref`, or the defaults when it is None.

    `config_ref` is either a path to a `.json` file or a
    `module_or_path:attribute` reference resolving to a PipelineConfig or a
    plain dict.
    """

    if config_ref is None:
        return default_pipeline_config()

    if config_ref.endswith(".json"):
        path = Path(config_ref).expanduser()
        with path.open("r", encoding="utf-8") as handle:
            return pipeline_config_from_dict(json.load(handle))

    loaded = load_object(config_ref)
    if isinstance(loaded, PipelineConfig):
        return loaded
    if isinstance(loaded, dict):
        return pipeline_config_from_dict(loaded)
    raise TypeError(f"Config reference must resolve to PipelineConfig or dict, got {type(loaded).__name__}.")


def pipeline_config_from_dict(payload: dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from nested section dicts.

    Unknown sections raise ValueError; unknown keys inside a section raise
    TypeError from the dataclass constructor.
    """

    unknown = set(payload) - set(_SECTIONS) - {"wait_timeout_s"}
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(sorted(unknown))}")
    sections = {name: cls(**payload.get(name, {})) for name, cls in _SECTIONS.items()}
    return PipelineConfig(
        **sections,
        wait_timeout_s=float(payload.get("wait_timeout_s", PipelineConfig().wait_timeout_s)),
    )
