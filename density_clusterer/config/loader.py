# density_clusterer/config/loader.py
"""
Reads and writes clusterer settings as YAML.

A settings file mirrors `ClustererConfig`: one top-level mapping per section
(`hdbscan`, `neighbors`, `tree`, `parallel`, `output`), each holding only the
fields it overrides. Omitted sections and fields keep their defaults:

    hdbscan:
      min_cluster_size: 15
      algorithm: boruvka_balltree
    tree:
      leaf_size: 30
      metric: manhattan

Models accept flat keyword overrides instead; `resolve_config` routes each
name to the section that owns it.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ValidationError

from ..exceptions import ConfigurationError
from .schema import (
    ClustererConfig,
    HdbscanConfig,
    NeighborsConfig,
    OutputConfig,
    ParallelConfig,
    TreeConfig,
)

# Set up a dedicated logger for this module.
logger = logging.getLogger(__name__)

_SECTION_MODELS = {
    'hdbscan': HdbscanConfig,
    'neighbors': NeighborsConfig,
    'tree': TreeConfig,
    'parallel': ParallelConfig,
    'output': OutputConfig,
}


def _validate_and_create_config(data: Dict[str, Any], source: str) -> ClustererConfig:
    """
    Validates section data against the ClustererConfig schema.

    Pydantic's ValidationError propagates unchanged so callers see every bad
    field at once; it is logged with the file it came from.
    """
    try:
        return ClustererConfig.model_validate(data)
    except ValidationError as e:
        logger.critical(f"Invalid clusterer settings in {source}:\n{e}")
        raise


def load_raw_config(config_path: Path | str) -> Dict[str, Any]:
    """
    Reads a settings file into a dictionary of sections without validating values.

    An empty file yields an empty dictionary.

    Args:
        config_path: Path to the YAML settings file.

    Returns:
        A mapping of section name to that section's raw field values.

    Raises:
        FileNotFoundError: If config_path does not exist.
        ConfigurationError: If the document is not a mapping of known sections.
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Clusterer settings file not found: {config_path}")

    logger.debug(f"Reading clusterer settings from {config_path}")
    with open(config_path, 'r') as f:
        document = yaml.safe_load(f)

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigurationError(
            f"{config_path} must contain a mapping of sections, "
            f"not a {type(document).__name__}"
        )

    unknown = sorted(set(document) - set(_SECTION_MODELS))
    if unknown:
        raise ConfigurationError(
            f"{config_path} has unknown section(s) {unknown}; "
            f"expected some of {list(_SECTION_MODELS)}"
        )
    return document


def load_config(config_path: Optional[Path | str] = None, **overrides: Any) -> ClustererConfig:
    """
    Builds a validated ClustererConfig from an optional settings file.

    Args:
        config_path: YAML settings file; None means all defaults.
        **overrides: Flat parameter overrides applied on top of the file,
            routed as in `resolve_config`.

    Returns:
        A validated ClustererConfig instance.

    Raises:
        FileNotFoundError: If config_path does not exist.
        ValidationError: If a value in the file is invalid.
        ConfigurationError: If the file layout or an override is invalid.
    """
    if config_path is None:
        config = ClustererConfig()
        logger.debug("No settings file given; starting from the default clusterer settings")
    else:
        config = _validate_and_create_config(load_raw_config(config_path), str(config_path))
        logger.info(f"Loaded clusterer settings from {config_path}")

    if overrides:
        config = resolve_config(config, **overrides)
    return config


def save_config(config: ClustererConfig, path: Path | str) -> None:
    """
    Writes every section of `config` to a YAML file that `load_config` reads back.

    Raises:
        TypeError: If config is not a ClustererConfig.
    """
    if not isinstance(config, ClustererConfig):
        raise TypeError(f"save_config expects a ClustererConfig, got {type(config).__name__}")

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # mode='json' turns every value into a YAML-safe primitive.
    sections = config.model_dump(mode='json')

    with open(output_path, 'w') as f:
        yaml.safe_dump(sections, f, default_flow_style=False, sort_keys=False, indent=2)
    logger.info(f"Wrote clusterer settings ({len(sections)} sections) to {output_path}")


# ======================================================================================
# Keyword Overrides
# ======================================================================================


def _section_for(key: str, primary: str) -> Optional[str]:
    """Finds the section owning `key`, checking the primary section first."""
    order = [primary] + [name for name in _SECTION_MODELS if name != primary]
    for name in order:
        if key in _SECTION_MODELS[name].model_fields:
            return name
    return None


def resolve_config(
    config: Optional[BaseModel | Dict[str, Any]] = None,
    primary: str = 'hdbscan',
    **overrides: Any,
) -> ClustererConfig:
    """
    Builds a validated ClustererConfig from a base config plus flat keyword overrides.

    Each override is routed to the section that defines it, so callers can write
    `resolve_config(min_cluster_size=10, leaf_size=20)`. Names defined by more
    than one section (e.g. `algorithm`) go to the `primary` section.

    Args:
        config: A ClustererConfig, one of its section models, a raw dictionary,
            or None for the defaults.
        primary: Section that wins for ambiguous override names.
        **overrides: Flat parameter overrides.

    Returns:
        A validated ClustererConfig instance.

    Raises:
        ConfigurationError: On unknown parameter names or invalid values.
    """
    if config is None:
        data: Dict[str, Any] = {}
    elif isinstance(config, ClustererConfig):
        data = config.model_dump()
    elif isinstance(config, dict):
        data = dict(config)
    else:
        section = next(
            (name for name, model in _SECTION_MODELS.items() if isinstance(config, model)),
            None,
        )
        if section is None:
            raise ConfigurationError(
                f'config must be a ClustererConfig, a section config or a dict, '
                f'not {type(config).__name__}'
            )
        data = {section: config.model_dump()}

    for key, value in overrides.items():
        section = _section_for(key, primary)
        if section is None:
            raise ConfigurationError(f"Unknown parameter '{key}'")
        data.setdefault(section, {})
        if isinstance(data[section], BaseModel):
            data[section] = data[section].model_dump()
        data[section] = {**data[section], key: value}

    try:
        return ClustererConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f'Invalid configuration:\n{e}') from e
