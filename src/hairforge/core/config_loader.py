"""JSON config file loading utilities."""

import json
import logging
from pathlib import Path
from typing import Any, Union

from hairforge.constants import CONFIG_DIR, DEFAULT_CONFIG_NAME
from hairforge.simulation.config import SimulationConfig

logger = logging.getLogger(__name__)


def load_json(path: Path) -> Any:
    """Load and return parsed JSON from a file."""
    with open(path) as f:
        return json.load(f)


def load_config(name: str) -> Any:
    """Load a config file from assets/config/."""
    return load_json(CONFIG_DIR / name)


def load_simulation_config(source: Union[str, Path, None] = None) -> SimulationConfig:
    """Load a :class:`SimulationConfig`.

    *source* may be a path to a JSON file or the name of a file in
    assets/config/; ``None`` loads the shipped defaults.
    """
    if source is None:
        source = DEFAULT_CONFIG_NAME
    path = Path(source)
    if not path.is_file():
        path = CONFIG_DIR / str(source)
    config = SimulationConfig.from_dict(load_json(path))
    logger.info("Loaded simulation config from %s", path)
    return config
