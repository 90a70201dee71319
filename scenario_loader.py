"""Load scenario files (JSON) into validated ScenarioConfig models."""

import json
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from sim_types import ScenarioConfig

DEFAULT_SCENARIO_DIR = Path(__file__).parent / "scenarios"


class ScenarioError(ValueError):
    """A scenario file is missing, unreadable or does not validate."""


def parse_scenario(data: dict) -> ScenarioConfig:
    try:
        return ScenarioConfig.model_validate(data)
    except ValidationError as e:
        raise ScenarioError(f"Invalid scenario configuration:\n{e}") from e


def load_scenario(path: Union[str, Path]) -> ScenarioConfig:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as e:
        raise ScenarioError(f"Scenario file '{path}' not found") from e
    except json.JSONDecodeError as e:
        raise ScenarioError(f"Scenario file '{path}' is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ScenarioError(f"Scenario file '{path}' must contain a JSON object")
    return parse_scenario(data)


def load_scenarios(directory: Union[str, Path] = DEFAULT_SCENARIO_DIR) -> List[Path]:
    """Sorted paths of every *.json scenario in a directory."""
    return sorted(Path(directory).glob("*.json"))
