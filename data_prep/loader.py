from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from .models import ProjectionInputs, ScenarioOverrides

logger = logging.getLogger(__name__)


def _read_json(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object at the top level")
    return data


def load_snapshot(path: Union[str, Path]) -> ProjectionInputs:
    """
    Load a projection input snapshot from JSON.

    Plan settings may sit under a "settings" key or at the top level next to
    the entity arrays (the layout the web app exports).
    """
    data = _read_json(path)
    if "settings" not in data:
        entity_keys = set(ProjectionInputs.model_fields) | {
            "collateralizedLoans", "taxLots", "lifeEvents", "currentBtcPrice",
        }
        settings = {k: v for k, v in data.items() if k not in entity_keys}
        data = {k: v for k, v in data.items() if k in entity_keys}
        data["settings"] = settings
    inputs = ProjectionInputs.model_validate(data)
    logger.info(
        "Loaded snapshot %s: %d holdings, %d accounts, %d liabilities, %d loans, %d lots",
        path,
        len(inputs.holdings),
        len(inputs.accounts),
        len(inputs.liabilities),
        len(inputs.collateralized_loans),
        len(inputs.tax_lots),
    )
    return inputs


def load_scenario(path: Union[str, Path]) -> ScenarioOverrides:
    return ScenarioOverrides.model_validate(_read_json(path))
