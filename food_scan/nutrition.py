"""Nutrition estimate model and extraction of it from model replies."""

import json
import re
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from food_scan.errors import ResponseParseError
from food_scan.prompts import REQUIRED_FIELDS

_FENCED_JSON = re.compile(r"```json\n([\s\S]*?)\n```")
_BRACED = re.compile(r"({[\s\S]*?})")


class NutritionEstimate(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="ignore")

    food: str = Field(..., min_length=1, description="Detected food name")
    calories: float = Field(..., ge=0, allow_inf_nan=False, description="Energy (kcal)")
    protein: float = Field(..., ge=0, allow_inf_nan=False, description="Protein (g)")
    carbs: float = Field(..., ge=0, allow_inf_nan=False, description="Carbohydrates (g)")
    fat: float = Field(..., ge=0, allow_inf_nan=False, description="Fat (g)")

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        # bool is an int subclass and would otherwise coerce to 0/1
        if isinstance(value, bool):
            raise ValueError("boolean is not a nutrition value")
        return value

    @field_validator("food", mode="before")
    @classmethod
    def _food_is_text(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("food must be a string")
        return value


def extract_json(text: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model reply.

    Looks for a ```json fenced block first, then for the first
    brace-delimited substring. The brace match is non-greedy, so prose
    with nested braces ahead of the object can misfire.
    """
    if not text:
        raise ResponseParseError("Empty model output")

    match = _FENCED_JSON.search(text) or _BRACED.search(text)
    if match is None:
        raise ResponseParseError("No JSON object detected")

    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in model output: {e}") from e

    if not isinstance(parsed, dict):
        raise ResponseParseError("Model output is not a JSON object")
    return parsed


def parse_estimate(text: str) -> NutritionEstimate:
    """Extract and validate a NutritionEstimate from raw model text."""
    data = extract_json(text)

    missing = [key for key in REQUIRED_FIELDS if key not in data]
    if missing:
        raise ResponseParseError(f"Missing fields in model output: {', '.join(missing)}")

    try:
        return NutritionEstimate.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(f"Invalid nutrition values: {e}") from e
