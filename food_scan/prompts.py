"""Prompts for vision models."""

NUTRITION_PROMPT = (
    "Identify what food item is in this image. Then provide accurate nutritional "
    'information in this format: {"food": "Food Name", "calories": calories_number, '
    '"protein": protein_grams, "carbs": carbs_grams, "fat": fat_grams}. '
    "Return only the JSON object without any other text."
)

REQUIRED_FIELDS = ("food", "calories", "protein", "carbs", "fat")
