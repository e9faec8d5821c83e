"""
Food scan package:
- config: environment-driven settings
- errors: device, capture and inference error types
- camera: device probing and live stream ownership
- capture: still-frame JPEG encoding
- prompts: instruction sent with each image
- nutrition: NutritionEstimate model + reply extraction
- vision_client: remote vision model calls
- fallback: built-in nutrition estimates
- notify: user-facing notifications and permission guidance
- session: scan state machine driving the UI
"""
