"""
MathSnap Configuration Module
Loads settings from .env file and defines pipeline constants.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# API Keys
# =============================================================================
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
SOLVER_BACKEND = os.getenv("SOLVER_BACKEND", "gemini")  # "gemini" or "openai"

# =============================================================================
# Model Configuration
# =============================================================================
VISION_MODEL = os.getenv("VISION_MODEL", "gemini-2.0-flash")  # Reads the photo
CORRECTION_MODEL = os.getenv("CORRECTION_MODEL", "gemini-2.0-flash")  # Fixes OCR misreads
SOLVER_MODEL = os.getenv("SOLVER_MODEL", "gemini-2.5-pro")  # Step-by-step solutions
OPENAI_SOLVER_MODEL = os.getenv("OPENAI_SOLVER_MODEL", "gpt-4o")  # When SOLVER_BACKEND=openai

# =============================================================================
# Pipeline Parameters
# =============================================================================
SERVICE_TIMEOUT = int(os.getenv("SERVICE_TIMEOUT", "120"))  # Seconds, per model request
ENABLE_PREPROCESSING = os.getenv("ENABLE_PREPROCESSING", "true").lower() == "true"
PREPROCESS_MAX_DIMENSION = int(os.getenv("PREPROCESS_MAX_DIMENSION", "2048"))  # Longest side in px

# =============================================================================
# Logging
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


# =============================================================================
# Validation
# =============================================================================
def validate_config() -> dict:
    """Validate configuration and return status."""
    issues = []

    if not GOOGLE_API_KEY:
        issues.append("GOOGLE_API_KEY is not set in .env file")

    if SOLVER_BACKEND not in ("gemini", "openai"):
        issues.append(f"SOLVER_BACKEND must be 'gemini' or 'openai', got '{SOLVER_BACKEND}'")

    if SOLVER_BACKEND == "openai" and not OPENAI_API_KEY:
        issues.append("OPENAI_API_KEY is required when SOLVER_BACKEND=openai")

    if PREPROCESS_MAX_DIMENSION <= 0:
        issues.append("PREPROCESS_MAX_DIMENSION must be a positive number of pixels")

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "config": {
            "vision_model": VISION_MODEL,
            "correction_model": CORRECTION_MODEL,
            "solver_model": OPENAI_SOLVER_MODEL if SOLVER_BACKEND == "openai" else SOLVER_MODEL,
            "solver_backend": SOLVER_BACKEND,
            "preprocessing": ENABLE_PREPROCESSING,
            "timeout": SERVICE_TIMEOUT,
        }
    }
