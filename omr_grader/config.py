"""
Configuration settings for the OMR grading core
"""
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional, Tuple


class Settings(BaseSettings):
    """Application settings using pydantic-settings"""

    # Project paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    DATA_DIR: Path = PROJECT_ROOT / "data"
    IMAGES_DIR: Path = DATA_DIR / "images"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    EXPORTS_DIR: Path = PROJECT_ROOT / "exports"

    # Sheet layout
    LAYOUT_VERSION: str = "v1"
    RECTIFIED_WIDTH: int = 1240  # A4 at 150 DPI

    # Image validation / preprocessing
    MIN_IMAGE_WIDTH: int = 800
    MIN_IMAGE_HEIGHT: int = 1000
    MIN_FIDUCIALS: int = 3
    DENOISE: bool = False

    # CV tier
    BIN_THRESHOLD: int = 128
    FILL_THRESHOLD: float = 0.5

    # Tiered detection
    TIER_ORDER: List[str] = ["cv", "groq", "openrouter"]
    CONFIDENCE_THRESHOLD: float = 0.7
    CONFIDENCE_AGGREGATION: str = "min"  # "min", "mean" or "percentile"
    CONFIDENCE_PERCENTILE: float = 10.0
    TIER_TIMEOUT_SECONDS: float = 30.0

    # Vision model settings
    VISION_TEMPERATURE: float = 0.1
    VISION_MAX_TOKENS: int = 2048
    VISION_DEFAULT_CONFIDENCE: float = 0.8

    GROQ_API_KEY: Optional[str] = None
    GROQ_VISION_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"

    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_VISION_MODEL: str = "qwen/qwen2.5-vl-32b-instruct:free"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"

    OLLAMA_VISION_MODEL: str = "llama3.2-vision:latest"
    OLLAMA_BASE_URL: str = "http://localhost:11434"

    # Grading
    GRADE_CUTOFFS: List[Tuple[float, str]] = [
        (90.0, "A"),
        (75.0, "B"),
        (60.0, "C"),
        (40.0, "D"),
    ]
    FAIL_GRADE: str = "F"
    MULTI_MARK_POLICY: str = "zero"  # "zero" or "partial"
    DEFAULT_PASSING_RATIO: float = 0.4

    # Orchestration
    PROCESSING_LEASE_SECONDS: int = 600

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()

# Ensure directories exist
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
settings.IMAGES_DIR.mkdir(parents=True, exist_ok=True)
settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
settings.EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
