from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "BillScan"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Languages
    DEFAULT_LANGUAGE: str = "en"
    PATTERN_DATA_DIR: Optional[str] = None  # Defaults to the packaged data files

    # PDF text recovery
    PDF_EXTRACTION_TIMEOUT: float = 10.0  # seconds
    SHORT_TEXT_THRESHOLD: int = 100
    MAX_BINARY_SCAN_BYTES: int = 300_000
    MAX_RECOVERED_CHARS: int = 5000

    # Confidence policy
    TRUSTED_CONFIDENCE_FLOOR: float = 0.85
    VENDOR_OVERRIDE_CONFIDENCE: float = 0.7
    MIN_ACCEPT_CONFIDENCE: float = 0.3

    # Strategies tried in order, first adequate result wins
    DEFAULT_STRATEGIES: List[str] = ["pattern", "regex"]

    # Chunked transfer
    TRANSFER_MAX_CHUNKS: int = 200
    TRANSFER_MAX_BYTES: int = 20 * 1024 * 1024

    # API
    BATCH_MAX_DOCUMENTS: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
