"""
Application Settings.

Centraliza toda configuração via .env / variáveis de ambiente.
Os limiares de decisão ficam aqui (e não nos call sites) porque
o ajuste fino deles é uma atividade operacional esperada.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configurações carregadas de variáveis de ambiente."""

    # --- App ---
    env: str = "development"
    debug: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # --- Database ---
    database_url: str = "sqlite:///payproof.db"

    # --- Intake ---
    max_image_bytes: int = 10 * 1024 * 1024
    allowed_formats: list[str] = ["jpeg", "png", "webp"]
    min_image_width: int = 200
    min_image_height: int = 200
    max_image_width: int = 2048
    max_image_height: int = 2048
    image_quality: int = 85
    dedup_window_seconds: int = 86400
    max_batch_size: int = 20
    batch_concurrency: int = 3
    default_currency: str = "PHP"

    # --- Quality Gate (legibilidade) ---
    blur_threshold: float = 100.0
    brightness_min: int = 50
    brightness_max: int = 250
    min_resolution: int = 480

    # --- OCR ---
    ocr_langs: list[str] = ["en"]
    ocr_use_gpu: bool = False
    ocr_min_confidence: float = 0.3

    # --- Vision (Gemini) ---
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    vision_enabled: bool = True

    # --- Port timeouts / retry ---
    ocr_timeout_seconds: float = 30.0
    vision_timeout_seconds: float = 45.0
    port_max_attempts: int = 3
    port_base_delay_seconds: float = 0.5
    port_max_delay_seconds: float = 8.0

    # --- Fusion ---
    min_amount: float = 1.00
    max_amount: float = 100000.00
    single_source_ceiling: float = 0.70
    corroboration_boost: float = 0.05
    contradiction_penalty: float = 0.6
    max_proof_age_days: int = 90
    future_skew_minutes: int = 10
    local_utc_offset_hours: int = 8

    # --- Matching ---
    amount_tolerance: float = 0.01
    min_match_score: float = 0.60
    auto_approve_match_score: float = 0.85
    partial_reference_penalty: float = 0.25
    candidate_window_days: int = 30

    # --- Decision thresholds ---
    auto_approve_threshold: float = 0.90
    conditional_threshold: float = 0.75
    review_floor: float = 0.50

    # --- Worker pool ---
    worker_concurrency: int = 4
    reserved_high_priority_workers: int = 1
    job_max_attempts: int = 3
    job_backoff_seconds: float = 2.0
    candidate_lookup_timeout_seconds: float = 10.0
    claim_timeout_seconds: float = 10.0
    persistence_timeout_seconds: float = 10.0
    shutdown_timeout_seconds: float = 60.0
    reprocess_max_limit: int = 100

    # --- Events ---
    event_publisher: str = "log"          # "log" | "webhook"
    event_webhook_url: str = ""
    event_webhook_timeout_seconds: float = 5.0
    event_poll_interval_seconds: float = 2.0
    event_max_attempts: int = 8
    event_batch_size: int = 50

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Singleton de settings."""
    return Settings()
