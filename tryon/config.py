"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # FASHN try-on API
    fashn_api_key: str = ""
    fashn_base_url: str = "https://api.fashn.ai/v1"
    fashn_model_name: str = "tryon-v1.6"
    fashn_poll_interval_seconds: float = 2.0
    fashn_request_timeout_seconds: float = 60.0

    # Persistence: "supabase" or "memory"
    job_store_backend: str = "supabase"

    # Result images: "supabase" or "local"
    storage_backend: str = "supabase"
    supabase_storage_bucket: str = "tryon"
    local_storage_dir: Optional[str] = None  # defaults to <tmp>/tryon_results
    public_base_url: str = "http://localhost:8000"

    # Job processing
    max_concurrent_jobs: int = 4
    image_download_timeout_seconds: float = 30.0
    combined_garment_width: int = 768

    # Service
    service_port: int = 8000
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
