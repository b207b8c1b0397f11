from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_path: Path = Path("docshelf.sqlite")
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]
    log_level: str = "INFO"
    max_upload_bytes: int = 50 * 1024 * 1024  # 50 MiB

    # S3-compatible object store (R2, MinIO, AWS)
    storage_endpoint: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_bucket: str = "documents"
    storage_region: str = "auto"
    storage_create_bucket: bool = False
    signed_url_ttl_seconds: int = 3600
    fetch_timeout_seconds: float = 10.0

    # Delivery cache
    cache_ttl_seconds: int = 1800  # 30 minutes
    cache_sweep_interval_seconds: int = 60
    cache_max_age_seconds: int = 1800

    model_config = {"env_prefix": "DOCSHELF_"}


settings = Settings()
