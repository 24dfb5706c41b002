from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./spendtrail.db"
    redis_url: str = "redis://localhost:6379/0"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "receipts"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"

    receipt_ai_enabled: bool = True
    receipt_ai_timeout_seconds: float = 30.0
    receipt_ai_temperature: float = 0.1
    receipt_ai_max_chars: int = 12000
    receipt_ai_image_transport: Literal["inline", "url"] = "inline"

    # "text": read the PDF text layer, "rasterize": render page 1 to PNG,
    # "reject": ask the user to re-upload as an image.
    pdf_policy: Literal["text", "rasterize", "reject"] = "text"
    pdf_render_scale: float = 2.0
    pdf_min_text_chars: int = 50

    max_upload_bytes: int = 10 * 1024 * 1024
    signed_url_ttl_seconds: int = 3600

    read_retry_attempts: int = 3
    read_retry_delay_seconds: float = 1.0

    init_admin_email: str | None = None
    init_admin_password: str | None = None

    access_token_exp_minutes: int = 60 * 24


settings = Settings()
