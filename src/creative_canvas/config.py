from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"
    log_level: str = "INFO"

    # Optional server-side default; requests normally carry their own key.
    gemini_api_key: str | None = None

    # Models
    gemini_vision_model: str = "gemini-2.5-flash"
    gemini_image_model: str = "gemini-2.5-flash-image"
    gemini_text_models: list[str] = [
        "gemini-2.5-flash",
        "gemini-2.5-pro",
        "gemini-flash-latest",
        "gemini-flash-lite-latest",
    ]

    default_language: str = "en-us"

    # Analysis session
    analysis_timeout_s: float = 30.0
    # When true a timed-out analysis degrades to the stock concept list instead of failing.
    analysis_timeout_fallback: bool = False
    image_fetch_timeout_s: float = 10.0
    reveal_start_delay_s: float = 0.1
    reveal_step_delay_s: float = 1.5
    reveal_final_delay_s: float = 3.0

    # Generation
    generation_aspect_ratio: str = "1:1"
    highlight_delay_s: float = 3.0

    # Merge
    merge_max_width: int = 1200
    merge_max_height: int = 800
    # Explicit merges from the merge route get a larger canvas than the linked-concept composite.
    merge_route_max_width: int = 2400
    merge_route_max_height: int = 1600


settings = Settings()
