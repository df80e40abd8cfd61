from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "Landsraad Tracker"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # Vision LLM (OpenAI-compatible chat completions)
    analysis_models: str = "gpt-4o-mini,gpt-4.1-mini"  # tried in this order
    analysis_endpoint: str = "https://api.openai.com/v1/chat/completions"
    llm_api_key: str = ""  # primary credential
    openai_api_key: str = ""  # fallback credential
    analysis_batch_size: int = 5
    analysis_max_attempts: int = 3
    analysis_backoff_initial_s: float = 0.5
    analysis_max_tokens: int = 1500
    analysis_temperature: float = 0.1
    analysis_timeout_s: float = 120.0
    analysis_max_images: int = 30
    analysis_max_image_size_mb: int = 10
    analysis_prompt_path: str = ""  # packaged prompt if empty

    # Tracker
    houses: list[str] = ["Atreides", "Harkonnen", "Corrino", "Varota", "Wallach", "Imota"]

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    @property
    def analysis_model_list(self) -> list[str]:
        return [m.strip() for m in self.analysis_models.split(",") if m.strip()]

    def resolve_api_key(self, explicit: str | None = None) -> str | None:
        """Pick the credential: explicit token, then LLM_API_KEY, then OPENAI_API_KEY."""
        for candidate in (explicit, self.llm_api_key, self.openai_api_key):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
