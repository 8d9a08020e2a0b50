from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Chat Relay"
    debug: bool = False

    # Database
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "chat.db"
    database_url: str = ""  # any SQLAlchemy URL; falls back to sqlite at db_path

    # Upstream LLM (OpenAI-compatible)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    chat_model: str = "gpt-4o-mini"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_quality: str = "standard"
    upstream_timeout: float = 120.0  # seconds, whole call including the streamed body

    # Relay
    fallback_word_delay: float = 0.1  # seconds between fallback words

    # Validation
    max_message_length: int = 1000
    min_image_prompt_length: int = 3
    max_image_prompt_length: int = 4000  # DALL-E 3 limit
    image_prompt_alternatives: int = 2

    # Sessions / history
    session_title_length: int = 50
    history_session_limit: int = 50

    # Rate limiting (fixed window, per client and route)
    rate_limit_requests: int = 20
    rate_limit_window_seconds: int = 60

    # Image proxy
    image_proxy_allowed_domains: list[str] = [
        "oaidalleapiprodscus.blob.core.windows.net",
        "via.placeholder.com",
        "picsum.photos",
    ]
    image_proxy_timeout: float = 10.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CHATRELAY_",
    }


settings = Settings()
