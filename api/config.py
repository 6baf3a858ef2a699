import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    value = os.environ.get(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    OPENROUTER_API_KEY: str = os.environ.get("OPENROUTER_API_KEY", "")
    OPENROUTER_BASE_URL: str = os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    # Empty means in-memory storage
    STORAGE_PATH: str = os.environ.get("RULEARENA_STORAGE_PATH", "")
    CORS_ORIGINS: list[str] = _env_list("CORS_ORIGINS") or [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    # Empty means the whole catalog
    ALLOWED_MODELS: list[str] = _env_list("ALLOWED_MODELS")

    RULE_CACHE_TTL_SECONDS: float = float(os.environ.get("RULE_CACHE_TTL_SECONDS", "300"))
    HISTORY_LIMIT: int = int(os.environ.get("HISTORY_LIMIT", "20"))
    MAX_TOKENS: int = int(os.environ.get("MAX_TOKENS", "4096"))
    TEMPERATURE: float = float(os.environ.get("TEMPERATURE", "0.7"))
    REQUEST_TIMEOUT_SECONDS: float = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "120"))
    BACKGROUND_MINING: bool = _env_bool("BACKGROUND_MINING", default=False)
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
