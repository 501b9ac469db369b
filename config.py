from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    SUPABASE_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str
    ANTHROPIC_API_KEY: str
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Agent Settings
    AI_MODEL: str = "claude-sonnet-4-5"
    AI_TEMPERATURE: float = 0.7
    AI_MAX_TOKENS: int = 2048
    AI_MAX_ITERATIONS: int = 3
    CHAT_HISTORY_LIMIT: int = 20

    # Chat client settings
    CHAT_FUNCTION_URL: str = "http://localhost:8000/ai-chat"
    MENTION_MAX_RESULTS: int = 5
    MENTION_SEARCH_DEBOUNCE_SECONDS: float = 0.25

    # Streaming wait policy (seconds)
    STREAM_FIRST_CHUNK_TIMEOUT_SECONDS: float = 60.0
    STREAM_IDLE_TIMEOUT_SECONDS: float = 30.0
    STREAM_MAX_DURATION_SECONDS: float = 300.0

    class Config:
        env_file = ".env"


settings = Settings()
