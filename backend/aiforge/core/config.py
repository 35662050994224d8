from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "AI Forge"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    DATABASE_URL: str = "sqlite:///./aiforge.db"

    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Gemini credential: auto-discovery source for the CredentialGate.
    # May be left empty and configured at runtime via POST /credentials.
    GEMINI_API_KEY: str = ""
    GEMINI_PROBE_MODEL: str = "gemini-2.5-flash"

    # Chat assistant
    GEMINI_CHAT_MODEL: str = "gemini-2.5-flash"
    GEMINI_CHAT_TEMPERATURE: float = 0.9
    GEMINI_CHAT_MAX_OUTPUT_TOKENS: int = 2048
    GEMINI_CHAT_SYSTEM_INSTRUCTION: str = (
        "You are a helpful and friendly AI assistant for a website called 'Mike's AI Forge'. "
        "Your purpose is to assist users by answering their questions about the website's features, "
        "which include an AI Tools Directory, free Utility tools, a Workflow Vault, and a Content "
        "Automation Studio. Be concise and helpful. When a user asks you to perform a task that matches "
        "one of your available tools (like generating titles or thumbnail prompts), you must use that tool."
    )

    # Live presentation coach
    GEMINI_LIVE_MODEL: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    COACH_FRAME_SAMPLES: int = 4096
    COACH_FRAME_QUEUE_SIZE: int = 64
    COACH_MIN_TRANSCRIPT_CHARS: int = 20

    # Video clip generation (long-running operations)
    GEMINI_VIDEO_MODEL: str = "veo-2.0-generate-001"
    VIDEO_POLL_INTERVAL_SECONDS: float = 10.0
    VIDEO_MAX_POLL_FAILURES: int = 3
    VIDEO_DOWNLOAD_TIMEOUT_SECONDS: float = 120.0
    VIDEO_DOWNLOAD_ALLOWED_PREFIX: str = "https://generativelanguage.googleapis.com/"

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
