from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "List Pilot"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "listpilot.db"

    # LLM
    llm_provider: str = "gemini"  # gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    agent_max_iterations: int = 8
    history_limit: int = 30

    # Moderation
    moderation_enabled: bool = False
    openai_api_key: str = ""
    moderation_model: str = "omni-moderation-latest"

    # Abuse threshold: blocked violations per organization in a trailing window
    violation_threshold: int = 5  # 0 disables auto-archive
    violation_window_hours: int = 168

    # Turn worker
    worker_count: int = 2
    turn_timeout_seconds: float = 60.0

    # Conversation health
    checkpoint_after_messages: int = 40
    activity_retention_days: int = 30
    maintenance_interval_seconds: int = 300

    # Planning
    decomposition_item_threshold: int = 8
    max_generated_children: int = 12

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "LISTPILOT_",
    }


settings = Settings()
