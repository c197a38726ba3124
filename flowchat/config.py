"""Application settings, read from the environment (and an optional .env file)."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_ENV_PREFIX = "FLOWCHAT_"


class Settings(BaseModel):
    db_path: str = "flow_chat.db"
    embedding_dimensions: int = Field(default=1024, gt=0)
    view_state_debounce_ms: int = Field(default=200, ge=0)
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    @property
    def view_state_debounce_seconds(self) -> float:
        return self.view_state_debounce_ms / 1000


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Build Settings from FLOWCHAT_* environment variables.

    A .env file (default: next to the package) is loaded first without
    overriding variables that are already set in the real environment.
    """
    if env_file is None:
        env_file = Path(__file__).resolve().parent.parent / ".env"
    load_dotenv(env_file, override=False)

    values: dict[str, object] = {}
    for field_name in Settings.model_fields:
        raw = os.environ.get(f"{_ENV_PREFIX}{field_name.upper()}")
        if raw is None:
            continue
        if field_name == "cors_origins":
            values[field_name] = [o.strip() for o in raw.split(",") if o.strip()]
        else:
            values[field_name] = raw

    return Settings.model_validate(values)
