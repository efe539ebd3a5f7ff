from pathlib import Path

from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Process configuration loaded from environment variables."""

    vault_path: Path  # Root directory of the vault being tracked
    config_dir: str = ".obsidian"  # Host's private config area, relative to the vault root
    debug: bool = False
    save_debounce_ms: int = 200  # Quiescence before a pending snapshot save is flushed
    refresh_debounce_ms: int = 200  # Quiescence before refresh observers are notified

    model_config = {
        "env_file": [".env"],
        "env_prefix": "VIEWCOUNT_",
        "extra": "ignore",
    }
