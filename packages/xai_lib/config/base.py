# packages/xai_lib/config/base.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

# Repository root: packages/xai_lib/config/base.py -> three levels up
PROJECT_ROOT = Path(__file__).resolve().parents[3]
ENV_FILE = PROJECT_ROOT / ".env"


class EnvConfig(BaseSettings):
    """
    Parent of every settings group. Values come from the process environment
    first, then the repository's .env file; unknown keys are ignored so one
    .env can serve every group.
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )
