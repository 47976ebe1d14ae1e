from pathlib import Path
from pydantic import Field
from .base import EnvConfig, PROJECT_ROOT


class SystemConfig(EnvConfig):
    """
    General system-wide configuration.
    """

    # Maps to XAI_ENV in .env
    environment: str = Field(validation_alias="XAI_ENV", default="production")

    debug: bool = Field(validation_alias="DEBUG", default=False)
    project_name: str = "Explainer"
    version: str = "1.0.0"

    log_dir: Path = Field(validation_alias="XAI_LOG_DIR", default=PROJECT_ROOT / "logs")
