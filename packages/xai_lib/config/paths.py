from pathlib import Path
from pydantic import Field
from .base import EnvConfig, PROJECT_ROOT


class PathsConfig(EnvConfig):
    """Where the engine blueprint and the domain knowledge pack live on disk."""

    blueprint_path: Path = Field(
        validation_alias="XAI_BLUEPRINT_PATH",
        default=PROJECT_ROOT / "configs" / "explainer.yml",
    )
    knowledge_path: Path = Field(
        validation_alias="XAI_KNOWLEDGE_PATH",
        default=PROJECT_ROOT / "configs" / "domain" / "football.yml",
    )
