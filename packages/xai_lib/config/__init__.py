# packages/xai_lib/config/__init__.py

from pydantic_settings import BaseSettings


# Import sub-configs
from .base import PROJECT_ROOT
from .paths import PathsConfig
from .system import SystemConfig


class Settings(BaseSettings):
    # Composition: Grouping configs by domain
    system: SystemConfig = SystemConfig()
    paths: PathsConfig = PathsConfig()


# Singleton Instance
try:
    settings = Settings()
except Exception as e:
    print(f"CRITICAL: Config load failed. Details: {e}")
    raise e
