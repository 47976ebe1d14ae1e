# packages/xai_lib/logging.py

import sys
from pathlib import Path

from loguru import logger as _logger  # Aliased to avoid conflict

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[app]}</magenta>:<cyan>{extra[context]}</cyan> | <level>{message}</level>"
)


class LogManager:
    """
    Configures loguru once per process: a colored console sink plus a rotating
    JSON file per service. Components get a logger bound to their own context.
    """

    # Flags are passed in so the logger stays decoupled from settings
    def __init__(self, service_name: str, debug: bool = False, log_dir: Path | None = None):
        self.service_name = service_name
        self.level = "DEBUG" if debug else "INFO"
        self.log_dir = log_dir or Path(__file__).resolve().parents[2] / "logs"
        self._configure()

    def _configure(self):
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"{self.service_name}.json.log"

        _logger.configure(
            handlers=[
                {"sink": sys.stderr, "format": CONSOLE_FORMAT, "level": self.level, "colorize": True},
                {
                    "sink": log_file,
                    "level": self.level,
                    "rotation": "10 MB",
                    "retention": "7 days",
                    "serialize": True,
                    "enqueue": True,
                },
            ],
            # Unbound records still render
            extra={"app": self.service_name, "context": "-"},
        )

    def get_logger(self, context_name: str):
        return _logger.bind(app=self.service_name, context=context_name)
