import logging
import logging.handlers
import sys
from typing import Optional

from ..config import LogConfig

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Route the root logger to stdout and, when configured, a rotating file."""
    config = config or LogConfig()
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.root.setLevel(config.level.upper())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logging.root.addHandler(console_handler)

    if config.file:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8',
        )
        file_handler.setFormatter(formatter)
        logging.root.addHandler(file_handler)

    logging.captureWarnings(True)
    # aiosqlite is chatty at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


class CorrelationAdapter(logging.LoggerAdapter):
    """Prefix every record with the correlation id of the current pipeline tick."""

    def process(self, msg, kwargs):
        extra = dict(self.extra or {})
        extra.update(kwargs.pop("extra", {}) or {})
        kwargs["extra"] = extra
        return f"[{extra.get('correlation_id', '-')}] {msg}", kwargs
