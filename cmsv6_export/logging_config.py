"""
Logging configuration for the CMS export client
Driven by the 'logging' section of the loaded config
"""
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Export context attached with ``logger.info(..., extra={...})``
CONTEXT_FIELDS = ('device_id', 'channel', 'action', 'attempt', 'file')

TEXT_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(context)s'
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, export context as top-level keys"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
                                 .isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Pipe-separated text with export context appended as key=value pairs"""

    def __init__(self):
        super().__init__(fmt=TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)
        record.context = (' | ' + ' '.join(f"{k}={v}" for k, v in context.items())) if context else ''
        return super().format(record)


def _file_handler(path: str, max_bytes: int, backup_count: int) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')


def setup_logging_from_config(config: Dict[str, Any], level: Optional[str] = None):
    """
    Configure the root logger from config['logging'].

    Args:
        config: Loaded configuration (environment overrides already applied)
        level: Overrides logging.level, e.g. from --log-level
    """
    log_config = config.get('logging') or {}
    log_level = getattr(logging, (level or log_config.get('level') or 'INFO').upper(), logging.INFO)
    formatter = JSONFormatter() if log_config.get('json_format') else ContextTextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # stdout carries exported paths and track records
    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = log_config.get('log_file')
    file_error = None
    if log_file:
        try:
            handlers.append(_file_handler(
                log_file,
                log_config.get('max_bytes') or DEFAULT_MAX_BYTES,
                log_config.get('backup_count', 5),
            ))
        except OSError as e:
            file_error = e

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning(f"Could not open log file {log_file}: {file_error}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}, "
                 f"json={bool(log_config.get('json_format'))}, file={log_file or '-'}")
