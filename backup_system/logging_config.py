"""
Logging setup for the backup tool: plain text or structured JSON lines.
"""

import sys
import json
import logging
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add extra fields if available
        for extra in ('operation', 'path', 'duration_ms'):
            if hasattr(record, extra):
                log_entry[extra] = getattr(record, extra)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None,
                  structured: bool = False):
    """
    Configure the root logger.

    Args:
        verbose: DEBUG instead of INFO
        log_file: Additional log file
        structured: Emit JSON lines instead of plain text
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = StructuredFormatter() if structured else logging.Formatter(LOG_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)
