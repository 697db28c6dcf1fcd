"""
Structured JSON logging.
"""
import logging
import os
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['service'] = 'geofilter'


def setup_logging(level: str = None):
    """Configure root logger to use structured JSON."""
    root = logging.getLogger()
    handler = logging.StreamHandler()
    handler.setFormatter(CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s'))
    root.handlers = [handler]
    root.setLevel(logging.INFO)
    # Override for our modules
    level = level or os.getenv("LOG_LEVEL", "DEBUG" if os.getenv("DEBUG") else "INFO")
    logging.getLogger("geofilter").setLevel(level.upper())
