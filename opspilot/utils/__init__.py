"""OpsPilot utilities."""

from opspilot.utils.helpers import (
    canonical_json,
    generate_uuid,
    safe_json_dumps,
    truncate_string,
)
from opspilot.utils.logging import JSONFormatter, TextFormatter, get_logger, setup_logging

__all__ = [
    "canonical_json",
    "generate_uuid",
    "truncate_string",
    "safe_json_dumps",
    "JSONFormatter",
    "TextFormatter",
    "setup_logging",
    "get_logger",
]
