"""
Output format utilities for branchsource CLI commands.

Provides functions to format records as JSONL, JSON and YAML.
"""

import json
import os
from typing import Any, Dict, Iterable, Iterator

import yaml

FORMATS = ('jsonl', 'json', 'yaml')


def format_output(data: Iterable[Dict[str, Any]], format: str) -> Iterator[str]:
    """
    Format records according to the specified format.

    Yields:
        Formatted strings for output
    """
    if format == "jsonl":
        for item in data:
            yield json.dumps(item, ensure_ascii=False)
    elif format == "json":
        yield json.dumps(list(data), ensure_ascii=False, indent=2)
    elif format == "yaml":
        yield yaml.safe_dump(list(data), default_flow_style=False, allow_unicode=True, sort_keys=False)
    else:
        raise ValueError(f"Unknown format: {format}")


def get_format_from_env(default: str = 'jsonl') -> str:
    """Output format from BRANCHSOURCE_FORMAT, or ``default``."""
    format = os.environ.get('BRANCHSOURCE_FORMAT', default).lower()
    if format not in FORMATS:
        return default
    return format
