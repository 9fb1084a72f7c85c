"""Output formatting for CLI commands."""

from __future__ import annotations

import json
from typing import Any


def print_json(data: Any) -> None:
    """Print JSON output for AI agents."""
    print(json.dumps(data, indent=2, default=str))
