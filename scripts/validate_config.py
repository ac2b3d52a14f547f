"""
Relay configuration validation script.

Validates the relay JSON config (shared/config/relay.json, or the path given
on the command line) against shared/config/relay.schema.json.

Design rules:
- No runtime startup
- Validation only (no mutation)
- A missing file is valid (the relay boots on defaults + env)
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.config.relay import DEFAULT_CONFIG_PATH, schema_errors  # noqa: E402


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ValueError(f"{path.name}: invalid JSON ({e})") from e

    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: root JSON value must be an object")
    return data


def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def validate_relay_config(path: Path) -> List[str]:
    try:
        data = _load_json(path)
    except ValueError as e:
        return [str(e)]

    return [f"{path.name}: {problem}" for problem in schema_errors(data)]


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate relay configuration")
    parser.add_argument(
        "path",
        nargs="?",
        default=str(DEFAULT_CONFIG_PATH),
        help="config file to validate (default: shared/config/relay.json)",
    )
    args = parser.parse_args(argv)

    problems = validate_relay_config(Path(args.path))
    for problem in problems:
        _error(problem)

    if problems:
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
