#!/usr/bin/env python3
"""Write the service's OpenAPI schema to ``<target_dir>/openapi.json``.

Usage:
  .venv/bin/python scripts/export_openapi.py docs/
  .venv/bin/python scripts/export_openapi.py docs/ --check

With ``--check`` nothing is written; the exit status is 1 when the file on
disk differs from the schema the current code would produce.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from cloudfiles.main import create_app

SCHEMA_FILENAME = "openapi.json"


def render_schema() -> str:
    schema = create_app().openapi()
    return json.dumps(schema, ensure_ascii=False, indent=2, sort_keys=True) + "\n"


def export_openapi(target_dir: Path) -> Path:
    target_dir.mkdir(parents=True, exist_ok=True)
    output_path = target_dir / SCHEMA_FILENAME
    output_path.write_text(render_schema(), encoding="utf-8")
    return output_path


def is_up_to_date(target_dir: Path) -> bool:
    existing = target_dir / SCHEMA_FILENAME
    if not existing.exists():
        return False
    return existing.read_text(encoding="utf-8") == render_schema()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Export the cloud files service OpenAPI schema."
    )
    parser.add_argument(
        "target_dir",
        type=Path,
        help=f"Directory holding {SCHEMA_FILENAME} (created if missing).",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only compare against the existing file; exit 1 when stale",
    )
    args = parser.parse_args()
    target_dir = args.target_dir.resolve()

    if args.check:
        if not is_up_to_date(target_dir):
            print(f"{target_dir / SCHEMA_FILENAME} is out of date")
            sys.exit(1)
        print(f"{target_dir / SCHEMA_FILENAME} is up to date")
        return

    output_path = export_openapi(target_dir)
    print(f"OpenAPI schema exported to {output_path}")


if __name__ == "__main__":
    main()
