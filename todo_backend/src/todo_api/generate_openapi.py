"""
Write the OpenAPI schema of the todo API to disk.

The schema is generated from an app built with default settings (in-memory
store), so no database or environment is needed.

Usage:
    python -m src.todo_api.generate_openapi [output_path]

The default output is <todo_backend>/interfaces/openapi.json.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .main import create_app, openapi_tags
from .settings import Settings

DEFAULT_OUTPUT = Path(__file__).resolve().parents[2] / "interfaces" / "openapi.json"


def _ensure_tags(schema: Dict[str, Any]) -> None:
    """
    Make sure every tag from `openapi_tags` is present with its description.
    Existing tag entries are left as they are.
    """
    existing_tags = schema.get("tags", []) or []
    existing_names = {t.get("name") for t in existing_tags if isinstance(t, dict)}
    for tag in openapi_tags:
        if tag.get("name") not in existing_names:
            existing_tags.append(tag)
    if existing_tags:
        schema["tags"] = existing_tags


# PUBLIC_INTERFACE
def generate_openapi(out_path: Optional[Path] = None) -> Path:
    """Generate the OpenAPI schema file and return the written file path."""
    schema = create_app(Settings()).openapi()
    _ensure_tags(schema)

    path = Path(out_path) if out_path else DEFAULT_OUTPUT
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    return path


def main() -> None:
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    written = generate_openapi(target)
    print(f"Wrote OpenAPI schema to: {written}")


if __name__ == "__main__":
    main()
