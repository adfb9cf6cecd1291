from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from .commands import Opcode
from .errors import ErrorCode, ProtocolError

SCHEMA_DIR = Path(__file__).parent / "schemas"

# Outbound opcode -> schema filename (relative to SCHEMA_DIR)
SCHEMA_REGISTRY: Dict[int, str] = {
    Opcode.JOIN: "join.json",
    Opcode.HEARTBEAT: "heartbeat.json",
}


@lru_cache(maxsize=16)
def load_schema(opcode: int) -> Optional[dict]:
    """Load the JSON schema for an outbound opcode if one is registered."""
    filename = SCHEMA_REGISTRY.get(int(opcode))
    if not filename:
        return None
    path = SCHEMA_DIR / filename
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def validate_body(opcode: int, body: Dict[str, Any], schema: Optional[dict] = None) -> None:
    """Validate an outbound frame body against its schema."""
    if not schema:
        schema = load_schema(opcode)
    if schema:
        try:
            jsonschema.validate(instance=body, schema=schema)
        except jsonschema.ValidationError as exc:
            raise ProtocolError(ErrorCode.SCHEMA_INVALID, f"Schema validation failed: {exc.message}") from exc


__all__ = ["load_schema", "validate_body"]
