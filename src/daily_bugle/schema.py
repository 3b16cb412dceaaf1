"""JSON schema check for the sections config, run before the pydantic models.

The schema ships inside the package as ``sections.schema.json`` and is read
through ``importlib.resources``, so an installed wheel and a source checkout
resolve it the same way.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

SCHEMA_PACKAGE = "daily_bugle"
SCHEMA_RESOURCE = "sections.schema.json"


@lru_cache(maxsize=1)
def config_validator() -> Draft202012Validator:
    """Build (once) a validator for the packaged config schema."""
    raw = resources.files(SCHEMA_PACKAGE).joinpath(SCHEMA_RESOURCE).read_text(encoding="utf-8")
    schema = json.loads(raw)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def load_schema() -> Dict[str, Any]:
    return config_validator().schema


def describe_violations(payload: Any) -> List[str]:
    """Every schema violation in ``payload`` as ``location: message``, ordered by location."""
    violations = []
    for error in config_validator().iter_errors(payload):
        location = ".".join(str(part) for part in error.absolute_path) or "<root>"
        violations.append((location, error.message))
    return [f"{location}: {message}" for location, message in sorted(violations)]


def validate_config_payload(payload: Any) -> Any:
    """Return ``payload`` unchanged, or raise ValueError listing the violations."""
    violations = describe_violations(payload)
    if violations:
        raise ValueError("Config validation failed: " + "; ".join(violations))
    return payload
