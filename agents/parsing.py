"""
ChartPulse - Model Response Parsing

Model text is untrusted: locate the first balanced JSON object in the
response, decode it, and validate it against the expected model.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from chartpulse.exceptions import ParseError

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_json_block(text: str) -> dict[str, Any]:
    """
    Return the first balanced ``{...}`` block in ``text`` that decodes
    to a JSON object. Braces inside string literals are ignored.

    Raises:
        ParseError: No decodable JSON object found
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        value = json.loads(text[start:i + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(value, dict):
                        return value
                    break
        start = text.find("{", start + 1)

    raise ParseError("No JSON object found in response")


def parse_model(text: str, model: type[ModelT], **overrides: Any) -> ModelT:
    """Extract a JSON object from ``text`` and validate it as ``model``."""
    data = extract_json_block(text)
    data.update(overrides)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Response does not match {model.__name__}: {e}") from e
