"""
Model response parsing.

Structured-output requests usually come back as bare JSON, but models
sometimes wrap it in markdown fences or surround it with prose.
"""

import json
from typing import Any, TypeVar

from pydantic import TypeAdapter

T = TypeVar("T")


def parse_json_payload(response_text: str | None) -> Any:
    """
    Extract a JSON value from a model response.

    Strategies, in order:
    1. Direct JSON parse
    2. Extract from ```json code blocks
    3. Extract from ``` code blocks
    4. Outermost [...] or {...} span in the text

    Args:
        response_text: Raw text response from the model.

    Returns:
        The decoded JSON value.

    Raises:
        ValueError: If no strategy yields valid JSON.
    """
    if not response_text or not response_text.strip():
        raise ValueError("Empty model response")

    # Strategy 1: Direct JSON parse
    try:
        return json.loads(response_text)
    except json.JSONDecodeError:
        pass

    # Strategy 2: Extract from ```json code block
    if "```json" in response_text:
        try:
            json_start = response_text.index("```json") + 7
            json_end = response_text.index("```", json_start)
            return json.loads(response_text[json_start:json_end].strip())
        except (ValueError, json.JSONDecodeError):
            pass

    # Strategy 3: Extract from any ``` code block
    if "```" in response_text:
        try:
            json_start = response_text.index("```") + 3
            # Skip language identifier if present (e.g., ```javascript)
            newline_pos = response_text.find("\n", json_start)
            if newline_pos != -1 and newline_pos < json_start + 20:
                json_start = newline_pos + 1
            json_end = response_text.index("```", json_start)
            return json.loads(response_text[json_start:json_end].strip())
        except (ValueError, json.JSONDecodeError):
            pass

    # Strategy 4: Outermost bracketed span
    openers = [i for i in (response_text.find("{"), response_text.find("[")) if i != -1]
    if openers:
        start = min(openers)
        closer = "}" if response_text[start] == "{" else "]"
        end = response_text.rfind(closer)
        if end > start:
            try:
                return json.loads(response_text[start : end + 1])
            except json.JSONDecodeError:
                pass

    raise ValueError(f"No JSON found in model response: {response_text[:80]!r}")


def parse_model_response(response_text: str | None, schema: type[T]) -> T:
    """
    Parse and validate a model response against a schema.

    Raises:
        ValueError: If the text holds no JSON.
        pydantic.ValidationError: If the JSON does not match the schema.
    """
    return TypeAdapter(schema).validate_python(parse_json_payload(response_text))
