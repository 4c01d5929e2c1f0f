"""JSON extraction and repair for model responses.

Models often wrap their JSON in code fences or add commentary around it. The
helpers here locate the outermost JSON fragment, repair common formatting
damage with ``json_repair`` and decode it.
"""

from __future__ import annotations

import json
from typing import Any

from json_repair import repair_json


def _fragment_bounds(text: str) -> tuple[int, int]:
    start_obj = text.find("{")
    start_arr = text.find("[")

    if start_obj == -1 and start_arr == -1:
        raise ValueError("Response text does not contain JSON object or array delimiters.")

    # Prefer whichever top-level container opens first
    if start_obj == -1 or (start_arr != -1 and start_arr < start_obj):
        start, end_char = start_arr, "]"
    else:
        start, end_char = start_obj, "}"

    end = text.rfind(end_char)
    if end == -1 or end <= start:
        raise ValueError("Response text does not contain matching JSON delimiters.")
    return start, end


def parse_json_response(text: str) -> Any:
    """Extract and repair JSON content from model response text.

    Args:
        text: The response text that should contain a JSON object or array

    Returns:
        The decoded JSON value (a dict or a list)

    Raises:
        ValueError: If no JSON fragment is found or it cannot be decoded.
            ``json.JSONDecodeError`` is a subclass and may surface directly.

    Example:
        >>> parse_json_response('Result: [{"checklistId": 1}] done')
        [{'checklistId': 1}]
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected string input, got {type(text)}")

    start, end = _fragment_bounds(text)
    repaired = repair_json(text[start : end + 1])
    return json.loads(repaired)
