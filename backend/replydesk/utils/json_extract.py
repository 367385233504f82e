from __future__ import annotations

import json
from typing import Any, Dict, Optional

_DECODER = json.JSONDecoder()


def extract_first_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first well-formed JSON object embedded in ``text``.

    Models often wrap structured output in prose or markdown fences, so every
    ``{`` is tried as a starting point until one decodes to a dict.
    """
    if not text:
        return None
    index = text.find("{")
    while index != -1:
        try:
            value, _ = _DECODER.raw_decode(text, index)
        except ValueError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None
