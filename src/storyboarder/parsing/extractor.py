from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from json_repair import repair_json

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```json", re.IGNORECASE)
_BARE_FENCE = "```"
_OPENERS = "{["
_CLOSERS = "}]"


def extract_json_block(text: str) -> Optional[str]:
    """Return the JSON value embedded in a model reply, or ``None``.

    A fenced block (```` ```json ```` first, then a bare ```` ``` ````) wins;
    otherwise the span from the first ``{``/``[`` to the last ``}``/``]`` is
    returned. The result is not checked for well-formedness.
    """
    if not text:
        return None
    fenced = _extract_fenced(text)
    if fenced:
        return fenced

    start = next((idx for idx, ch in enumerate(text) if ch in _OPENERS), -1)
    end = next((idx for idx in range(len(text) - 1, -1, -1) if text[idx] in _CLOSERS), -1)
    if start != -1 and end != -1 and start < end:
        return text[start : end + 1]
    return None


def _extract_fenced(text: str) -> Optional[str]:
    match = _JSON_FENCE.search(text)
    if match:
        body_start = match.end()
    else:
        bare = text.find(_BARE_FENCE)
        if bare == -1:
            return None
        body_start = bare + len(_BARE_FENCE)
    body_end = text.find(_BARE_FENCE, body_start)
    if body_end == -1:
        return None
    return text[body_start:body_end].strip()


def load_json_payload(raw: str, *, repair: bool = False) -> Any | None:
    """Best-effort decode of the JSON value inside ``raw``.

    Returns ``None`` when nothing decodes; an unparseable reply is an expected
    outcome, so nothing is raised. With ``repair`` enabled a failed parse is
    retried through ``json_repair``.
    """
    cleaned = extract_json_block(raw)
    if cleaned is None:
        logger.debug("No JSON span found in reply (%d chars)", len(raw or ""))
        return None
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        if not repair:
            logger.warning("Reply JSON could not be parsed: %s", exc)
            return None
        logger.warning("Primary JSON parse failed, attempting repair: %s", exc)
    try:
        repaired = repair_json(cleaned)
        return json.loads(repaired) if repaired else None
    except Exception as repair_exc:
        logger.error("JSON repair failed: %s", repair_exc)
        return None
