from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from storyboarder.parsing.normalizer import SHOT_FIELD_ALIASES, coerce_shot_number, coerce_text, first_present
from storyboarder.time_utils import utc_now
from storyboarder.workspace.model import StoredShotEntry, sort_entries

logger = logging.getLogger(__name__)

NO_WORKSPACE_WARNING = "No storyboard exists for this episode yet; generate and confirm the storyboard first."
PROMPT_PARSE_WARNING = "No valid prompt JSON could be parsed from the reply."
PROMPT_SHAPE_WARNING = "The prompt JSON does not have the expected structure."
PROMPT_EMPTY_WARNING = "The prompt list is empty."
PROMPT_UNMATCHED_WARNING = "No storyboard shot matched the prompt shot numbers."

PROMPT_TEXT_ALIASES = ("prompt", "aiPrompt", "soraPrompt", "text")


@dataclass
class PromptWriteResult:
    entries: List[StoredShotEntry]
    updated_ids: List[str] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)


def prompt_mapping_from_payload(payload: Any) -> Optional[Dict[int, str]]:
    """Items without a positive shot number or with a blank prompt are skipped;
    a later item for the same shot wins. ``None`` means an unknown shape."""
    items = _prompt_items(payload)
    if items is None:
        return None
    mapping: Dict[int, str] = {}
    for item in items:
        number = coerce_shot_number(first_present(item, SHOT_FIELD_ALIASES["shot_number"]))
        prompt = coerce_text(first_present(item, PROMPT_TEXT_ALIASES))
        if number is None or number <= 0 or not prompt:
            continue
        mapping[number] = prompt
    return mapping


def _prompt_items(payload: Any) -> Optional[List[Mapping[str, Any]]]:
    if isinstance(payload, Mapping):
        payload = first_present(payload, ("prompts",))
    if not isinstance(payload, list):
        return None
    return [item for item in payload if isinstance(item, Mapping)]


def apply_prompt_mapping(
    entries: Sequence[StoredShotEntry],
    mapping: Mapping[int, str],
) -> PromptWriteResult:
    """Write prompt text onto entries by shot number only.

    This is a field-only update: version, status and revisions stay as they
    are. When several entries share a shot number the first in shot order is
    written.
    """
    updated_entries = [entry.model_copy(deep=True) for entry in sort_entries(list(entries))]
    updated: List[str] = []
    for shot_number, prompt in mapping.items():
        target = next((e for e in updated_entries if e.fields.shot_number == shot_number), None)
        if target is None:
            logger.debug("No storyboard entry for prompt shot %s", shot_number)
            continue
        target.fields = target.fields.model_copy(update={"prompt": prompt})
        target.updated_at = utc_now()
        updated.append(target.id)
    warning = None if updated else PROMPT_UNMATCHED_WARNING
    return PromptWriteResult(entries=updated_entries, updated_ids=updated, warning=warning)
