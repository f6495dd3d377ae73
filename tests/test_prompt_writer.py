from __future__ import annotations

from storyboarder.reconcile.prompt_writer import (
    PROMPT_UNMATCHED_WARNING,
    apply_prompt_mapping,
    prompt_mapping_from_payload,
)
from storyboarder.workspace.model import EntryStatus, Shot, StoredShotEntry


def _entry(number: int, scene_id: str = "s1") -> StoredShotEntry:
    return StoredShotEntry(
        episode_id="ep",
        scene_id=scene_id,
        fields=Shot(shot_number=number, shot_scale="wide"),
        status=EntryStatus.APPROVED,
        version=3,
    )


def test_parse_prompts_envelope_with_aliases() -> None:
    payload = {"prompts": [{"shotNumber": 1, "prompt": "dusk"}, {"shot": "2", "soraPrompt": "rain"}]}
    assert prompt_mapping_from_payload(payload) == {1: "dusk", 2: "rain"}


def test_bare_array_and_invalid_items() -> None:
    payload = [
        {"shotNumber": 0, "prompt": "zero"},
        {"shotNumber": 3, "prompt": "   "},
        {"shotNumber": 4, "text": "kept"},
        "noise",
    ]
    assert prompt_mapping_from_payload(payload) == {4: "kept"}


def test_unknown_shape_is_none() -> None:
    assert prompt_mapping_from_payload({"shots": []}) is None


def test_apply_is_field_only_update() -> None:
    entries = [_entry(1), _entry(2)]
    result = apply_prompt_mapping(entries, {2: "neon alley"})

    assert result.updated_count == 1
    target = next(entry for entry in result.entries if entry.fields.shot_number == 2)
    assert target.fields.prompt == "neon alley"
    assert target.fields.shot_scale == "wide"
    assert target.version == 3
    assert target.status is EntryStatus.APPROVED
    assert target.revisions == []
    assert entries[1].fields.prompt == ""


def test_duplicate_shot_numbers_write_first_entry_only() -> None:
    first = _entry(1, "s1")
    second = _entry(1, "s2")
    result = apply_prompt_mapping([first, second], {1: "only once"})
    assert result.updated_ids == [first.id]


def test_unmatched_numbers_warn() -> None:
    result = apply_prompt_mapping([_entry(1)], {9: "missing"})
    assert result.updated_count == 0
    assert result.warning == PROMPT_UNMATCHED_WARNING
