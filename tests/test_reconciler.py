from __future__ import annotations

import pytest

from storyboarder.parsing.normalizer import ResponseNormalizer
from storyboarder.reconcile.reconciler import (
    BATCH_LABELS,
    PARSE_WARNING,
    UNRESOLVED_WARNING,
    Reconciler,
)
from storyboarder.workspace.model import (
    AuthorRole,
    EntryStatus,
    Episode,
    Scene,
    Shot,
    StoredShotEntry,
)

CLOSE_UP_REPLY = '{"entries":[{"shotNumber":1,"shotScale":"close","dialogue":"Hello"}]}'


@pytest.fixture
def single_scene() -> Episode:
    return Episode(id="ep-9", episode_number=9, scenes=[Scene(id="only", order=1, title="Kitchen")])


def _reconcile(reply, existing, episode, default=1, reconciler=None):
    parsed = ResponseNormalizer().parse(reply, default)
    reconciler = reconciler or Reconciler()
    return reconciler.reconcile(parsed, existing, episode.scenes, episode_id=episode.id, source_turn_id="turn-1")


def test_new_entry_from_flat_envelope(single_scene) -> None:
    result = _reconcile(CLOSE_UP_REPLY, [], single_scene)

    assert result.touched_count == 1
    assert result.warning is None
    entry = result.entries[0]
    assert entry.version == 1
    assert entry.status is EntryStatus.PENDING_REVIEW
    assert entry.fields.shot_scale == "close"
    assert entry.fields.dialogue == "Hello"
    assert entry.fields.prompt == ""
    assert entry.scene_id == "only"
    assert entry.scene_title == "Kitchen"
    assert entry.last_turn_id == "turn-1"
    assert len(entry.revisions) == 1
    assert entry.revisions[0].author_role is AuthorRole.ASSISTANT
    assert entry.revisions[0].summary == "AI draft shot 1"


def test_resubmitting_bumps_version_and_keeps_fields(single_scene) -> None:
    first = _reconcile(CLOSE_UP_REPLY, [], single_scene)
    second = _reconcile(CLOSE_UP_REPLY, first.entries, single_scene)

    assert len(second.entries) == 1
    entry = second.entries[0]
    assert entry.id == first.entries[0].id
    assert entry.version == 2
    assert entry.fields == first.entries[0].fields
    assert [rev.version for rev in entry.revisions] == [1, 2]
    assert entry.revisions[1].summary == "AI update shot 1"
    # The earlier result is not mutated by the second pass.
    assert first.entries[0].version == 1


def test_idempotent_for_distinct_explicit_numbers(episode) -> None:
    reply = (
        '{"scenes":[{"sceneId":"scene-a","shots":[{"shotNumber":1,"scale":"wide"},{"shotNumber":2,"scale":"close"}]},'
        '{"sceneId":"scene-b","shots":[{"shotNumber":3,"scale":"medium"}]}]}'
    )
    first = _reconcile(reply, [], episode)
    second = _reconcile(reply, first.entries, episode)

    assert len(second.entries) == 3
    before = {entry.id: entry for entry in first.entries}
    for entry in second.entries:
        assert entry.fields == before[entry.id].fields
        assert entry.version == before[entry.id].version + 1


def test_match_resets_status_and_blanks_prompt(single_scene) -> None:
    approved = StoredShotEntry(
        episode_id=single_scene.id,
        scene_id="only",
        scene_title="Old title",
        fields=Shot(shot_number=1, prompt="keep me?"),
        status=EntryStatus.APPROVED,
    )
    result = _reconcile('[{"shotNumber":1,"aiPrompt":"model prompt"}]', [approved], single_scene)

    entry = result.entries[0]
    assert entry.status is EntryStatus.PENDING_REVIEW
    assert entry.fields.prompt == ""
    assert entry.scene_title == "Kitchen"
    assert entry.version == 2


def test_zero_shot_number_is_assigned_by_sequencer(single_scene) -> None:
    result = _reconcile('[{"shotNumber":0,"scale":"wide"}]', [], single_scene)
    assert result.entries[0].fields.shot_number == 1


def test_unnumbered_shots_continue_after_existing(single_scene) -> None:
    existing = [
        StoredShotEntry(episode_id=single_scene.id, scene_id="only", fields=Shot(shot_number=n))
        for n in (1, 2)
    ]
    result = _reconcile('[{"scale":"a"},{"scale":"b"},{"scale":"c"}]', existing, single_scene)

    touched = [entry for entry in result.entries if entry.id in result.touched_ids]
    assert [entry.fields.shot_number for entry in touched] == [3, 4, 5]
    assert len(result.entries) == 5


def test_second_scene_numbers_do_not_overlap_first(episode) -> None:
    existing = [
        StoredShotEntry(episode_id=episode.id, scene_id="scene-a", fields=Shot(shot_number=n))
        for n in (1, 2)
    ]
    reply = '{"scenes":[{"sceneId":"scene-a","shots":[{},{}]},{"sceneId":"scene-b","shots":[{},{}]}]}'
    result = _reconcile(reply, existing, episode, default=1)

    touched = {entry.id: entry for entry in result.entries if entry.id in result.touched_ids}
    first = sorted(e.fields.shot_number for e in touched.values() if e.scene_id == "scene-a")
    second = sorted(e.fields.shot_number for e in touched.values() if e.scene_id == "scene-b")
    assert first == [3, 4]
    assert second == [5, 6]


def test_explicit_numbers_are_not_reused_by_auto_shots(single_scene) -> None:
    result = _reconcile('[{"scale":"auto"},{"shotNumber":1,"scale":"explicit"}]', [], single_scene)
    numbers = sorted(entry.fields.shot_number for entry in result.entries)
    assert numbers == [1, 2]


def test_empty_parse_reports_parse_warning(single_scene) -> None:
    result = Reconciler().reconcile([], [], single_scene.scenes, episode_id=single_scene.id)
    assert result.warning == PARSE_WARNING
    assert result.touched_count == 0


def test_zero_scenes_creates_nothing() -> None:
    bare = Episode(id="ep-0", episode_number=1)
    result = _reconcile(CLOSE_UP_REPLY, [], bare)
    assert result.entries == []
    assert result.warning == UNRESOLVED_WARNING


def test_strict_mode_skips_unmatched_and_reports_partial(episode) -> None:
    reply = (
        '{"scenes":[{"sceneTitle":"Platform","shots":[{"shotNumber":1}]},'
        '{"sceneTitle":"Harbour","shots":[{"shotNumber":2}]}]}'
    )
    result = _reconcile(reply, [], episode, reconciler=Reconciler(strict_scene_match=True))

    assert result.touched_count == 1
    assert result.skipped == 1
    assert result.warning == "Saved 1 shot(s); 1 shot(s) matched no scene and were skipped."


def test_entries_are_never_removed(single_scene) -> None:
    keep = StoredShotEntry(episode_id=single_scene.id, scene_id="only", fields=Shot(shot_number=7))
    result = _reconcile(CLOSE_UP_REPLY, [keep], single_scene)
    assert keep.id in {entry.id for entry in result.entries}
    assert [entry.fields.shot_number for entry in result.entries] == [1, 7]


def test_batch_labels(single_scene) -> None:
    result = _reconcile(CLOSE_UP_REPLY, [], single_scene, reconciler=Reconciler(labels=BATCH_LABELS))
    assert result.entries[0].revisions[0].summary == "Batch storyboard draft shot 1"
