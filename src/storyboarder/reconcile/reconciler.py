from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from storyboarder.time_utils import utc_now
from storyboarder.workspace.model import (
    AuthorRole,
    EntryStatus,
    ParsedShot,
    Scene,
    Shot,
    StoredShotEntry,
    sort_entries,
)

from .resolver import SceneResolver
from .sequencer import ShotSequencer

logger = logging.getLogger(__name__)

PARSE_WARNING = "No valid storyboard JSON could be parsed from the reply; nothing was saved."
UNRESOLVED_WARNING = "None of the parsed shots could be matched to a scene in this episode; nothing was saved."
NO_SCENES_WARNING = "This episode has no scenes yet, so no shots were written. Add scenes in the script first."
PARTIAL_WARNING = "Saved {touched} shot(s); {skipped} shot(s) matched no scene and were skipped."


@dataclass(frozen=True)
class RevisionLabels:
    created: str = "AI draft"
    updated: str = "AI update"

    def for_created(self, shot_number: int) -> str:
        return f"{self.created} shot {shot_number}"

    def for_updated(self, shot_number: int) -> str:
        return f"{self.updated} shot {shot_number}"


INTERACTIVE_LABELS = RevisionLabels()
BATCH_LABELS = RevisionLabels(created="Batch storyboard draft", updated="Batch storyboard update")


@dataclass
class ReconcileResult:
    entries: List[StoredShotEntry]
    touched_ids: List[str] = field(default_factory=list)
    warning: Optional[str] = None
    skipped: int = 0

    @property
    def touched_count(self) -> int:
        return len(self.touched_ids)

    @property
    def changed(self) -> bool:
        return bool(self.touched_ids)


class Reconciler:
    """Merges parsed shots into an episode's stored entries.

    Entries are keyed by ``(scene id, shot number)``: a match is updated in
    place (version bumped, revision appended, status reset to pending review),
    anything else becomes a new version-1 entry. Nothing is ever removed, and
    the prompt field is always blanked.
    """

    def __init__(
        self,
        *,
        author_role: AuthorRole = AuthorRole.ASSISTANT,
        labels: RevisionLabels = INTERACTIVE_LABELS,
        strict_scene_match: bool = False,
    ) -> None:
        self.author_role = author_role
        self.labels = labels
        self.strict_scene_match = strict_scene_match

    def reconcile(
        self,
        parsed: Sequence[ParsedShot],
        existing: Sequence[StoredShotEntry],
        scenes: Sequence[Scene],
        *,
        episode_id: str,
        source_turn_id: Optional[str] = None,
    ) -> ReconcileResult:
        if not parsed:
            return ReconcileResult(entries=list(existing), warning=PARSE_WARNING)

        resolver = SceneResolver(scenes, strict=self.strict_scene_match)
        bound: List[Tuple[ParsedShot, Scene]] = []
        for item in parsed:
            scene = resolver.resolve(item)
            if scene is not None:
                bound.append((item, scene))
        skipped = len(parsed) - len(bound)
        if not bound:
            logger.warning("No scene resolved for %d parsed shot(s) in episode %s", len(parsed), episode_id)
            return ReconcileResult(entries=list(existing), warning=UNRESOLVED_WARNING, skipped=skipped)

        numbered = self._assign_numbers(bound, existing)

        entries = [entry.model_copy(deep=True) for entry in existing]
        index: Dict[Tuple[Optional[str], int], int] = {}
        for position, entry in enumerate(entries):
            index.setdefault((entry.scene_id, entry.fields.shot_number), position)

        touched: List[str] = []
        for item, scene, number in numbered:
            fields = item.shot.model_copy(update={"shot_number": number, "prompt": ""})
            key = (scene.id, number)
            if key in index:
                entry = entries[index[key]]
                self._update(entry, fields, scene, source_turn_id)
            else:
                entry = self._create(fields, scene, episode_id, source_turn_id)
                index[key] = len(entries)
                entries.append(entry)
            if entry.id not in touched:
                touched.append(entry.id)

        warning = None
        if skipped:
            warning = PARTIAL_WARNING.format(touched=len(touched), skipped=skipped)
            logger.warning("Skipped %d shot(s) without a matching scene in episode %s", skipped, episode_id)
        logger.info("Reconciled %d shot(s) into episode %s", len(touched), episode_id)
        return ReconcileResult(entries=sort_entries(entries), touched_ids=touched, warning=warning, skipped=skipped)

    @staticmethod
    def _assign_numbers(
        bound: Sequence[Tuple[ParsedShot, Scene]],
        existing: Sequence[StoredShotEntry],
    ) -> List[Tuple[ParsedShot, Scene, int]]:
        sequencer = ShotSequencer(existing)
        for item, scene in bound:
            if item.explicit_number:
                sequencer.reserve(scene.id, item.shot.shot_number)
        numbered: List[Tuple[ParsedShot, Scene, int]] = []
        highest = 0
        for item, scene in bound:
            if item.explicit_number:
                number = item.shot.shot_number
            else:
                # Auto numbers never fall below anything already handed out in this reply.
                number = sequencer.next_number(scene.id, floor=max(item.shot.shot_number, highest + 1))
            highest = max(highest, number)
            numbered.append((item, scene, number))
        return numbered

    def _update(
        self,
        entry: StoredShotEntry,
        fields: Shot,
        scene: Scene,
        source_turn_id: Optional[str],
    ) -> None:
        entry.version += 1
        entry.fields = fields
        entry.status = EntryStatus.PENDING_REVIEW
        entry.scene_id = scene.id
        entry.scene_title = scene.title
        entry.scene_summary = scene.summary
        entry.last_turn_id = source_turn_id
        entry.updated_at = utc_now()
        entry.append_revision(
            author_role=self.author_role,
            summary=self.labels.for_updated(fields.shot_number),
            source_turn_id=source_turn_id,
        )

    def _create(
        self,
        fields: Shot,
        scene: Scene,
        episode_id: str,
        source_turn_id: Optional[str],
    ) -> StoredShotEntry:
        entry = StoredShotEntry(
            episode_id=episode_id,
            scene_id=scene.id,
            scene_title=scene.title,
            scene_summary=scene.summary,
            fields=fields,
            status=EntryStatus.PENDING_REVIEW,
            version=1,
            last_turn_id=source_turn_id,
        )
        entry.append_revision(
            author_role=self.author_role,
            summary=self.labels.for_created(fields.shot_number),
            source_turn_id=source_turn_id,
        )
        return entry
