from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from storyboarder.parsing.extractor import load_json_payload
from storyboarder.parsing.normalizer import ResponseNormalizer
from storyboarder.workspace.model import Episode
from storyboarder.workspace.store import WorkspaceStore

from .prompt_writer import (
    NO_WORKSPACE_WARNING,
    PROMPT_EMPTY_WARNING,
    PROMPT_PARSE_WARNING,
    PROMPT_SHAPE_WARNING,
    PromptWriteResult,
    apply_prompt_mapping,
    prompt_mapping_from_payload,
)
from .reconciler import BATCH_LABELS, NO_SCENES_WARNING, PARSE_WARNING, ReconcileResult, Reconciler
from .scene_links import reconcile_scene_links

logger = logging.getLogger(__name__)


@dataclass
class StoryboardWriter:
    """Parses a reply, reconciles it and replaces the stored collection.

    The store is written once, at the end, and only when at least one entry
    was touched.
    """

    store: WorkspaceStore
    reconciler: Reconciler
    normalizer: ResponseNormalizer

    @classmethod
    def for_batch(cls, store: WorkspaceStore, *, repair: bool = False, strict_scene_match: bool = False) -> "StoryboardWriter":
        return cls(
            store=store,
            reconciler=Reconciler(labels=BATCH_LABELS, strict_scene_match=strict_scene_match),
            normalizer=ResponseNormalizer(repair=repair),
        )

    def apply_storyboard_reply(
        self,
        reply: str,
        episode: Episode,
        *,
        default_shot_number: int = 1,
        source_turn_id: Optional[str] = None,
        require_scenes: bool = False,
    ) -> ReconcileResult:
        """Merge ``reply`` into the episode.

        ``require_scenes`` selects the batch behaviour: an episode without
        scenes reports the dedicated no-scenes warning.
        """
        workspace = self.store.workspace(episode.id)
        existing = list(workspace.entries) if workspace else []
        parsed = self.normalizer.parse(reply, default_shot_number)
        if not parsed:
            return ReconcileResult(entries=existing, warning=PARSE_WARNING)
        if require_scenes and not episode.scenes:
            logger.warning("Refusing batch write for %s: episode has no scenes", episode.display_label)
            return ReconcileResult(entries=existing, warning=NO_SCENES_WARNING, skipped=len(parsed))

        existing, _ = reconcile_scene_links(existing, episode.scenes)
        result = self.reconciler.reconcile(
            parsed,
            existing,
            episode.scenes,
            episode_id=episode.id,
            source_turn_id=source_turn_id,
        )
        if result.changed:
            if workspace is None:
                self.store.ensure_workspace(episode)
            self.store.save_entries(episode.id, result.entries)
        return result

    def apply_prompt_reply(self, reply: str, episode: Episode) -> PromptWriteResult:
        workspace = self.store.workspace(episode.id)
        if workspace is None or not workspace.entries:
            return PromptWriteResult(entries=list(workspace.entries) if workspace else [], warning=NO_WORKSPACE_WARNING)
        existing = list(workspace.entries)

        payload = load_json_payload(reply, repair=self.normalizer.repair)
        if payload is None:
            return PromptWriteResult(entries=existing, warning=PROMPT_PARSE_WARNING)
        mapping = prompt_mapping_from_payload(payload)
        if mapping is None:
            return PromptWriteResult(entries=existing, warning=PROMPT_SHAPE_WARNING)
        if not mapping:
            return PromptWriteResult(entries=existing, warning=PROMPT_EMPTY_WARNING)

        result = apply_prompt_mapping(existing, mapping)
        if result.updated_ids:
            self.store.save_entries(episode.id, result.entries)
            logger.info("Wrote %d prompt(s) for %s", result.updated_count, episode.display_label)
        return result
