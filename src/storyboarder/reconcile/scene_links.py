from __future__ import annotations

import logging
from typing import List, Sequence, Set, Tuple

from storyboarder.workspace.model import Scene, StoredShotEntry

from .resolver import SceneResolver
from .sequencer import ShotSequencer

logger = logging.getLogger(__name__)


def reconcile_scene_links(
    entries: Sequence[StoredShotEntry],
    scenes: Sequence[Scene],
) -> Tuple[List[StoredShotEntry], bool]:
    """Repair entries whose scene no longer exists and refresh scene titles.

    A stale entry is re-bound by title, or else moved to the lowest-order
    scene; misfiling a shot is preferred to dropping it. A re-linked shot whose
    number is already taken in its new scene gets the next unused one. Live
    entries only get their denormalised title and summary synced. With no
    scenes at all the entries are returned untouched. Returns new entry copies
    and whether anything changed.
    """
    if not scenes:
        return list(entries), False

    resolver = SceneResolver(scenes)
    by_id = {scene.id: scene for scene in scenes}
    live = [entry for entry in entries if entry.scene_id in by_id]
    taken: Set[Tuple[str, int]] = {(entry.scene_id, entry.fields.shot_number) for entry in live}
    sequencer = ShotSequencer(live)
    repaired: List[StoredShotEntry] = []
    changed = False
    for entry in entries:
        scene = by_id.get(entry.scene_id) if entry.scene_id else None
        if scene is None:
            scene = resolver.by_title(entry.scene_title) or resolver.fallback
            logger.info(
                "Re-linked shot %s from missing scene %s to '%s'",
                entry.fields.shot_number,
                entry.scene_id,
                scene.title,
            )
            number = entry.fields.shot_number
            if (scene.id, number) in taken:
                number = sequencer.next_number(scene.id)
                logger.info("Renumbered re-linked shot %s to %s", entry.fields.shot_number, number)
                entry = entry.model_copy(update={"fields": entry.fields.model_copy(update={"shot_number": number})})
                changed = True
            taken.add((scene.id, number))
            sequencer.reserve(scene.id, number)
        if (
            entry.scene_id != scene.id
            or entry.scene_title != scene.title
            or entry.scene_summary != scene.summary
        ):
            entry = entry.model_copy(
                update={"scene_id": scene.id, "scene_title": scene.title, "scene_summary": scene.summary}
            )
            changed = True
        repaired.append(entry)
    return repaired, changed
