from __future__ import annotations

from typing import Dict, Iterable

from storyboarder.workspace.model import StoredShotEntry


class ShotSequencer:
    """Hands out unused shot numbers per scene for one reconciliation call.

    Each scene's counter starts one past the highest number already stored for
    that scene and only ever moves forward, so numbers handed out during one
    reply are strictly increasing and never reuse an existing number.
    """

    def __init__(self, existing: Iterable[StoredShotEntry]) -> None:
        self._existing_max: Dict[str, int] = {}
        for entry in existing:
            if entry.scene_id is None:
                continue
            current = self._existing_max.get(entry.scene_id, 0)
            self._existing_max[entry.scene_id] = max(current, entry.fields.shot_number)
        self._next: Dict[str, int] = {}

    def _counter(self, scene_id: str) -> int:
        if scene_id not in self._next:
            self._next[scene_id] = self._existing_max.get(scene_id, 0) + 1
        return self._next[scene_id]

    def reserve(self, scene_id: str, shot_number: int) -> None:
        """Mark an explicitly numbered shot as taken."""
        if shot_number >= self._counter(scene_id):
            self._next[scene_id] = shot_number + 1

    def next_number(self, scene_id: str, floor: int = 1) -> int:
        number = max(self._counter(scene_id), floor)
        self._next[scene_id] = number + 1
        return number
