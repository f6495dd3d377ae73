from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from storyboarder.workspace.model import ParsedShot, Scene

logger = logging.getLogger(__name__)


def normalize_title(text: str) -> str:
    return text.strip().lower()


@dataclass
class SceneResolver:
    """Binds parsed shots to one of the episode's scenes.

    Order: exact scene id, then trimmed case-insensitive title, then the
    lowest-order scene. With ``strict`` set, a shot carrying a scene hint that
    matches nothing is left unresolved instead of falling back.
    Scenes are never created or renamed here.
    """

    scenes: Sequence[Scene]
    strict: bool = False

    def __post_init__(self) -> None:
        self._by_id = {scene.id: scene for scene in self.scenes}
        self._by_title = {}
        for scene in sorted(self.scenes, key=lambda item: item.order):
            self._by_title.setdefault(normalize_title(scene.title), scene)
        self._fallback = min(self.scenes, key=lambda item: item.order) if self.scenes else None

    def resolve(self, parsed: ParsedShot) -> Optional[Scene]:
        if parsed.scene_id:
            scene = self._by_id.get(parsed.scene_id.strip())
            if scene is not None:
                return scene
        if parsed.scene_title:
            scene = self._by_title.get(normalize_title(parsed.scene_title))
            if scene is not None:
                return scene
        if self.strict and parsed.has_scene_hint:
            logger.debug(
                "No scene matches hint id=%r title=%r", parsed.scene_id, parsed.scene_title
            )
            return None
        return self._fallback

    def by_title(self, title: str) -> Optional[Scene]:
        return self._by_title.get(normalize_title(title))

    @property
    def fallback(self) -> Optional[Scene]:
        return self._fallback
