from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from storyboarder.workspace.model import ParsedShot, Shot

from .extractor import load_json_payload

logger = logging.getLogger(__name__)

# Candidate keys per canonical field, highest priority first. Keys are matched
# ignoring case, underscores and hyphens, so ``shot_number`` hits ``shotNumber``.
SHOT_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "shot_number": ("shotNumber", "shot", "number", "index"),
    "shot_scale": ("shotScale", "scale", "sceneScale"),
    "camera_movement": ("cameraMovement", "camera", "movement"),
    "duration": ("duration", "time"),
    "dialogue": ("dialogueOrOS", "dialogue", "dialog", "os", "narration"),
    "visual_summary": ("visualSummary", "visual", "picture", "description"),
    "sound_design": ("soundDesign", "sound", "audio", "sfx"),
    "prompt": ("aiPrompt", "prompt"),
}

SCENE_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "scene_id": ("sceneId", "id"),
    "scene_title": ("sceneTitle", "scene", "title"),
    "scene_summary": ("sceneSummary", "summary", "overview"),
    "shots": ("shots", "entries"),
}

_INTEGER = re.compile(r"^\s*[+-]?\d+\s*$")


def _normalize_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def first_present(obj: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the value of the first alias present (and not null) in ``obj``."""
    normalized: Dict[str, Any] = {}
    for key, value in obj.items():
        if isinstance(key, str):
            normalized.setdefault(_normalize_key(key), value)
    for alias in aliases:
        value = normalized.get(_normalize_key(alias))
        if value is not None:
            return value
    return None


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(coerce_text(item) for item in value if item is not None)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def coerce_shot_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER.match(value):
        return int(value)
    return None


@dataclass
class _ShotGroup:
    shots: List[Mapping[str, Any]]
    scene_id: Optional[str] = None
    scene_title: Optional[str] = None
    scene_summary: Optional[str] = None
    grouped: bool = False


def _dict_items(values: Any) -> Optional[List[Mapping[str, Any]]]:
    if not isinstance(values, list):
        return None
    items = [item for item in values if isinstance(item, Mapping)]
    skipped = len(values) - len(items)
    if skipped:
        logger.debug("Skipped %d non-object shot item(s)", skipped)
    return items


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


def _decode_scene_envelope(payload: Any) -> Optional[List[_ShotGroup]]:
    if not isinstance(payload, Mapping):
        return None
    scenes = _dict_items(first_present(payload, ("scenes",)))
    if scenes is None:
        return None
    groups: List[_ShotGroup] = []
    for scene in scenes:
        shots = _dict_items(first_present(scene, SCENE_FIELD_ALIASES["shots"])) or []
        groups.append(
            _ShotGroup(
                shots=shots,
                scene_id=_optional_text(first_present(scene, SCENE_FIELD_ALIASES["scene_id"])),
                scene_title=_optional_text(first_present(scene, SCENE_FIELD_ALIASES["scene_title"])),
                scene_summary=_optional_text(first_present(scene, SCENE_FIELD_ALIASES["scene_summary"])),
                grouped=True,
            )
        )
    return groups


def _decode_entries_envelope(payload: Any) -> Optional[List[_ShotGroup]]:
    if not isinstance(payload, Mapping):
        return None
    entries = _dict_items(first_present(payload, ("entries", "shots")))
    if entries is None:
        return None
    return [_ShotGroup(shots=entries)]


def _decode_bare_array(payload: Any) -> Optional[List[_ShotGroup]]:
    entries = _dict_items(payload)
    if entries is None:
        return None
    return [_ShotGroup(shots=entries)]


# Attempted in order; the first decoder that recognises the payload wins.
ENVELOPES: Tuple[Tuple[str, Callable[[Any], Optional[List[_ShotGroup]]]], ...] = (
    ("scenes", _decode_scene_envelope),
    ("entries", _decode_entries_envelope),
    ("array", _decode_bare_array),
)


@dataclass
class ResponseNormalizer:
    """Turns a model reply into canonical shots.

    Shots without a usable number receive ``next_shot_number`` and the numbers
    following it; each later scene group continues one past the highest number
    used by the previous group.
    """

    repair: bool = False
    envelopes: Sequence[Tuple[str, Callable[[Any], Optional[List[_ShotGroup]]]]] = field(
        default=ENVELOPES
    )

    def parse(self, text: str, next_shot_number: int = 1) -> List[ParsedShot]:
        payload = load_json_payload(text, repair=self.repair)
        if payload is None:
            return []
        return self.normalize(payload, next_shot_number)

    def normalize(self, payload: Any, next_shot_number: int = 1) -> List[ParsedShot]:
        groups = self._decode(payload)
        if groups is None:
            logger.warning("Reply JSON matched no known storyboard envelope")
            return []

        parsed: List[ParsedShot] = []
        current = max(next_shot_number, 1)
        for group in groups:
            group_max = 0
            for raw in group.shots:
                shot, explicit = self._make_shot(raw, current)
                current = shot.shot_number + 1
                group_max = max(group_max, shot.shot_number)
                parsed.append(
                    ParsedShot(
                        shot=shot,
                        explicit_number=explicit,
                        scene_id=group.scene_id,
                        scene_title=group.scene_title,
                        scene_summary=group.scene_summary,
                    )
                )
            if group_max:
                current = group_max + 1
        return parsed

    def _decode(self, payload: Any) -> Optional[List[_ShotGroup]]:
        for name, decoder in self.envelopes:
            groups = decoder(payload)
            if groups is not None:
                logger.debug("Decoded reply as '%s' envelope (%d group(s))", name, len(groups))
                return groups
        return None

    @staticmethod
    def _make_shot(raw: Mapping[str, Any], default_number: int) -> Tuple[Shot, bool]:
        number = coerce_shot_number(first_present(raw, SHOT_FIELD_ALIASES["shot_number"]))
        explicit = number is not None and number > 0
        values: Dict[str, Any] = {
            name: coerce_text(first_present(raw, aliases))
            for name, aliases in SHOT_FIELD_ALIASES.items()
            if name != "shot_number"
        }
        values["shot_number"] = number if explicit else default_number
        return Shot(**values), explicit
