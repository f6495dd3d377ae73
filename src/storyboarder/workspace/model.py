from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyboarder.time_utils import ensure_utc, utc_now

DEFAULT_SCENE_TITLE = "Untitled scene"
_SYNOPSIS_LIMIT = 240


def new_id() -> str:
    return str(uuid4())


class EntryStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending-review"
    APPROVED = "approved"


class AuthorRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


_TEXT_FIELDS = (
    "shot_scale",
    "camera_movement",
    "duration",
    "dialogue",
    "visual_summary",
    "sound_design",
    "prompt",
)


class Shot(BaseModel):
    """Canonical description of one camera setup.

    Every text field is a plain string; a missing value is stored as ``""``.
    """

    shot_number: int = Field(default=1, description="Sequence number, unique within its scene")
    shot_scale: str = ""
    camera_movement: str = ""
    duration: str = ""
    dialogue: str = Field(default="", description="Dialogue or narration text")
    visual_summary: str = ""
    sound_design: str = ""
    prompt: str = Field(default="", description="Generation prompt; written only by prompt authoring")

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _blank_for_missing(cls, value: object) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return str(value)


class ParsedShot(BaseModel):
    """A shot lifted out of a model reply, plus the scene grouping it arrived under."""

    shot: Shot
    explicit_number: bool = False
    scene_id: Optional[str] = None
    scene_title: Optional[str] = None
    scene_summary: Optional[str] = None

    @property
    def has_scene_hint(self) -> bool:
        return bool((self.scene_id or "").strip() or (self.scene_title or "").strip())


class Scene(BaseModel):
    id: str = Field(default_factory=new_id)
    order: int
    title: str
    summary: str = ""
    body: str = ""


class Episode(BaseModel):
    id: str = Field(default_factory=new_id)
    episode_number: int
    title: str = ""
    synopsis: str = ""
    script_text: str = ""
    scenes: List[Scene] = Field(default_factory=list)

    @property
    def display_label(self) -> str:
        label = f"Episode {self.episode_number}"
        if self.title.strip():
            label += f" - {self.title.strip()}"
        return label

    @property
    def ordered_scenes(self) -> List[Scene]:
        return sorted(self.scenes, key=lambda scene: scene.order)

    def make_synopsis(self) -> str:
        trimmed = self.script_text.strip()
        if not trimmed:
            return "No script text provided yet."
        return trimmed[:_SYNOPSIS_LIMIT]


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    synopsis: str = ""
    episodes: List[Episode] = Field(default_factory=list)

    @property
    def ordered_episodes(self) -> List[Episode]:
        return sorted(self.episodes, key=lambda episode: episode.episode_number)

    def episode(self, episode_id: str) -> Optional[Episode]:
        return next((ep for ep in self.episodes if ep.id == episode_id), None)


class Revision(BaseModel):
    """Immutable snapshot of an entry's shot fields at one version."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    version: int
    author_role: AuthorRole
    summary: str
    fields: Shot
    source_turn_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class StoredShotEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    episode_id: str
    scene_id: Optional[str] = None
    scene_title: str = DEFAULT_SCENE_TITLE
    scene_summary: str = ""
    fields: Shot
    status: EntryStatus = EntryStatus.DRAFT
    version: int = 1
    notes: str = ""
    revisions: List[Revision] = Field(default_factory=list)
    last_turn_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def shot_number(self) -> int:
        return self.fields.shot_number

    def append_revision(
        self,
        *,
        author_role: AuthorRole,
        summary: str,
        source_turn_id: Optional[str] = None,
    ) -> Revision:
        revision = Revision(
            version=self.version,
            author_role=author_role,
            summary=summary,
            fields=self.fields.model_copy(),
            source_turn_id=source_turn_id,
        )
        self.revisions.append(revision)
        return revision


class DialogueTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    episode_id: str
    role: AuthorRole
    message: str
    referenced_entry_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class EpisodeWorkspace(BaseModel):
    """Persistence unit: every stored shot of one episode plus its dialogue log."""

    episode_id: str
    episode_number: int = 0
    episode_title: str = ""
    episode_synopsis: str = ""
    entries: List[StoredShotEntry] = Field(default_factory=list)
    dialogue_turns: List[DialogueTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def for_episode(cls, episode: Episode) -> "EpisodeWorkspace":
        return cls(
            episode_id=episode.id,
            episode_number=episode.episode_number,
            episode_title=episode.display_label,
            episode_synopsis=episode.make_synopsis(),
        )


def sort_entries(entries: List[StoredShotEntry]) -> List[StoredShotEntry]:
    """Order by shot number; equal numbers keep creation order."""
    return sorted(entries, key=lambda entry: (entry.fields.shot_number, entry.created_at))
