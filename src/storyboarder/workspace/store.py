"""Episode workspace persistence.

Layout under ``<base_dir>``::

    <episode_id>/workspace.json   <- full EpisodeWorkspace, replaced as a whole

Every write replaces the whole document through a temporary file and
``os.replace`` so a crash mid-write leaves the previous document intact.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from storyboarder.time_utils import utc_now

from .model import DialogueTurn, Episode, EpisodeWorkspace, StoredShotEntry

logger = logging.getLogger(__name__)

_WORKSPACE_FILENAME = "workspace.json"


class WorkspaceStore(Protocol):
    def workspace(self, episode_id: str) -> Optional[EpisodeWorkspace]:
        ...

    def ensure_workspace(self, episode: Episode) -> EpisodeWorkspace:
        ...

    def load_entries(self, episode_id: str) -> List[StoredShotEntry]:
        ...

    def save_entries(self, episode_id: str, entries: List[StoredShotEntry]) -> None:
        ...

    def append_dialogue_turn(self, turn: DialogueTurn) -> None:
        ...


class _WorkspaceStoreBase:
    """Shared logic; subclasses provide ``_read`` and ``_write``."""

    def _read(self, episode_id: str) -> Optional[EpisodeWorkspace]:
        raise NotImplementedError

    def _write(self, workspace: EpisodeWorkspace) -> None:
        raise NotImplementedError

    def workspace(self, episode_id: str) -> Optional[EpisodeWorkspace]:
        return self._read(episode_id)

    def ensure_workspace(self, episode: Episode) -> EpisodeWorkspace:
        existing = self._read(episode.id)
        if existing is not None:
            return existing
        created = EpisodeWorkspace.for_episode(episode)
        self._write(created)
        logger.info("Created storyboard workspace for %s", episode.display_label)
        return created

    def load_entries(self, episode_id: str) -> List[StoredShotEntry]:
        workspace = self._read(episode_id)
        return list(workspace.entries) if workspace else []

    def save_entries(self, episode_id: str, entries: List[StoredShotEntry]) -> None:
        workspace = self._read(episode_id) or EpisodeWorkspace(episode_id=episode_id)
        updated = workspace.model_copy(update={"entries": list(entries), "updated_at": utc_now()})
        self._write(updated)
        logger.debug("Saved %d storyboard entries for episode %s", len(entries), episode_id)

    def append_dialogue_turn(self, turn: DialogueTurn) -> None:
        workspace = self._read(turn.episode_id) or EpisodeWorkspace(episode_id=turn.episode_id)
        turns = list(workspace.dialogue_turns) + [turn]
        self._write(workspace.model_copy(update={"dialogue_turns": turns, "updated_at": utc_now()}))


@dataclass
class JsonWorkspaceStore(_WorkspaceStoreBase):
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir)

    def path_for(self, episode_id: str) -> Path:
        return self.base_dir / episode_id / _WORKSPACE_FILENAME

    def _read(self, episode_id: str) -> Optional[EpisodeWorkspace]:
        path = self.path_for(episode_id)
        if not path.exists():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        return EpisodeWorkspace.model_validate(payload)

    def _write(self, workspace: EpisodeWorkspace) -> None:
        path = self.path_for(workspace.episode_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        payload = json.dumps(workspace.model_dump(mode="json"), indent=2, ensure_ascii=False)
        tmp_path.write_text(payload + "\n", encoding="utf-8")
        os.replace(tmp_path, path)


@dataclass
class InMemoryWorkspaceStore(_WorkspaceStoreBase):
    workspaces: Dict[str, EpisodeWorkspace] = field(default_factory=dict)

    def _read(self, episode_id: str) -> Optional[EpisodeWorkspace]:
        workspace = self.workspaces.get(episode_id)
        return workspace.model_copy(deep=True) if workspace else None

    def _write(self, workspace: EpisodeWorkspace) -> None:
        self.workspaces[workspace.episode_id] = workspace.model_copy(deep=True)
