from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel

from storyboarder.assistant.llm import ClaudeLLM, EchoLLM, LLMClient, RequestContext, collect_stream
from storyboarder.assistant.prompts import RESPONSE_FORMAT_HINT, render_interactive_prompt
from storyboarder.batch.controller import BatchPipelineController
from storyboarder.errors import ConfigurationError, NoScenesError, TransportError, WorkspaceNotFoundError
from storyboarder.parsing.normalizer import ResponseNormalizer
from storyboarder.reconcile.reconciler import Reconciler
from storyboarder.reconcile.scene_links import reconcile_scene_links
from storyboarder.reconcile.writer import StoryboardWriter
from storyboarder.time_utils import utc_now
from storyboarder.workspace.model import (
    DEFAULT_SCENE_TITLE,
    AuthorRole,
    DialogueTurn,
    Episode,
    EntryStatus,
    Project,
    Shot,
    StoredShotEntry,
    new_id,
    sort_entries,
)
from storyboarder.workspace.store import JsonWorkspaceStore, WorkspaceStore

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    data_root: Path = Path("data/storyboards")
    llm_provider: str = "claude"
    llm_model: str = "claude-sonnet-4-5"
    anthropic_api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = 8192
    temperature: float = 0.4
    # Off by default: a malformed reply must stay a no-write outcome.
    repair_json: bool = False
    strict_scene_match: bool = False
    default_scene_title: str = DEFAULT_SCENE_TITLE

    @classmethod
    def from_file(cls, path: Path) -> "EngineConfig":
        text = path.read_text(encoding="utf-8")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            import yaml

            payload = yaml.safe_load(text)
        return cls.model_validate(payload or {})

    def build_llm(self) -> LLMClient:
        provider = self.llm_provider.lower()
        if provider == "echo":
            return EchoLLM()
        if provider == "claude":
            from anthropic import Anthropic

            api_key = os.getenv(self.anthropic_api_key_env)
            if not api_key:
                raise ConfigurationError(
                    f"Missing Anthropic API key. Set {self.anthropic_api_key_env} in your environment."
                )
            client = Anthropic(api_key=api_key)
            return ClaudeLLM(
                client=client,
                model=self.llm_model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        logger.warning("Unknown llm_provider '%s'; falling back to EchoLLM", provider)
        return EchoLLM()

    def build_store(self) -> WorkspaceStore:
        return JsonWorkspaceStore(self.data_root)

    def build_writer(self, store: WorkspaceStore, *, batch: bool = False) -> StoryboardWriter:
        if batch:
            return StoryboardWriter.for_batch(
                store, repair=self.repair_json, strict_scene_match=self.strict_scene_match
            )
        return StoryboardWriter(
            store=store,
            reconciler=Reconciler(strict_scene_match=self.strict_scene_match),
            normalizer=ResponseNormalizer(repair=self.repair_json),
        )


@dataclass
class ApplyResult:
    touched_count: int
    warning: Optional[str]
    turn_id: str


@dataclass
class StoryboardEngine:
    """Interactive storyboard editing for one episode at a time.

    Every instruction and reply is kept in the episode's dialogue log. The
    assistant turn id is stamped on each entry and revision the reply touched.
    """

    store: WorkspaceStore
    writer: StoryboardWriter
    llm: Optional[LLMClient] = None
    default_scene_title: str = DEFAULT_SCENE_TITLE

    @classmethod
    def from_config(cls, config: EngineConfig, llm: Optional[LLMClient] = None) -> "StoryboardEngine":
        store = config.build_store()
        return cls(
            store=store,
            writer=config.build_writer(store),
            llm=llm,
            default_scene_title=config.default_scene_title,
        )

    @classmethod
    def from_file(cls, path: Path) -> "StoryboardEngine":
        config = EngineConfig.from_file(path)
        return cls.from_config(config, llm=config.build_llm())

    def batch_controller(
        self,
        project: Project,
        *,
        repair: bool = False,
        strict_scene_match: bool = False,
        storyboard_guide: str = "",
        prompt_guide: str = "",
    ) -> BatchPipelineController:
        if self.llm is None:
            raise ConfigurationError("No language model configured for batch generation")
        writer = StoryboardWriter.for_batch(self.store, repair=repair, strict_scene_match=strict_scene_match)
        return BatchPipelineController(
            project,
            self.llm,
            writer,
            storyboard_guide=storyboard_guide,
            prompt_guide=prompt_guide,
        )

    # ------------------------------------------------------------------
    # Interactive path
    # ------------------------------------------------------------------

    def record_instruction(self, episode: Episode, instruction: str) -> DialogueTurn:
        self.store.ensure_workspace(episode)
        turn = DialogueTurn(episode_id=episode.id, role=AuthorRole.USER, message=instruction)
        self.store.append_dialogue_turn(turn)
        return turn

    def apply_reply(
        self,
        episode: Episode,
        reply: str,
        default_shot_number: Optional[int] = None,
    ) -> ApplyResult:
        """Merge one model reply into the episode and log it as an assistant turn.

        Without ``default_shot_number`` numbering continues after the highest
        stored shot number.
        """
        if default_shot_number is None:
            existing = self.store.load_entries(episode.id)
            default_shot_number = max((entry.fields.shot_number for entry in existing), default=0) + 1
        turn_id = new_id()
        result = self.writer.apply_storyboard_reply(
            reply,
            episode,
            default_shot_number=default_shot_number,
            source_turn_id=turn_id,
        )
        if result.warning:
            logger.warning("%s: %s", episode.display_label, result.warning)
        self.store.ensure_workspace(episode)
        self.store.append_dialogue_turn(
            DialogueTurn(
                id=turn_id,
                episode_id=episode.id,
                role=AuthorRole.ASSISTANT,
                message=reply,
                referenced_entry_ids=list(result.touched_ids),
            )
        )
        return ApplyResult(touched_count=result.touched_count, warning=result.warning, turn_id=turn_id)

    def generate(self, episode: Episode, instruction: str) -> ApplyResult:
        if not episode.scenes:
            raise NoScenesError(episode.id)
        if self.llm is None:
            raise ConfigurationError("No language model configured for interactive generation")
        entries = self.entries(episode)
        self.record_instruction(episode, instruction)
        prompt = render_interactive_prompt(instruction, episode, entries)
        context = RequestContext(label=f"Storyboard - {episode.display_label}", response_format=RESPONSE_FORMAT_HINT)
        try:
            reply = collect_stream(self.llm.stream(prompt, context))
        except Exception as exc:
            logger.error("Storyboard request for %s failed: %s", episode.display_label, exc)
            raise TransportError(str(exc)) from exc
        return self.apply_reply(episode, reply)

    def entries(self, episode: Episode) -> List[StoredShotEntry]:
        """Stored entries in shot order, with stale scene links repaired and saved."""
        entries = self.store.load_entries(episode.id)
        repaired, changed = reconcile_scene_links(entries, episode.scenes)
        if changed:
            self.store.save_entries(episode.id, repaired)
            logger.info("Repaired scene links for %s", episode.display_label)
        return sort_entries(repaired)

    def history(self, episode: Episode) -> List[DialogueTurn]:
        workspace = self.store.workspace(episode.id)
        return list(workspace.dialogue_turns) if workspace else []

    # ------------------------------------------------------------------
    # Manual shot operations
    # ------------------------------------------------------------------

    def edit_entry(self, episode: Episode, entry_id: str, **changes: Any) -> StoredShotEntry:
        entries = self._require_entries(episode)
        entry = _find(entries, entry_id)
        if "shot_number" in changes:
            changes["shot_number"] = max(int(changes["shot_number"]), 1)
        fields = entry.fields.model_copy(update=changes)
        fields = Shot.model_validate(fields.model_dump())
        entry.fields = fields
        entry.version += 1
        entry.updated_at = utc_now()
        entry.append_revision(author_role=AuthorRole.USER, summary=f"Manual edit shot {fields.shot_number}")
        self.store.save_entries(episode.id, sort_entries(entries))
        return entry

    def set_status(self, episode: Episode, entry_id: str, status: EntryStatus) -> StoredShotEntry:
        entries = self._require_entries(episode)
        entry = _find(entries, entry_id)
        status = EntryStatus(status)
        if entry.status is status:
            return entry
        entry.status = status
        entry.version += 1
        entry.updated_at = utc_now()
        entry.append_revision(author_role=AuthorRole.USER, summary=f"Status set to {status.value}")
        self.store.save_entries(episode.id, entries)
        return entry

    def add_manual_entry(
        self,
        episode: Episode,
        *,
        scene_id: Optional[str] = None,
        **values: Any,
    ) -> StoredShotEntry:
        scenes = episode.ordered_scenes
        scene = next((item for item in scenes if item.id == scene_id), None) if scene_id else None
        if scene is None and scenes:
            scene = scenes[0]
        self.store.ensure_workspace(episode)
        entries = self.store.load_entries(episode.id)
        number = max((entry.fields.shot_number for entry in entries), default=0) + 1
        values.pop("shot_number", None)
        entry = StoredShotEntry(
            episode_id=episode.id,
            scene_id=scene.id if scene else None,
            scene_title=scene.title if scene else self.default_scene_title,
            scene_summary=scene.summary if scene else "",
            fields=Shot(shot_number=number, **values),
        )
        entry.append_revision(author_role=AuthorRole.USER, summary=f"Manual shot {number}")
        entries.append(entry)
        self.store.save_entries(episode.id, sort_entries(entries))
        return entry

    def delete_entry(self, episode: Episode, entry_id: str) -> None:
        entries = self._require_entries(episode)
        _find(entries, entry_id)
        self.store.save_entries(episode.id, [entry for entry in entries if entry.id != entry_id])
        logger.info("Deleted shot entry %s from %s", entry_id, episode.display_label)

    def _require_entries(self, episode: Episode) -> List[StoredShotEntry]:
        workspace = self.store.workspace(episode.id)
        if workspace is None:
            raise WorkspaceNotFoundError(f"No storyboard workspace for {episode.display_label}")
        return list(workspace.entries)


def _find(entries: List[StoredShotEntry], entry_id: str) -> StoredShotEntry:
    for entry in entries:
        if entry.id == entry_id:
            return entry
    raise KeyError(entry_id)
