"""Phase state machine for the multi-episode batch pipeline.

``transition(state, event)`` is pure: it never talks to the model or the
store. The controller performs those side effects and feeds their outcomes
back in as events. Draft replies for an episode or phase that is no longer
current are ignored rather than rejected, because a reply may arrive after the
operator cancelled or moved on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple, Union

from storyboarder.assistant.prompts import ContextSections, parse_context_sections
from storyboarder.errors import BatchStateError

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    CONTEXT_GATHERING = "context-gathering"
    STORYBOARD_GENERATION = "storyboard-generation"
    PROMPT_AUTHORING = "prompt-authoring"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.CANCELLED)


@dataclass(frozen=True)
class EpisodeDraft:
    storyboard_text: Optional[str] = None
    storyboard_warning: Optional[str] = None
    storyboard_confirmed: bool = False
    prompt_text: Optional[str] = None
    prompt_warning: Optional[str] = None
    prompts_confirmed: bool = False


@dataclass(frozen=True)
class BatchState:
    episode_ids: Tuple[str, ...]
    phase: Phase = Phase.CONTEXT_GATHERING
    cursor: int = 0
    context: ContextSections = field(default_factory=ContextSections)
    context_reply: Optional[str] = None
    drafts: Mapping[str, EpisodeDraft] = field(default_factory=dict)

    @property
    def current_episode_id(self) -> Optional[str]:
        if self.phase not in (Phase.STORYBOARD_GENERATION, Phase.PROMPT_AUTHORING):
            return None
        if 0 <= self.cursor < len(self.episode_ids):
            return self.episode_ids[self.cursor]
        return None

    def draft_for(self, episode_id: str) -> EpisodeDraft:
        return self.drafts.get(episode_id, EpisodeDraft())

    def with_draft(self, episode_id: str, draft: EpisodeDraft) -> "BatchState":
        drafts: Dict[str, EpisodeDraft] = dict(self.drafts)
        drafts[episode_id] = draft
        return replace(self, drafts=drafts)


# -- events -----------------------------------------------------------------


@dataclass(frozen=True)
class ContextReceived:
    text: str


@dataclass(frozen=True)
class ContextEdited:
    project_summary: Optional[str] = None
    character_summary: Optional[str] = None
    episode_overview: Optional[str] = None


@dataclass(frozen=True)
class ContextConfirmed:
    pass


@dataclass(frozen=True)
class DraftReceived:
    episode_id: str
    phase: Phase
    text: str


@dataclass(frozen=True)
class DraftDiscarded:
    episode_id: str


@dataclass(frozen=True)
class EpisodeConfirmed:
    """Outcome of writing the current draft; ``written`` is the touched/updated count."""

    episode_id: str
    written: int
    warning: Optional[str] = None


@dataclass(frozen=True)
class EpisodeSkipped:
    episode_id: str


@dataclass(frozen=True)
class Cancelled:
    pass


Event = Union[
    ContextReceived,
    ContextEdited,
    ContextConfirmed,
    DraftReceived,
    DraftDiscarded,
    EpisodeConfirmed,
    EpisodeSkipped,
    Cancelled,
]


def transition(state: BatchState, event: Event) -> BatchState:
    if isinstance(event, Cancelled):
        if state.phase is Phase.CANCELLED:
            return state
        if state.phase is Phase.COMPLETED:
            raise BatchStateError("The batch pipeline has already completed")
        return _cancel(state)

    if state.phase.terminal:
        if isinstance(event, DraftReceived):
            logger.info("Dropping %s reply for episode %s: pipeline is %s", event.phase.value, event.episode_id, state.phase.value)
            return state
        raise BatchStateError(f"The batch pipeline is {state.phase.value}")

    if isinstance(event, (ContextReceived, ContextEdited, ContextConfirmed)):
        return _on_context(state, event)
    if isinstance(event, DraftReceived):
        return _on_draft(state, event)
    if isinstance(event, DraftDiscarded):
        return _on_discard(state, event)
    if isinstance(event, EpisodeConfirmed):
        return _on_confirmed(state, event)
    if isinstance(event, EpisodeSkipped):
        _require_current(state, event.episode_id)
        return _advance(state)
    raise BatchStateError(f"Unknown batch event: {event!r}")


def _cancel(state: BatchState) -> BatchState:
    # Confirmed work is already written; only unconfirmed drafts are dropped.
    drafts = {
        episode_id: replace(
            draft,
            storyboard_text=draft.storyboard_text if draft.storyboard_confirmed else None,
            prompt_text=draft.prompt_text if draft.prompts_confirmed else None,
        )
        for episode_id, draft in state.drafts.items()
    }
    return replace(state, phase=Phase.CANCELLED, drafts=drafts)


def _on_context(state: BatchState, event: Event) -> BatchState:
    if state.phase is not Phase.CONTEXT_GATHERING:
        raise BatchStateError("Project context can only change while gathering context")
    if isinstance(event, ContextReceived):
        return replace(state, context_reply=event.text, context=parse_context_sections(event.text))
    if isinstance(event, ContextEdited):
        context = state.context
        updates = {
            name: value
            for name, value in (
                ("project_summary", event.project_summary),
                ("character_summary", event.character_summary),
                ("episode_overview", event.episode_overview),
            )
            if value is not None
        }
        return replace(state, context=replace(context, **updates))
    if not state.context.complete:
        raise BatchStateError("Project, character and episode summaries must all be filled before confirming")
    if not state.episode_ids:
        return replace(state, phase=Phase.COMPLETED, cursor=0)
    return replace(state, phase=Phase.STORYBOARD_GENERATION, cursor=0)


def _require_current(state: BatchState, episode_id: str) -> None:
    if state.current_episode_id != episode_id:
        raise BatchStateError(
            f"Episode {episode_id} is not the current episode ({state.current_episode_id})"
        )


def _on_draft(state: BatchState, event: DraftReceived) -> BatchState:
    if event.phase is not state.phase or event.episode_id != state.current_episode_id:
        logger.info("Dropping stale %s reply for episode %s", event.phase.value, event.episode_id)
        return state
    draft = state.draft_for(event.episode_id)
    if state.phase is Phase.STORYBOARD_GENERATION:
        draft = replace(draft, storyboard_text=event.text, storyboard_warning=None)
    else:
        if not draft.storyboard_confirmed:
            raise BatchStateError("Confirm this episode's storyboard before authoring prompts")
        draft = replace(draft, prompt_text=event.text, prompt_warning=None)
    return state.with_draft(event.episode_id, draft)


def _on_discard(state: BatchState, event: DraftDiscarded) -> BatchState:
    _require_current(state, event.episode_id)
    draft = state.draft_for(event.episode_id)
    if state.phase is Phase.STORYBOARD_GENERATION:
        draft = replace(draft, storyboard_text=None, storyboard_warning=None)
    else:
        draft = replace(draft, prompt_text=None, prompt_warning=None)
    return state.with_draft(event.episode_id, draft)


def _on_confirmed(state: BatchState, event: EpisodeConfirmed) -> BatchState:
    _require_current(state, event.episode_id)
    draft = state.draft_for(event.episode_id)
    confirmed = event.written > 0
    if state.phase is Phase.STORYBOARD_GENERATION:
        draft = replace(draft, storyboard_confirmed=confirmed, storyboard_warning=event.warning)
    else:
        draft = replace(draft, prompts_confirmed=confirmed, prompt_warning=event.warning)
    state = state.with_draft(event.episode_id, draft)
    return _advance(state) if confirmed else state


def _advance(state: BatchState) -> BatchState:
    following = state.cursor + 1
    if following < len(state.episode_ids):
        return replace(state, cursor=following)
    if state.phase is Phase.STORYBOARD_GENERATION:
        return replace(state, phase=Phase.PROMPT_AUTHORING, cursor=0)
    return replace(state, phase=Phase.COMPLETED, cursor=0)
