from __future__ import annotations

import logging
from typing import Optional

from storyboarder.assistant.llm import LLMClient, RequestContext
from storyboarder.assistant.prompts import (
    PROMPT_FORMAT_HINT,
    RESPONSE_FORMAT_HINT,
    ContextSections,
    render_context_prompt,
    render_prompt_authoring_prompt,
    render_storyboard_prompt,
)
from storyboarder.errors import BatchStateError, TransportError
from storyboarder.reconcile.prompt_writer import PromptWriteResult
from storyboarder.reconcile.reconciler import ReconcileResult
from storyboarder.reconcile.writer import StoryboardWriter
from storyboarder.workspace.model import Episode, Project

from .state import (
    BatchState,
    Cancelled,
    ContextConfirmed,
    ContextEdited,
    ContextReceived,
    DraftDiscarded,
    DraftReceived,
    EpisodeConfirmed,
    EpisodeSkipped,
    Event,
    Phase,
    transition,
)

logger = logging.getLogger(__name__)


class BatchPipelineController:
    """Drives storyboard and prompt generation across every episode of a project.

    Each phase walks the episodes in order. A reply is only held as a draft
    until the operator confirms it; confirming is the single point where
    anything is written. Only one request is in flight at a time.
    """

    def __init__(
        self,
        project: Project,
        llm: LLMClient,
        writer: StoryboardWriter,
        *,
        storyboard_guide: str = "",
        prompt_guide: str = "",
    ) -> None:
        self.project = project
        self.llm = llm
        self.writer = writer
        self.storyboard_guide = storyboard_guide
        self.prompt_guide = prompt_guide
        self._episodes = {episode.id: episode for episode in project.ordered_episodes}
        self.state = BatchState(episode_ids=tuple(episode.id for episode in project.ordered_episodes))
        self.last_warning: Optional[str] = None
        self._in_flight = False

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def is_working(self) -> bool:
        return self._in_flight

    @property
    def context(self) -> ContextSections:
        return self.state.context

    @property
    def current_episode(self) -> Optional[Episode]:
        episode_id = self.state.current_episode_id
        return self._episodes.get(episode_id) if episode_id else None

    def dispatch(self, event: Event) -> BatchState:
        self.state = transition(self.state, event)
        return self.state

    # ------------------------------------------------------------------
    # Context gathering
    # ------------------------------------------------------------------

    def generate_context(self, storyboard_guide: Optional[str] = None) -> ContextSections:
        if storyboard_guide is not None:
            self.storyboard_guide = storyboard_guide
        self._require_phase(Phase.CONTEXT_GATHERING)
        prompt = render_context_prompt(self.project, self.storyboard_guide)
        context = RequestContext(label="Batch storyboard - context", response_format="Plain text, no lists, no code blocks")
        text = self._request(prompt, context)
        if self.state.phase is not Phase.CONTEXT_GATHERING:
            logger.info("Dropping context reply: pipeline is %s", self.state.phase.value)
            return self.state.context
        self.dispatch(ContextReceived(text=text.strip()))
        return self.state.context

    def edit_context(
        self,
        *,
        project_summary: Optional[str] = None,
        character_summary: Optional[str] = None,
        episode_overview: Optional[str] = None,
    ) -> ContextSections:
        self.dispatch(
            ContextEdited(
                project_summary=project_summary,
                character_summary=character_summary,
                episode_overview=episode_overview,
            )
        )
        return self.state.context

    def confirm_context(self) -> None:
        self.dispatch(ContextConfirmed())
        logger.info("Batch context confirmed for project '%s'", self.project.title)

    # ------------------------------------------------------------------
    # Storyboard generation
    # ------------------------------------------------------------------

    def generate_storyboard(self) -> Optional[str]:
        """Request a storyboard draft for the current episode.

        Returns the draft, or ``None`` when the reply arrived after the
        pipeline moved on and was therefore dropped.
        """
        episode = self._current(Phase.STORYBOARD_GENERATION)
        prompt = render_storyboard_prompt(self.project, episode, self.state.context, self.storyboard_guide)
        context = RequestContext(label=f"Batch storyboard - {episode.display_label}", response_format=RESPONSE_FORMAT_HINT)
        return self._request_draft(episode, Phase.STORYBOARD_GENERATION, prompt, context)

    def regenerate_storyboard(self) -> Optional[str]:
        episode = self._current(Phase.STORYBOARD_GENERATION)
        self.dispatch(DraftDiscarded(episode_id=episode.id))
        return self.generate_storyboard()

    def confirm_storyboard(self) -> ReconcileResult:
        episode = self._current(Phase.STORYBOARD_GENERATION)
        draft = self.state.draft_for(episode.id).storyboard_text
        if not draft:
            raise BatchStateError(f"No storyboard draft for {episode.display_label}; generate one first")
        result = self.writer.apply_storyboard_reply(draft, episode, default_shot_number=1, require_scenes=True)
        self.last_warning = result.warning
        self.dispatch(EpisodeConfirmed(episode_id=episode.id, written=result.touched_count, warning=result.warning))
        logger.info(
            "Storyboard confirmation for %s touched %d shot(s)", episode.display_label, result.touched_count
        )
        return result

    # ------------------------------------------------------------------
    # Prompt authoring
    # ------------------------------------------------------------------

    def generate_prompts(self) -> Optional[str]:
        episode = self._current(Phase.PROMPT_AUTHORING)
        draft = self.state.draft_for(episode.id)
        if not draft.storyboard_confirmed or not draft.storyboard_text:
            raise BatchStateError(f"Confirm the storyboard for {episode.display_label} before authoring prompts")
        prompt = render_prompt_authoring_prompt(
            self.project, episode, self.state.context, draft.storyboard_text, self.prompt_guide
        )
        context = RequestContext(label=f"Batch prompts - {episode.display_label}", response_format=PROMPT_FORMAT_HINT)
        return self._request_draft(episode, Phase.PROMPT_AUTHORING, prompt, context)

    def regenerate_prompts(self) -> Optional[str]:
        episode = self._current(Phase.PROMPT_AUTHORING)
        self.dispatch(DraftDiscarded(episode_id=episode.id))
        return self.generate_prompts()

    def confirm_prompts(self) -> PromptWriteResult:
        episode = self._current(Phase.PROMPT_AUTHORING)
        draft = self.state.draft_for(episode.id).prompt_text
        if not draft:
            raise BatchStateError(f"No prompt draft for {episode.display_label}; generate one first")
        result = self.writer.apply_prompt_reply(draft, episode)
        self.last_warning = result.warning
        self.dispatch(EpisodeConfirmed(episode_id=episode.id, written=result.updated_count, warning=result.warning))
        return result

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def skip_episode(self) -> None:
        episode = self.current_episode
        if episode is None:
            raise BatchStateError(f"No current episode while {self.state.phase.value}")
        logger.info("Skipping %s during %s", episode.display_label, self.state.phase.value)
        self.dispatch(EpisodeSkipped(episode_id=episode.id))

    def cancel(self) -> None:
        self.dispatch(Cancelled())
        logger.info("Batch pipeline cancelled for project '%s'", self.project.title)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_phase(self, phase: Phase) -> None:
        if self.state.phase is not phase:
            raise BatchStateError(f"Expected phase {phase.value}, pipeline is {self.state.phase.value}")

    def _current(self, phase: Phase) -> Episode:
        self._require_phase(phase)
        episode = self.current_episode
        if episode is None:
            raise BatchStateError("No current episode")
        return episode

    def _request_draft(
        self,
        episode: Episode,
        phase: Phase,
        prompt: str,
        context: RequestContext,
    ) -> Optional[str]:
        text = self._request(prompt, context).strip()
        before = self.state
        self.dispatch(DraftReceived(episode_id=episode.id, phase=phase, text=text))
        if self.state is before:
            return None
        return text

    def _request(self, prompt: str, context: RequestContext) -> str:
        if self._in_flight:
            raise BatchStateError("A generation request is already in flight")
        self._in_flight = True
        try:
            return self.llm.submit(prompt, context)
        except Exception as exc:
            logger.error("%s failed: %s", context.label or "Generation request", exc)
            raise TransportError(str(exc)) from exc
        finally:
            self._in_flight = False
