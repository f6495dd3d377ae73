from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from storyboarder.assistant.llm import LLMClient
from storyboarder.batch.controller import BatchPipelineController
from storyboarder.batch.state import Phase
from storyboarder.errors import BatchStateError, StoryboarderError, TransportError
from storyboarder.reconcile.reconciler import NO_SCENES_WARNING
from storyboarder.reconcile.writer import StoryboardWriter
from storyboarder.workspace.model import Episode, Project, Scene

CONTEXT_REPLY = "[PROJECT SUMMARY]\nA noir.\n[CHARACTER SUMMARY]\nMara.\n[EPISODE OVERVIEW]\nShe arrives, then leaves."
STORYBOARD_REPLY = '{"entries":[{"shotNumber":1,"scale":"wide"},{"shotNumber":2,"scale":"close"}]}'
PROMPT_REPLY = '{"prompts":[{"shotNumber":1,"prompt":"wet neon street"},{"shotNumber":2,"prompt":"eyes in rain"}]}'


class ScriptedLLM(LLMClient):
    """Returns queued replies in order; an optional hook runs before each reply."""

    def __init__(self, replies: List[str], hook: Optional[Callable[[], None]] = None) -> None:
        self.replies = list(replies)
        self.hook = hook
        self.prompts: List[str] = []

    def complete(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.hook is not None:
            self.hook()
        return self.replies.pop(0)


class BrokenLLM(LLMClient):
    def complete(self, prompt: str, **kwargs) -> str:
        raise TimeoutError("upstream timed out")


def _project(*, second_has_scenes: bool = True) -> Project:
    return Project(
        id="p1",
        title="Night Line",
        episodes=[
            Episode(id="e1", episode_number=1, title="Arrival", scenes=[Scene(id="e1-s1", order=1, title="Platform")]),
            Episode(
                id="e2",
                episode_number=2,
                title="Departure",
                scenes=[Scene(id="e2-s1", order=1, title="Gate")] if second_has_scenes else [],
            ),
        ],
    )


def _controller(store, llm: LLMClient, project: Optional[Project] = None) -> BatchPipelineController:
    return BatchPipelineController(project or _project(), llm, StoryboardWriter.for_batch(store))


def _through_context(controller: BatchPipelineController) -> None:
    controller.generate_context()
    controller.confirm_context()


def test_full_run_writes_storyboards_then_prompts(store) -> None:
    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY, STORYBOARD_REPLY, PROMPT_REPLY, PROMPT_REPLY])
    controller = _controller(store, llm)

    _through_context(controller)
    assert controller.current_episode.id == "e1"
    assert controller.generate_storyboard() == STORYBOARD_REPLY
    assert store.workspace("e1") is None
    assert controller.confirm_storyboard().touched_count == 2
    controller.generate_storyboard()
    controller.confirm_storyboard()

    assert controller.phase is Phase.PROMPT_AUTHORING
    controller.generate_prompts()
    assert controller.confirm_prompts().updated_count == 2
    controller.generate_prompts()
    controller.confirm_prompts()

    assert controller.phase is Phase.COMPLETED
    entries = store.load_entries("e1")
    assert [entry.fields.prompt for entry in entries] == ["wet neon street", "eyes in rain"]
    assert entries[0].revisions[0].summary == "Batch storyboard draft shot 1"
    assert "She arrives, then leaves." in llm.prompts[1]
    assert "sceneId=e1-s1" in llm.prompts[1]


def test_cancel_after_first_episode_keeps_its_entries(store) -> None:
    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY, STORYBOARD_REPLY])
    controller = _controller(store, llm)
    _through_context(controller)
    controller.generate_storyboard()
    controller.confirm_storyboard()
    controller.generate_storyboard()

    controller.cancel()

    assert controller.phase is Phase.CANCELLED
    assert len(store.load_entries("e1")) == 2
    assert store.workspace("e2") is None
    assert controller.state.draft_for("e2").storyboard_text is None
    with pytest.raises(BatchStateError):
        controller.confirm_storyboard()


def test_reply_arriving_after_cancel_is_dropped(store) -> None:
    controller: Optional[BatchPipelineController] = None

    def cancel_mid_request() -> None:
        if controller.phase is Phase.STORYBOARD_GENERATION:
            controller.cancel()

    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY], hook=cancel_mid_request)
    controller = _controller(store, llm)
    _through_context(controller)

    assert controller.generate_storyboard() is None
    assert controller.phase is Phase.CANCELLED
    assert controller.state.draft_for("e1").storyboard_text is None
    assert not controller.is_working


def test_only_one_request_in_flight(store) -> None:
    controller: Optional[BatchPipelineController] = None
    errors: List[StoryboarderError] = []

    def reenter() -> None:
        if controller.phase is Phase.STORYBOARD_GENERATION:
            try:
                controller.regenerate_storyboard()
            except BatchStateError as exc:
                errors.append(exc)

    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY], hook=reenter)
    controller = _controller(store, llm)
    _through_context(controller)

    assert controller.generate_storyboard() == STORYBOARD_REPLY
    assert len(errors) == 1


def test_episode_without_scenes_stays_current_until_skipped(store) -> None:
    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY, STORYBOARD_REPLY])
    controller = _controller(store, llm, _project(second_has_scenes=False))
    _through_context(controller)
    controller.generate_storyboard()
    controller.confirm_storyboard()

    controller.generate_storyboard()
    result = controller.confirm_storyboard()

    assert result.warning == NO_SCENES_WARNING
    assert controller.last_warning == NO_SCENES_WARNING
    assert controller.current_episode.id == "e2"
    assert store.workspace("e2") is None

    controller.skip_episode()
    assert controller.phase is Phase.PROMPT_AUTHORING
    assert controller.current_episode.id == "e1"


def test_prompts_require_confirmed_storyboard(store) -> None:
    llm = ScriptedLLM([CONTEXT_REPLY, STORYBOARD_REPLY])
    controller = _controller(store, llm)
    _through_context(controller)
    controller.skip_episode()
    controller.generate_storyboard()
    controller.confirm_storyboard()

    assert controller.current_episode.id == "e1"
    with pytest.raises(BatchStateError):
        controller.generate_prompts()


def test_confirm_without_draft_is_rejected(store) -> None:
    controller = _controller(store, ScriptedLLM([CONTEXT_REPLY]))
    _through_context(controller)
    with pytest.raises(BatchStateError):
        controller.confirm_storyboard()


def test_transport_errors_are_wrapped_and_release_the_slot(store) -> None:
    controller = _controller(store, BrokenLLM())
    with pytest.raises(TransportError) as excinfo:
        controller.generate_context()
    assert isinstance(excinfo.value.__cause__, TimeoutError)
    assert not controller.is_working
    assert controller.phase is Phase.CONTEXT_GATHERING


def test_context_can_be_edited_before_confirming(store) -> None:
    controller = _controller(store, ScriptedLLM(["Only a loose paragraph."]))
    sections = controller.generate_context()
    assert sections.project_summary == "Only a loose paragraph."
    with pytest.raises(BatchStateError):
        controller.confirm_context()

    controller.edit_context(character_summary="Mara.", episode_overview="Two trips.")
    controller.confirm_context()
    assert controller.phase is Phase.STORYBOARD_GENERATION
