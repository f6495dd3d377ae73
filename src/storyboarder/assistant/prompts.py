from __future__ import annotations

from dataclasses import dataclass
from textwrap import dedent
from typing import Sequence

from storyboarder.workspace.model import Episode, Project, Scene, StoredShotEntry

RESPONSE_FORMAT_HINT = (
    'Reply with JSON only, shaped like {"scenes":[{"sceneId":"...","sceneTitle":"...","shots":'
    '[{"shotNumber":1,"shotScale":"medium","cameraMovement":"push in","duration":"4s",'
    '"dialogueOrOS":"...","visualSummary":"...","soundDesign":"..."}]}]}. '
    "Use double quotes and fill every field."
)

PROMPT_FORMAT_HINT = 'Reply with JSON only: {"prompts":[{"shotNumber":1,"prompt":"..."}]}'

PROJECT_SUMMARY_MARKER = "[PROJECT SUMMARY]"
CHARACTER_SUMMARY_MARKER = "[CHARACTER SUMMARY]"
EPISODE_OVERVIEW_MARKER = "[EPISODE OVERVIEW]"

# Full-width variants produced when the model answers in Chinese.
_MARKER_ALIASES = {
    PROJECT_SUMMARY_MARKER: (PROJECT_SUMMARY_MARKER, "【项目简介】"),
    CHARACTER_SUMMARY_MARKER: (CHARACTER_SUMMARY_MARKER, "【角色概述】"),
    EPISODE_OVERVIEW_MARKER: (EPISODE_OVERVIEW_MARKER, "【剧集概述】"),
}

_EMPTY = "(none provided)"
_TRUNCATED = "... (truncated)"


def sanitized(text: str, limit: int = 3200) -> str:
    trimmed = (text or "").strip()
    if not trimmed:
        return _EMPTY
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[:limit] + _TRUNCATED


@dataclass(frozen=True)
class ContextSections:
    project_summary: str = ""
    character_summary: str = ""
    episode_overview: str = ""

    @property
    def complete(self) -> bool:
        return all(
            section.strip()
            for section in (self.project_summary, self.character_summary, self.episode_overview)
        )


def parse_context_sections(text: str) -> ContextSections:
    """Split a distilled-context reply on its section markers.

    Without any marker the whole text is taken as the project summary.
    """
    sections: dict[str, list[str]] = {}
    current: str | None = None
    buffer: list[str] = []
    for line in text.splitlines():
        marker = _marker_in(line)
        if marker is not None:
            if current is not None:
                sections[current] = buffer
            current, buffer = marker, []
            continue
        buffer.append(line)
    if current is not None:
        sections[current] = buffer

    def section(marker: str) -> str:
        return "\n".join(sections.get(marker, [])).strip()

    return ContextSections(
        project_summary=section(PROJECT_SUMMARY_MARKER) if PROJECT_SUMMARY_MARKER in sections else text.strip(),
        character_summary=section(CHARACTER_SUMMARY_MARKER),
        episode_overview=section(EPISODE_OVERVIEW_MARKER),
    )


def _marker_in(line: str) -> str | None:
    for marker, aliases in _MARKER_ALIASES.items():
        if any(alias in line for alias in aliases):
            return marker
    return None


CONTEXT_PROMPT = dedent(
    """
    You are the overview assistant for an episodic production. From the material below, write three
    sections, each introduced by its marker on a line of its own so the reply can be split later:
    {project_marker}
    {character_marker}
    {episode_marker}

    Project title: {title}
    Existing synopsis: {synopsis}
    Storyboard guidance document (imported by the operator): {guide}
    Number of episodes: {episode_count}

    Requirements:
    - {project_marker}: 300-500 words covering genre, tone, setting and the core conflict.
    - {character_marker}: characters ordered by importance with look, personality, motive and relationships.
    - {episode_marker}: each episode in order, two to four sentences on where its story goes.
    - Output only the three sections with their markers. No lists, code blocks or commentary.
    """
).strip()


STORYBOARD_PROMPT = dedent(
    """
    You are a senior storyboard director. Break the whole episode below into shots and answer with JSON
    the storyboard parser accepts.

    Project title: {title}
    Project summary: {project_summary}
    Main characters: {character_summary}
    Episode overview so far (episode 1 to the current one): {episode_overview}
    Current episode: {episode_label}
    Scenes of this episode (use these sceneId values): {scene_list}
    Episode script: {script}
    Storyboard guidance document: {guide}

    Requirements:
    1) Output JSON only, compatible with: {format_hint}
    2) Every shot carries shotNumber, shotScale, cameraMovement, duration, dialogueOrOS, visualSummary, soundDesign.
    3) No prose, explanation or code fences outside the JSON.
    4) If you cannot produce a storyboard, return {{"scenes":[]}}.
    """
).strip()


SHOT_PROMPT_AUTHORING_PROMPT = dedent(
    """
    You are a prompt designer for video generation. Write one generation prompt for every shot of the
    confirmed storyboard below.

    Project title: {title}
    Project summary: {project_summary}
    Main characters: {character_summary}
    Current episode: {episode_label}
    Confirmed storyboard: {storyboard}
    Prompt-writing guidance document: {guide}

    Requirements:
    - {format_hint}
    - Each prompt matches its shotNumber and describes framing, light, palette, composition, lens,
      movement and materials. No explanations.
    - Do not return anything except the JSON.
    """
).strip()


INTERACTIVE_PROMPT = dedent(
    """
    Operator instruction: {instruction}

    Current episode: {episode_label}
    Scenes (use these sceneId values): {scene_list}
    Current storyboard:
    {storyboard}

    {format_hint}
    """
).strip()


def describe_scenes(scenes: Sequence[Scene]) -> str:
    if not scenes:
        return _EMPTY
    lines = [
        f"- sceneId={scene.id} | {scene.title} | {scene.summary.strip() or 'no summary'}"
        for scene in sorted(scenes, key=lambda item: item.order)
    ]
    return "\n".join(lines)


def describe_entries(entries: Sequence[StoredShotEntry]) -> str:
    if not entries:
        return _EMPTY
    return "\n".join(
        f"- [{entry.scene_title}] shot {entry.fields.shot_number}: {entry.fields.shot_scale} / "
        f"{entry.fields.camera_movement} / {entry.fields.duration} / {entry.fields.dialogue}"
        for entry in entries
    )


def render_context_prompt(project: Project, guide: str) -> str:
    return CONTEXT_PROMPT.format(
        project_marker=PROJECT_SUMMARY_MARKER,
        character_marker=CHARACTER_SUMMARY_MARKER,
        episode_marker=EPISODE_OVERVIEW_MARKER,
        title=project.title,
        synopsis=sanitized(project.synopsis),
        guide=sanitized(guide),
        episode_count=len(project.episodes),
    )


def render_storyboard_prompt(
    project: Project,
    episode: Episode,
    sections: ContextSections,
    guide: str,
) -> str:
    return STORYBOARD_PROMPT.format(
        title=project.title,
        project_summary=sanitized(sections.project_summary),
        character_summary=sanitized(sections.character_summary),
        episode_overview=sanitized(sections.episode_overview),
        episode_label=episode.display_label,
        scene_list=describe_scenes(episode.scenes),
        script=sanitized(episode.script_text, limit=6000),
        guide=sanitized(guide, limit=4000),
        format_hint=RESPONSE_FORMAT_HINT,
    )


def render_prompt_authoring_prompt(
    project: Project,
    episode: Episode,
    sections: ContextSections,
    storyboard: str,
    guide: str,
) -> str:
    return SHOT_PROMPT_AUTHORING_PROMPT.format(
        title=project.title,
        project_summary=sanitized(sections.project_summary),
        character_summary=sanitized(sections.character_summary),
        episode_label=episode.display_label,
        storyboard=sanitized(storyboard, limit=7000),
        guide=sanitized(guide, limit=4000),
        format_hint=PROMPT_FORMAT_HINT,
    )


def render_interactive_prompt(
    instruction: str,
    episode: Episode,
    entries: Sequence[StoredShotEntry],
) -> str:
    return INTERACTIVE_PROMPT.format(
        instruction=instruction.strip(),
        episode_label=episode.display_label,
        scene_list=describe_scenes(episode.scenes),
        storyboard=describe_entries(entries),
        format_hint=RESPONSE_FORMAT_HINT,
    )
