from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .batch.controller import BatchPipelineController
from .batch.state import Phase
from .errors import StoryboarderError
from .orchestrator import EngineConfig, StoryboardEngine
from .workspace.model import Episode, Project


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Merge AI storyboard replies into per-episode shot lists."
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional path to engine configuration JSON/YAML",
    )
    parser.add_argument(
        "--data-root",
        type=Path,
        help="Override the workspace directory from the configuration",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_episode_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--project", type=Path, required=True, help="Project JSON with episodes and scenes")
        sub.add_argument("--episode", required=True, help="Episode id or episode number")

    apply_parser = subparsers.add_parser("apply", help="Merge a saved model reply into an episode")
    add_episode_args(apply_parser)
    apply_parser.add_argument("reply", type=Path, help="File holding the reply text, or - for stdin")
    apply_parser.add_argument("--start", type=int, help="Default number for the first unnumbered shot")

    generate_parser = subparsers.add_parser("generate", help="Ask the model to revise an episode storyboard")
    add_episode_args(generate_parser)
    generate_parser.add_argument("instruction", help="Instruction sent to the model")

    show_parser = subparsers.add_parser("show", help="Print the stored shots of an episode")
    add_episode_args(show_parser)
    show_parser.add_argument("--json", action="store_true", help="Print entries as JSON")

    history_parser = subparsers.add_parser("history", help="Print the dialogue log of an episode")
    add_episode_args(history_parser)

    batch_parser = subparsers.add_parser("batch", help="Run the multi-episode batch pipeline")
    batch_parser.add_argument("--project", type=Path, required=True, help="Project JSON with episodes and scenes")
    batch_parser.add_argument("--storyboard-guide", type=Path, help="Storyboard guidance document")
    batch_parser.add_argument("--prompt-guide", type=Path, help="Prompt-writing guidance document")
    batch_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm every draft without asking",
    )
    return parser


def load_project(path: Path) -> Project:
    payload = json.loads(path.read_text(encoding="utf-8"))
    return Project.model_validate(payload)


def find_episode(project: Project, key: str) -> Episode:
    episode = project.episode(key)
    if episode is not None:
        return episode
    if key.isdigit():
        number = int(key)
        for candidate in project.episodes:
            if candidate.episode_number == number:
                return candidate
    raise SystemExit(f"Episode '{key}' not found in project '{project.title}'")


def _read_text(path: Optional[Path]) -> str:
    if path is None:
        return ""
    if str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8")


def _ask(question: str, assume_yes: bool) -> str:
    if assume_yes:
        return "y"
    return input(f"{question} ").strip().lower()


def run_batch(controller: BatchPipelineController, assume_yes: bool) -> None:
    sections = controller.generate_context()
    print(f"[PROJECT SUMMARY]\n{sections.project_summary}\n")
    print(f"[CHARACTER SUMMARY]\n{sections.character_summary}\n")
    print(f"[EPISODE OVERVIEW]\n{sections.episode_overview}\n")
    if not sections.complete:
        print("The context reply is missing a section; stopping.")
        controller.cancel()
        return
    if _ask("Confirm context? [y/N]", assume_yes) != "y":
        controller.cancel()
        return
    controller.confirm_context()

    while not controller.phase.terminal:
        episode = controller.current_episode
        storyboard = controller.phase is Phase.STORYBOARD_GENERATION
        kind = "storyboard" if storyboard else "prompts"
        if not storyboard and not controller.state.draft_for(episode.id).storyboard_confirmed:
            print(f"Skipping {episode.display_label}: its storyboard was not confirmed.")
            controller.skip_episode()
            continue
        draft = controller.generate_storyboard() if storyboard else controller.generate_prompts()
        print(f"--- {episode.display_label}: {kind} draft ---\n{draft}\n")
        answer = _ask(f"[y]es confirm / [r]egenerate / [s]kip / [c]ancel {kind}?", assume_yes)
        if answer == "c":
            controller.cancel()
            break
        if answer == "s":
            controller.skip_episode()
            continue
        if answer != "y":
            continue
        result = controller.confirm_storyboard() if storyboard else controller.confirm_prompts()
        written = result.touched_count if storyboard else result.updated_count
        print(f"Saved {written} shot(s) for {episode.display_label}.")
        if controller.last_warning:
            print(f"Warning: {controller.last_warning}")
        if written == 0 and assume_yes:
            controller.skip_episode()
    print(f"Batch pipeline {controller.phase.value}.")


def main() -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = EngineConfig.from_file(args.config) if args.config else EngineConfig()
    if args.data_root:
        config = config.model_copy(update={"data_root": args.data_root})
    needs_llm = args.command in ("generate", "batch")
    try:
        engine = StoryboardEngine.from_config(config, llm=config.build_llm() if needs_llm else None)
        project = load_project(args.project)

        if args.command == "batch":
            controller = engine.batch_controller(
                project,
                repair=config.repair_json,
                strict_scene_match=config.strict_scene_match,
                storyboard_guide=_read_text(args.storyboard_guide),
                prompt_guide=_read_text(args.prompt_guide),
            )
            run_batch(controller, args.yes)
            return

        episode = find_episode(project, args.episode)
        if args.command == "apply":
            result = engine.apply_reply(episode, _read_text(args.reply), default_shot_number=args.start)
            print(f"Saved {result.touched_count} shot(s) for {episode.display_label}.")
            if result.warning:
                print(f"Warning: {result.warning}")
        elif args.command == "generate":
            result = engine.generate(episode, args.instruction)
            print(f"Saved {result.touched_count} shot(s) for {episode.display_label}.")
            if result.warning:
                print(f"Warning: {result.warning}")
        elif args.command == "show":
            entries = engine.entries(episode)
            if args.json:
                print(json.dumps([entry.model_dump(mode="json") for entry in entries], indent=2, ensure_ascii=False))
                return
            for entry in entries:
                fields = entry.fields
                print(
                    f"{fields.shot_number:>3}  [{entry.scene_title}]  v{entry.version} {entry.status.value:<14} "
                    f"{fields.shot_scale} / {fields.camera_movement} / {fields.duration}  {fields.visual_summary}"
                )
        elif args.command == "history":
            for turn in engine.history(episode):
                print(f"{turn.created_at.isoformat()} {turn.role.value}: {turn.message}")
    except StoryboarderError as exc:
        print(str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
