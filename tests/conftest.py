from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure(config) -> None:  # pragma: no cover - pytest hook
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if src_path.exists() and str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def episode():
    from storyboarder.workspace.model import Episode, Scene

    return Episode(
        id="ep-1",
        episode_number=1,
        title="Arrival",
        script_text="INT. STATION - NIGHT. Mara steps off the last train.",
        scenes=[
            Scene(id="scene-a", order=1, title="Platform", summary="Mara arrives"),
            Scene(id="scene-b", order=2, title="Ticket Hall", summary="The stranger waits"),
        ],
    )


@pytest.fixture
def store():
    from storyboarder.workspace.store import InMemoryWorkspaceStore

    return InMemoryWorkspaceStore()
