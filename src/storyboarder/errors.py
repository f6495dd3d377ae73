from __future__ import annotations


class StoryboarderError(RuntimeError):
    """Base class for errors raised by the storyboard engine."""


class ConfigurationError(StoryboarderError):
    """Raised when the engine cannot be configured (missing keys, bad provider)."""


class TransportError(StoryboarderError):
    """Raised when the language-model backend fails or rejects a request."""


class NoScenesError(StoryboarderError):
    """Raised when generation is requested for an episode that has no scenes."""

    def __init__(self, episode_id: str) -> None:
        super().__init__(
            f"Episode '{episode_id}' has no scenes yet; add scenes in the script before generating shots."
        )
        self.episode_id = episode_id


class BatchStateError(StoryboarderError):
    """Raised when a batch action is not allowed in the current phase."""


class WorkspaceNotFoundError(StoryboarderError):
    """Raised when an operation needs an episode workspace that does not exist."""
