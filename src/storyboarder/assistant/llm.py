from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from anthropic import Anthropic

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a senior storyboard director working with a small production team. "
    "You break scripts into shots and answer with the structured JSON you are asked for."
)


@dataclass(frozen=True)
class RequestContext:
    """What the transport needs to know about a request besides the prompt."""

    label: str = ""
    system_prompt: Optional[str] = None
    response_format: Optional[str] = None


class LLMClient(abc.ABC):
    """Abstract interface for language models used by the engine."""

    @abc.abstractmethod
    def complete(self, prompt: str, **kwargs: Any) -> str:
        raise NotImplementedError

    def submit(self, prompt: str, context: RequestContext | None = None) -> str:
        return self.complete(_with_format(prompt, context), **_context_kwargs(context))

    def stream(self, prompt: str, context: RequestContext | None = None) -> Iterator[str]:
        """Yield reply chunks; exhaustion of the iterator marks completion."""
        yield self.submit(prompt, context)


def collect_stream(chunks: Iterable[str]) -> str:
    return "".join(chunks)


def _with_format(prompt: str, context: RequestContext | None) -> str:
    if context is None or not context.response_format:
        return prompt
    return f"{prompt}\n\nResponse format: {context.response_format}"


def _context_kwargs(context: RequestContext | None) -> dict[str, Any]:
    if context is None or not context.system_prompt:
        return {}
    return {"system": context.system_prompt}


class EchoLLM(LLMClient):
    """Development stub that answers with an empty storyboard."""

    def complete(self, prompt: str, **kwargs: Any) -> str:
        return json.dumps({"scenes": []})


class ClaudeLLM(LLMClient):
    """Claude wrapper using the Anthropic Messages API."""

    def __init__(
        self,
        client: Anthropic,
        model: str,
        system_prompt: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.4,
    ) -> None:
        self.client = client
        self.model = model
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _params(self, prompt: str, kwargs: dict[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.model,
            "system": kwargs.pop("system", self.system_prompt),
            "max_tokens": kwargs.pop("max_tokens", self.max_tokens),
            "temperature": kwargs.pop("temperature", self.temperature),
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": prompt,
                        }
                    ],
                }
            ],
        }
        params.update(kwargs)
        return params

    def complete(self, prompt: str, **kwargs: Any) -> str:
        params = self._params(prompt, kwargs)
        response = self.client.messages.create(**params)
        if getattr(response, "stop_reason", None) == "max_tokens":
            logger.warning(
                "Claude response truncated by max_tokens; consider increasing limit (current=%s)",
                params.get("max_tokens"),
            )
        return _collect_text(response.content)

    def stream(self, prompt: str, context: RequestContext | None = None) -> Iterator[str]:
        params = self._params(_with_format(prompt, context), _context_kwargs(context))
        with self.client.messages.stream(**params) as stream:
            for text in stream.text_stream:
                yield text


def _collect_text(blocks: Iterable[Any]) -> str:
    parts: list[str] = []
    for block in blocks:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text = getattr(block, "text", "")
            parts.append(text)
    return "".join(parts)
