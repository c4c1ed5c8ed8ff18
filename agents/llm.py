"""
ChartPulse - Reasoning Client

Narrow interface to the vision/reasoning service plus its LangChain
implementation on ChatOpenAI. Two call shapes:

    complete()       free text, optionally with one chart image attached
    call_function()  schema-constrained: one bound tool, forced tool_choice

Also holds the per-model cost table used for diagnostic cost estimates.
"""

from __future__ import annotations

import base64
import math
from pathlib import Path
from typing import Any, Protocol

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from chartpulse.config import VisionConfig
from chartpulse.exceptions import ConfigurationError, PipelineError
from chartpulse.logging import get_vision_logger

logger = get_vision_logger()


# USD per 1K tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
}


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def estimate_cost(prompt: str, response: str, model: str) -> float:
    """Diagnostic cost estimate for one text call. Unknown models use gpt-4o pricing."""
    rates = MODEL_COSTS.get(model, MODEL_COSTS["gpt-4o"])
    return (
        estimate_tokens(prompt) / 1000 * rates["input"]
        + estimate_tokens(response) / 1000 * rates["output"]
    )


class CostTracker:
    """Accumulates cost estimates across the calls of one pipeline run."""

    def __init__(self, model: str):
        self.model = model
        self.total = 0.0
        self.calls = 0

    def add(self, prompt: str, response: str) -> float:
        cost = estimate_cost(prompt, response, self.model)
        self.total += cost
        self.calls += 1
        return cost


class ReasoningClient(Protocol):
    """What the pipeline stages need from the reasoning service."""

    async def complete(
        self,
        prompt: str,
        image_path: str | None = None,
        max_tokens: int | None = None,
    ) -> str: ...

    async def call_function(self, prompt: str, function_schema: dict[str, Any]) -> dict[str, Any]: ...


def encode_image(image_path: str | Path) -> str:
    """Base64 data URL for a PNG screenshot."""
    data = Path(image_path).read_bytes()
    return "data:image/png;base64," + base64.b64encode(data).decode("ascii")


class LangChainReasoningClient:
    """ReasoningClient backed by langchain-openai's ChatOpenAI."""

    def __init__(self, config: VisionConfig, llm: ChatOpenAI | None = None):
        if llm is None and not config.api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set; the vision pipeline cannot start"
            )
        self.config = config
        self.llm = llm or ChatOpenAI(
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.request_timeout,
            api_key=config.api_key,
        )

    async def complete(
        self,
        prompt: str,
        image_path: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        if image_path:
            content: Any = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": encode_image(image_path),
                        "detail": self.config.detail,
                    },
                },
            ]
        else:
            content = prompt

        llm = self.llm.bind(max_tokens=max_tokens) if max_tokens else self.llm
        response = await llm.ainvoke([HumanMessage(content=content)])

        text = response.content if isinstance(response.content, str) else str(response.content)
        if not text:
            raise PipelineError("completion", "empty response from reasoning service")
        return text

    async def call_function(self, prompt: str, function_schema: dict[str, Any]) -> dict[str, Any]:
        name = function_schema["name"]
        bound = self.llm.bind_tools(
            [{"type": "function", "function": function_schema}],
            tool_choice=name,
        )
        response = await bound.ainvoke([HumanMessage(content=prompt)])

        calls = [c for c in (response.tool_calls or []) if c.get("name") == name]
        if not calls:
            raise PipelineError(name, "no structured function call in response")
        return dict(calls[0]["args"])
