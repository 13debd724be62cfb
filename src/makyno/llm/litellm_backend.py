"""LiteLLM reasoning backend with native tool calling.

Works with any LiteLLM-compatible provider that supports function calling.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

from .base import ReasoningBackend, ReasoningStep, ToolCallRequest

logger = logging.getLogger(__name__)

try:
    import litellm
    LITELLM_AVAILABLE = True
except ImportError:
    LITELLM_AVAILABLE = False


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Decode tool-call arguments.

    Undecodable payloads are passed through under ``_unparsed`` so the gateway
    rejects them as a validation error the model can see and fix.
    """
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {"_unparsed": raw}
    return value if isinstance(value, dict) else {"_unparsed": raw}


class LiteLLMBackend(ReasoningBackend):
    """Reasoning backend using the litellm Python library."""

    DEFAULT_TIMEOUT = 300

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 8192,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        if not LITELLM_AVAILABLE:
            raise ImportError(
                "litellm is not installed. Install it with: "
                "pip install 'makyno[litellm]'"
            )

        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    def from_config(cls, llm_config) -> "LiteLLMBackend":
        return cls(
            model=llm_config.model,
            api_key=llm_config.api_key,
            api_base=llm_config.api_base,
            temperature=llm_config.temperature,
            max_tokens=llm_config.max_tokens,
            timeout=llm_config.timeout,
        )

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        task_id: Optional[str] = None,
    ) -> ReasoningStep:
        """Send the history via litellm.acompletion() and map the reply."""
        start_time = time.time()

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await asyncio.wait_for(
            litellm.acompletion(**kwargs),
            timeout=self.timeout,
        )

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCallRequest(
                id=call.id,
                name=call.function.name,
                arguments=parse_tool_arguments(call.function.arguments),
            )
            for call in (getattr(message, "tool_calls", None) or [])
        ]

        usage = getattr(response, "usage", None)
        step = ReasoningStep(
            content=message.content or "",
            tool_calls=tool_calls,
            model_used=getattr(response, "model", None) or self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason or "stop",
            latency_ms=(time.time() - start_time) * 1000,
        )
        logger.debug(
            f"[{task_id}] {step.model_used}: {len(tool_calls)} tool call(s), "
            f"{step.input_tokens} in / {step.output_tokens} out, {step.latency_ms:.0f}ms"
        )
        return step
