#!/usr/bin/env python3
"""
Generation module for the support chat backend.

This module talks to an OpenAI-compatible chat completions API. It offers the
two operations the agents need: a forced function call that returns a
structured decision (used for routing), and a streamed tool loop that lets a
responder call actions before it writes its final answer.
"""

import json
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel

from ..schemas.io_models import StreamEvent, ToolInvocation
from ..tools.registry import ActionError
from ..utils.logger import get_logger
from .config import Config

logger = get_logger()

ExecuteAction = Callable[[str, Optional[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


class GenerationError(Exception):
    """The text-generation API failed or answered in an unexpected shape."""


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> Dict[str, Any]:
        if not self.arguments:
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise ActionError(self.name, f"malformed arguments: {e}") from e
        if not isinstance(parsed, dict):
            raise ActionError(self.name, "arguments must be a JSON object")
        return parsed


@dataclass
class StepChunk:
    """One piece of a streamed completion: a text delta or the step's tool calls."""
    text: Optional[str] = None
    tool_calls: List[ToolCallRequest] = field(default_factory=list)


class GenerationClient:
    """Client for OpenAI-compatible chat completions."""

    def __init__(self, api_key: str = None, base_url: str = None, model: str = None,
                 timeout: float = None, temperature: float = 0.3,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or Config.OPENAI_API_KEY or ""
        self.base_url = (base_url or Config.OPENAI_BASE_URL).rstrip("/")
        self.model = model or Config.LLM_MODEL
        self.timeout = timeout or Config.LLM_TIMEOUT
        self.temperature = temperature
        self.transport = transport

        if not self.api_key:
            logger.warning("[LLM] No API key configured; generation requests will be rejected upstream")
        logger.info(f"[LLM] Initialized client: {self.base_url} / {self.model}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, system_prompt: str, messages: List[Dict[str, Any]], **extra) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": self.temperature,
            **extra,
        }

    async def generate_structured(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        schema: Type[BaseModel],
        name: str = "route",
        description: str = "Return the structured decision",
    ) -> Optional[Dict[str, Any]]:
        """
        Force a single function call whose parameters follow ``schema``.

        Returns:
            The call's arguments as a dict, or None when the model did not
            produce a parseable call. Transport failures raise GenerationError.
        """
        tool = {
            "type": "function",
            "function": {"name": name, "description": description, "parameters": schema.model_json_schema()},
        }
        payload = self._payload(
            system_prompt, messages,
            tools=[tool],
            tool_choice={"type": "function", "function": {"name": name}},
        )

        try:
            async with self._client() as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[LLM] HTTP error: {e.response.status_code} {e.response.text}")
            raise GenerationError(f"Generation API returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"[LLM] Request failed: {e}")
            raise GenerationError(f"Generation API request failed: {e}") from e

        try:
            call = data["choices"][0]["message"]["tool_calls"][0]["function"]
            if call.get("name") != name:
                return None
            parsed = json.loads(call.get("arguments") or "{}")
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            logger.warning(f"[LLM] No structured decision in response: {e}")
            return None
        return parsed if isinstance(parsed, dict) else None

    async def stream_step(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[StepChunk]:
        """Stream one completion; text arrives as it is produced, tool calls once assembled."""
        extra = {"stream": True}
        if tools:
            extra["tools"] = tools
            extra["tool_choice"] = "auto"
        payload = self._payload(system_prompt, messages, **extra)

        pending: Dict[int, ToolCallRequest] = {}
        try:
            async with self._client() as client:
                async with client.stream("POST", self.url, json=payload, headers=self._headers()) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode(errors="replace")
                        logger.error(f"[LLM] HTTP error: {response.status_code} {body}")
                        raise GenerationError(f"Generation API returned {response.status_code}")

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            logger.warning(f"[LLM] Skipping malformed stream line: {data[:100]}")
                            continue
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        delta = choices[0].get("delta") or {}

                        if delta.get("content"):
                            yield StepChunk(text=delta["content"])

                        for tc in delta.get("tool_calls") or []:
                            idx = tc.get("index", 0)
                            call = pending.setdefault(idx, ToolCallRequest(id="", name=""))
                            if tc.get("id"):
                                call.id = tc["id"]
                            fn = tc.get("function") or {}
                            if fn.get("name"):
                                call.name += fn["name"]
                            if fn.get("arguments"):
                                call.arguments += fn["arguments"]
        except httpx.HTTPError as e:
            logger.error(f"[LLM] Stream failed: {e}")
            raise GenerationError(f"Generation API request failed: {e}") from e

        if pending:
            calls = [pending[i] for i in sorted(pending)]
            for i, call in enumerate(calls):
                call.id = call.id or f"call_{i}"
            yield StepChunk(tool_calls=calls)

    async def run_tool_loop(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        execute: ExecuteAction,
        max_steps: int = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Drive the bounded tool loop.

        Yields ``text_delta``, ``tool_call`` and ``tool_result`` events in the
        order they happen and finishes with exactly one ``done`` event carrying
        the concatenated text and every recorded invocation. Tool calls asked
        for in the last allowed step are still executed, no further completion
        is requested after it.
        """
        max_steps = max_steps or Config.MAX_TOOL_STEPS
        conversation = list(messages)
        full_text = ""
        invocations: List[ToolInvocation] = []

        for step in range(1, max_steps + 1):
            step_text = ""
            calls: List[ToolCallRequest] = []

            async with aclosing(self.stream_step(system_prompt, conversation, tools)) as chunks:
                async for chunk in chunks:
                    if chunk.text:
                        step_text += chunk.text
                        full_text += chunk.text
                        yield StreamEvent.text_delta(chunk.text)
                    if chunk.tool_calls:
                        calls = chunk.tool_calls

            if not calls:
                break

            # at most one result per call id
            unique: Dict[str, ToolCallRequest] = {}
            for c in calls:
                unique.setdefault(c.id, c)
            calls = list(unique.values())
            conversation.append({
                "role": "assistant",
                "content": step_text or None,
                "tool_calls": [
                    {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.arguments or "{}"}}
                    for c in calls
                ],
            })

            for call in calls:
                args = call.parsed_arguments()
                yield StreamEvent.tool_call(call.name, args, call.id)
                result = await execute(call.name, args)
                invocations.append(ToolInvocation(tool=call.name, args=args, result=result))
                yield StreamEvent.tool_result(call.name, result, call.id)
                conversation.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, default=str),
                })

            if step == max_steps:
                logger.warning(f"[LLM] Tool loop reached {max_steps} steps; stopping with accumulated text")

        yield StreamEvent.done(
            fullText=full_text,
            toolCalls=[inv.model_dump(mode="json") for inv in invocations],
        )
