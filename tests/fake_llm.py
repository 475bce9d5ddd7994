"""Scripted stand-in for the generation API plus a seeded temporary database."""
import json
import os
import tempfile

from support_backend.app.generate import GenerationClient, StepChunk, ToolCallRequest
from support_backend.data.database import Database
from support_backend.data.populate_db import populate


def text(*parts):
    return [StepChunk(text=p) for p in parts]


def tool_call(name, args=None, call_id="call_0"):
    return [StepChunk(tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=json.dumps(args or {}))])]


def route(agent, confidence=0.9, reasoning="matched keywords"):
    return {"agent": agent, "confidence": confidence, "reasoning": reasoning}


class FakeGenerationClient(GenerationClient):
    """Replays queued routing decisions and completion steps instead of calling the API.

    ``routes`` holds the values ``generate_structured`` returns in turn. ``steps``
    holds one list of ``StepChunk`` per completion; once it runs out every further
    completion is a short text answer.
    """

    def __init__(self, routes=None, steps=None, route_error=None, step_error=None):
        super().__init__(api_key="test", base_url="http://llm.invalid/v1", model="fake-model")
        self.routes = list(routes or [])
        self.steps = list(steps or [])
        self.route_error = route_error
        self.step_error = step_error
        self.route_calls = []
        self.step_calls = []

    async def generate_structured(self, system_prompt, messages, schema, name="route",
                                  description="Return the structured decision"):
        self.route_calls.append(messages)
        if self.route_error:
            raise self.route_error
        return self.routes.pop(0) if self.routes else None

    async def stream_step(self, system_prompt, messages, tools):
        self.step_calls.append({"system": system_prompt, "messages": list(messages), "tools": tools})
        if self.step_error:
            raise self.step_error
        chunks = self.steps.pop(0) if self.steps else text("Happy to help.")
        for chunk in chunks:
            yield chunk


class SeededDatabase:
    """A throwaway SQLite file loaded with the demo data."""

    def __init__(self, with_sample_conversation=False):
        self.with_sample_conversation = with_sample_conversation
        self.tmp = tempfile.TemporaryDirectory()
        self.url = f"sqlite+aiosqlite:///{os.path.join(self.tmp.name, 'test.db')}"

    async def open(self) -> Database:
        self.database = Database(self.url)
        await populate(self.database, with_sample_conversation=self.with_sample_conversation)
        return self.database

    async def close(self):
        await self.database.dispose()
        self.tmp.cleanup()
