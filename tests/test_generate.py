#!/usr/bin/env python3
import json
import unittest

import httpx

from support_backend.app.generate import GenerationClient, GenerationError
from support_backend.schemas.io_models import RoutingDecision


def sse(*chunks):
    lines = [f"data: {json.dumps(c)}\n\n" for c in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def delta(**fields):
    return {"choices": [{"index": 0, "delta": fields}]}


class TestGenerationClient(unittest.IsolatedAsyncioTestCase):
    def client(self, handler):
        self.requests = []

        def recording(request: httpx.Request):
            self.requests.append(json.loads(request.content))
            return handler(request)

        return GenerationClient(api_key="sk-test", base_url="http://llm.local/v1", model="gpt-test",
                                transport=httpx.MockTransport(recording))

    async def test_generate_structured_forces_route_call(self):
        body = {"choices": [{"message": {"tool_calls": [{"function": {
            "name": "route",
            "arguments": json.dumps({"agent": "order", "confidence": 0.8, "reasoning": "tracking"}),
        }}]}}]}
        llm = self.client(lambda r: httpx.Response(200, json=body))

        decision = await llm.generate_structured("system", [{"role": "user", "content": "hi"}], RoutingDecision)

        self.assertEqual(decision, {"agent": "order", "confidence": 0.8, "reasoning": "tracking"})
        sent = self.requests[0]
        self.assertEqual(sent["model"], "gpt-test")
        self.assertEqual(sent["messages"][0], {"role": "system", "content": "system"})
        self.assertEqual(sent["tool_choice"], {"type": "function", "function": {"name": "route"}})
        self.assertIn("agent", sent["tools"][0]["function"]["parameters"]["properties"])

    async def test_generate_structured_without_call_returns_none(self):
        body = {"choices": [{"message": {"content": "I think order?"}}]}
        llm = self.client(lambda r: httpx.Response(200, json=body))
        self.assertIsNone(await llm.generate_structured("system", [], RoutingDecision))

    async def test_generate_structured_http_error(self):
        llm = self.client(lambda r: httpx.Response(401, json={"error": "bad key"}))
        with self.assertRaises(GenerationError):
            await llm.generate_structured("system", [], RoutingDecision)

    async def test_stream_step_text_and_tool_calls(self):
        stream = sse(
            delta(content="Let me "),
            delta(content="look."),
            delta(tool_calls=[{"index": 0, "id": "call_abc", "function": {"name": "getUserOrders", "arguments": ""}}]),
            delta(tool_calls=[{"index": 0, "function": {"arguments": '{"userId": '}}]),
            delta(tool_calls=[{"index": 0, "function": {"arguments": '"user_demo"}'}}]),
            {"choices": []},
        )
        llm = self.client(lambda r: httpx.Response(200, content=stream,
                                                   headers={"content-type": "text/event-stream"}))

        chunks = [c async for c in llm.stream_step("system", [{"role": "user", "content": "orders"}], [])]

        self.assertEqual([c.text for c in chunks[:2]], ["Let me ", "look."])
        calls = chunks[-1].tool_calls
        self.assertEqual(len(calls), 1)
        self.assertEqual(calls[0].id, "call_abc")
        self.assertEqual(calls[0].name, "getUserOrders")
        self.assertEqual(calls[0].parsed_arguments(), {"userId": "user_demo"})
        self.assertTrue(self.requests[0]["stream"])
        self.assertNotIn("tools", self.requests[0])

    async def test_stream_step_http_error(self):
        llm = self.client(lambda r: httpx.Response(500, text="upstream exploded"))
        with self.assertRaises(GenerationError):
            [c async for c in llm.stream_step("system", [], [])]

    async def test_tool_loop_over_http(self):
        replies = [
            sse(delta(tool_calls=[{"index": 0, "id": "c1", "function": {
                "name": "lookup", "arguments": '{"q": "x"}'}}])),
            sse(delta(content="Found "), delta(content="it.")),
        ]
        llm = self.client(lambda r: httpx.Response(200, content=replies.pop(0)))
        executed = []

        async def execute(name, args):
            executed.append((name, args))
            return {"found": True}

        events = [e async for e in llm.run_tool_loop("system", [{"role": "user", "content": "find x"}],
                                                     [{"type": "function"}], execute)]

        self.assertEqual([e.type for e in events], ["tool_call", "tool_result", "text_delta", "text_delta", "done"])
        self.assertEqual(executed, [("lookup", {"q": "x"})])
        self.assertEqual(events[-1].data["fullText"], "Found it.")
        tool_message = self.requests[1]["messages"][-1]
        self.assertEqual(tool_message, {"role": "tool", "tool_call_id": "c1", "content": '{"found": true}'})


if __name__ == '__main__':
    unittest.main()
