#!/usr/bin/env python3
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))
from fake_llm import FakeGenerationClient, SeededDatabase, text, tool_call

from support_backend.agents.base_agent import Responder
from support_backend.agents.billing_agent import BILLING_AGENT
from support_backend.agents.order_agent import ORDER_AGENT
from support_backend.app.generate import StepChunk, ToolCallRequest
from support_backend.schemas.io_models import AgentContext
from support_backend.tools.registry import ActionError


async def collect(events):
    return [e async for e in events]


class TestResponder(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.seeded = SeededDatabase()
        self.database = await self.seeded.open()
        self.context = AgentContext(
            user_id="user_demo",
            conversation_id="conv_1",
            messages=[{"role": "user", "content": "What are my recent orders?"}],
        )

    async def asyncTearDown(self):
        await self.seeded.close()

    def responder(self, llm, profile=ORDER_AGENT, max_steps=None):
        return Responder(profile, llm, self.database, max_steps=max_steps)

    async def test_plain_answer(self):
        llm = FakeGenerationClient(steps=[text("Hello", ", ", "world")])
        events = await collect(self.responder(llm).run(self.context))

        self.assertEqual([e.type for e in events], ["text_delta"] * 3 + ["done"])
        self.assertEqual(events[-1].data, {"fullText": "Hello, world", "toolCalls": []})

    async def test_tool_call_then_answer(self):
        llm = FakeGenerationClient(steps=[
            tool_call("getUserOrders", {"userId": "user_demo"}),
            text("You have ", "4 orders."),
        ])
        events = await collect(self.responder(llm).run(self.context))
        types = [e.type for e in events]

        self.assertEqual(types, ["tool_call", "tool_result", "text_delta", "text_delta", "done"])
        self.assertEqual(events[0].data["callId"], events[1].data["callId"])
        self.assertEqual(events[1].data["result"]["count"], 4)

        done = events[-1].data
        self.assertEqual(done["fullText"], "You have 4 orders.")
        self.assertEqual(len(done["toolCalls"]), 1)
        self.assertEqual(done["toolCalls"][0]["tool"], "getUserOrders")
        self.assertEqual(done["toolCalls"][0]["args"], {"userId": "user_demo"})

        # the second completion saw the assistant tool request and the tool output
        second = llm.step_calls[1]["messages"]
        self.assertEqual(second[-2]["role"], "assistant")
        self.assertEqual(second[-2]["tool_calls"][0]["function"]["name"], "getUserOrders")
        self.assertEqual(second[-1]["role"], "tool")

    async def test_deltas_concatenate_to_full_text(self):
        llm = FakeGenerationClient(steps=[
            [StepChunk(text="Let me check. ")] + tool_call("getOrderByNumber", {"orderNumber": "ORD-2024-001"}),
            text("It was ", "delivered."),
        ])
        events = await collect(self.responder(llm).run(self.context))
        deltas = "".join(e.data["delta"] for e in events if e.type == "text_delta")
        self.assertEqual(deltas, events[-1].data["fullText"])
        self.assertEqual(deltas, "Let me check. It was delivered.")

    async def test_every_result_follows_its_call(self):
        llm = FakeGenerationClient(steps=[
            [StepChunk(tool_calls=[
                ToolCallRequest(id="a", name="getInvoiceDetails", arguments='{"invoiceNumber": "INV-2024-001"}'),
                ToolCallRequest(id="b", name="checkRefundStatus", arguments='{"invoiceNumber": "INV-2024-004"}'),
                ToolCallRequest(id="a", name="getInvoiceDetails", arguments='{"invoiceNumber": "INV-2024-001"}'),
            ])],
            text("Done."),
        ])
        events = await collect(self.responder(llm, BILLING_AGENT).run(self.context))

        seen_calls = set()
        results = 0
        for e in events:
            if e.type == "tool_call":
                seen_calls.add(e.data["callId"])
            elif e.type == "tool_result":
                self.assertIn(e.data["callId"], seen_calls)
                results += 1
        # duplicate id "a" runs once
        self.assertEqual(results, 2)
        self.assertEqual(len(events[-1].data["toolCalls"]), 2)

    async def test_loop_is_bounded(self):
        llm = FakeGenerationClient(steps=[
            tool_call("getUserOrders", {"userId": "user_demo"}, call_id=f"call_{i}") for i in range(10)
        ])
        events = await collect(self.responder(llm).run(self.context))

        self.assertEqual(len(llm.step_calls), 5)
        self.assertEqual(sum(1 for e in events if e.type == "tool_call"), 5)
        self.assertEqual(events[-1].type, "done")
        self.assertEqual(events[-1].data["fullText"], "")
        self.assertEqual(sum(1 for e in events if e.type == "done"), 1)

    async def test_custom_step_bound(self):
        llm = FakeGenerationClient(steps=[
            tool_call("getUserOrders", {"userId": "user_demo"}, call_id=f"call_{i}") for i in range(10)
        ])
        await collect(self.responder(llm, max_steps=2).run(self.context))
        self.assertEqual(len(llm.step_calls), 2)

    async def test_malformed_tool_arguments_raise(self):
        llm = FakeGenerationClient(steps=[
            [StepChunk(tool_calls=[ToolCallRequest(id="x", name="getUserOrders", arguments="{not json")])],
        ])
        with self.assertRaises(ActionError):
            await collect(self.responder(llm).run(self.context))

    async def test_system_prompt_carries_context(self):
        llm = FakeGenerationClient(steps=[text("ok")])
        await collect(self.responder(llm).run(self.context))

        system = llm.step_calls[0]["system"]
        self.assertTrue(system.startswith("You are a specialized Order Agent"))
        self.assertIn("- User ID: user_demo", system)
        self.assertIn("- Conversation ID: conv_1", system)
        self.assertEqual(
            [t["function"]["name"] for t in llm.step_calls[0]["tools"]],
            ORDER_AGENT.tools.names(),
        )

    async def test_generate_matches_streamed_done(self):
        script = [tool_call("getUserOrders", {"userId": "user_demo"}), text("Four orders.")]
        streamed = await collect(self.responder(FakeGenerationClient(steps=list(script))).run(self.context))
        response = await self.responder(FakeGenerationClient(steps=list(script))).generate(self.context)

        self.assertEqual(response.content, streamed[-1].data["fullText"])
        self.assertEqual([t.tool for t in response.tool_calls], ["getUserOrders"])
        self.assertEqual(response.tool_calls[0].result["count"], 4)

    async def test_user_scoped_actions_run_as_the_caller(self):
        llm = FakeGenerationClient(steps=[
            tool_call("getUserOrders", {"userId": "user_john"}),
            text("Here they are."),
        ])
        events = await collect(self.responder(llm).run(self.context))

        result = events[1].data["result"]
        self.assertEqual(result["count"], 4)
        self.assertEqual(
            {o["orderNumber"] for o in result["orders"]},
            {"ORD-2024-001", "ORD-2024-002", "ORD-2024-003", "ORD-2024-004"},
        )

    async def test_storage_failure_in_action_raises(self):
        await self.database.drop_tables()
        llm = FakeGenerationClient(steps=[tool_call("getUserOrders", {"userId": "user_demo"})])
        with self.assertRaises(ActionError):
            await collect(self.responder(llm).run(self.context))

    async def test_closing_early_stops_generation(self):
        llm = FakeGenerationClient(steps=[
            tool_call("getUserOrders", {"userId": "user_demo"}),
            text("never reached"),
        ])
        events = self.responder(llm).run(self.context)
        first = await events.__anext__()
        self.assertEqual(first.type, "tool_call")
        await events.aclose()
        self.assertEqual(len(llm.step_calls), 1)


if __name__ == '__main__':
    unittest.main()
