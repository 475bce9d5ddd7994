#!/usr/bin/env python3
import os
import sys
import unittest

from sqlalchemy.exc import OperationalError

sys.path.insert(0, os.path.dirname(__file__))
from fake_llm import SeededDatabase

from support_backend.tools.billing_tools import billing_tools
from support_backend.tools.order_tools import OrderNumberArgs, order_tools
from support_backend.tools.registry import ActionError, ActionRegistry
from support_backend.tools.support_tools import support_tools


class TestActionRegistry(unittest.TestCase):
    def test_catalogue_names(self):
        self.assertEqual(order_tools.names(), [
            "getOrderByNumber", "getUserOrders", "checkDeliveryStatus", "cancelOrder", "modifyOrder",
        ])
        self.assertEqual(billing_tools.names(), [
            "getInvoiceDetails", "getUserPayments", "checkRefundStatus", "requestRefund",
            "getSubscription", "cancelSubscription",
        ])
        self.assertEqual(support_tools.names(), ["searchFAQs", "getConversationHistory", "getUserInfo"])

    def test_llm_schema_uses_camel_case_arguments(self):
        schema = order_tools.get("getUserOrders").to_llm_schema()
        self.assertEqual(schema["type"], "function")
        self.assertEqual(schema["function"]["name"], "getUserOrders")
        props = schema["function"]["parameters"]["properties"]
        self.assertIn("userId", props)
        self.assertIn("limit", props)
        self.assertEqual(schema["function"]["parameters"]["required"], ["userId"])


class TestActions(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.seeded = SeededDatabase()
        self.database = await self.seeded.open()

    async def asyncTearDown(self):
        await self.seeded.close()

    async def run_action(self, registry, name, args):
        return await registry.execute(name, args, self.database)

    # ---- registry failures ----

    async def test_unknown_action_raises(self):
        with self.assertRaises(ActionError):
            await self.run_action(order_tools, "dropTables", {})

    async def test_invalid_arguments_raise(self):
        with self.assertRaises(ActionError):
            await self.run_action(order_tools, "getOrderByNumber", {})
        with self.assertRaises(ActionError):
            await self.run_action(billing_tools, "requestRefund", {"invoiceNumber": "INV-2024-001", "amount": -5, "reason": "x"})

    async def test_storage_failure_raises(self):
        failing = ActionRegistry()

        @failing.action("lookup", OrderNumberArgs, "Always fails at the database.")
        async def lookup(args, db):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        with self.assertRaises(ActionError) as ctx:
            await self.run_action(failing, "lookup", {"orderNumber": "ORD-2024-001"})
        self.assertIn("storage failure", str(ctx.exception))

    async def test_missing_table_raises(self):
        await self.database.drop_tables()
        with self.assertRaises(ActionError):
            await self.run_action(order_tools, "getUserOrders", {"userId": "user_demo"})

    # ---- orders ----

    async def test_get_order_by_number(self):
        result = await self.run_action(order_tools, "getOrderByNumber", {"orderNumber": "ORD-2024-002"})
        self.assertTrue(result["found"])
        order = result["order"]
        self.assertEqual(order["status"], "shipped")
        self.assertEqual(order["paymentStatus"], "completed")
        self.assertEqual(order["customerName"], "Demo User")
        self.assertEqual(len(order["items"]), 2)

    async def test_missing_order_is_a_normal_result(self):
        result = await self.run_action(order_tools, "getOrderByNumber", {"orderNumber": "ORD-0000-000"})
        self.assertFalse(result["found"])
        self.assertIn("ORD-0000-000", result["message"])

    async def test_user_orders(self):
        result = await self.run_action(order_tools, "getUserOrders", {"userId": "user_demo"})
        self.assertTrue(result["found"])
        self.assertEqual(result["count"], 4)
        self.assertEqual(
            {o["orderNumber"] for o in result["orders"]},
            {"ORD-2024-001", "ORD-2024-002", "ORD-2024-003", "ORD-2024-004"},
        )
        pending = [o for o in result["orders"] if o["orderNumber"] == "ORD-2024-004"][0]
        self.assertEqual(pending["paymentStatus"], "unknown")

        filtered = await self.run_action(order_tools, "getUserOrders", {"userId": "user_demo", "status": "shipped"})
        self.assertEqual(filtered["count"], 1)

        nobody = await self.run_action(order_tools, "getUserOrders", {"userId": "user_nobody"})
        self.assertFalse(nobody["found"])

    async def test_delivery_status(self):
        result = await self.run_action(order_tools, "checkDeliveryStatus", {"orderNumber": "ORD-2024-002"})
        delivery = result["delivery"]
        self.assertEqual(delivery["carrier"], "UPS")
        self.assertTrue(delivery["trackingUrl"].endswith("1Z999AA10123456785"))
        self.assertEqual(len(delivery["trackingSteps"]), 5)
        self.assertFalse(delivery["trackingSteps"][-1]["completed"])

        untracked = await self.run_action(order_tools, "checkDeliveryStatus", {"orderNumber": "ORD-2024-003"})
        self.assertIsNone(untracked["delivery"]["carrier"])
        self.assertIsNone(untracked["delivery"]["trackingUrl"])

    async def test_cancel_order_rules(self):
        shipped = await self.run_action(order_tools, "cancelOrder", {"orderNumber": "ORD-2024-002"})
        self.assertFalse(shipped["success"])
        self.assertEqual(shipped["currentStatus"], "shipped")

        cancelled = await self.run_action(order_tools, "cancelOrder", {"orderNumber": "ORD-2024-005"})
        self.assertFalse(cancelled["success"])
        self.assertIn("already been cancelled", cancelled["message"])

        pending = await self.run_action(order_tools, "cancelOrder", {"orderNumber": "ORD-2024-004"})
        self.assertTrue(pending["success"])
        self.assertEqual(pending["refundAmount"], 489.98)
        self.assertEqual(pending["cancellationReason"], "Customer requested cancellation")

        # simulated: the order itself is untouched
        again = await self.run_action(order_tools, "getOrderByNumber", {"orderNumber": "ORD-2024-004"})
        self.assertEqual(again["order"]["status"], "pending")

    async def test_modify_order(self):
        processing = await self.run_action(order_tools, "modifyOrder", {"orderNumber": "ORD-2024-003"})
        self.assertTrue(processing["canModify"])
        self.assertIn("change_address", processing["availableActions"])

        delivered = await self.run_action(order_tools, "modifyOrder", {"orderNumber": "ORD-2024-001"})
        self.assertFalse(delivered["canModify"])
        self.assertEqual(delivered["availableActions"], ["initiate_return", "leave_review"])

    # ---- billing ----

    async def test_invoice_details(self):
        result = await self.run_action(billing_tools, "getInvoiceDetails", {"invoiceNumber": "INV-2024-001"})
        self.assertTrue(result["found"])
        self.assertEqual(result["invoice"]["relatedOrder"], "ORD-2024-001")

        standalone = await self.run_action(billing_tools, "getInvoiceDetails", {"invoiceNumber": "INV-2024-SUB-001"})
        self.assertIsNone(standalone["invoice"]["relatedOrder"])

    async def test_user_payments_summary(self):
        result = await self.run_action(billing_tools, "getUserPayments", {"userId": "user_demo"})
        self.assertEqual(result["count"], 5)
        self.assertEqual(result["summary"]["pendingPayments"], 1)
        self.assertEqual(result["summary"]["totalRefunded"], 25.0)
        self.assertAlmostEqual(result["summary"]["totalSpent"], 199.97 + 139.98 + 29.99, places=2)

    async def test_refund_status_fully_refunded(self):
        result = await self.run_action(billing_tools, "checkRefundStatus", {"invoiceNumber": "INV-2024-004"})
        status = result["refundStatus"]
        self.assertTrue(status["hasRefund"])
        self.assertEqual(status["remainingBalance"], 0)
        self.assertFalse(status["refundEligible"])

    async def test_refund_status_partially_refunded(self):
        result = await self.run_action(billing_tools, "checkRefundStatus", {"invoiceNumber": "INV-2024-005"})
        status = result["refundStatus"]
        self.assertTrue(status["hasRefund"])
        self.assertEqual(status["remainingBalance"], 24.99)
        self.assertIn("Remaining balance", status["message"])

    async def test_refund_status_without_refund(self):
        result = await self.run_action(billing_tools, "checkRefundStatus", {"invoiceNumber": "INV-2024-001"})
        status = result["refundStatus"]
        self.assertFalse(status["hasRefund"])
        self.assertIsNone(status["remainingBalance"])
        self.assertTrue(status["refundEligible"])

    async def test_request_refund_exceeding_amount_fails(self):
        result = await self.run_action(billing_tools, "requestRefund", {
            "invoiceNumber": "INV-2024-001", "amount": 500.0, "reason": "Changed my mind",
        })
        self.assertFalse(result["success"])
        self.assertIn("cannot exceed", result["message"])
        self.assertNotIn("refundRequest", result)

    async def test_request_refund_requires_completed_payment(self):
        result = await self.run_action(billing_tools, "requestRefund", {
            "invoiceNumber": "INV-2024-003", "reason": "Too slow",
        })
        self.assertFalse(result["success"])
        self.assertEqual(result["currentStatus"], "pending")

    async def test_request_partial_refund(self):
        result = await self.run_action(billing_tools, "requestRefund", {
            "invoiceNumber": "INV-2024-001", "amount": 24.99, "reason": "Damaged case",
        })
        self.assertTrue(result["success"])
        request = result["refundRequest"]
        self.assertTrue(request["isPartialRefund"])
        self.assertEqual(request["estimatedProcessingTime"], "5-7 business days")
        self.assertTrue(request["referenceNumber"].startswith("REF-"))

    async def test_subscriptions(self):
        result = await self.run_action(billing_tools, "getSubscription", {"userId": "user_demo"})
        self.assertTrue(result["hasActiveSubscription"])
        self.assertEqual(result["activeSubscription"]["plan"], "Pro")

        john = await self.run_action(billing_tools, "getSubscription", {"userId": "user_john"})
        self.assertFalse(john["hasActiveSubscription"])
        self.assertEqual(john["subscriptions"][0]["daysRemaining"], 0)

    async def test_cancel_subscription(self):
        result = await self.run_action(billing_tools, "cancelSubscription", {"userId": "user_jane"})
        self.assertTrue(result["success"])
        self.assertEqual(result["cancellation"]["plan"], "Enterprise")
        self.assertTrue(result["cancellation"]["canReactivate"])

        none_active = await self.run_action(billing_tools, "cancelSubscription", {"userId": "user_john"})
        self.assertFalse(none_active["success"])

    # ---- support ----

    async def test_search_faqs(self):
        result = await self.run_action(support_tools, "searchFAQs", {"query": "password"})
        self.assertTrue(result["found"])
        self.assertEqual(result["faqs"][0]["question"], "How do I reset my password?")

        billing_only = await self.run_action(support_tools, "searchFAQs", {"query": "cancel", "category": "billing"})
        self.assertEqual([f["category"] for f in billing_only["faqs"]], ["billing"])

        nothing = await self.run_action(support_tools, "searchFAQs", {"query": "quantum entanglement"})
        self.assertFalse(nothing["found"])

    async def test_faq_results_are_capped(self):
        result = await self.run_action(support_tools, "searchFAQs", {"query": "order cancel refund payment account"})
        self.assertLessEqual(result["count"], 5)

    async def test_user_info(self):
        result = await self.run_action(support_tools, "getUserInfo", {"userId": "user_demo"})
        self.assertEqual(result["user"]["name"], "Demo User")
        self.assertEqual(result["user"]["totalOrders"], 4)
        self.assertEqual(result["user"]["previousConversations"], 0)

        missing = await self.run_action(support_tools, "getUserInfo", {"userId": "user_ghost"})
        self.assertFalse(missing["found"])

    async def test_conversation_history_empty(self):
        result = await self.run_action(support_tools, "getConversationHistory", {"userId": "user_demo"})
        self.assertFalse(result["found"])


class TestConversationHistoryAction(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.seeded = SeededDatabase(with_sample_conversation=True)
        self.database = await self.seeded.open()

    async def asyncTearDown(self):
        await self.seeded.close()

    async def test_recent_messages_are_previewed(self):
        result = await support_tools.execute("getConversationHistory", {"userId": "user_demo"}, self.database)
        self.assertTrue(result["found"])
        conversation = result["conversations"][0]
        self.assertEqual(conversation["title"], "Order inquiry")
        self.assertEqual(len(conversation["recentMessages"]), 4)
        self.assertEqual(conversation["recentMessages"][0]["role"], "user")
        long_reply = conversation["recentMessages"][3]["content"]
        self.assertEqual(len(long_reply), 203)
        self.assertTrue(long_reply.endswith("..."))


if __name__ == '__main__':
    unittest.main()
