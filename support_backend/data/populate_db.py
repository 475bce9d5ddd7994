import asyncio
from datetime import datetime, timezone

from sqlalchemy import delete, func, select

from ..utils.logger import get_logger
from .database import Database, get_database
from .models import (
    FAQ,
    AgentType,
    Conversation,
    Message,
    MessageRole,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    User,
)

logger = get_logger()


def _date(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


USERS = [
    {"id": "user_demo", "email": "demo@example.com", "name": "Demo User"},
    {"id": "user_john", "email": "john@example.com", "name": "John Doe"},
    {"id": "user_jane", "email": "jane@example.com", "name": "Jane Smith"},
]

ADDRESS_DEMO = "123 Main St, San Francisco, CA 94105"

ORDERS = [
    {
        "user_id": "user_demo", "order_number": "ORD-2024-001", "status": OrderStatus.delivered,
        "items": [{"name": "Wireless Headphones", "quantity": 1, "price": 149.99},
                  {"name": "Phone Case", "quantity": 2, "price": 24.99}],
        "total": 199.97, "shipping_address": ADDRESS_DEMO,
        "tracking_number": "1Z999AA10123456784", "estimated_delivery": _date("2024-12-20"),
    },
    {
        "user_id": "user_demo", "order_number": "ORD-2024-002", "status": OrderStatus.shipped,
        "items": [{"name": "Laptop Stand", "quantity": 1, "price": 79.99},
                  {"name": "USB-C Hub", "quantity": 1, "price": 59.99}],
        "total": 139.98, "shipping_address": ADDRESS_DEMO,
        "tracking_number": "1Z999AA10123456785", "estimated_delivery": _date("2024-12-25"),
    },
    {
        "user_id": "user_demo", "order_number": "ORD-2024-003", "status": OrderStatus.processing,
        "items": [{"name": "Mechanical Keyboard", "quantity": 1, "price": 159.99}],
        "total": 159.99, "shipping_address": ADDRESS_DEMO,
        "tracking_number": None, "estimated_delivery": _date("2024-12-28"),
    },
    {
        "user_id": "user_demo", "order_number": "ORD-2024-004", "status": OrderStatus.pending,
        "items": [{"name": 'Monitor 27"', "quantity": 1, "price": 399.99},
                  {"name": "Monitor Arm", "quantity": 1, "price": 89.99}],
        "total": 489.98, "shipping_address": ADDRESS_DEMO,
        "tracking_number": None, "estimated_delivery": None,
    },
    {
        "user_id": "user_john", "order_number": "ORD-2024-005", "status": OrderStatus.cancelled,
        "items": [{"name": "Gaming Mouse", "quantity": 1, "price": 79.99}],
        "total": 79.99, "shipping_address": "456 Oak Ave, New York, NY 10001",
        "tracking_number": None, "estimated_delivery": None,
    },
]

# order_number links a payment to the seeded order
PAYMENTS = [
    {"user_id": "user_demo", "order_number": "ORD-2024-001", "invoice_number": "INV-2024-001",
     "amount": 199.97, "status": PaymentStatus.completed, "method": "credit_card"},
    {"user_id": "user_demo", "order_number": "ORD-2024-002", "invoice_number": "INV-2024-002",
     "amount": 139.98, "status": PaymentStatus.completed, "method": "paypal"},
    {"user_id": "user_demo", "order_number": "ORD-2024-003", "invoice_number": "INV-2024-003",
     "amount": 159.99, "status": PaymentStatus.pending, "method": "credit_card"},
    {"user_id": "user_demo", "order_number": None, "invoice_number": "INV-2024-SUB-001",
     "amount": 29.99, "status": PaymentStatus.completed, "method": "credit_card"},
    {"user_id": "user_john", "order_number": "ORD-2024-005", "invoice_number": "INV-2024-004",
     "amount": 79.99, "status": PaymentStatus.refunded, "method": "credit_card",
     "refund_amount": 79.99, "refund_reason": "Order cancelled by customer"},
    {"user_id": "user_demo", "order_number": None, "invoice_number": "INV-2024-005",
     "amount": 49.99, "status": PaymentStatus.partially_refunded, "method": "credit_card",
     "refund_amount": 25.00, "refund_reason": "Partial refund for service issue"},
]

SUBSCRIPTIONS = [
    {"user_id": "user_demo", "plan": "Pro", "status": SubscriptionStatus.active,
     "current_period_start": _date("2024-12-01"), "current_period_end": _date("2025-01-01"),
     "cancel_at_period_end": False},
    {"user_id": "user_john", "plan": "Basic", "status": SubscriptionStatus.cancelled,
     "current_period_start": _date("2024-11-01"), "current_period_end": _date("2024-12-01"),
     "cancel_at_period_end": True},
    {"user_id": "user_jane", "plan": "Enterprise", "status": SubscriptionStatus.active,
     "current_period_start": _date("2024-12-15"), "current_period_end": _date("2025-01-15"),
     "cancel_at_period_end": False},
]

FAQS = [
    {"question": "How do I reset my password?",
     "answer": 'To reset your password, click on "Forgot Password" on the login page. Enter your email address, and we\'ll send you a link to create a new password. The link expires in 24 hours.',
     "category": "account", "keywords": ["password", "reset", "forgot", "login", "access"]},
    {"question": "How do I update my account information?",
     "answer": "You can update your account information by going to Settings > Account > Personal Information. From there, you can edit your name, email, phone number, and other details.",
     "category": "account", "keywords": ["account", "update", "edit", "profile", "information", "settings"]},
    {"question": "How do I contact customer support?",
     "answer": "You can reach our customer support team through this chat, by email at support@example.com, or by phone at 1-800-EXAMPLE (Mon-Fri, 9AM-6PM EST).",
     "category": "support", "keywords": ["contact", "support", "help", "customer service", "phone", "email"]},
    {"question": "How do I track my order?",
     "answer": "Once your order ships, you'll receive an email with a tracking number. You can also track your order by going to Orders > Order History and clicking on the specific order.",
     "category": "orders", "keywords": ["track", "order", "shipping", "delivery", "status", "tracking number"]},
    {"question": "Can I cancel my order?",
     "answer": "You can cancel your order if it hasn't shipped yet. Go to Orders > Order History, find your order, and click \"Cancel Order\". If it's already shipped, you'll need to wait for delivery and then initiate a return.",
     "category": "orders", "keywords": ["cancel", "order", "cancellation", "stop"]},
    {"question": "How do I return an item?",
     "answer": "To return an item, go to Orders > Order History, select the order, and click \"Return Items\". Follow the instructions to print a return label. Items must be returned within 30 days in original condition.",
     "category": "orders", "keywords": ["return", "refund", "exchange", "send back"]},
    {"question": "How do I view my invoices?",
     "answer": "You can view all your invoices by going to Billing > Invoice History. From there, you can download PDF copies of any invoice.",
     "category": "billing", "keywords": ["invoice", "bill", "receipt", "payment history"]},
    {"question": "How do I request a refund?",
     "answer": "To request a refund, go to Billing > Request Refund or contact our support team. Refunds are typically processed within 5-7 business days and will be credited to your original payment method.",
     "category": "billing", "keywords": ["refund", "money back", "reimbursement", "credit"]},
    {"question": "What payment methods do you accept?",
     "answer": "We accept all major credit cards (Visa, MasterCard, American Express, Discover), PayPal, Apple Pay, and Google Pay. For enterprise customers, we also offer invoice billing.",
     "category": "billing", "keywords": ["payment", "credit card", "paypal", "pay", "methods"]},
    {"question": "How do I cancel my subscription?",
     "answer": "To cancel your subscription, go to Settings > Subscription > Cancel Subscription. Your access will continue until the end of your current billing period. You can reactivate anytime.",
     "category": "billing", "keywords": ["cancel", "subscription", "unsubscribe", "stop", "membership"]},
]

SAMPLE_CONVERSATION = [
    (MessageRole.user, "Hi, I want to check on my recent order", None, None),
    (MessageRole.assistant,
     "Hello! I'd be happy to help you check on your order. I can see you have a few recent orders. "
     "Could you please provide the order number, or would you like me to show you all your recent orders?",
     AgentType.order, None),
    (MessageRole.user, "Show me all my orders", None, None),
    (MessageRole.assistant,
     "Here are your recent orders:\n\n"
     "1. **ORD-2024-001** - Delivered\n   - Wireless Headphones, Phone Case (x2)\n   - Total: $199.97\n\n"
     "2. **ORD-2024-002** - Shipped\n   - Laptop Stand, USB-C Hub\n   - Total: $139.98\n   - Tracking: 1Z999AA10123456785\n\n"
     "3. **ORD-2024-003** - Processing\n   - Mechanical Keyboard\n   - Total: $159.99\n\n"
     "4. **ORD-2024-004** - Pending\n   - Monitor 27\", Monitor Arm\n   - Total: $489.98\n\n"
     "Would you like more details about any of these orders?",
     AgentType.order, [{"tool": "getUserOrders", "args": {"userId": "user_demo"}}]),
]


async def populate(database: Database, with_sample_conversation: bool = True, reset: bool = False):
    """Seed the demo users, orders, payments, subscriptions and FAQs."""
    await database.create_tables()

    async with database.session() as db:
        try:
            if reset:
                for model in (Message, Conversation, Payment, Subscription, Order, FAQ, User):
                    await db.execute(delete(model))
            elif (await db.scalar(select(func.count()).select_from(User))) > 0:
                logger.info("[DB] Users table is not empty. Skipping population.")
                return

            db.add_all(User(**u) for u in USERS)

            orders = {}
            for data in ORDERS:
                order = Order(**data)
                orders[order.order_number] = order
                db.add(order)
            await db.flush()

            for data in PAYMENTS:
                data = dict(data)
                order_number = data.pop("order_number")
                order = orders.get(order_number) if order_number else None
                db.add(Payment(order_id=order.id if order else None, **data))

            db.add_all(Subscription(**s) for s in SUBSCRIPTIONS)
            db.add_all(FAQ(**f) for f in FAQS)

            if with_sample_conversation:
                conversation = Conversation(
                    user_id="user_demo",
                    title="Order inquiry",
                    summary="User asked about order status",
                )
                db.add(conversation)
                await db.flush()
                for role, content, agent_type, tool_calls in SAMPLE_CONVERSATION:
                    db.add(Message(
                        conversation_id=conversation.id,
                        role=role,
                        content=content,
                        agent_type=agent_type,
                        tool_calls=tool_calls,
                    ))
                    # flush one at a time so insertion ids follow the transcript
                    await db.flush()

            await db.commit()
            logger.info(
                f"[DB] Seeded {len(USERS)} users, {len(ORDERS)} orders, {len(PAYMENTS)} payments, "
                f"{len(SUBSCRIPTIONS)} subscriptions, {len(FAQS)} FAQs"
            )
        except Exception as e:
            await db.rollback()
            logger.error(f"[DB] Error populating database: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(populate(get_database()))
