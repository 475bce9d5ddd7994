"""Order tools: order lookups, delivery tracking, cancellation and modification checks.

Cancellation and modification are simulated: preconditions are checked and the
outcome is described, persisted orders are never changed.
"""
from typing import Optional

from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ..data.models import Order, OrderStatus
from .registry import ActionArgs, ActionRegistry, iso

order_tools = ActionRegistry()

REFUND_TIMELINE = "A refund will be processed within 5-7 business days."


class OrderNumberArgs(ActionArgs):
    order_number: str = Field(description="The order number (e.g., ORD-2024-001)")

class UserOrdersArgs(ActionArgs):
    user_id: str = Field(description="The user ID to retrieve orders for")
    status: Optional[OrderStatus] = Field(default=None, description="Optional filter by order status")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum number of orders to retrieve")

class CancelOrderArgs(ActionArgs):
    order_number: str = Field(description="The order number to cancel")
    reason: Optional[str] = Field(default=None, description="Optional reason for cancellation")


async def _find_order(db, order_number: str, with_relations: bool = False) -> Optional[Order]:
    stmt = select(Order).where(Order.order_number == order_number)
    if with_relations:
        stmt = stmt.options(selectinload(Order.user), selectinload(Order.payments))
    return await db.scalar(stmt)


def _payment_status(order: Order) -> str:
    return order.payments[0].status.value if order.payments else "unknown"


@order_tools.action(
    "getOrderByNumber",
    OrderNumberArgs,
    "Fetch detailed information about a specific order using its order number.",
)
async def get_order_by_number(args: OrderNumberArgs, db):
    order = await _find_order(db, args.order_number, with_relations=True)
    if not order:
        return {"found": False, "message": f"No order found with number {args.order_number}"}

    return {
        "found": True,
        "order": {
            "orderNumber": order.order_number,
            "status": order.status.value,
            "items": order.items,
            "total": order.total,
            "shippingAddress": order.shipping_address,
            "trackingNumber": order.tracking_number,
            "estimatedDelivery": iso(order.estimated_delivery),
            "createdAt": iso(order.created_at),
            "updatedAt": iso(order.updated_at),
            "paymentStatus": _payment_status(order),
            "customerName": order.user.name,
        },
    }


@order_tools.action(
    "getUserOrders",
    UserOrdersArgs,
    "Get all orders for a specific user. Use this to show order history or help identify "
    "which order the customer is asking about.",
)
async def get_user_orders(args: UserOrdersArgs, db):
    stmt = (
        select(Order)
        .where(Order.user_id == args.user_id)
        .options(selectinload(Order.payments))
        .order_by(Order.created_at.desc())
        .limit(args.limit)
    )
    if args.status:
        stmt = stmt.where(Order.status == args.status)
    orders = (await db.scalars(stmt)).all()

    if not orders:
        return {"found": False, "message": "No orders found for this user"}

    return {
        "found": True,
        "count": len(orders),
        "orders": [
            {
                "orderNumber": o.order_number,
                "status": o.status.value,
                "items": o.items,
                "total": o.total,
                "trackingNumber": o.tracking_number,
                "estimatedDelivery": iso(o.estimated_delivery),
                "createdAt": iso(o.created_at),
                "paymentStatus": _payment_status(o),
            }
            for o in orders
        ],
    }


def _tracking_steps(status: OrderStatus, updated_at: Optional[str]):
    def step(name, completed=True):
        return {"status": name, "completed": completed, "date": updated_at if completed else None}

    steps = {
        OrderStatus.pending: [step("Order Placed")],
        OrderStatus.processing: [step("Order Placed"), step("Payment Confirmed"),
                                 step("Preparing for Shipment", False)],
        OrderStatus.shipped: [step("Order Placed"), step("Payment Confirmed"), step("Shipped"),
                              step("In Transit"), step("Out for Delivery", False)],
        OrderStatus.delivered: [step("Order Placed"), step("Payment Confirmed"), step("Shipped"),
                                step("Delivered")],
        OrderStatus.cancelled: [step("Order Placed"), step("Order Cancelled")],
    }
    return steps.get(status, [])


@order_tools.action(
    "checkDeliveryStatus",
    OrderNumberArgs,
    "Check the delivery status and tracking information for an order.",
)
async def check_delivery_status(args: OrderNumberArgs, db):
    order = await _find_order(db, args.order_number)
    if not order:
        return {"found": False, "message": f"No order found with number {args.order_number}"}

    tracking = order.tracking_number
    return {
        "found": True,
        "delivery": {
            "orderNumber": order.order_number,
            "currentStatus": order.status.value,
            "trackingNumber": tracking,
            "estimatedDelivery": iso(order.estimated_delivery),
            "shippingAddress": order.shipping_address,
            "trackingSteps": _tracking_steps(order.status, iso(order.updated_at)),
            "carrier": "UPS" if tracking else None,
            "trackingUrl": f"https://www.ups.com/track?tracknum={tracking}" if tracking else None,
        },
    }


@order_tools.action(
    "cancelOrder",
    CancelOrderArgs,
    "Cancel an order if it has not been shipped yet. Orders that are already shipped or "
    "delivered cannot be cancelled.",
)
async def cancel_order(args: CancelOrderArgs, db):
    order = await _find_order(db, args.order_number)
    if not order:
        return {"success": False, "message": f"No order found with number {args.order_number}"}

    if order.status in (OrderStatus.shipped, OrderStatus.delivered):
        return {
            "success": False,
            "message": f"Cannot cancel order {order.order_number} - it has already been "
                       f"{order.status.value}. Please initiate a return instead.",
            "currentStatus": order.status.value,
        }

    if order.status == OrderStatus.cancelled:
        return {
            "success": False,
            "message": f"Order {order.order_number} has already been cancelled.",
            "currentStatus": order.status.value,
        }

    return {
        "success": True,
        "message": f"Order {order.order_number} has been successfully cancelled.",
        "orderNumber": order.order_number,
        "previousStatus": order.status.value,
        "refundAmount": order.total,
        "refundMessage": REFUND_TIMELINE,
        "cancellationReason": args.reason or "Customer requested cancellation",
    }


MODIFY_ACTIONS = {
    OrderStatus.pending: ["change_address", "modify_items", "cancel_order"],
    OrderStatus.processing: ["change_address", "modify_items", "cancel_order"],
    OrderStatus.shipped: ["track_delivery", "initiate_return"],
    OrderStatus.delivered: ["initiate_return", "leave_review"],
    OrderStatus.cancelled: [],
}


@order_tools.action(
    "modifyOrder",
    OrderNumberArgs,
    "Check if an order can be modified and provide modification options. Orders can only be "
    "modified if they are in pending or processing status.",
)
async def modify_order(args: OrderNumberArgs, db):
    order = await _find_order(db, args.order_number)
    if not order:
        return {"canModify": False, "message": f"No order found with number {args.order_number}"}

    can_modify = order.status in (OrderStatus.pending, OrderStatus.processing)
    if can_modify:
        message = ("This order can be modified. Available options: change shipping address, "
                   "add/remove items, or cancel order.")
    else:
        message = f"This order cannot be modified because it is already {order.status.value}."
        if order.status == OrderStatus.shipped:
            message += " You can track your delivery or initiate a return after receiving it."

    return {
        "canModify": can_modify,
        "orderNumber": order.order_number,
        "currentStatus": order.status.value,
        "message": message,
        "availableActions": MODIFY_ACTIONS.get(order.status, []),
    }
