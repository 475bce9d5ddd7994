"""Billing tools: invoices, payment history, refunds and subscriptions.

Refund requests and subscription cancellations are simulated. They run the
same precondition checks a real mutation would and return the outcome.
"""
import time
from datetime import datetime, timezone
from math import ceil
from typing import Optional

from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ..data.models import Payment, PaymentStatus, Subscription, SubscriptionStatus
from .registry import ActionArgs, ActionRegistry, iso

billing_tools = ActionRegistry()

REFUND_PROCESSING_TIME = "5-7 business days"
REFUNDED_STATUSES = (PaymentStatus.refunded, PaymentStatus.partially_refunded)


class InvoiceArgs(ActionArgs):
    invoice_number: str = Field(description="The invoice number (e.g., INV-2024-001)")

class UserPaymentsArgs(ActionArgs):
    user_id: str = Field(description="The user ID to retrieve payments for")
    status: Optional[PaymentStatus] = Field(default=None, description="Optional filter by payment status")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum number of payments to retrieve")

class RequestRefundArgs(ActionArgs):
    invoice_number: str = Field(description="The invoice number to refund")
    amount: Optional[float] = Field(
        default=None, gt=0,
        description="Partial refund amount. If not specified, full refund is requested.",
    )
    reason: str = Field(description="Reason for the refund request")

class UserArgs(ActionArgs):
    user_id: str = Field(description="The user ID to retrieve subscription for")

class CancelSubscriptionArgs(ActionArgs):
    user_id: str = Field(description="The user ID to cancel subscription for")
    reason: Optional[str] = Field(default=None, description="Optional reason for cancellation")


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _aware(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _refunded_amount(payment: Payment) -> float:
    if payment.refund_amount is not None:
        return payment.refund_amount
    # a fully refunded payment with no recorded amount returned everything
    return payment.amount if payment.status == PaymentStatus.refunded else 0.0


async def _find_payment(db, invoice_number: str, with_relations: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.invoice_number == invoice_number)
    if with_relations:
        stmt = stmt.options(selectinload(Payment.user), selectinload(Payment.order))
    return await db.scalar(stmt)


@billing_tools.action(
    "getInvoiceDetails",
    InvoiceArgs,
    "Retrieve detailed information about a specific invoice.",
)
async def get_invoice_details(args: InvoiceArgs, db):
    payment = await _find_payment(db, args.invoice_number, with_relations=True)
    if not payment:
        return {"found": False, "message": f"No invoice found with number {args.invoice_number}"}

    return {
        "found": True,
        "invoice": {
            "invoiceNumber": payment.invoice_number,
            "amount": payment.amount,
            "status": payment.status.value,
            "paymentMethod": payment.method,
            "createdAt": iso(payment.created_at),
            "refundAmount": payment.refund_amount,
            "refundReason": payment.refund_reason,
            "customerName": payment.user.name,
            "customerEmail": payment.user.email,
            "relatedOrder": payment.order.order_number if payment.order else None,
            "orderItems": payment.order.items if payment.order else None,
        },
    }


@billing_tools.action(
    "getUserPayments",
    UserPaymentsArgs,
    "Get all payments and invoices for a specific user.",
)
async def get_user_payments(args: UserPaymentsArgs, db):
    stmt = (
        select(Payment)
        .where(Payment.user_id == args.user_id)
        .options(selectinload(Payment.order))
        .order_by(Payment.created_at.desc())
        .limit(args.limit)
    )
    if args.status:
        stmt = stmt.where(Payment.status == args.status)
    payments = (await db.scalars(stmt)).all()

    if not payments:
        return {"found": False, "message": "No payments found for this user"}

    total_spent = sum(p.amount for p in payments if p.status == PaymentStatus.completed)
    total_refunded = sum(p.refund_amount or 0 for p in payments)

    return {
        "found": True,
        "count": len(payments),
        "summary": {
            "totalSpent": round(total_spent, 2),
            "totalRefunded": round(total_refunded, 2),
            "pendingPayments": sum(1 for p in payments if p.status == PaymentStatus.pending),
        },
        "payments": [
            {
                "invoiceNumber": p.invoice_number,
                "amount": p.amount,
                "status": p.status.value,
                "method": p.method,
                "createdAt": iso(p.created_at),
                "relatedOrder": p.order.order_number if p.order else None,
                "refundAmount": p.refund_amount,
            }
            for p in payments
        ],
    }


@billing_tools.action(
    "checkRefundStatus",
    InvoiceArgs,
    "Check the refund status for a specific invoice or payment.",
)
async def check_refund_status(args: InvoiceArgs, db):
    payment = await _find_payment(db, args.invoice_number)
    if not payment:
        return {"found": False, "message": f"No invoice found with number {args.invoice_number}"}

    has_refund = payment.status in REFUNDED_STATUSES
    refunded = _refunded_amount(payment)
    remaining = round(payment.amount - refunded, 2) if has_refund else None

    if has_refund:
        message = f"A refund of {_money(refunded)} has been processed. "
        if payment.status == PaymentStatus.partially_refunded:
            message += f"Remaining balance: {_money(remaining)}"
        else:
            message += "Full refund completed."
    elif payment.status == PaymentStatus.completed:
        message = "This payment is eligible for a refund. Would you like to initiate a refund request?"
    else:
        message = f"This payment cannot be refunded because it is currently {payment.status.value}."

    return {
        "found": True,
        "refundStatus": {
            "invoiceNumber": payment.invoice_number,
            "originalAmount": payment.amount,
            "paymentStatus": payment.status.value,
            "hasRefund": has_refund,
            "refundAmount": refunded if has_refund else payment.refund_amount,
            "refundReason": payment.refund_reason,
            "remainingBalance": remaining,
            "refundEligible": payment.status == PaymentStatus.completed,
            "message": message,
        },
    }


@billing_tools.action(
    "requestRefund",
    RequestRefundArgs,
    "Initiate a refund request for a completed payment. Returns information about the refund process.",
)
async def request_refund(args: RequestRefundArgs, db):
    payment = await _find_payment(db, args.invoice_number)
    if not payment:
        return {"success": False, "message": f"No invoice found with number {args.invoice_number}"}

    if payment.status != PaymentStatus.completed:
        return {
            "success": False,
            "message": f"Cannot refund invoice {payment.invoice_number} - payment status is "
                       f"{payment.status.value}.",
            "currentStatus": payment.status.value,
        }

    refund_amount = args.amount or payment.amount
    if refund_amount > payment.amount:
        return {
            "success": False,
            "message": f"Refund amount ({_money(refund_amount)}) cannot exceed the original "
                       f"payment amount ({_money(payment.amount)}).",
        }

    return {
        "success": True,
        "refundRequest": {
            "invoiceNumber": payment.invoice_number,
            "originalAmount": payment.amount,
            "refundAmount": refund_amount,
            "isPartialRefund": refund_amount < payment.amount,
            "reason": args.reason,
            "estimatedProcessingTime": REFUND_PROCESSING_TIME,
            "refundMethod": f"Original payment method ({payment.method})",
            "referenceNumber": f"REF-{int(time.time() * 1000)}",
            "message": f"Refund of {_money(refund_amount)} has been initiated. "
                       "You will receive a confirmation email shortly.",
        },
    }


@billing_tools.action(
    "getSubscription",
    UserArgs,
    "Get subscription details for a user including plan, status, and billing cycle.",
)
async def get_subscription(args: UserArgs, db):
    stmt = (
        select(Subscription)
        .where(Subscription.user_id == args.user_id)
        .order_by(Subscription.created_at.desc())
    )
    subscriptions = (await db.scalars(stmt)).all()

    if not subscriptions:
        return {"found": False, "message": "No subscriptions found for this user"}

    now = datetime.now(timezone.utc)
    active = next((s for s in subscriptions if s.status == SubscriptionStatus.active), None)

    def days_remaining(sub: Subscription) -> int:
        if sub.status != SubscriptionStatus.active:
            return 0
        return ceil((_aware(sub.current_period_end) - now).total_seconds() / 86400)

    return {
        "found": True,
        "hasActiveSubscription": active is not None,
        "subscriptions": [
            {
                "plan": s.plan,
                "status": s.status.value,
                "currentPeriodStart": iso(s.current_period_start),
                "currentPeriodEnd": iso(s.current_period_end),
                "cancelAtPeriodEnd": s.cancel_at_period_end,
                "daysRemaining": days_remaining(s),
                "createdAt": iso(s.created_at),
            }
            for s in subscriptions
        ],
        "activeSubscription": {
            "plan": active.plan,
            "status": active.status.value,
            "renewalDate": iso(active.current_period_end),
            "cancelAtPeriodEnd": active.cancel_at_period_end,
        } if active else None,
    }


@billing_tools.action(
    "cancelSubscription",
    CancelSubscriptionArgs,
    "Cancel an active subscription. The subscription will remain active until the end of the "
    "current billing period.",
)
async def cancel_subscription(args: CancelSubscriptionArgs, db):
    stmt = select(Subscription).where(
        Subscription.user_id == args.user_id,
        Subscription.status == SubscriptionStatus.active,
    )
    subscription = await db.scalar(stmt)

    if not subscription:
        return {"success": False, "message": "No active subscription found for this user."}

    if subscription.cancel_at_period_end:
        return {
            "success": False,
            "message": "This subscription is already scheduled for cancellation at the end of the "
                       "current billing period.",
            "cancellationDate": iso(subscription.current_period_end),
        }

    end = _aware(subscription.current_period_end)
    return {
        "success": True,
        "cancellation": {
            "plan": subscription.plan,
            "effectiveDate": iso(subscription.current_period_end),
            "message": f"Your {subscription.plan} subscription has been scheduled for cancellation. "
                       f"You will continue to have access until {end.strftime('%m/%d/%Y')}.",
            "canReactivate": True,
            "reason": args.reason or "Customer requested cancellation",
        },
    }
