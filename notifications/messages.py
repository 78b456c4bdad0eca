"""
Email and SMS copy for each notification event.
"""
from django.conf import settings

from .models import NotificationLog

Event = NotificationLog.Event


def order_reference(order) -> str:
    return order.confirmation_number or f"#{order.pk}"


def _items_block(order) -> str:
    return "\n".join(
        f"  - {item.quantity} x {item.product_name} @ ₹{item.unit_price}"
        for item in order.items.all()
    )


def _totals_block(order) -> str:
    lines = [
        f"Subtotal: ₹{order.subtotal}",
        f"Tax: ₹{order.tax_amount}",
        f"Shipping: ₹{order.shipping_amount}",
    ]
    if order.discount_amount:
        lines.append(f"Discount ({order.coupon_code}): -₹{order.discount_amount}")
    lines.append(f"Total: ₹{order.total_amount}")
    return "\n".join(lines)


def build_email(event: str, order, context: dict = None):
    """Return (subject, body) for an order email."""
    context = context or {}
    store = settings.STORE_NAME
    ref = order_reference(order)
    greeting = f"Dear {order.shipping_first_name or 'Customer'},"

    if event == Event.ORDER_CONFIRMED:
        subject = f"Order Confirmation - {ref}"
        body = (
            f"{greeting}\n\nThank you for shopping with {store}! "
            f"Your order {ref} has been confirmed.\n\n"
            f"Items:\n{_items_block(order)}\n\n{_totals_block(order)}\n\n"
            f"You can request changes to your order within 12 hours of placing it."
        )
    elif event == Event.ORDER_SHIPPED:
        subject = f"Order Update - {ref} - Shipped"
        delivery = order.estimated_delivery.strftime('%a, %d %b %Y') if order.estimated_delivery else 'soon'
        body = (
            f"{greeting}\n\nYour order {ref} has been shipped.\n"
            f"Tracking number: {order.tracking_number}\n"
            f"Estimated delivery: {delivery}"
        )
    elif event == Event.ORDER_DELIVERED:
        subject = f"Order Update - {ref} - Delivered"
        body = f"{greeting}\n\nYour order {ref} has been delivered. Thank you for choosing {store}!"
    elif event == Event.ORDER_CANCELLED:
        subject = f"Order Cancelled - {ref}"
        refund = (
            "\nYour refund will be processed within 5-7 business days."
            if order.payment_status == order.PaymentStatus.REFUNDED else ""
        )
        reason = f"\nReason: {order.cancellation_reason}" if order.cancellation_reason else ""
        body = f"{greeting}\n\nYour order {ref} has been cancelled.{reason}{refund}"
    elif event == Event.PAYMENT_FAILED:
        subject = f"Payment Unsuccessful - Order {ref}"
        body = (
            f"{greeting}\n\nWe could not verify the payment for order {ref}, "
            f"so the order has been cancelled and no amount will be charged. "
            f"Please try placing the order again."
        )
    elif event == Event.MODIFICATION_REQUESTED:
        subject = f"Order Modification Request - {ref}"
        body = (
            f"Modification request for order {ref}\n"
            f"Type: {context.get('request_type', '')}\n"
            f"Customer: {order.customer_name} <{order.email}>, {order.phone}\n"
            f"Details: {context.get('details', {})}"
        )
    else:
        raise ValueError(f"Unknown notification event: {event}")
    return subject, body


def build_sms(event: str, order):
    """Return the SMS text for an event, or None when the event has no SMS."""
    store = settings.STORE_NAME
    ref = order_reference(order)
    if event == Event.ORDER_CONFIRMED:
        return (
            f"Dear Customer, your order {ref} for ₹{order.total_amount} has been confirmed. "
            f"Thank you for shopping with {store}!"
        )
    if event == Event.ORDER_SHIPPED:
        return f"Your order {ref} has been shipped! Track your package with {order.tracking_number}. - {store}"
    if event == Event.ORDER_DELIVERED:
        return f"Your order {ref} has been delivered! Thank you for choosing {store}. Rate your experience!"
    if event == Event.ORDER_CANCELLED:
        return f"Your order {ref} has been cancelled. - {store}"
    return None
