"""
Order API Views.

Implements:
- POST /orders/checkout/ - Turn the caller's cart into a pending order
- GET /orders/ - The caller's orders (every order for admins, filterable)
- GET /orders/{id}/ - Order detail with status history
- POST /orders/{id}/cancel/ - Customer or admin cancellation
- POST /orders/{id}/modifications/ - Change request within the 12h window
- POST /orders/{id}/status/ - Admin fulfilment update (shipped, delivered)
- POST /orders/lookup/ - Guest lookup by confirmation number + contact
- POST /orders/guest/ - Guest order history by contact
- GET /orders/resolve/{reference}/ - Admin lookup by any order identifier
- GET /orders/stats/ - Admin statistics
"""
import logging

from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from cart.services import cart_for_request
from core.identity import request_customer_id
from core.query import Query, QueryError, to_decimal
from core.rate_limiting import rate_limit
from coupons.services import CouponError
from inventory.services import InsufficientStockError, InventoryError, ReservationMismatchError
from payments.gateway import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentNetworkError,
    get_gateway,
)

from . import services
from .exceptions import (
    InvalidStatusTransition,
    OrderAccessDenied,
    OrderNotCancellable,
    OrderNotFound,
    OrderNotModifiable,
    OrderValidationError,
    PaymentOrderMismatch,
    StaleOrderState,
)
from .models import Order, OrderStatusHistory
from .serializers import (
    CancelOrderSerializer,
    CheckoutSerializer,
    GuestLookupSerializer,
    GuestOrdersSerializer,
    ModificationRequestCreateSerializer,
    ModificationRequestSerializer,
    OrderListSerializer,
    OrderSerializer,
    OrderTrackingSerializer,
    StatusUpdateSerializer,
)

logger = logging.getLogger(__name__)

# Checked in order, so subclasses come before their bases.
ERROR_RESPONSES = [
    (OrderValidationError, 'Validation Error', status.HTTP_400_BAD_REQUEST),
    (CouponError, 'Invalid Coupon', status.HTTP_400_BAD_REQUEST),
    (PaymentOrderMismatch, 'Payment Mismatch', status.HTTP_400_BAD_REQUEST),
    (OrderNotCancellable, 'Cannot Cancel', status.HTTP_400_BAD_REQUEST),
    (OrderNotModifiable, 'Cannot Modify', status.HTTP_400_BAD_REQUEST),
    (OrderAccessDenied, 'Forbidden', status.HTTP_403_FORBIDDEN),
    (OrderNotFound, 'Not Found', status.HTTP_404_NOT_FOUND),
    (InsufficientStockError, 'Insufficient Stock', status.HTTP_409_CONFLICT),
    (InvalidStatusTransition, 'Invalid Transition', status.HTTP_409_CONFLICT),
    (StaleOrderState, 'Order Changed', status.HTTP_409_CONFLICT),
    (ReservationMismatchError, 'Inventory Error', status.HTTP_500_INTERNAL_SERVER_ERROR),
    (InventoryError, 'Stock Conflict', status.HTTP_409_CONFLICT),
    (PaymentConfigurationError, 'Payment Configuration Error', status.HTTP_502_BAD_GATEWAY),
    (PaymentNetworkError, 'Payment Network Error', status.HTTP_502_BAD_GATEWAY),
    (PaymentGatewayError, 'Payment Error', status.HTTP_502_BAD_GATEWAY),
]

HANDLED_ERRORS = tuple(exc for exc, _, _ in ERROR_RESPONSES)


def order_error_response(error):
    """Translate a lifecycle exception into the JSON error body."""
    for exc_class, title, status_code in ERROR_RESPONSES:
        if isinstance(error, exc_class):
            break
    if status_code >= 500:
        logger.error(f"{title}: {error}")
    body = {'error': title, 'detail': str(error)}
    if isinstance(error, CouponError) and error.code:
        body['code'] = error.code
    return Response(body, status=status_code)


def _is_admin(request):
    return bool(request.user and request.user.is_staff)


ORDER_FILTER_FIELDS = {
    'status': str,
    'payment_status': str,
    'payment_method': str,
    'customer_id': str,
    'email': str,
    'confirmation_number': str,
    'total_amount': to_decimal,
    'created_at': str,
}


class CheckoutView(APIView):
    """
    POST: Create a pending order from the caller's cart.

    Returns the order and, for online payment, the gateway order the
    client hands to the payment widget.
    """

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        cart = cart_for_request(request, create=False)
        if cart is None:
            return Response(
                {'error': 'Validation Error', 'detail': 'Cart is empty'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            checkout = services.create_order_from_cart(
                cart,
                email=data['email'],
                phone=data['phone'],
                shipping_address=data['shipping_address'],
                billing_address=data.get('billing_address'),
                payment_method=data['payment_method'],
                customer_id=request_customer_id(request),
            )
        except HANDLED_ERRORS as e:
            if isinstance(e, InsufficientStockError):
                logger.info(f"Checkout refused: {e}")
            return order_error_response(e)

        body = {'order': OrderSerializer(checkout.order).data, 'payment': None}
        intent = checkout.payment_intent
        if intent is not None:
            body['payment'] = {
                'gateway_order_id': intent.gateway_order_id,
                'amount': str(intent.amount),
                'currency': intent.currency,
                'key_id': getattr(get_gateway(), 'key_id', ''),
            }
        return Response(body, status=status.HTTP_201_CREATED)


class OrderListView(generics.ListAPIView):
    """
    GET: Orders of the signed-in customer, newest first.

    Admins see every order and may filter with ``field__op=value``
    parameters, e.g. ``?status=processing&total_amount__gte=5000``.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = OrderListSerializer

    def get_queryset(self):
        if not _is_admin(self.request):
            return services.customer_orders(request_customer_id(self.request))
        queryset = Order.objects.prefetch_related('items')
        query = Query.from_params(self.request.query_params, ORDER_FILTER_FIELDS)
        return query.apply(queryset).order_by(query.ordering or '-created_at')

    def list(self, request, *args, **kwargs):
        try:
            return super().list(request, *args, **kwargs)
        except QueryError as e:
            return Response(
                {'error': 'Invalid filter', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )


class OrderDetailView(APIView):
    """
    GET: Order detail with tracking history.

    Customers may read their own orders; guests use /orders/lookup/.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        try:
            order = services.get_order(pk)
            if not _is_admin(request):
                services.check_access(order, customer_id=request_customer_id(request))
        except (OrderNotFound, OrderAccessDenied) as e:
            return order_error_response(e)
        return Response(OrderTrackingSerializer(order).data)


class OrderCancelView(APIView):
    """
    POST: Cancel an order.

    Request Body:
        {"reason": "...", "email": "...", "phone": "..."}

    email and phone are only needed for guest orders.
    """

    def post(self, request, pk):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        actor = OrderStatusHistory.Actor.ADMIN if _is_admin(request) else OrderStatusHistory.Actor.CUSTOMER
        try:
            order, message = services.cancel_order(
                pk,
                actor=actor,
                reason=data['reason'],
                customer_id=request_customer_id(request),
                email=data.get('email'),
                phone=data.get('phone'),
            )
        except HANDLED_ERRORS as e:
            return order_error_response(e)
        return Response({'message': message, 'order': OrderSerializer(order).data})


class ModificationRequestView(APIView):
    """
    POST: Ask support to change an order.

    Request Body:
        {"request_type": "address_change", "details": {"address": {...}}}
        {"request_type": "item_quantity", "details": {"product_id": 3, "quantity": 1}}
        {"request_type": "add_item", "details": {"product_id": 9, "quantity": 1}}
    """

    def post(self, request, pk):
        serializer = ModificationRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            modification = services.request_modification(
                pk,
                data['request_type'],
                data['details'],
                customer_id=request_customer_id(request),
                email=data.get('email'),
                phone=data.get('phone'),
            )
        except HANDLED_ERRORS as e:
            return order_error_response(e)
        return Response(
            ModificationRequestSerializer(modification).data,
            status=status.HTTP_201_CREATED
        )


class OrderStatusUpdateView(APIView):
    """
    POST: Admin status change.

    Request Body:
        {"status": "shipped", "tracking_number": "BLUEDART123"}
    """
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            order = services.update_status(
                pk,
                data['status'],
                actor=OrderStatusHistory.Actor.ADMIN,
                tracking_number=data['tracking_number'],
                estimated_delivery=data.get('estimated_delivery'),
                note=data['note'],
            )
        except HANDLED_ERRORS as e:
            return order_error_response(e)
        return Response(OrderSerializer(order).data)


class GuestOrderLookupView(APIView):
    """POST: Find a guest order by confirmation number, email and phone."""

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = GuestLookupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            order = services.guest_order_lookup(
                data['confirmation_number'], data['email'], data['phone']
            )
        except OrderNotFound as e:
            return order_error_response(e)
        return Response(OrderTrackingSerializer(order).data)


class GuestOrderListView(APIView):
    """POST: Every order placed with this email and phone as a guest."""

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = GuestOrdersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        orders = services.guest_orders(
            serializer.validated_data['email'], serializer.validated_data['phone']
        )
        return Response(OrderListSerializer(orders, many=True).data)


class OrderResolveView(APIView):
    """GET: Resolve an id, confirmation number or gateway order id (admin)."""
    permission_classes = [IsAdminUser]

    def get(self, request, reference):
        try:
            order = services.find_order(reference)
        except OrderNotFound as e:
            return order_error_response(e)
        return Response(OrderTrackingSerializer(order).data)


class OrderStatsView(APIView):
    """
    GET: Order statistics (admin).

    Query Parameters:
        - customer_id: Restrict to one customer (optional)
    """
    permission_classes = [IsAdminUser]

    def get(self, request):
        queryset = Order.objects.all()

        customer_id = request.query_params.get('customer_id')
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)

        return Response(services.order_stats(queryset))
