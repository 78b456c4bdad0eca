"""
Cart API Views.

Guests identify their cart with the X-Cart-Session header; the header is
echoed on every response so a client that started without one learns
the session id it was given. Signed-in customers use their own cart.
"""
import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.identity import request_customer_id
from coupons.services import CouponError
from . import services
from .serializers import (
    AddItemSerializer,
    ApplyCouponSerializer,
    CartSerializer,
    UpdateQuantitySerializer,
)
from .services import SESSION_HEADER, CartError, CartItemNotFound

logger = logging.getLogger(__name__)


def cart_response(cart, status_code=status.HTTP_200_OK):
    response = Response(CartSerializer(cart).data, status=status_code)
    if cart.session_id:
        response[SESSION_HEADER] = cart.session_id
    return response


def cart_error_response(error):
    if isinstance(error, CartItemNotFound):
        return Response(
            {'error': 'Not Found', 'detail': str(error)},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response(
        {'error': 'Cart Error', 'detail': str(error)},
        status=status.HTTP_400_BAD_REQUEST
    )


class CartView(APIView):
    """
    GET: Current cart (created on first access)
    DELETE: Remove every item and the coupon
    """

    def get(self, request):
        return cart_response(services.cart_for_request(request))

    def delete(self, request):
        cart = services.clear_cart(services.cart_for_request(request))
        return cart_response(cart)


class CartItemsView(APIView):
    """
    POST: Add a product, merging with an existing line.

    Request Body:
        {"product_id": 12, "quantity": 2}
    """

    def post(self, request):
        serializer = AddItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        cart = services.cart_for_request(request)
        try:
            cart = services.add_item(
                cart,
                serializer.validated_data['product_id'],
                serializer.validated_data['quantity']
            )
        except CartError as e:
            return cart_error_response(e)
        return cart_response(cart, status.HTTP_201_CREATED)


class CartItemDetailView(APIView):
    """
    PATCH: Set quantity for a product line (0 removes it)
    DELETE: Remove the line
    """

    def patch(self, request, product_id):
        serializer = UpdateQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        cart = services.cart_for_request(request)
        try:
            cart = services.update_quantity(cart, product_id, serializer.validated_data['quantity'])
        except CartError as e:
            return cart_error_response(e)
        return cart_response(cart)

    def delete(self, request, product_id):
        cart = services.cart_for_request(request)
        try:
            cart = services.remove_item(cart, product_id)
        except CartError as e:
            return cart_error_response(e)
        return cart_response(cart)


class CartCouponView(APIView):
    """
    POST: Apply a coupon code to the cart
    DELETE: Remove the applied coupon
    """

    def post(self, request):
        serializer = ApplyCouponSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        cart = services.cart_for_request(request)
        try:
            cart = services.apply_coupon(
                cart,
                serializer.validated_data['code'],
                customer_id=request_customer_id(request)
            )
        except CouponError as e:
            return Response(
                {'error': 'Invalid Coupon', 'detail': str(e), 'code': e.code},
                status=status.HTTP_400_BAD_REQUEST
            )
        return cart_response(cart)

    def delete(self, request):
        cart = services.remove_coupon(services.cart_for_request(request))
        return cart_response(cart)


class CartMergeView(APIView):
    """
    POST: Fold the guest cart named by X-Cart-Session into the signed-in
    customer's cart.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return Response(
                {'error': 'Validation Error', 'detail': f'{SESSION_HEADER} header is required'},
                status=status.HTTP_400_BAD_REQUEST
            )
        cart = services.merge_guest_cart(session_id, request_customer_id(request))
        return cart_response(cart)
