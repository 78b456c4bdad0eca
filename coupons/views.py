"""
Coupon API Views.

- Admin: create, update and deactivate coupons; list redemptions
- Storefront: list coupons available to the caller, validate a code
  against a cart subtotal
"""
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.identity import request_customer_id
from core.rate_limiting import rate_limit
from .models import Coupon, CouponRedemption
from .serializers import CouponSerializer, CouponRedemptionSerializer, CouponValidateSerializer
from .services import CouponError, available_coupons, validate_coupon


class CouponListCreateView(generics.ListCreateAPIView):
    permission_classes = [IsAdminUser]
    queryset = Coupon.objects.all()
    serializer_class = CouponSerializer


class CouponDetailView(generics.RetrieveUpdateDestroyAPIView):
    permission_classes = [IsAdminUser]
    queryset = Coupon.objects.all()
    serializer_class = CouponSerializer


class CouponRedemptionListView(generics.ListAPIView):
    permission_classes = [IsAdminUser]
    serializer_class = CouponRedemptionSerializer

    def get_queryset(self):
        return CouponRedemption.objects.select_related('coupon').filter(coupon_id=self.kwargs['pk'])


class AvailableCouponsView(APIView):
    """
    GET: Coupons the caller can use right now.

    Guests only see coupons without customer restrictions.
    """

    def get(self, request):
        return Response(available_coupons(request_customer_id(request)))


class CouponValidateView(APIView):
    """
    POST: Check a code against a cart.

    Request Body:
        {"code": "WELCOME10", "subtotal": "2499.00", "product_ids": ["12"]}
    """

    @rate_limit(max_requests=30, window_seconds=60)
    def post(self, request):
        serializer = CouponValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            coupon, discount = validate_coupon(
                data['code'],
                data['subtotal'],
                product_ids=data['product_ids'],
                customer_id=request_customer_id(request)
            )
        except CouponError as e:
            return Response(
                {'error': 'Invalid Coupon', 'detail': str(e), 'code': e.code},
                status=status.HTTP_400_BAD_REQUEST
            )

        return Response({
            'code': coupon.code,
            'discount_type': coupon.discount_type,
            'discount_amount': str(discount),
        })
