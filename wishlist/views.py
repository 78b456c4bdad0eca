"""
Wishlist API Views. All endpoints need a signed-in customer.

- GET    /wishlist/ - Saved products, newest first, with a count
- POST   /wishlist/ - Save a product ({"product_id": 12})
- GET    /wishlist/{product_id}/ - Whether a product is saved
- DELETE /wishlist/{product_id}/ - Remove a saved product
- POST   /wishlist/check/ - Saved state for several products
- POST   /wishlist/migrate/ - Save the products a guest collected before sign-in
"""
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.identity import request_customer_id
from . import services
from .serializers import ProductIdsSerializer, WishlistItemSerializer
from .services import WishlistError


def _wishlist_error(e: WishlistError) -> Response:
    return Response({'error': 'Wishlist Error', 'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)


class WishlistView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        items = services.wishlist_items(request_customer_id(request))
        return Response({
            'count': items.count(),
            'items': WishlistItemSerializer(items, many=True).data,
        })

    def post(self, request):
        try:
            product_id = int(request.data.get('product_id'))
        except (TypeError, ValueError):
            return Response(
                {'error': 'Wishlist Error', 'detail': 'product_id is required'},
                status=status.HTTP_400_BAD_REQUEST
            )
        try:
            created = services.add_to_wishlist(request_customer_id(request), product_id)
        except WishlistError as e:
            return _wishlist_error(e)
        return Response(
            {'product_id': product_id, 'added': created},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )


class WishlistItemView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, product_id):
        in_wishlist = services.is_in_wishlist(request_customer_id(request), product_id)
        return Response({'product_id': product_id, 'in_wishlist': in_wishlist})

    def delete(self, request, product_id):
        if not services.remove_from_wishlist(request_customer_id(request), product_id):
            return Response(
                {'error': 'Not Found', 'detail': f"Product {product_id} is not in your wishlist"},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(status=status.HTTP_204_NO_CONTENT)


class WishlistCheckView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ProductIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.batch_check(request_customer_id(request), serializer.validated_data['product_ids'])
        return Response({str(pid): saved for pid, saved in result.items()})


class WishlistMigrateView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ProductIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = services.migrate_guest_wishlist(
                request_customer_id(request), serializer.validated_data['product_ids']
            )
        except WishlistError as e:
            return _wishlist_error(e)
        return Response(result)
