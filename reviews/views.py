"""
Review API Views.

Storefront:
- GET  /products/{id}/reviews/ - Approved reviews and rating summary
- POST /products/{id}/reviews/ - Review a delivered product
- GET  /products/{id}/reviews/eligibility/ - Whether the caller may review it
- GET  /reviews/mine/ - The caller's reviews, approved or not
- PATCH, DELETE /reviews/{id}/ - Edit or remove an own review
- POST /reviews/{id}/helpful/ - Vote a review helpful or not

Admin:
- GET  /reviews/moderation/ - All reviews with ``field__op=value`` filters
- GET  /reviews/moderation/stats/ - Moderation dashboard counts
- POST /reviews/moderation/bulk/ - Approve or reject several
- POST, DELETE /reviews/moderation/{id}/ - Approve or reject one review, or remove it
"""
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.identity import request_customer_id
from core.query import QueryError
from core.rate_limiting import rate_limit
from . import services
from .serializers import (
    AdminReviewSerializer,
    BulkModerationSerializer,
    ModerationSerializer,
    ProductReviewSerializer,
    ReviewCreateSerializer,
    ReviewUpdateSerializer,
)
from .services import ReviewError, ReviewNotFound, ReviewPermissionDenied


def _review_error(e: ReviewError) -> Response:
    if isinstance(e, ReviewNotFound):
        return Response({'error': 'Review Not Found', 'detail': str(e)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(e, ReviewPermissionDenied):
        return Response({'error': 'Not Allowed', 'detail': str(e)}, status=status.HTTP_403_FORBIDDEN)
    return Response({'error': 'Invalid Review', 'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)


class ProductReviewsView(APIView):
    """
    GET: Approved reviews of a product.

    Query Parameters:
        - rating: Only reviews with this rating (1-5)
        - sort: newest (default), oldest, rating-high, rating-low, helpful
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsAuthenticated()]
        return []

    def get(self, request, product_id):
        try:
            listing = services.product_reviews(
                product_id,
                rating=request.query_params.get('rating'),
                sort_by=request.query_params.get('sort', 'newest'),
            )
        except ReviewError as e:
            return _review_error(e)
        return Response(listing)

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request, product_id):
        serializer = ReviewCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            review = services.create_review(
                request_customer_id(request),
                product_id,
                data['order_id'],
                data['rating'],
                title=data['title'],
                comment=data['comment'],
            )
        except ReviewError as e:
            return _review_error(e)
        return Response(ProductReviewSerializer(review).data, status=status.HTTP_201_CREATED)


class ReviewEligibilityView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, product_id):
        eligibility = services.review_eligibility(request_customer_id(request), product_id)
        existing = eligibility['existing_review']
        return Response({
            'can_review': eligibility['can_review'],
            'order_ids': eligibility['order_ids'],
            'existing_review': ProductReviewSerializer(existing).data if existing else None,
        })


class MyReviewsView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ProductReviewSerializer

    def get_queryset(self):
        return services.customer_reviews(request_customer_id(self.request))


class ReviewDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, pk):
        serializer = ReviewUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            review = services.update_review(request_customer_id(request), pk, **serializer.validated_data)
        except ReviewError as e:
            return _review_error(e)
        return Response(ProductReviewSerializer(review).data)

    def delete(self, request, pk):
        try:
            services.delete_review(request_customer_id(request), pk)
        except ReviewError as e:
            return _review_error(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ReviewHelpfulView(APIView):
    """
    POST: Vote on a review.

    Request Body:
        {"is_helpful": true}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        is_helpful = request.data.get('is_helpful')
        if not isinstance(is_helpful, bool):
            return Response(
                {'error': 'Invalid Vote', 'detail': 'is_helpful must be true or false'},
                status=status.HTTP_400_BAD_REQUEST
            )
        try:
            review = services.vote_helpful(request_customer_id(request), pk, is_helpful)
        except ReviewError as e:
            return _review_error(e)
        return Response({'id': review.pk, 'helpful_count': review.helpful_count})


class AdminReviewListView(generics.ListAPIView):
    """
    GET: Every review for moderation.

    Example: ``?is_approved=false&rating__lte=2&ordering=-created_at``
    """
    permission_classes = [IsAdminUser]
    serializer_class = AdminReviewSerializer

    def get_queryset(self):
        return services.admin_reviews(self.request.query_params)

    def list(self, request, *args, **kwargs):
        try:
            return super().list(request, *args, **kwargs)
        except QueryError as e:
            return Response(
                {'error': 'Invalid filter', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )


class AdminReviewStatsView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(services.review_statistics())


class AdminReviewModerateView(APIView):
    """
    POST: Approve or reject a review.
    DELETE: Remove it.

    Request Body:
        {"action": "approve", "notes": "optional"}
    """
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = ModerationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            review = services.moderate_review(
                pk, data['action'] == 'approve', request.user.get_username(), notes=data['notes']
            )
        except ReviewError as e:
            return _review_error(e)
        return Response(AdminReviewSerializer(review).data)

    def delete(self, request, pk):
        try:
            services.admin_delete_review(pk, request.user.get_username())
        except ReviewError as e:
            return _review_error(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class AdminReviewBulkModerateView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = BulkModerationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = services.bulk_moderate(
            data['review_ids'], data['action'] == 'approve', request.user.get_username()
        )
        return Response(result)
