"""
URL routing for review API endpoints.
"""
from django.urls import path
from . import views

app_name = 'reviews'

urlpatterns = [
    path('products/<int:product_id>/reviews/', views.ProductReviewsView.as_view(), name='product-reviews'),
    path(
        'products/<int:product_id>/reviews/eligibility/',
        views.ReviewEligibilityView.as_view(),
        name='review-eligibility'
    ),
    path('reviews/mine/', views.MyReviewsView.as_view(), name='review-mine'),
    path('reviews/moderation/', views.AdminReviewListView.as_view(), name='review-moderation'),
    path('reviews/moderation/stats/', views.AdminReviewStatsView.as_view(), name='review-stats'),
    path('reviews/moderation/bulk/', views.AdminReviewBulkModerateView.as_view(), name='review-bulk-moderate'),
    path('reviews/moderation/<int:pk>/', views.AdminReviewModerateView.as_view(), name='review-moderate'),
    path('reviews/<int:pk>/', views.ReviewDetailView.as_view(), name='review-detail'),
    path('reviews/<int:pk>/helpful/', views.ReviewHelpfulView.as_view(), name='review-helpful'),
]
