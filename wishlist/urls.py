"""
URL routing for wishlist API endpoints.
"""
from django.urls import path
from . import views

app_name = 'wishlist'

urlpatterns = [
    path('wishlist/', views.WishlistView.as_view(), name='wishlist'),
    path('wishlist/check/', views.WishlistCheckView.as_view(), name='wishlist-check'),
    path('wishlist/migrate/', views.WishlistMigrateView.as_view(), name='wishlist-migrate'),
    path('wishlist/<int:product_id>/', views.WishlistItemView.as_view(), name='wishlist-item'),
]
