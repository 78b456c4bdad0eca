"""
URL routing for cart API endpoints.
"""
from django.urls import path
from . import views

app_name = 'cart'

urlpatterns = [
    path('cart/', views.CartView.as_view(), name='cart-detail'),
    path('cart/items/', views.CartItemsView.as_view(), name='cart-items'),
    path('cart/items/<int:product_id>/', views.CartItemDetailView.as_view(), name='cart-item-detail'),
    path('cart/coupon/', views.CartCouponView.as_view(), name='cart-coupon'),
    path('cart/merge/', views.CartMergeView.as_view(), name='cart-merge'),
]
