"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('orders/', views.OrderListView.as_view(), name='order-list'),
    path('orders/checkout/', views.CheckoutView.as_view(), name='order-checkout'),
    path('orders/lookup/', views.GuestOrderLookupView.as_view(), name='order-lookup'),
    path('orders/guest/', views.GuestOrderListView.as_view(), name='order-guest-list'),
    path('orders/stats/', views.OrderStatsView.as_view(), name='order-stats'),
    path('orders/resolve/<str:reference>/', views.OrderResolveView.as_view(), name='order-resolve'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/cancel/', views.OrderCancelView.as_view(), name='order-cancel'),
    path('orders/<int:pk>/modifications/', views.ModificationRequestView.as_view(), name='order-modify'),
    path('orders/<int:pk>/status/', views.OrderStatusUpdateView.as_view(), name='order-status'),
]
