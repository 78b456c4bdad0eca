"""
URL routing for coupon API endpoints.
"""
from django.urls import path
from . import views

app_name = 'coupons'

urlpatterns = [
    path('coupons/', views.CouponListCreateView.as_view(), name='coupon-list'),
    path('coupons/available/', views.AvailableCouponsView.as_view(), name='coupon-available'),
    path('coupons/validate/', views.CouponValidateView.as_view(), name='coupon-validate'),
    path('coupons/<int:pk>/', views.CouponDetailView.as_view(), name='coupon-detail'),
    path('coupons/<int:pk>/redemptions/', views.CouponRedemptionListView.as_view(), name='coupon-redemptions'),
]
