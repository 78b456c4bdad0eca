"""
URL routing for payment callbacks.
"""
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('payments/verify/', views.PaymentVerifyView.as_view(), name='payment-verify'),
    path('payments/webhook/', views.PaymentWebhookView.as_view(), name='payment-webhook'),
]
