"""
Drop cached coupon listings whenever a coupon changes.
"""
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import Coupon
from .services import available_coupon_cache


@receiver(post_save, sender=Coupon)
@receiver(post_delete, sender=Coupon)
def invalidate_available_coupons(sender, **kwargs):
    available_coupon_cache.invalidate_all()
