"""
Drop a product's cached review listing whenever one of its reviews changes.
"""
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import ProductReview
from .services import approved_review_cache


@receiver(post_save, sender=ProductReview)
@receiver(post_delete, sender=ProductReview)
def invalidate_product_reviews(sender, instance, **kwargs):
    approved_review_cache.invalidate(instance.product_id)
