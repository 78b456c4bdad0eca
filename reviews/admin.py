from django.contrib import admin

from .models import ProductReview, ReviewHelpfulVote


@admin.register(ProductReview)
class ProductReviewAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'product', 'customer_id', 'rating', 'is_approved',
        'helpful_count', 'created_at'
    ]
    list_filter = ['is_approved', 'rating']
    search_fields = ['product__name', 'customer_id', 'title']
    raw_id_fields = ['product', 'order']
    readonly_fields = ['helpful_count', 'moderated_by', 'moderated_at', 'created_at', 'updated_at']


@admin.register(ReviewHelpfulVote)
class ReviewHelpfulVoteAdmin(admin.ModelAdmin):
    list_display = ['review', 'customer_id', 'is_helpful', 'created_at']
    raw_id_fields = ['review']
