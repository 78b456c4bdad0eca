"""
Inventory API Views.

Implements:
- CRUD operations for Category and Product
- Product search with keyword and price filters
- Stock listing with typed filters, stock adjustment and low-stock report

Stock quantities are never written through a serializer; the adjust
endpoint goes through the ledger so reserved units stay covered.
"""
import logging
from decimal import Decimal

from django.db.models import F, Q
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser
from rest_framework.views import APIView
from rest_framework.response import Response

from core.query import Query, QueryError, to_bool
from . import services
from .models import Category, Product, InventoryRecord
from .serializers import (
    CategorySerializer,
    ProductSerializer,
    InventoryRecordSerializer,
    InventoryCreateSerializer,
    StockAdjustmentSerializer,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Category Views
# =============================================================================

class CategoryListCreateView(generics.ListCreateAPIView):
    """
    GET: List all categories
    POST: Create a new category
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer


class CategoryDetailView(generics.RetrieveUpdateDestroyAPIView):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer


# =============================================================================
# Product Views
# =============================================================================

class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List active products with category and availability
    POST: Create a new product

    Uses select_related to eliminate N+1 queries.
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        return Product.objects.select_related('category', 'inventory').filter(is_active=True)


class ProductDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = ProductSerializer

    def get_queryset(self):
        return Product.objects.select_related('category', 'inventory')


class ProductSearchView(generics.ListAPIView):
    """
    GET: Search products with keyword and filters.

    Query Parameters:
        - q: Keyword to search in name, description, material and category
        - category_id: Filter by category ID
        - min_price / max_price: Price range
        - in_stock: Only products with available units (true/false)
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related('category', 'inventory').filter(is_active=True)
        params = self.request.query_params

        keyword = params.get('q', '').strip()
        if keyword:
            queryset = queryset.filter(
                Q(name__icontains=keyword) |
                Q(description__icontains=keyword) |
                Q(material__icontains=keyword) |
                Q(category__name__icontains=keyword)
            )

        category_id = params.get('category_id')
        if category_id:
            queryset = queryset.filter(category_id=category_id)

        for param, lookup in (('min_price', 'price__gte'), ('max_price', 'price__lte')):
            value = params.get(param)
            if value:
                try:
                    queryset = queryset.filter(**{lookup: Decimal(value)})
                except ArithmeticError:
                    pass

        if params.get('in_stock', '').lower() == 'true':
            queryset = queryset.filter(
                inventory__stock_quantity__gt=F('inventory__reserved_quantity')
            )

        return queryset.order_by('name')


# =============================================================================
# Inventory Views
# =============================================================================

INVENTORY_FILTER_FIELDS = {
    'product_id': int,
    'product__name': str,
    'product__category_id': int,
    'product__is_active': to_bool,
    'stock_quantity': int,
    'reserved_quantity': int,
    'reorder_point': int,
    'updated_at': str,
}


class InventoryListCreateView(generics.ListCreateAPIView):
    """
    GET: List inventory records (admin)
    POST: Create the inventory record for a product

    Filters use the ``field__op=value`` form, e.g.
    ``?stock_quantity__lte=10&product__name__contains=ring&ordering=-updated_at``.
    """
    permission_classes = [IsAdminUser]

    def get_serializer_class(self):
        if self.request.method == 'GET':
            return InventoryRecordSerializer
        return InventoryCreateSerializer

    def get_queryset(self):
        queryset = InventoryRecord.objects.select_related('product', 'product__category')
        if self.request.method != 'GET':
            return queryset
        query = Query.from_params(self.request.query_params, INVENTORY_FILTER_FIELDS)
        return query.apply(queryset)

    def list(self, request, *args, **kwargs):
        try:
            return super().list(request, *args, **kwargs)
        except QueryError as e:
            return Response(
                {'error': 'Invalid filter', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )


class StockAdjustmentView(APIView):
    """
    POST: Restock or set the physical count for a product.

    Request Body:
        {"restock": 10}  or  {"set_stock": 25}
    """
    permission_classes = [IsAdminUser]

    def post(self, request, product_id):
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            if 'restock' in serializer.validated_data:
                services.restock(product_id, serializer.validated_data['restock'])
            else:
                services.set_stock(product_id, serializer.validated_data['set_stock'])
        except services.InventoryRecordNotFound as e:
            return Response(
                {'error': 'Not Found', 'detail': str(e)},
                status=status.HTTP_404_NOT_FOUND
            )
        except services.InventoryError as e:
            return Response(
                {'error': 'Stock Conflict', 'detail': str(e)},
                status=status.HTTP_409_CONFLICT
            )

        record = services.get_record(product_id)
        logger.info(f"Stock adjusted for product {product_id} by {request.user}")
        return Response(InventoryRecordSerializer(record).data)


class LowStockView(generics.ListAPIView):
    """GET: Records whose available quantity is at or below the reorder point."""
    permission_classes = [IsAdminUser]
    serializer_class = InventoryRecordSerializer
    pagination_class = None

    def get_queryset(self):
        return services.low_stock_records()
