from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.exceptions import DomainError, domain_error_response
from common.mixins import ChangeFeedMutationMixin
from common.permissions import RoleCapabilityPermission
from common.utils import uuid_query_param
from inventory.models import InventoryLog, Product, Supplier, SupplierPurchase
from inventory.serializers import (
    InventoryLogSerializer,
    ProductSerializer,
    StockAdjustmentSerializer,
    SupplierPurchaseCreateSerializer,
    SupplierPurchaseSerializer,
    SupplierSerializer,
)
from inventory.services import adjust_stock as apply_stock_adjustment
from inventory.services import low_stock_products, record_supplier_purchase


class ProductViewSet(ChangeFeedMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "barcode": "catalog.view",
        "low_stock": "catalog.view",
        "categories": "catalog.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.manage",
        "adjust_stock": "catalog.manage",
        "logs": "catalog.manage",
    }
    change_entity = "product"
    audit_entity = "product"

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("search"):
            search = params["search"]
            queryset = queryset.filter(Q(name__icontains=search) | Q(barcode__iexact=search))
        if params.get("category"):
            queryset = queryset.filter(category__iexact=params["category"])
        if params.get("in_stock") in {"1", "true"}:
            queryset = queryset.filter(stock__gt=0)
        return queryset

    @action(detail=False, methods=["get"], url_path=r"barcode/(?P<code>[^/]+)")
    def barcode(self, request, code=None):
        product = Product.objects.filter(barcode=code).first()
        if product is None:
            raise NotFound("No product with this barcode.")
        return Response(self.get_serializer(product).data)

    @action(detail=False, methods=["get"], url_path="low-stock", pagination_class=None)
    def low_stock(self, request):
        return Response(self.get_serializer(low_stock_products(), many=True).data)

    @action(detail=False, methods=["get"], url_path="categories", pagination_class=None)
    def categories(self, request):
        names = Product.objects.exclude(category="").order_by("category").values_list("category", flat=True).distinct()
        return Response(list(names))

    @action(detail=True, methods=["post"], url_path="adjust-stock")
    def adjust_stock(self, request, pk=None):
        product = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_stock = product.stock
        result = apply_stock_adjustment(
            product,
            serializer.validated_data["delta"],
            note=serializer.validated_data["note"],
            user=request.user,
        )
        if isinstance(result, DomainError):
            return domain_error_response(result)

        self._audit(
            action="product.adjust_stock",
            instance=result,
            before_snapshot={"stock": before_stock},
            after_snapshot={"stock": result.stock},
        )
        return Response(self.get_serializer(result).data)

    @action(detail=True, methods=["get"], url_path="logs")
    def logs(self, request, pk=None):
        product = self.get_object()
        queryset = InventoryLog.objects.filter(product=product).select_related("product").order_by("-created_at")
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(InventoryLogSerializer(page, many=True).data)
        return Response(InventoryLogSerializer(queryset, many=True).data)


class SupplierViewSet(ChangeFeedMutationMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.all()
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        action: "suppliers.manage" for action in ["list", "retrieve", "create", "update", "partial_update", "destroy"]
    }
    change_entity = "supplier"
    audit_entity = "supplier"


class SupplierPurchaseViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = SupplierPurchase.objects.select_related("supplier").prefetch_related("items").order_by("-created_at")
    serializer_class = SupplierPurchaseSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {action: "suppliers.manage" for action in ["list", "retrieve", "create"]}

    def get_queryset(self):
        queryset = super().get_queryset()
        supplier_id = uuid_query_param(self.request.query_params, "supplier")
        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = SupplierPurchaseCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = record_supplier_purchase(
            supplier=serializer.validated_data["supplier"],
            lines=serializer.purchase_lines(),
            is_paid=serializer.validated_data["is_paid"],
            user=request.user,
        )
        if isinstance(result, DomainError):
            return domain_error_response(result)

        payload = SupplierPurchaseSerializer(self.get_queryset().get(id=result.id)).data
        create_audit_log_from_request(
            request,
            action="supplier_purchase.create",
            entity="supplier_purchase",
            entity_id=result.id,
            after_snapshot=payload,
        )
        return Response(payload, status=status.HTTP_201_CREATED)
