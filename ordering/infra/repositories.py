"""
Infrastructure repositories for domain entities.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.db import IntegrityError, transaction
from django.db.models import Prefetch

from ordering.domain.actor import Actor, Role
from ordering.domain.cart import CartLine, CartSnapshot
from ordering.domain.errors import (
    AddressNotFound,
    CatalogItemNotFound,
    DocumentNumberTaken,
    InvoiceAlreadyExists,
    InvoiceNotFound,
    OrderNotFound,
)
from ordering.domain.invoice import Invoice, InvoiceStatus
from ordering.domain.notification import Recipient
from ordering.domain.order import ItemStatus, Order, OrderItem, OrderStatus, PaymentStatus
from ordering.domain.pricing import CatalogItem, PriceTier, PriceType
from ordering.infra.models import (
    AddressORM,
    CartItemORM,
    CartORM,
    CatalogItemORM,
    CustomerORM,
    InvoiceORM,
    OrderItemORM,
    OrderORM,
)


logger = logging.getLogger(__name__)


class CustomerRepository:
    """Repository for customers (identity collaborator)."""

    def get_by_id(self, customer_id: UUID) -> CustomerORM | None:
        return CustomerORM.objects.filter(id=customer_id).first()

    def get_actor(self, customer_id: UUID) -> Actor | None:
        customer = self.get_by_id(customer_id)
        if customer is None:
            return None
        return Actor(
            id=customer.id,
            role=Role(customer.role),
            name=customer.name,
            email=customer.email,
        )

    def create(self, name: str, email: str = "", role: Role = Role.CUSTOMER) -> UUID:
        customer = CustomerORM.objects.create(name=name, email=email, role=role.value)
        return customer.id

    def admin_recipients(self) -> list[Recipient]:
        """Every administrator with an address on file."""
        admins = (
            CustomerORM.objects
            .filter(role=Role.ADMIN.value)
            .exclude(email="")
            .order_by("created_at")
        )
        return [
            Recipient(email=admin.email, name=admin.name, customer_id=admin.id)
            for admin in admins
        ]


class CatalogRepository:
    """Read access to catalog items and their price tiers."""

    def get_item(self, item_id: UUID) -> CatalogItem:
        try:
            item = (
                CatalogItemORM.objects
                .prefetch_related("price_tiers")
                .get(id=item_id, is_active=True)
            )
        except CatalogItemORM.DoesNotExist:
            raise CatalogItemNotFound(f"Catalog item {item_id} not found") from None

        return CatalogItem(
            id=item.id,
            name=item.name,
            base_price=item.base_price,
            wholesale_price=item.wholesale_price,
            minimum_order_quantity=item.minimum_order_quantity,
            price_tiers=tuple(
                PriceTier(minimum_quantity=tier.minimum_quantity, price=tier.price)
                for tier in item.price_tiers.all()
            ),
        )


class AddressRepository:
    """Read access to the address book."""

    def get_address(self, address_id: UUID, owner_id: UUID) -> AddressORM:
        """Address owned by ``owner_id``; someone else's address is not found."""
        address = AddressORM.objects.filter(id=address_id, customer_id=owner_id).first()
        if address is None:
            raise AddressNotFound(f"Address {address_id} not found")
        return address

    def get_by_id(self, address_id: UUID) -> AddressORM | None:
        return AddressORM.objects.filter(id=address_id).first()


class CartRepository:
    """Repository for shopping carts."""

    def add_line(
        self,
        customer_id: UUID,
        catalog_item_id: UUID,
        quantity: int,
        price_type: PriceType,
    ) -> CartSnapshot:
        """Add units to the cart, merging with an existing line of the same kind."""
        cart, _ = CartORM.objects.get_or_create(customer_id=customer_id)
        line = (
            CartItemORM.objects
            .select_for_update()
            .filter(cart=cart, catalog_item_id=catalog_item_id, price_type=price_type.value)
            .first()
        )
        if line is None:
            CartItemORM.objects.create(
                cart=cart,
                catalog_item_id=catalog_item_id,
                quantity=quantity,
                price_type=price_type.value,
            )
        else:
            line.quantity += quantity
            line.save(update_fields=["quantity", "updated_at"])
        return self.snapshot(customer_id)

    def quantity_in_cart(self, customer_id: UUID, catalog_item_id: UUID, price_type: PriceType) -> int:
        line = CartItemORM.objects.filter(
            cart__customer_id=customer_id,
            catalog_item_id=catalog_item_id,
            price_type=price_type.value,
        ).first()
        return line.quantity if line else 0

    def snapshot(self, customer_id: UUID, lock: bool = False) -> CartSnapshot:
        """
        Current cart lines, oldest first.

        With ``lock`` the lines stay locked until the surrounding transaction
        ends.
        """
        lines = CartItemORM.objects.filter(cart__customer_id=customer_id).order_by("created_at", "id")
        if lock:
            lines = lines.select_for_update()
        return CartSnapshot(
            customer_id=customer_id,
            lines=tuple(
                CartLine(
                    id=line.id,
                    catalog_item_id=line.catalog_item_id,
                    quantity=line.quantity,
                    price_type=PriceType(line.price_type),
                )
                for line in lines
            ),
        )

    def delete_lines(self, snapshot: CartSnapshot) -> int:
        """Delete exactly the lines captured in ``snapshot``."""
        deleted, _ = CartItemORM.objects.filter(
            cart__customer_id=snapshot.customer_id,
            id__in=[line.id for line in snapshot.lines],
        ).delete()
        return deleted


class OrderRepository:
    """Repository for Order aggregate."""

    def number_exists(self, order_number: str) -> bool:
        return OrderORM.objects.filter(order_number=order_number).exists()

    def get(self, order_id: UUID, for_update: bool = False) -> Order:
        """Get order with items; ``for_update`` locks the order row."""
        queryset = self._queryset()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            order_orm = queryset.get(id=order_id)
        except OrderORM.DoesNotExist:
            raise OrderNotFound(f"Order {order_id} not found") from None
        return self._to_domain(order_orm)

    def list_for_customer(self, customer_id: UUID, limit: int = 20, offset: int = 0) -> list[Order]:
        """Orders of one customer, newest first."""
        orders_orm = (
            self._queryset()
            .filter(customer_id=customer_id)
            .order_by("-order_date")[offset:offset + limit]
        )
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    def list_all(
        self,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Order]:
        orders_orm = self._queryset()
        if status is not None:
            orders_orm = orders_orm.filter(status=status.value)
        if payment_status is not None:
            orders_orm = orders_orm.filter(payment_status=payment_status.value)
        orders_orm = orders_orm.order_by("-order_date")[offset:offset + limit]
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    def create(self, order: Order) -> UUID:
        """Insert a new order and its lines."""
        try:
            with transaction.atomic():
                order_orm = OrderORM.objects.create(
                    id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    status=order.status.value,
                    payment_status=order.payment_status.value,
                    subtotal=order.subtotal,
                    tax_amount=order.tax_amount,
                    shipping_amount=order.shipping_amount,
                    discount_amount=order.discount_amount,
                    final_amount=order.final_amount,
                    shipping_address_id=order.shipping_address_id,
                    shipping_method=order.shipping_method,
                    payment_method=order.payment_method,
                    order_date=order.order_date,
                    customer_notes=order.customer_notes,
                )
                OrderItemORM.objects.bulk_create([
                    OrderItemORM(
                        id=item.id,
                        order=order_orm,
                        catalog_item_id=item.catalog_item_id,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_amount=item.total_amount,
                        status=item.status.value,
                    )
                    for item in order.items
                ])
        except IntegrityError:
            # Lost a race on the unique order number.
            if self.number_exists(order.order_number):
                raise DocumentNumberTaken(f"Order number {order.order_number} is taken") from None
            raise
        return order_orm.id

    @transaction.atomic
    def save_state(self, order: Order) -> None:
        """Persist status-side fields. Amounts and lines are never rewritten."""
        OrderORM.objects.filter(id=order.id).update(
            status=order.status.value,
            payment_status=order.payment_status.value,
            shipped_date=order.shipped_date,
            delivered_date=order.delivered_date,
            payment_date=order.payment_date,
            admin_notes=order.admin_notes,
            tracking_number=order.tracking_number,
            payment_reference=order.payment_reference,
        )
        by_status: dict[ItemStatus, list[UUID]] = {}
        for item in order.items:
            by_status.setdefault(item.status, []).append(item.id)
        for item_status, item_ids in by_status.items():
            OrderItemORM.objects.filter(order_id=order.id, id__in=item_ids).update(status=item_status.value)

    def _queryset(self):
        return OrderORM.objects.prefetch_related(
            Prefetch(
                "items",
                queryset=OrderItemORM.objects.select_related("catalog_item").order_by("created_at", "id"),
            )
        )

    def _to_domain(self, order_orm: OrderORM) -> Order:
        """Convert ORM model to domain entity."""
        items = [
            OrderItem(
                id=item_orm.id,
                catalog_item_id=item_orm.catalog_item_id,
                name=item_orm.catalog_item.name,
                quantity=item_orm.quantity,
                unit_price=item_orm.unit_price,
                status=ItemStatus(item_orm.status),
            )
            for item_orm in order_orm.items.all()
        ]
        return Order(
            id=order_orm.id,
            customer_id=order_orm.customer_id,
            order_number=order_orm.order_number,
            items=items,
            shipping_address_id=order_orm.shipping_address_id,
            payment_method=order_orm.payment_method,
            subtotal=order_orm.subtotal,
            tax_amount=order_orm.tax_amount,
            shipping_amount=order_orm.shipping_amount,
            discount_amount=order_orm.discount_amount,
            final_amount=order_orm.final_amount,
            order_date=order_orm.order_date,
            status=OrderStatus(order_orm.status),
            payment_status=PaymentStatus(order_orm.payment_status),
            shipping_method=order_orm.shipping_method,
            customer_notes=order_orm.customer_notes,
            admin_notes=order_orm.admin_notes,
            tracking_number=order_orm.tracking_number,
            payment_reference=order_orm.payment_reference,
            shipped_date=order_orm.shipped_date,
            delivered_date=order_orm.delivered_date,
            payment_date=order_orm.payment_date,
        )


class InvoiceRepository:
    """Repository for invoices."""

    def number_exists(self, invoice_number: str) -> bool:
        return InvoiceORM.objects.filter(invoice_number=invoice_number).exists()

    def exists_for_order(self, order_id: UUID) -> bool:
        return InvoiceORM.objects.filter(order_id=order_id).exists()

    def create(self, invoice: Invoice) -> UUID:
        try:
            with transaction.atomic():
                invoice_orm = InvoiceORM.objects.create(
                    id=invoice.id,
                    order_id=invoice.order_id,
                    invoice_number=invoice.invoice_number,
                    issue_date=invoice.issue_date,
                    due_date=invoice.due_date,
                    amount=invoice.amount,
                    tax_amount=invoice.tax_amount,
                    status=invoice.status.value,
                    payment_method=invoice.payment_method,
                    payment_reference=invoice.payment_reference,
                    notes=invoice.notes,
                )
        except IntegrityError:
            # Lost a race on one of the unique constraints.
            if self.exists_for_order(invoice.order_id):
                raise InvoiceAlreadyExists(f"Invoice already exists for order {invoice.order_id}") from None
            if self.number_exists(invoice.invoice_number):
                raise DocumentNumberTaken(f"Invoice number {invoice.invoice_number} is taken") from None
            raise
        return invoice_orm.id

    def get(self, invoice_id: UUID, for_update: bool = False) -> Invoice:
        queryset = InvoiceORM.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return self._to_domain(queryset.get(id=invoice_id))
        except InvoiceORM.DoesNotExist:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found") from None

    def get_for_order(self, order_id: UUID) -> Invoice | None:
        invoice_orm = InvoiceORM.objects.filter(order_id=order_id).first()
        return self._to_domain(invoice_orm) if invoice_orm else None

    def save(self, invoice: Invoice) -> None:
        InvoiceORM.objects.filter(id=invoice.id).update(
            status=invoice.status.value,
            payment_method=invoice.payment_method,
            payment_reference=invoice.payment_reference,
            payment_date=invoice.payment_date,
            notes=invoice.notes,
        )

    def find(
        self,
        status: InvoiceStatus | None = None,
        order_id: UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Invoice]:
        invoices = InvoiceORM.objects.all()
        if status is not None:
            invoices = invoices.filter(status=status.value)
        if order_id is not None:
            invoices = invoices.filter(order_id=order_id)
        invoices = invoices.order_by("-issue_date")[offset:offset + limit]
        return [self._to_domain(invoice_orm) for invoice_orm in invoices]

    def _to_domain(self, invoice_orm: InvoiceORM) -> Invoice:
        return Invoice(
            id=invoice_orm.id,
            order_id=invoice_orm.order_id,
            invoice_number=invoice_orm.invoice_number,
            issue_date=invoice_orm.issue_date,
            due_date=invoice_orm.due_date,
            amount=invoice_orm.amount,
            tax_amount=invoice_orm.tax_amount,
            status=InvoiceStatus(invoice_orm.status),
            payment_method=invoice_orm.payment_method,
            payment_reference=invoice_orm.payment_reference,
            notes=invoice_orm.notes,
            payment_date=invoice_orm.payment_date,
        )
