"""
Order service: priced orders with per-line Swiss VAT.
"""

import logging
from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.customer import Customer
from ..models.order import Order, OrderItem, OrderStatus
from ..models.organization import Organization
from ..models.payment import CAPTURED_STATUSES, Payment, PaymentStatus, Refund
from ..schemas.order import OrderCreate
from ..utils.clock import day_bounds
from ..utils.exceptions import InvalidStateError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.money import calculate_tax, generate_order_number

logger = logging.getLogger(__name__)


class OrderService:
    """Service class for order operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_order(self, org: Organization, data: OrderCreate, created_by: Optional[UUID] = None) -> Order:
        """
        Create a pending order.

        Each line is priced as ``quantity * unit_price`` and taxed at its own
        rate (or the organization's), inclusive or exclusive. Order totals are
        the sums of the lines.

        Args:
            org: Selling organization
            data: Order lines and customer data

        Returns:
            The created order with its items

        Raises:
            ValidationError: No items
            ResourceNotFoundError: Unknown customer
        """
        if not data.items:
            raise ValidationError("An order needs at least one item", field_errors={"items": ["empty"]})

        customer = None
        if data.customer_id:
            customer = await self.db.get(Customer, data.customer_id)
            if customer is None or customer.org_id != org.id:
                raise ResourceNotFoundError("customer", data.customer_id)

        order = Order(
            org_id=org.id,
            customer_id=data.customer_id,
            location_id=data.location_id,
            order_number=generate_order_number(),
            channel=data.channel,
            status=OrderStatus.PENDING,
            currency=org.currency,
            paid_cents=0,
            refunded_cents=0,
            customer_name=data.customer_name or (customer.full_name if customer else None),
            customer_email=data.customer_email or (customer.email if customer else None),
            billing_address=data.billing_address or self._address_of(customer),
            notes=data.notes,
            extra=dict(data.metadata),
        )

        subtotal = tax_total = total = 0
        for position, item in enumerate(data.items):
            rate = item.tax_rate if item.tax_rate is not None else org.vat_rate
            line = item.quantity * item.unit_price_cents
            breakdown = calculate_tax(line, rate, item.tax_inclusive)

            order.items.append(OrderItem(
                position=position,
                item_type=item.item_type,
                name=item.name,
                description=item.description,
                sku=item.sku,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                total_price_cents=line,
                tax_rate=rate,
                tax_amount_cents=breakdown.tax_cents,
                tax_inclusive=item.tax_inclusive,
                occurrence_id=item.occurrence_id,
                instructor_id=item.instructor_id,
            ))
            subtotal += breakdown.subtotal_cents
            tax_total += breakdown.tax_cents
            total += breakdown.total_cents

        order.subtotal_cents = subtotal
        order.tax_total_cents = tax_total
        order.total_cents = total

        self.db.add(order)
        await self.db.flush()

        log_business_event(
            "order_created",
            {"order_id": str(order.id), "order_number": order.order_number, "total_cents": total},
            str(created_by) if created_by else None
        )
        return order

    async def get_order(self, org_id: UUID, order_id: UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org_id:
            raise ResourceNotFoundError("order", order_id)
        return order

    async def lock_order(self, org_id: UUID, order_id: UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id, Order.org_id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise ResourceNotFoundError("order", order_id)
        return order

    async def get_order_details(self, org_id: UUID, order_id: UUID) -> Tuple[Order, List[Payment], List[Refund]]:
        """Order together with its payments and refunds, oldest first."""
        order = await self.get_order(org_id, order_id)
        payments = await self.db.execute(
            select(Payment).where(Payment.order_id == order.id).order_by(Payment.created_at)
        )
        refunds = await self.db.execute(
            select(Refund).where(Refund.order_id == order.id).order_by(Refund.created_at)
        )
        return order, list(payments.scalars().all()), list(refunds.scalars().all())

    async def list_orders(
        self,
        org_id: UUID,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Order], int]:
        query = select(Order).where(Order.org_id == org_id)
        if status:
            query = query.where(Order.status == status)
        if customer_id:
            query = query.where(Order.customer_id == customer_id)
        if date_from or date_to:
            lower, upper = day_bounds(date_from or date.min, date_to or date.max)
            if date_from:
                query = query.where(Order.created_at >= lower)
            if date_to:
                query = query.where(Order.created_at <= upper)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Order.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def cancel_order(self, org_id: UUID, order_id: UUID, reason: Optional[str] = None) -> Order:
        """
        Cancel a pending order along with its pending or authorized payments.

        Raises:
            InvalidStateError: Order is not pending, or money was already captured
        """
        order = await self.lock_order(org_id, order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidStateError("order", order.id, order.status.value, [OrderStatus.PENDING.value])

        captured = await self.db.scalar(
            select(func.count(Payment.id)).where(
                Payment.order_id == order.id,
                Payment.status.in_(CAPTURED_STATUSES),
            )
        )
        if captured or order.paid_cents:
            raise InvalidStateError("order", order.id, "paid", [OrderStatus.PENDING.value])

        open_payments = (await self.db.execute(
            select(Payment)
            .where(
                Payment.order_id == order.id,
                Payment.status.in_((PaymentStatus.PENDING, PaymentStatus.AUTHORIZED)),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalars().all()
        for payment in open_payments:
            payment.status = PaymentStatus.CANCELLED
            payment.failure_reason = "order cancelled"

        order.status = OrderStatus.CANCELLED
        if reason:
            order.extra = {**(order.extra or {}), "cancellation_reason": reason}
        await self.db.flush()

        logger.info(f"Cancelled order {order.order_number} and {len(open_payments)} open payment(s)")
        return order

    def _address_of(self, customer: Optional[Customer]):
        if customer is None or not (customer.street or customer.city):
            return None
        return {
            "name": customer.full_name,
            "street": customer.street,
            "building_number": customer.building_number,
            "postal_code": customer.postal_code,
            "town": customer.city,
            "country": customer.country,
        }
