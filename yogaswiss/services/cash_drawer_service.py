"""
Cash drawer sessions for the front desk till.

Cash sales and refunds are rounded to 5 Rappen; the rounding difference is
tracked per transaction and summed on the drawer for the Z report.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.cash_drawer import CashDrawer, CashTransaction, CashTransactionType, DrawerStatus
from ..models.location import Location
from ..models.organization import Organization
from ..schemas.finance import CashTransactionCreate, DrawerOpen, ZReport
from ..utils.clock import utcnow
from ..utils.exceptions import DrawerClosedError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.money import round_to_five_rappen

logger = logging.getLogger(__name__)

ROUNDED_TYPES = (CashTransactionType.SALE, CashTransactionType.REFUND)
INFLOW_TYPES = (CashTransactionType.SALE, CashTransactionType.DEPOSIT)


class CashDrawerService:
    """Open, use and close cash drawers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def open_drawer(self, org_id: UUID, data: DrawerOpen, operator_id: Optional[UUID] = None) -> CashDrawer:
        """
        Start a drawer session with an opening float.

        Raises:
            ValidationError: A drawer with this name is already open at the location
        """
        if data.location_id:
            location = await self.db.get(Location, data.location_id)
            if location is None or location.org_id != org_id:
                raise ResourceNotFoundError("location", data.location_id)

        query = select(CashDrawer.id).where(
            CashDrawer.org_id == org_id,
            CashDrawer.name == data.name,
            CashDrawer.status == DrawerStatus.OPEN,
        )
        if data.location_id:
            query = query.where(CashDrawer.location_id == data.location_id)
        else:
            query = query.where(CashDrawer.location_id.is_(None))
        if (await self.db.execute(query)).first():
            raise ValidationError(
                f"Drawer '{data.name}' is already open at this location",
                field_errors={"name": ["already open"]}
            )

        drawer = CashDrawer(
            org_id=org_id,
            location_id=data.location_id,
            name=data.name,
            operator_id=operator_id,
            status=DrawerStatus.OPEN,
            opening_float_cents=data.opening_float_cents,
            current_balance_cents=data.opening_float_cents,
            total_sales_cents=0,
            total_refunds_cents=0,
            total_payouts_cents=0,
            total_deposits_cents=0,
            total_rounding_cents=0,
            transaction_count=0,
            opened_at=utcnow(),
        )
        self.db.add(drawer)
        await self.db.flush()

        logger.info(f"Opened drawer {drawer.id} '{drawer.name}' with float {drawer.opening_float_cents}")
        return drawer

    async def record_transaction(
        self,
        org_id: UUID,
        drawer_id: UUID,
        data: CashTransactionCreate,
        created_by: Optional[UUID] = None
    ) -> Tuple[CashDrawer, CashTransaction]:
        """
        Book a cash movement on an open drawer.

        Raises:
            DrawerClosedError: The drawer is closed
            ValidationError: A payout or refund would take the drawer below zero
        """
        drawer = await self._lock(org_id, drawer_id)
        if drawer.status != DrawerStatus.OPEN:
            raise DrawerClosedError(drawer.id)

        amount, adjustment = data.amount_cents, 0
        if data.transaction_type in ROUNDED_TYPES:
            amount, adjustment = round_to_five_rappen(data.amount_cents)
            if amount <= 0:
                raise ValidationError("Amount rounds to zero", details={"amount_cents": data.amount_cents})

        if data.transaction_type in INFLOW_TYPES:
            new_balance = drawer.current_balance_cents + amount
        else:
            new_balance = drawer.current_balance_cents - amount
        if new_balance < 0:
            raise ValidationError(
                "Not enough cash in the drawer",
                details={"balance_cents": drawer.current_balance_cents, "amount_cents": amount}
            )

        transaction = CashTransaction(
            org_id=org_id,
            drawer_id=drawer.id,
            transaction_type=data.transaction_type,
            amount_cents=amount,
            rounding_adjustment_cents=adjustment,
            description=data.description,
            customer_name=data.customer_name,
            order_id=data.order_id,
            created_by=created_by,
        )
        self.db.add(transaction)

        drawer.current_balance_cents = new_balance
        drawer.transaction_count += 1
        # Refund rounding pays out, so its sign flips
        drawer.total_rounding_cents += adjustment if data.transaction_type == CashTransactionType.SALE else -adjustment
        if data.transaction_type == CashTransactionType.SALE:
            drawer.total_sales_cents += amount
        elif data.transaction_type == CashTransactionType.REFUND:
            drawer.total_refunds_cents += amount
        elif data.transaction_type == CashTransactionType.PAYOUT:
            drawer.total_payouts_cents += amount
        else:
            drawer.total_deposits_cents += amount

        await self.db.flush()
        return drawer, transaction

    async def close_drawer(
        self,
        org_id: UUID,
        drawer_id: UUID,
        counted_cash_cents: int,
        closed_by: Optional[UUID] = None
    ) -> Tuple[CashDrawer, ZReport]:
        """
        Close a drawer and produce its Z report.

        The Z number comes from the organization's counter (``Z-<seq>``) and
        the variance is counted cash minus the expected balance.
        """
        drawer = await self._lock(org_id, drawer_id)
        if drawer.status != DrawerStatus.OPEN:
            raise DrawerClosedError(drawer.id)

        result = await self.db.execute(
            select(Organization)
            .where(Organization.id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        org = result.scalar_one()
        org.z_report_sequence += 1

        drawer.status = DrawerStatus.CLOSED
        drawer.closed_at = utcnow()
        drawer.counted_cash_cents = counted_cash_cents
        drawer.variance_cents = counted_cash_cents - drawer.current_balance_cents
        drawer.z_report_number = f"Z-{org.z_report_sequence}"
        await self.db.flush()

        report = ZReport(
            z_report_number=drawer.z_report_number,
            drawer_id=drawer.id,
            drawer_name=drawer.name,
            opened_at=drawer.opened_at,
            closed_at=drawer.closed_at,
            opening_float_cents=drawer.opening_float_cents,
            total_sales_cents=drawer.total_sales_cents,
            total_refunds_cents=drawer.total_refunds_cents,
            total_payouts_cents=drawer.total_payouts_cents,
            total_deposits_cents=drawer.total_deposits_cents,
            total_rounding_cents=drawer.total_rounding_cents,
            transaction_count=drawer.transaction_count,
            expected_cash_cents=drawer.current_balance_cents,
            counted_cash_cents=counted_cash_cents,
            variance_cents=drawer.variance_cents,
        )

        log_business_event(
            "cash_drawer_closed",
            {"drawer_id": str(drawer.id), "z_report": drawer.z_report_number, "variance_cents": drawer.variance_cents},
            str(closed_by) if closed_by else None
        )
        return drawer, report

    async def get_drawer(self, org_id: UUID, drawer_id: UUID) -> CashDrawer:
        drawer = await self.db.get(CashDrawer, drawer_id)
        if drawer is None or drawer.org_id != org_id:
            raise ResourceNotFoundError("cash_drawer", drawer_id)
        return drawer

    async def list_drawers(
        self,
        org_id: UUID,
        location_id: Optional[UUID] = None,
        status: Optional[DrawerStatus] = None
    ) -> List[CashDrawer]:
        query = select(CashDrawer).where(CashDrawer.org_id == org_id)
        if location_id:
            query = query.where(CashDrawer.location_id == location_id)
        if status:
            query = query.where(CashDrawer.status == status)
        result = await self.db.execute(query.order_by(CashDrawer.opened_at.desc()))
        return list(result.scalars().all())

    async def _lock(self, org_id: UUID, drawer_id: UUID) -> CashDrawer:
        result = await self.db.execute(
            select(CashDrawer)
            .where(CashDrawer.id == drawer_id, CashDrawer.org_id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        drawer = result.scalar_one_or_none()
        if drawer is None:
            raise ResourceNotFoundError("cash_drawer", drawer_id)
        return drawer
