"""
Celery tasks for money housekeeping: expiries and overdue invoices.
"""

import logging

from .celery_app import celery_app, run_with_database
from ..database import get_db_session
from ..services.gift_card_service import GiftCardService
from ..services.invoice_service import InvoiceService
from ..services.payment_service import PaymentService
from ..services.wallet_service import WalletService

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_stale_payments_task")
def expire_stale_payments_task():
    """Fail pending TWINT payments whose QR code has expired."""
    async def _expire():
        async with get_db_session() as session:
            expired = await PaymentService(session).expire_stale_payments()
        return {"expired": expired}

    return run_with_database(_expire)


@celery_app.task(name="mark_overdue_invoices_task")
def mark_overdue_invoices_task():
    async def _mark():
        async with get_db_session() as session:
            overdue = await InvoiceService(session).mark_overdue_invoices()
        return {"overdue": overdue}

    return run_with_database(_mark)


@celery_app.task(name="expire_gift_cards_task")
def expire_gift_cards_task():
    async def _expire():
        async with get_db_session() as session:
            expired = await GiftCardService(session).expire_gift_cards()
        return {"expired": expired}

    return run_with_database(_expire)


@celery_app.task(name="expire_wallet_credits_task")
def expire_wallet_credits_task():
    """Write off class credits past their expiry date."""
    async def _expire():
        async with get_db_session() as session:
            wallets = await WalletService(session).expire_credits()
        if wallets:
            logger.info(f"Expired credits in {wallets} wallets")
        return {"wallets": wallets}

    return run_with_database(_expire)
