"""
Gift card service.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..models.customer import Customer
from ..models.gift_card import GiftCard, GiftCardStatus
from ..models.organization import Organization
from ..models.wallet import CustomerWallet, LedgerReferenceType
from ..schemas.gift_card import GiftCardCreate
from ..utils.clock import as_utc, utcnow
from ..utils.exceptions import GiftCardError, InvalidStateError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.money import generate_code

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class GiftCardService:
    """Issue, redeem and expire gift cards."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def create_gift_card(
        self,
        org: Organization,
        data: GiftCardCreate,
        order_id: Optional[UUID] = None,
        created_by: Optional[UUID] = None
    ) -> GiftCard:
        """
        Issue a gift card.

        A supplied code is uppercased and must be unused in the organization;
        otherwise a random code is generated.

        Raises:
            ValidationError: Duplicate code or unknown purchaser
        """
        if data.purchaser_customer_id:
            purchaser = await self.db.get(Customer, data.purchaser_customer_id)
            if purchaser is None or purchaser.org_id != org.id:
                raise ResourceNotFoundError("customer", data.purchaser_customer_id)

        if data.code:
            code = data.code.upper()
            if await self._find(org.id, code):
                raise ValidationError(f"Gift card code {code} already exists", field_errors={"code": ["already exists"]})
        else:
            code = await self._unique_code(org.id)

        card = GiftCard(
            org_id=org.id,
            code=code,
            initial_amount_cents=data.amount_cents,
            current_balance_cents=data.amount_cents,
            currency=org.currency,
            purchaser_customer_id=data.purchaser_customer_id,
            order_id=order_id,
            recipient_name=data.recipient_name,
            recipient_email=data.recipient_email,
            message=data.message,
            status=GiftCardStatus.ACTIVE,
            expires_at=as_utc(data.expires_at),
        )
        self.db.add(card)
        await self.db.flush()

        log_business_event(
            "gift_card_issued",
            {"gift_card_id": str(card.id), "amount_cents": card.initial_amount_cents},
            str(created_by) if created_by else None
        )
        return card

    async def get_by_code(self, org_id: UUID, code: str) -> GiftCard:
        card = await self._find(org_id, code.upper())
        if card is None:
            raise ResourceNotFoundError("gift_card", code.upper())
        return card

    async def list_gift_cards(
        self,
        org_id: UUID,
        status: Optional[GiftCardStatus] = None,
        purchaser_customer_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[GiftCard], int]:
        query = select(GiftCard).where(GiftCard.org_id == org_id)
        if status:
            query = query.where(GiftCard.status == status)
        if purchaser_customer_id:
            query = query.where(GiftCard.purchaser_customer_id == purchaser_customer_id)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(query.order_by(GiftCard.created_at.desc()).limit(limit).offset(offset))
        return list(result.scalars().all()), total or 0

    async def redeem(self, org_id: UUID, code: str, amount_cents: int) -> GiftCard:
        """
        Spend part or all of a card's balance.

        Raises:
            GiftCardError: Card not active, expired or short on balance
        """
        if amount_cents <= 0:
            raise ValidationError("Redeem amount must be positive", details={"amount_cents": amount_cents})

        card = await self._lock(org_id, code)
        self._check_usable(card)
        if amount_cents > card.current_balance_cents:
            raise GiftCardError(
                card.code,
                f"insufficient balance ({card.current_balance_cents} available)"
            )

        now = utcnow()
        card.current_balance_cents -= amount_cents
        card.first_use_at = card.first_use_at or now
        card.last_use_at = now
        if card.current_balance_cents == 0:
            card.status = GiftCardStatus.REDEEMED

        await self.db.flush()
        logger.info(f"Redeemed {amount_cents} from gift card {card.id}")
        return card

    async def restore(self, org_id: UUID, code: str, amount_cents: int) -> GiftCard:
        """Put refunded money back on a card, never above its initial amount."""
        card = await self._lock(org_id, code)
        if card.status in (GiftCardStatus.CANCELLED, GiftCardStatus.EXPIRED):
            raise GiftCardError(card.code, f"card is {card.status.value}")

        card.current_balance_cents = min(card.initial_amount_cents, card.current_balance_cents + amount_cents)
        if card.status == GiftCardStatus.REDEEMED and card.current_balance_cents > 0:
            card.status = GiftCardStatus.ACTIVE

        await self.db.flush()
        logger.info(f"Restored {amount_cents} to gift card {card.id}")
        return card

    async def redeem_to_wallet(
        self,
        org_id: UUID,
        code: str,
        customer_id: UUID,
        initiated_by: Optional[UUID] = None
    ) -> Tuple[GiftCard, CustomerWallet]:
        """Move a card's whole balance into the customer's wallet."""
        from .wallet_service import WalletService

        card = await self._lock(org_id, code)
        self._check_usable(card)
        amount = card.current_balance_cents
        if amount <= 0:
            raise GiftCardError(card.code, "card has no balance")

        card = await self.redeem(org_id, code, amount)
        wallets = WalletService(self.db)
        wallet = await wallets.get_or_create_wallet(org_id, customer_id)
        wallet, _ = await wallets.add_funds(
            org_id,
            wallet.id,
            amount_cents=amount,
            reason=LedgerReferenceType.GIFT_CARD,
            reference_id=card.code,
            description=f"Gift card {card.code}",
            initiated_by=initiated_by,
        )
        return card, wallet

    async def cancel(self, org_id: UUID, code: str) -> GiftCard:
        card = await self._lock(org_id, code)
        if card.status != GiftCardStatus.ACTIVE:
            raise InvalidStateError("gift_card", card.code, card.status.value, [GiftCardStatus.ACTIVE.value])

        card.status = GiftCardStatus.CANCELLED
        await self.db.flush()
        logger.info(f"Cancelled gift card {card.id}")
        return card

    async def expire_gift_cards(self, now: Optional[datetime] = None) -> int:
        """Mark active cards past their expiry as expired. Returns the count."""
        now = now or utcnow()
        result = await self.db.execute(
            select(GiftCard).where(
                GiftCard.status == GiftCardStatus.ACTIVE,
                GiftCard.expires_at.is_not(None),
                GiftCard.expires_at <= now,
            )
        )
        cards = list(result.scalars().all())
        for card in cards:
            card.status = GiftCardStatus.EXPIRED

        await self.db.flush()
        if cards:
            logger.info(f"Expired {len(cards)} gift cards")
        return len(cards)

    async def _find(self, org_id: UUID, code: str) -> Optional[GiftCard]:
        result = await self.db.execute(select(GiftCard).where(GiftCard.org_id == org_id, GiftCard.code == code))
        return result.scalar_one_or_none()

    async def _lock(self, org_id: UUID, code: str) -> GiftCard:
        result = await self.db.execute(
            select(GiftCard)
            .where(GiftCard.org_id == org_id, GiftCard.code == code.upper())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        card = result.scalar_one_or_none()
        if card is None:
            raise ResourceNotFoundError("gift_card", code.upper())
        return card

    def _check_usable(self, card: GiftCard) -> None:
        if card.status != GiftCardStatus.ACTIVE:
            raise GiftCardError(card.code, f"card is {card.status.value}")
        expires_at = as_utc(card.expires_at)
        if expires_at is not None and expires_at <= utcnow():
            raise GiftCardError(card.code, "card has expired")

    async def _unique_code(self, org_id: UUID) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_code(self.settings.gift_card_code_length)
            if await self._find(org_id, code) is None:
                return code
        raise ValidationError("Could not generate a unique gift card code")
