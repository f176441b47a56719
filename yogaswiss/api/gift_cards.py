"""
Gift card endpoints.
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.gift_card import GiftCardStatus
from ..models.organization import Permission
from ..schemas.gift_card import (
    GiftCardCreate,
    GiftCardListResponse,
    GiftCardRedeem,
    GiftCardRedeemToWallet,
    GiftCardResponse,
    GiftCardWalletResponse,
)
from ..schemas.wallet import WalletResponse
from ..services.gift_card_service import GiftCardService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/gift-cards", tags=["gift-cards"])

can_manage_wallets = require_permission(Permission.WALLET_MANAGEMENT)


@router.get("", response_model=GiftCardListResponse)
async def list_gift_cards(
    status_filter: Optional[GiftCardStatus] = Query(None, alias="status"),
    purchaser_customer_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    cards, total = await GiftCardService(db).list_gift_cards(
        ctx.org_id,
        status=status_filter,
        purchaser_customer_id=purchaser_customer_id,
        limit=limit,
        offset=offset,
    )
    return GiftCardListResponse(gift_cards=[GiftCardResponse.model_validate(c) for c in cards], total=total)


@router.post("", response_model=GiftCardResponse, status_code=status.HTTP_201_CREATED)
async def create_gift_card(
    data: GiftCardCreate,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    card = await GiftCardService(db).create_gift_card(ctx.org, data, created_by=ctx.user.id)
    return GiftCardResponse.model_validate(card)


@router.get("/{code}", response_model=GiftCardResponse)
async def get_gift_card(
    code: str,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    card = await GiftCardService(db).get_by_code(ctx.org_id, code)
    return GiftCardResponse.model_validate(card)


@router.post("/{code}/redeem", response_model=GiftCardResponse)
async def redeem_gift_card(
    code: str,
    data: GiftCardRedeem,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Take an amount off the card balance.

    Raises:
        GiftCardError: Card is not active, expired or the balance is too low
    """
    card = await GiftCardService(db).redeem(ctx.org_id, code, data.amount_cents)
    return GiftCardResponse.model_validate(card)


@router.post("/{code}/redeem-to-wallet", response_model=GiftCardWalletResponse)
async def redeem_to_wallet(
    code: str,
    data: GiftCardRedeemToWallet,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Move the whole remaining balance into the customer's wallet."""
    card, wallet = await GiftCardService(db).redeem_to_wallet(
        ctx.org_id, code, data.customer_id, initiated_by=ctx.user.id
    )
    return GiftCardWalletResponse(
        gift_card=GiftCardResponse.model_validate(card),
        wallet=WalletResponse.model_validate(wallet),
    )


@router.post("/{code}/cancel", response_model=GiftCardResponse)
async def cancel_gift_card(
    code: str,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    card = await GiftCardService(db).cancel(ctx.org_id, code)
    return GiftCardResponse.model_validate(card)
