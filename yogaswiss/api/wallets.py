"""
Customer wallets, the ledger and credit packages.
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import Permission
from ..schemas.wallet import (
    AddFundsRequest,
    DebitRequest,
    LedgerEntryResponse,
    PackageCreate,
    PackagePurchaseRequest,
    PackagePurchaseResponse,
    PackageResponse,
    ReserveRequest,
    TransferRequest,
    TransferResponse,
    UseCreditsRequest,
    WalletCreate,
    WalletListResponse,
    WalletMutationResponse,
    WalletResponse,
    WalletStatusUpdate,
)
from ..services.wallet_service import WalletService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/wallets", tags=["wallets"])

can_manage_wallets = require_permission(Permission.WALLET_MANAGEMENT)


def _mutation(wallet, entry) -> WalletMutationResponse:
    return WalletMutationResponse(
        wallet=WalletResponse.model_validate(wallet),
        entry=LedgerEntryResponse.model_validate(entry),
    )


@router.get("", response_model=WalletListResponse)
async def list_wallets(
    customer_id: Optional[UUID] = None,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallets = await WalletService(db).list_wallets(ctx.org_id, customer_id=customer_id)
    return WalletListResponse(wallets=[WalletResponse.model_validate(w) for w in wallets])


@router.post("", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
async def create_wallet(
    data: WalletCreate,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Open a wallet for a customer; returns the existing one if present."""
    wallet = await WalletService(db).get_or_create_wallet(ctx.org_id, data.customer_id, data.wallet_type)
    return WalletResponse.model_validate(wallet)


@router.post("/transfer", response_model=TransferResponse)
async def transfer(
    data: TransferRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    source, target = await WalletService(db).transfer(
        ctx.org_id,
        data.source_wallet_id,
        data.target_wallet_id,
        data.amount_cents,
        description=data.description,
        initiated_by=ctx.user.id,
    )
    return TransferResponse(
        source=WalletResponse.model_validate(source),
        target=WalletResponse.model_validate(target),
    )


@router.get("/packages", response_model=List[PackageResponse])
async def list_packages(
    include_archived: bool = False,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    packages = await WalletService(db).list_packages(ctx.org_id, include_archived=include_archived)
    return [PackageResponse.model_validate(p) for p in packages]


@router.post("/packages", response_model=PackageResponse, status_code=status.HTTP_201_CREATED)
async def create_package(
    data: PackageCreate,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    package = await WalletService(db).create_package(ctx.org_id, data)
    return PackageResponse.model_validate(package)


@router.post("/packages/{package_id}/purchase", response_model=PackagePurchaseResponse)
async def purchase_package(
    package_id: UUID,
    data: PackagePurchaseRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Sell a credit package to a customer and load it into their wallet.

    Raises:
        ValidationError: Payment method does not settle immediately
        GiftCardError: Gift card cannot cover the price
    """
    order, payment, wallet = await WalletService(db).purchase_package(
        ctx.org,
        data.customer_id,
        package_id,
        data.payment_method,
        gift_card_code=data.gift_card_code,
        initiated_by=ctx.user.id,
    )
    return PackagePurchaseResponse(
        order_id=order.id,
        order_number=order.order_number,
        payment_id=payment.id if payment else None,
        wallet=WalletResponse.model_validate(wallet),
    )


@router.get("/{wallet_id}", response_model=WalletResponse)
async def get_wallet(
    wallet_id: UUID,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet = await WalletService(db).get_wallet(ctx.org_id, wallet_id)
    return WalletResponse.model_validate(wallet)


@router.post("/{wallet_id}/add-funds", response_model=WalletMutationResponse)
async def add_funds(
    wallet_id: UUID,
    data: AddFundsRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet, entry = await WalletService(db).add_funds(
        ctx.org_id,
        wallet_id,
        amount_cents=data.amount_cents,
        credits=data.credits,
        reason=data.reason,
        description=data.description,
        initiated_by=ctx.user.id,
        credits_expiry=data.credits_expiry,
    )
    return _mutation(wallet, entry)


@router.post("/{wallet_id}/debit", response_model=WalletMutationResponse)
async def debit(
    wallet_id: UUID,
    data: DebitRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Take money out of a wallet.

    Raises:
        InsufficientFundsError: Available balance is too low
    """
    wallet, entry = await WalletService(db).debit(
        ctx.org_id,
        wallet_id,
        data.amount_cents,
        reference_type=data.reference_type,
        reference_id=data.reference_id,
        description=data.description,
        initiated_by=ctx.user.id,
    )
    return _mutation(wallet, entry)


@router.post("/{wallet_id}/use-credits", response_model=WalletMutationResponse)
async def use_credits(
    wallet_id: UUID,
    data: UseCreditsRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet, entry = await WalletService(db).use_credits(
        ctx.org_id,
        wallet_id,
        data.credits,
        reference_id=data.reference_id,
        description=data.description,
        initiated_by=ctx.user.id,
    )
    return _mutation(wallet, entry)


@router.post("/{wallet_id}/reserve", response_model=WalletMutationResponse)
async def reserve(
    wallet_id: UUID,
    data: ReserveRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet, entry = await WalletService(db).reserve(
        ctx.org_id,
        wallet_id,
        data.amount_cents,
        reference_id=data.reference_id,
        description=data.description,
        initiated_by=ctx.user.id,
    )
    return _mutation(wallet, entry)


@router.post("/{wallet_id}/release", response_model=WalletMutationResponse)
async def release(
    wallet_id: UUID,
    data: ReserveRequest,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet, entry = await WalletService(db).release(
        ctx.org_id,
        wallet_id,
        data.amount_cents,
        reference_id=data.reference_id,
        description=data.description,
        initiated_by=ctx.user.id,
    )
    return _mutation(wallet, entry)


@router.post("/{wallet_id}/status", response_model=WalletMutationResponse)
async def set_status(
    wallet_id: UUID,
    data: WalletStatusUpdate,
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    wallet, entry = await WalletService(db).set_status(ctx.org_id, wallet_id, data.status, initiated_by=ctx.user.id)
    return _mutation(wallet, entry)


@router.get("/{wallet_id}/history", response_model=List[LedgerEntryResponse])
async def get_history(
    wallet_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    ctx: OrgContext = Depends(can_manage_wallets),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Ledger entries for a wallet, newest first."""
    entries = await WalletService(db).get_history(ctx.org_id, wallet_id, limit=limit)
    return [LedgerEntryResponse.model_validate(e) for e in entries]
