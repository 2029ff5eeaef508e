"""
services/packages/router.py
Package purchase and balance projections.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.packages import ledger
from shared.middleware.auth import Authorize, ensure_can_act_for
from shared.models.models import User
from shared.schemas.schemas import (
    PackageOffer,
    PackagePurchaseRequest,
    PackagePurchaseResponse,
    PackageResponse,
)

router = APIRouter(prefix="/packages", tags=["Packages"])


@router.get("/offers", response_model=List[PackageOffer])
async def list_offers():
    """Public price list for the purchase screen."""
    return [PackageOffer(**offer) for offer in ledger.list_offers()]


@router.post("", response_model=PackagePurchaseResponse, status_code=status.HTTP_201_CREATED)
async def purchase_package(
    data: PackagePurchaseRequest,
    current_user: User = Depends(Authorize("purchase", "package")),
    db: AsyncSession = Depends(get_db),
):
    """
    Buy a package for yourself or a linked child.
    It stays pending_payment until an admin confirms the payment.
    """
    student = await ensure_can_act_for(db, current_user, data.student_id)
    package, payment = await ledger.purchase(
        db,
        student,
        data.package_type,
        data.total_sessions,
        data.price_per_session,
        data.payment_method,
    )
    await db.commit()
    return PackagePurchaseResponse(
        package_id=package.id,
        status=package.status.value,
        payment_id=payment.id,
        amount=payment.amount,
    )


@router.get("/me", response_model=List[PackageResponse])
async def my_packages(
    active_only: bool = Query(False),
    current_user: User = Depends(Authorize("read", "package")),
    db: AsyncSession = Depends(get_db),
):
    packages = await ledger.packages_for_student(db, current_user.id, active_only=active_only)
    return [PackageResponse.model_validate(p) for p in packages]


@router.get("/students/{student_id}", response_model=List[PackageResponse])
async def student_packages(
    student_id: UUID,
    active_only: bool = Query(True),
    current_user: User = Depends(Authorize("read", "package")),
    db: AsyncSession = Depends(get_db),
):
    """Packages of one student with their remaining-session count."""
    student = await ensure_can_act_for(db, current_user, student_id)
    packages = await ledger.packages_for_student(db, student.id, active_only=active_only)
    return [PackageResponse.model_validate(p) for p in packages]
