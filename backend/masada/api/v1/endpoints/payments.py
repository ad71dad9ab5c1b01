from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthorizationError, NotFoundError, PaymentError
from masada.core.logging_config import logger
from masada.models.payment import Earning, EarningStatus, Payment, PaymentStatus
from masada.models.user import CustomerProfile, User, UserType
from masada.modules.auth.dependencies import get_current_user, require_roles
from masada.schemas.common import PaginationParams, success_response
from masada.schemas.payment import EarningResponse, EarningsSummary, PaymentCreate, PaymentResponse
from masada.services import payment_providers
from masada.services.notification_service import notification_service
from masada.services.realtime_service import realtime_service

router = APIRouter()


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return PaymentResponse.model_validate(payment).model_dump(mode="json")


async def get_owned_payment(db: AsyncSession, payment_id: str, user: User) -> Payment:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment")
    if user.user_type != UserType.ADMIN and payment.customer_id != user.id:
        raise AuthorizationError("You can only access your own payments")
    return payment


@router.get("")
async def list_payments(
    params: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Payments for customers and admins, earnings for testers"""
    if current_user.user_type == UserType.TESTER:
        model, schema, key = Earning, EarningResponse, "earnings"
        conditions = [Earning.tester_id == current_user.id]
    else:
        model, schema, key = Payment, PaymentResponse, "payments"
        conditions = []
        if current_user.user_type == UserType.CUSTOMER:
            conditions.append(Payment.customer_id == current_user.id)

    total = (await db.execute(select(func.count(model.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(model)
        .where(*conditions)
        .order_by(params.order_by(model))
        .offset(params.offset)
        .limit(params.limit)
    )
    return success_response({
        key: [schema.model_validate(row).model_dump(mode="json") for row in result.scalars().all()],
        "pagination": params.pagination(total).model_dump(),
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreate,
    current_user: User = Depends(require_roles(UserType.CUSTOMER)),
    db: AsyncSession = Depends(get_db)
):
    payment = Payment(
        customer_id=current_user.id,
        amount=body.amount,
        currency=body.currency,
        method=body.method,
        status=PaymentStatus.PENDING,
        description=body.description,
        payment_metadata=body.metadata,
    )
    db.add(payment)
    await db.flush()

    try:
        result = await payment_providers.process_payment(payment)
    except PaymentError:
        payment.status = PaymentStatus.FAILED
        await db.commit()
        logger.log_payment("failed", payment.id, payment.method.value)
        raise

    payment.status = result.status
    payment.transaction_id = result.transaction_id
    payment.payment_url = result.payment_url
    payment.payment_metadata = {**(payment.payment_metadata or {}), **result.metadata}
    await db.commit()

    logger.log_payment("created", payment.id, payment.method.value,
                       {"amount": payment.amount, "currency": payment.currency.value})
    return success_response(
        {"payment": serialize_payment(payment), "payment_url": payment.payment_url},
        "Payment initiated successfully",
    )


@router.get("/earnings/summary")
async def earnings_summary(
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(Earning).where(Earning.tester_id == current_user.id))
    earnings = result.scalars().all()

    now = datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    pending = [e for e in earnings if e.status == EarningStatus.PENDING]
    paid = [e for e in earnings if e.status == EarningStatus.PAID]

    summary = EarningsSummary(
        total_earnings=sum(e.amount for e in earnings),
        total_tests=len(earnings),
        this_month_earnings=sum(e.amount for e in earnings if e.created_at >= month_start),
        pending_amount=sum(e.amount for e in pending),
        pending_tests=len(pending),
        completed_amount=sum(e.amount for e in paid),
        completed_tests=len(paid),
    )
    return success_response({"summary": summary.model_dump()})


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    payment = await get_owned_payment(db, payment_id, current_user)
    return success_response({"payment": serialize_payment(payment)})


@router.post("/{payment_id}/verify")
async def verify_payment(
    payment_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER)),
    db: AsyncSession = Depends(get_db)
):
    payment = await get_owned_payment(db, payment_id, current_user)

    if payment.status == PaymentStatus.COMPLETED:
        return success_response({"payment": serialize_payment(payment)}, "Payment already verified")

    try:
        result = await payment_providers.verify_payment(payment)
    except PaymentError:
        payment.status = PaymentStatus.FAILED
        await db.commit()
        await realtime_service.handle_payment_status_change(payment)
        raise

    payment.status = PaymentStatus.COMPLETED
    payment.paid_at = datetime.utcnow()
    payment.payment_metadata = {**(payment.payment_metadata or {}), **result.metadata}

    await db.execute(
        update(CustomerProfile)
        .where(CustomerProfile.user_id == payment.customer_id)
        .values(total_spent=CustomerProfile.total_spent + payment.amount)
        .execution_options(synchronize_session=False)
    )
    await notification_service.notify_payment_received(db, payment, current_user)
    await db.commit()

    await realtime_service.handle_payment_status_change(payment)
    logger.log_payment("verified", payment.id, payment.method.value, {"amount": payment.amount})
    return success_response({"payment": serialize_payment(payment)}, "Payment verified successfully")
