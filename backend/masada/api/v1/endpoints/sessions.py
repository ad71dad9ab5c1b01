from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from masada.core.logging_config import logger
from masada.models.session import SessionStatus, TesterSession
from masada.models.test import Test
from masada.models.user import User, UserType
from masada.modules.auth.dependencies import get_current_user, require_roles
from masada.schemas.common import PaginationParams, success_response
from masada.schemas.session import RecordingSubmit, SessionStart, SessionUpdate, TesterSessionResponse
from masada.services import session_service
from masada.services.realtime_service import realtime_service

router = APIRouter()


def serialize_session(session: TesterSession, test: Test = None) -> Dict[str, Any]:
    data = TesterSessionResponse.model_validate(session).model_dump(mode="json")
    if test is not None:
        data["test"] = {
            "id": test.id,
            "title": test.title,
            "status": test.status.value,
            "payment_per_tester": test.payment_per_tester,
            "estimated_duration": test.estimated_duration,
        }
    return data


async def get_session_or_404(db: AsyncSession, session_id: str) -> TesterSession:
    session = await db.get(TesterSession, session_id)
    if session is None:
        raise NotFoundError("Session")
    return session


def ensure_session_owner(session: TesterSession, user: User):
    if session.tester_id != user.id:
        raise AuthorizationError("You can only modify your own sessions")


@router.get("")
async def list_sessions(
    params: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Testers see their sessions, customers the sessions of their tests"""
    conditions = []
    if current_user.user_type == UserType.TESTER:
        conditions.append(TesterSession.tester_id == current_user.id)
    elif current_user.user_type == UserType.CUSTOMER:
        conditions.append(Test.created_by_id == current_user.id)

    base = select(TesterSession, Test).join(Test, Test.id == TesterSession.test_id).where(*conditions)
    total = (await db.execute(
        select(func.count(TesterSession.id))
        .join(Test, Test.id == TesterSession.test_id)
        .where(*conditions)
    )).scalar_one()

    result = await db.execute(
        base.order_by(params.order_by(TesterSession)).offset(params.offset).limit(params.limit)
    )
    return success_response({
        "sessions": [serialize_session(session, test) for session, test in result.all()],
        "pagination": params.pagination(total).model_dump(),
    })


@router.post("/start", status_code=status.HTTP_201_CREATED)
async def start_session(
    body: SessionStart,
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    session, test, previous_status = await session_service.start_session(
        db, current_user, body.test_id, body.device_info.model_dump()
    )
    if previous_status is not None:
        await realtime_service.handle_test_status_change(db, test, previous_status, current_user)
    await db.commit()

    return success_response(
        {"session": serialize_session(session, test)},
        "Test session started successfully",
    )


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    session = await get_session_or_404(db, session_id)
    test = await db.get(Test, session.test_id)

    allowed = (
        current_user.user_type == UserType.ADMIN
        or session.tester_id == current_user.id
        or (test is not None and test.created_by_id == current_user.id)
    )
    if not allowed:
        raise AuthorizationError("You do not have access to this session")

    return success_response({"session": serialize_session(session, test)})


@router.put("/{session_id}")
async def update_session(
    session_id: str,
    body: SessionUpdate,
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    session = await get_session_or_404(db, session_id)
    ensure_session_owner(session, current_user)

    target = SessionStatus(body.status) if body.status is not None else None
    session_service.check_session_update(session, target)

    earning = None
    if target == SessionStatus.COMPLETED:
        session, earning = await realtime_service.complete_session(
            db, session, current_user,
            feedback=body.feedback, rating=body.rating, task_results=body.task_results,
        )
    else:
        if body.feedback is not None:
            session.feedback = body.feedback
        if body.rating is not None:
            session.rating = body.rating
        if body.task_results is not None:
            session.task_results = body.task_results
        if target in (SessionStatus.FAILED, SessionStatus.CANCELLED):
            await realtime_service.close_session(db, session, target)
        elif target is not None:
            session.status = target
    await db.commit()

    data = {"session": serialize_session(session)}
    if earning is not None:
        data["earning"] = {"id": earning.id, "amount": earning.amount, "status": earning.status.value}
    return success_response(data, "Session updated successfully")


@router.post("/{session_id}/recording")
async def submit_recording(
    session_id: str,
    body: RecordingSubmit,
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    session = await get_session_or_404(db, session_id)
    ensure_session_owner(session, current_user)

    if session.status != SessionStatus.IN_PROGRESS:
        raise ValidationError("Can only submit recordings for active sessions")

    session.recording_url = body.recording_url
    session.recording_duration = body.duration
    await db.commit()

    logger.log_test_session("recording_submitted", session.id, session.test_id, current_user.id,
                            recording_duration=body.duration)
    return success_response({"session": serialize_session(session)}, "Recording submitted successfully")


@router.delete("/{session_id}")
async def cancel_session(
    session_id: str,
    current_user: User = Depends(require_roles(UserType.TESTER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    session = await get_session_or_404(db, session_id)
    if current_user.user_type != UserType.ADMIN:
        ensure_session_owner(session, current_user)

    await realtime_service.close_session(db, session, SessionStatus.CANCELLED)
    await db.commit()

    return success_response({"session": serialize_session(session)}, "Session cancelled successfully")
