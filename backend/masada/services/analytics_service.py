"""
Aggregations behind the dashboard and per-test analytics.

Most figures are computed in Python over the relevant rows; the data
volumes per customer or test are small.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.models.payment import Earning, EarningStatus, Payment, PaymentStatus
from masada.models.session import SessionStatus, TesterSession
from masada.models.test import Test, TestStatus
from masada.models.user import TesterProfile, User, UserStatus, UserType
from masada.services.test_lifecycle import OPEN_STATUSES


def _average(values: Iterable[Optional[float]]) -> float:
    present = [v for v in values if v is not None]
    return round(sum(present) / len(present), 2) if present else 0.0


def _device_type(session: TesterSession) -> str:
    info = session.device_info or {}
    return info.get("device_type") or "unknown"


async def _sum(db: AsyncSession, column, *conditions) -> float:
    result = await db.execute(select(func.coalesce(func.sum(column), 0)).where(*conditions))
    return float(result.scalar_one())


async def _count(db: AsyncSession, column, *conditions) -> int:
    result = await db.execute(select(func.count(column)).where(*conditions))
    return result.scalar_one()


async def _sessions_with_profiles(db: AsyncSession, *conditions):
    result = await db.execute(
        select(TesterSession, TesterProfile)
        .join(Test, Test.id == TesterSession.test_id)
        .outerjoin(TesterProfile, TesterProfile.user_id == TesterSession.tester_id)
        .where(*conditions)
    )
    return result.all()


# ==================== Customer dashboard ====================

async def customer_dashboard(db: AsyncSession, user: User) -> Dict[str, Any]:
    owned = Test.created_by_id == user.id

    tests_overview = {
        "total_tests": await _count(db, Test.id, owned),
        "active_tests": await _count(db, Test.id, owned, Test.status.in_(OPEN_STATUSES)),
        "completed_tests": await _count(db, Test.id, owned, Test.status == TestStatus.COMPLETED),
        "total_spent": await _sum(
            db, Payment.amount,
            Payment.customer_id == user.id, Payment.status == PaymentStatus.COMPLETED,
        ),
    }

    recent = await db.execute(
        select(Test).where(owned).order_by(Test.created_at.desc()).limit(10)
    )
    recent_tests = list(recent.scalars().all())
    sessions_by_test: Dict[str, List[TesterSession]] = {t.id: [] for t in recent_tests}
    if recent_tests:
        rows = await db.execute(
            select(TesterSession).where(TesterSession.test_id.in_(list(sessions_by_test)))
        )
        for session in rows.scalars().all():
            sessions_by_test[session.test_id].append(session)

    recent_tests_performance = [
        {
            "id": test.id,
            "title": test.title,
            "status": test.status.value,
            "total_sessions": len(sessions_by_test[test.id]),
            "completed_sessions": sum(
                1 for s in sessions_by_test[test.id] if s.status == SessionStatus.COMPLETED
            ),
            "average_rating": _average(s.rating for s in sessions_by_test[test.id]),
            "average_duration": _average(s.duration for s in sessions_by_test[test.id]),
        }
        for test in recent_tests
    ]

    completed_rows = await _sessions_with_profiles(
        db, owned, TesterSession.status == SessionStatus.COMPLETED
    )
    demographics = {"age_groups": Counter(), "education_levels": Counter(), "cities": Counter(), "regions": Counter()}
    regions: Counter = Counter()
    for _, profile in completed_rows:
        regions[(profile.region if profile and profile.region else "Unknown")] += 1
        if profile is None:
            continue
        if profile.age:
            demographics["age_groups"][profile.age] += 1
        if profile.education:
            demographics["education_levels"][profile.education] += 1
        if profile.city:
            demographics["cities"][profile.city] += 1
        if profile.region:
            demographics["regions"][profile.region] += 1

    all_rows = await _sessions_with_profiles(db, owned)
    devices = Counter(_device_type(session) for session, _ in all_rows)

    return {
        "tests_overview": tests_overview,
        "recent_tests_performance": recent_tests_performance,
        "tester_demographics": {key: dict(value) for key, value in demographics.items()},
        "device_breakdown": dict(devices),
        "region_breakdown": dict(regions),
    }


# ==================== Tester dashboard ====================

async def tester_dashboard(db: AsyncSession, user: User) -> Dict[str, Any]:
    now = datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    mine = Earning.tester_id == user.id

    earnings_overview = {
        "total_earnings": await _sum(db, Earning.amount, mine),
        "total_tests": await _count(db, Earning.id, mine),
        "this_month_earnings": await _sum(db, Earning.amount, mine, Earning.created_at >= month_start),
        "this_week_earnings": await _sum(
            db, Earning.amount, mine, Earning.created_at >= now - timedelta(days=7)
        ),
        "pending_earnings": await _sum(db, Earning.amount, mine, Earning.status == EarningStatus.PENDING),
    }

    activity = await db.execute(
        select(TesterSession, Test.title, Test.payment_per_tester)
        .join(Test, Test.id == TesterSession.test_id)
        .where(TesterSession.tester_id == user.id)
        .order_by(TesterSession.created_at.desc())
        .limit(30)
    )
    testing_activity = [
        {
            "date": session.created_at.isoformat() if session.created_at else None,
            "test_title": title,
            "status": session.status.value,
            "duration": session.duration,
            "rating": session.rating,
            "earnings": payment if session.status == SessionStatus.COMPLETED else 0,
        }
        for session, title, payment in activity.all()
    ]

    completed = await db.execute(
        select(TesterSession, Test.test_type, Test.platform)
        .join(Test, Test.id == TesterSession.test_id)
        .where(TesterSession.tester_id == user.id, TesterSession.status == SessionStatus.COMPLETED)
    )
    completed_rows = completed.all()
    total_started = await _count(db, TesterSession.id, TesterSession.tester_id == user.id)

    performance_metrics = {
        "average_rating": _average(s.rating for s, _, _ in completed_rows),
        "average_duration": _average(s.duration for s, _, _ in completed_rows),
        "completion_rate": round(len(completed_rows) / total_started * 100, 2) if total_started else 0.0,
        "total_completed_tests": len(completed_rows),
    }
    skills_breakdown = {
        "test_types": dict(Counter(test_type.value for _, test_type, _ in completed_rows)),
        "platforms": dict(Counter(platform.value for _, _, platform in completed_rows)),
    }

    return {
        "earnings_overview": earnings_overview,
        "testing_activity": testing_activity,
        "performance_metrics": performance_metrics,
        "skills_breakdown": skills_breakdown,
    }


# ==================== Per-test analytics ====================

def summarize_tasks(sessions: Iterable[TesterSession]) -> Dict[str, Any]:
    """
    Completion rate per task from task_results.

    task_results is expected to be a list of {"task_id"|"task", "completed"}
    entries; anything else is ignored.
    """
    attempts: Counter = Counter()
    successes: Counter = Counter()
    for session in sessions:
        results = session.task_results
        if not isinstance(results, list):
            continue
        for item in results:
            if not isinstance(item, dict):
                continue
            key = item.get("task_id") or item.get("task")
            if key is None:
                continue
            key = str(key)
            attempts[key] += 1
            if item.get("completed"):
                successes[key] += 1

    rates = {key: round(successes[key] / attempts[key] * 100, 2) for key in attempts}
    failure_points = sorted((key for key, rate in rates.items() if rate < 50), key=lambda k: rates[k])
    return {"task_completion_rates": rates, "common_failure_points": failure_points}


async def analyze_test(db: AsyncSession, test: Test) -> Dict[str, Any]:
    result = await db.execute(
        select(TesterSession, User.name, TesterProfile.region)
        .join(User, User.id == TesterSession.tester_id)
        .outerjoin(TesterProfile, TesterProfile.user_id == TesterSession.tester_id)
        .where(TesterSession.test_id == test.id)
        .order_by(TesterSession.created_at.desc())
    )
    rows = result.all()
    sessions = [session for session, _, _ in rows]
    completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]

    session_metrics = {
        "total_sessions": len(sessions),
        "completed_sessions": len(completed),
        "completion_rate": round(len(completed) / len(sessions) * 100, 2) if sessions else 0.0,
        "average_rating": _average(s.rating for s in sessions),
        "average_duration": _average(s.duration for s in sessions),
    }

    device_performance: Dict[str, Dict[str, Any]] = {}
    for session in sessions:
        bucket = device_performance.setdefault(
            _device_type(session), {"sessions": 0, "completed": 0, "ratings": []}
        )
        bucket["sessions"] += 1
        if session.status == SessionStatus.COMPLETED:
            bucket["completed"] += 1
        if session.rating is not None:
            bucket["ratings"].append(session.rating)
    for bucket in device_performance.values():
        bucket["average_rating"] = _average(bucket.pop("ratings"))

    hourly = Counter(s.started_at.hour for s in completed if s.started_at)

    return {
        "test_info": {"id": test.id, "title": test.title, "status": test.status.value},
        "session_metrics": session_metrics,
        "completion_funnel": dict(Counter(s.status.value for s in sessions)),
        "user_feedback": [
            {"session_id": s.id, "tester_name": name, "feedback": s.feedback, "rating": s.rating}
            for s, name, _ in rows if s.feedback
        ],
        "device_performance": device_performance,
        "region_breakdown": dict(Counter(region or "Unknown" for _, _, region in rows)),
        "time_analysis": {
            "hourly_distribution": {str(hour): count for hour, count in sorted(hourly.items())},
            "average_duration": _average(s.duration for s in completed),
        },
        "task_analysis": summarize_tasks(sessions),
        "tester_sessions": [
            {
                "id": s.id,
                "tester_id": s.tester_id,
                "tester_name": name,
                "status": s.status.value,
                "rating": s.rating,
                "duration": s.duration,
                "device_type": _device_type(s),
                "region": region,
                "started_at": s.started_at.isoformat() if s.started_at else None,
                "completed_at": s.completed_at.isoformat() if s.completed_at else None,
            }
            for s, name, region in rows
        ],
    }


# ==================== Platform ====================

async def platform_analytics(db: AsyncSession) -> Dict[str, Any]:
    active_testers = await db.execute(
        select(func.count(User.id))
        .join(TesterProfile, TesterProfile.user_id == User.id)
        .where(
            User.user_type == UserType.TESTER,
            User.status == UserStatus.ACTIVE,
            TesterProfile.is_verified.is_(True),
        )
    )
    users_by_type = await db.execute(select(User.user_type, func.count(User.id)).group_by(User.user_type))
    tests_by_status = await db.execute(select(Test.status, func.count(Test.id)).group_by(Test.status))

    return {
        "platform_overview": {
            "total_users": await _count(db, User.id),
            "total_tests": await _count(db, Test.id),
            "total_earnings": await _sum(db, Earning.amount),
            "total_revenue": await _sum(db, Payment.amount, Payment.status == PaymentStatus.COMPLETED),
            "active_testers": active_testers.scalar_one(),
        },
        "users_by_type": {user_type.value: count for user_type, count in users_by_type.all()},
        "tests_by_status": {status.value: count for status, count in tests_by_status.all()},
    }
