"""Allowed status transitions of a Test"""
from datetime import datetime
from typing import Dict, FrozenSet

from masada.core.exceptions import ValidationError
from masada.models.test import Test, TestStatus

ALLOWED_TRANSITIONS: Dict[TestStatus, FrozenSet[TestStatus]] = {
    TestStatus.DRAFT: frozenset({TestStatus.PUBLISHED, TestStatus.CANCELLED}),
    TestStatus.PUBLISHED: frozenset({
        TestStatus.RUNNING, TestStatus.PAUSED, TestStatus.COMPLETED, TestStatus.CANCELLED,
    }),
    TestStatus.RUNNING: frozenset({TestStatus.PAUSED, TestStatus.COMPLETED, TestStatus.CANCELLED}),
    TestStatus.PAUSED: frozenset({TestStatus.RUNNING, TestStatus.COMPLETED, TestStatus.CANCELLED}),
    TestStatus.COMPLETED: frozenset(),
    TestStatus.CANCELLED: frozenset(),
}

# Statuses in which testers may see a test and start sessions
OPEN_STATUSES = (TestStatus.PUBLISHED, TestStatus.RUNNING)


def can_transition(current: TestStatus, target: TestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_open_for_testing(test: Test) -> bool:
    return test.status in OPEN_STATUSES


def transition(test: Test, target: TestStatus) -> TestStatus:
    """
    Move test to target status, stamping published_at / completed_at.

    Returns the previous status. Raises ValidationError on a disallowed move.
    """
    previous = test.status
    if not can_transition(previous, target):
        raise ValidationError(
            f"Cannot change test status from {previous.value} to {target.value}"
        )

    test.status = target
    now = datetime.utcnow()
    if target == TestStatus.PUBLISHED and test.published_at is None:
        test.published_at = now
    elif target == TestStatus.COMPLETED:
        test.completed_at = now

    return previous
