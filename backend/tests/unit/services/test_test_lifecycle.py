import pytest

from masada.core.exceptions import ValidationError
from masada.models.test import Test, TestStatus
from masada.services import test_lifecycle


def make_test(status: TestStatus) -> Test:
    return Test(title="Checkout", description="Buy something", status=status,
                payment_per_tester=10, estimated_duration=10)


@pytest.mark.parametrize("current,target", [
    (TestStatus.DRAFT, TestStatus.PUBLISHED),
    (TestStatus.DRAFT, TestStatus.CANCELLED),
    (TestStatus.PUBLISHED, TestStatus.RUNNING),
    (TestStatus.PUBLISHED, TestStatus.PAUSED),
    (TestStatus.RUNNING, TestStatus.PAUSED),
    (TestStatus.PAUSED, TestStatus.RUNNING),
    (TestStatus.RUNNING, TestStatus.COMPLETED),
    (TestStatus.PAUSED, TestStatus.CANCELLED),
])
def test_allowed_transitions(current, target):
    assert test_lifecycle.can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (TestStatus.DRAFT, TestStatus.RUNNING),
    (TestStatus.DRAFT, TestStatus.COMPLETED),
    (TestStatus.PUBLISHED, TestStatus.DRAFT),
    (TestStatus.COMPLETED, TestStatus.RUNNING),
    (TestStatus.CANCELLED, TestStatus.PUBLISHED),
    (TestStatus.RUNNING, TestStatus.RUNNING),
])
def test_disallowed_transitions(current, target):
    assert not test_lifecycle.can_transition(current, target)


def test_terminal_statuses_have_no_exits():
    for status in (TestStatus.COMPLETED, TestStatus.CANCELLED):
        assert not any(test_lifecycle.can_transition(status, target) for target in TestStatus)


def test_publish_stamps_published_at_once():
    test = make_test(TestStatus.DRAFT)

    previous = test_lifecycle.transition(test, TestStatus.PUBLISHED)

    assert previous == TestStatus.DRAFT
    assert test.status == TestStatus.PUBLISHED
    first_published = test.published_at
    assert first_published is not None

    test_lifecycle.transition(test, TestStatus.PAUSED)
    test_lifecycle.transition(test, TestStatus.RUNNING)
    assert test.published_at == first_published


def test_complete_stamps_completed_at():
    test = make_test(TestStatus.RUNNING)

    test_lifecycle.transition(test, TestStatus.COMPLETED)

    assert test.completed_at is not None


def test_invalid_transition_leaves_status():
    test = make_test(TestStatus.COMPLETED)

    with pytest.raises(ValidationError) as exc_info:
        test_lifecycle.transition(test, TestStatus.RUNNING)

    assert exc_info.value.message == "Cannot change test status from COMPLETED to RUNNING"
    assert test.status == TestStatus.COMPLETED


@pytest.mark.parametrize("status,is_open", [
    (TestStatus.DRAFT, False),
    (TestStatus.PUBLISHED, True),
    (TestStatus.RUNNING, True),
    (TestStatus.PAUSED, False),
    (TestStatus.COMPLETED, False),
])
def test_open_for_testing(status, is_open):
    assert test_lifecycle.is_open_for_testing(make_test(status)) is is_open
