import pytest

from masada.core.exceptions import (
    AuthorizationError,
    ConflictError,
    MasadaError,
    NotFoundError,
    PaymentError,
    TestCapacityError,
    ValidationError,
)


@pytest.mark.parametrize('error,status,message', [
    (ValidationError(), 400, 'Validation failed'),
    (AuthorizationError(), 403, 'Insufficient permissions'),
    (NotFoundError('Test'), 404, 'Test not found'),
    (ConflictError(), 409, 'Resource already exists'),
    (PaymentError(), 402, 'Payment failed'),
    (TestCapacityError(), 409, 'Test has reached maximum capacity'),
])
def test_defaults(error, status, message):
    assert error.status_code == status
    assert error.message == message
    assert str(error) == message


def test_capacity_error_is_a_conflict():
    assert isinstance(TestCapacityError(), ConflictError)
    assert isinstance(TestCapacityError(), MasadaError)


def test_status_code_override():
    error = ValidationError('Too late', status_code=422)

    assert error.status_code == 422
    # Class default is untouched
    assert ValidationError.status_code == 400


def test_payment_error_carries_provider():
    error = PaymentError('Payment method not supported: BANK_TRANSFER', provider='bank')

    assert error.provider == 'bank'
    assert error.to_dict() == {
        'code': 'PAYMENT_FAILED',
        'message': 'Payment method not supported: BANK_TRANSFER',
        'status_code': 402,
        'details': {'provider': 'bank'},
    }


def test_to_dict_omits_missing_details():
    assert 'details' not in NotFoundError('Session').to_dict()
