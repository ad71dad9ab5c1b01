"""
Unit Tests for Auth Schemas
Tests for: password strength, tester registration fields, email normalization
"""
import pytest
from pydantic import ValidationError

from masada.schemas.auth import (
    ChangePasswordRequest,
    ResetPasswordRequest,
    TesterRegister,
    UserLogin,
    UserRegister,
)

TESTER_FIELDS = {
    "phone": "+251911223344",
    "city": "Adama",
    "region": "Oromia",
    "age": "18-24",
    "education": "Diploma",
    "occupation": "Student",
    "experience": "Beginner",
    "languages": ["Afaan Oromoo", "Amharic"],
    "devices": ["Android phone"],
    "internet_speed": "Slow",
    "availability": "1-5",
}


class TestUserRegister:
    """Test UserRegister schema"""

    def test_valid_customer_registration(self):
        user = UserRegister(email="Owner@Shop.ET", password="Password123", name="Selam Girma")

        assert user.email == "owner@shop.et"
        assert user.user_type == "CUSTOMER"

    @pytest.mark.parametrize("password,reason", [
        ("Pass12", "at least 8 characters"),
        ("PASSWORD123", "lowercase"),
        ("password123", "uppercase"),
        ("Passwordabc", "number"),
    ])
    def test_weak_passwords_rejected(self, password, reason):
        with pytest.raises(ValidationError) as exc_info:
            UserRegister(email="a@b.et", password=password, name="Selam Girma")

        assert reason in str(exc_info.value)

    def test_admin_cannot_self_register(self):
        with pytest.raises(ValidationError):
            UserRegister(email="a@b.et", password="Password123", name="Selam Girma", user_type="ADMIN")

    def test_short_name_rejected(self):
        with pytest.raises(ValidationError):
            UserRegister(email="a@b.et", password="Password123", name="S")


class TestTesterRegister:
    """Test TesterRegister schema"""

    def test_valid_tester_registration(self):
        tester = TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **TESTER_FIELDS)

        assert tester.user_type == "TESTER"
        assert tester.region == "Oromia"

    @pytest.mark.parametrize("phone", ["+251911223344", "0911223344", "0711223344"])
    def test_ethiopian_phone_numbers_accepted(self, phone):
        fields = {**TESTER_FIELDS, "phone": phone}

        tester = TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **fields)

        assert tester.phone == phone

    @pytest.mark.parametrize("phone", ["911223344", "+254911223344", "0811223344", "09112233445"])
    def test_bad_phone_numbers_rejected(self, phone):
        fields = {**TESTER_FIELDS, "phone": phone}

        with pytest.raises(ValidationError):
            TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **fields)

    @pytest.mark.parametrize("field", ["region", "age", "devices", "internet_speed"])
    def test_missing_demographics_rejected(self, field):
        fields = {k: v for k, v in TESTER_FIELDS.items() if k != field}

        with pytest.raises(ValidationError):
            TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **fields)

    def test_empty_device_list_rejected(self):
        fields = {**TESTER_FIELDS, "devices": []}

        with pytest.raises(ValidationError):
            TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **fields)

    def test_unknown_region_rejected(self):
        fields = {**TESTER_FIELDS, "region": "Nairobi"}

        with pytest.raises(ValidationError):
            TesterRegister(email="t@b.et", password="Password123", name="Kebede Ayele", **fields)


class TestPasswordRequests:

    def test_login_lowercases_email(self):
        assert UserLogin(email="Tester@Masada.ET", password="x").email == "tester@masada.et"

    def test_reset_password_checks_strength(self):
        with pytest.raises(ValidationError):
            ResetPasswordRequest(token="t", password="weak")

    def test_change_password_checks_new_password_only(self):
        request = ChangePasswordRequest(current_password="old", new_password="Password123")

        assert request.current_password == "old"
