from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Literal, Optional
import re

from masada.schemas.user import (
    ETHIOPIAN_PHONE_PATTERN,
    Region,
    AgeRange,
    Education,
    Experience,
    InternetSpeed,
    Availability,
    UserDetailResponse,
)


def validate_password_strength(password: str) -> str:
    """At least 8 chars with one lowercase, one uppercase and one digit"""
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r'\d', password):
        raise ValueError("Password must contain at least one number")
    return password


class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=2, max_length=100)
    user_type: Literal["CUSTOMER", "TESTER"] = "CUSTOMER"

    # Tester details, required only on /register/tester
    phone: Optional[str] = Field(None, pattern=ETHIOPIAN_PHONE_PATTERN)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    region: Optional[Region] = None
    age: Optional[AgeRange] = None
    education: Optional[Education] = None
    occupation: Optional[str] = Field(None, min_length=2, max_length=100)
    experience: Optional[Experience] = None
    languages: List[str] = []
    devices: List[str] = []
    internet_speed: Optional[InternetSpeed] = None
    availability: Optional[Availability] = None
    motivation: Optional[str] = Field(None, max_length=500)

    @field_validator('password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class TesterRegister(UserRegister):
    user_type: Literal["TESTER"] = "TESTER"

    phone: str = Field(..., pattern=ETHIOPIAN_PHONE_PATTERN)
    city: str = Field(..., min_length=2, max_length=100)
    region: Region
    age: AgeRange
    education: Education
    occupation: str = Field(..., min_length=2, max_length=100)
    experience: Experience
    languages: List[str] = Field(..., min_length=1)
    devices: List[str] = Field(..., min_length=1)
    internet_speed: InternetSpeed
    availability: Availability


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class VerifyEmailRequest(BaseModel):
    token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str

    @field_validator('password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class AuthResult(BaseModel):
    user: UserDetailResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
