from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_serializer
from typing import List, Literal, Optional
from datetime import datetime

from masada.models.notification import NotificationType
from masada.models.user import UserType, UserStatus, TesterLevel

ETHIOPIAN_PHONE_PATTERN = r'^(\+251|0)[79]\d{8}$'

Region = Literal[
    "Addis Ababa", "Afar", "Amhara", "Benishangul-Gumuz", "Dire Dawa", "Gambela",
    "Harari", "Oromia", "Sidama", "SNNPR", "Somali", "Tigray",
]
AgeRange = Literal["18-24", "25-34", "35-44", "45-54", "55+"]
Education = Literal["High School", "Diploma", "Bachelor's Degree", "Master's Degree", "PhD"]
Experience = Literal["Beginner", "Intermediate", "Advanced", "Expert"]
InternetSpeed = Literal["Slow", "Medium", "Fast"]
Availability = Literal["1-5", "6-10", "11-20", "20+"]
CompanySize = Literal["1-10", "11-50", "51-200", "201-1000", "1000+"]


class CustomerProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    plan: str
    tests_created: int
    total_spent: float


class TesterProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    phone: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    age: Optional[str] = None
    education: Optional[str] = None
    occupation: Optional[str] = None
    experience: Optional[str] = None
    languages: List[str] = []
    devices: List[str] = []
    internet_speed: Optional[str] = None
    availability: Optional[str] = None
    motivation: Optional[str] = None
    rating: float
    completed_tests: int
    total_earnings: float
    level: TesterLevel
    is_verified: bool


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    user_type: UserType
    status: UserStatus
    email_verified: bool
    avatar: Optional[str] = None
    created_at: datetime
    last_login_at: Optional[datetime] = None


class UserDetailResponse(UserResponse):
    customer_profile: Optional[CustomerProfileResponse] = None
    tester_profile: Optional[TesterProfileResponse] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    avatar: Optional[HttpUrl] = None

    @field_serializer('avatar')
    def serialize_avatar(self, avatar: Optional[HttpUrl]) -> Optional[str]:
        return str(avatar) if avatar else None


class CustomerProfileUpdate(BaseModel):
    company: Optional[str] = Field(None, min_length=2, max_length=255)
    website: Optional[HttpUrl] = None
    industry: Optional[str] = Field(None, max_length=100)
    company_size: Optional[CompanySize] = None

    @field_serializer('website')
    def serialize_website(self, website: Optional[HttpUrl]) -> Optional[str]:
        return str(website) if website else None


class TesterProfileUpdate(BaseModel):
    phone: Optional[str] = Field(None, pattern=ETHIOPIAN_PHONE_PATTERN)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    region: Optional[Region] = None
    age: Optional[AgeRange] = None
    education: Optional[Education] = None
    occupation: Optional[str] = Field(None, min_length=2, max_length=100)
    experience: Optional[Experience] = None
    languages: Optional[List[str]] = Field(None, min_length=1)
    devices: Optional[List[str]] = Field(None, min_length=1)
    internet_speed: Optional[InternetSpeed] = None
    availability: Optional[Availability] = None
    motivation: Optional[str] = Field(None, max_length=500)


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: NotificationType
    title: str
    message: str
    data: Optional[dict] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event: str
    test_id: Optional[str] = None
    data: Optional[dict] = None
    created_at: datetime
