from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_serializer
from typing import Any, Dict, List, Optional
from datetime import datetime

from masada.models.test import TestType, Platform, TestStatus


class TestCreate(BaseModel):
    __test__ = False

    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=1000)
    instructions: Optional[str] = Field(None, max_length=2000)
    test_type: TestType
    platform: Platform
    target_url: Optional[HttpUrl] = None
    max_testers: int = Field(10, ge=1, le=100)
    payment_per_tester: float = Field(..., ge=5, le=1000)
    estimated_duration: int = Field(..., ge=5, le=120)
    requirements: List[str] = []
    tasks: Optional[Any] = None
    demographics: Optional[Dict[str, Any]] = None

    @field_serializer('target_url')
    def serialize_url(self, url: Optional[HttpUrl]) -> Optional[str]:
        return str(url) if url else None


class TestUpdate(BaseModel):
    __test__ = False

    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    instructions: Optional[str] = Field(None, max_length=2000)
    test_type: Optional[TestType] = None
    platform: Optional[Platform] = None
    target_url: Optional[HttpUrl] = None
    max_testers: Optional[int] = Field(None, ge=1, le=100)
    payment_per_tester: Optional[float] = Field(None, ge=5, le=1000)
    estimated_duration: Optional[int] = Field(None, ge=5, le=120)
    requirements: Optional[List[str]] = None
    tasks: Optional[Any] = None
    demographics: Optional[Dict[str, Any]] = None

    @field_serializer('target_url')
    def serialize_url(self, url: Optional[HttpUrl]) -> Optional[str]:
        return str(url) if url else None


class CreatorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str


class TestResponse(BaseModel):
    __test__ = False
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    instructions: Optional[str] = None
    test_type: TestType
    platform: Platform
    target_url: Optional[str] = None
    status: TestStatus
    max_testers: int
    current_testers: int
    payment_per_tester: float
    estimated_duration: int
    requirements: List[str] = []
    tasks: Optional[Any] = None
    demographics: Optional[Dict[str, Any]] = None
    created_by_id: str
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class InviteTestersRequest(BaseModel):
    emails: List[EmailStr] = Field(..., min_length=1, max_length=100)


class TestAssetResponse(BaseModel):
    __test__ = False
    model_config = ConfigDict(from_attributes=True)

    id: str
    test_id: str
    file_name: str
    original_name: str
    mime_type: str
    size: int
    url: str
    created_at: datetime
