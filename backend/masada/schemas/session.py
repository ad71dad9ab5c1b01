from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional
from datetime import datetime

from masada.models.session import SessionStatus


class DeviceInfo(BaseModel):
    user_agent: str
    screen_resolution: Optional[str] = None
    device_type: Optional[Literal["mobile", "tablet", "desktop"]] = None


class SessionStart(BaseModel):
    test_id: str
    device_info: DeviceInfo


class SessionUpdate(BaseModel):
    status: Optional[Literal["IN_PROGRESS", "COMPLETED", "FAILED", "CANCELLED"]] = None
    feedback: Optional[str] = Field(None, max_length=2000)
    rating: Optional[int] = Field(None, ge=1, le=5)
    task_results: Optional[Any] = None


class RecordingSubmit(BaseModel):
    recording_url: str = Field(..., min_length=1, max_length=500)
    duration: int = Field(..., ge=1)


class TesterSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    test_id: str
    tester_id: str
    test_session_id: Optional[str] = None
    status: SessionStatus
    device_info: Optional[dict] = None
    feedback: Optional[str] = None
    rating: Optional[int] = None
    task_results: Optional[Any] = None
    recording_url: Optional[str] = None
    recording_duration: Optional[int] = None
    duration: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
