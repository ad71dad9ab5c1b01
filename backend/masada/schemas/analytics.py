from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class AnalyticsEventCreate(BaseModel):
    event: str = Field(..., min_length=1, max_length=100)
    data: Dict[str, Any] = {}
    test_id: Optional[str] = None
