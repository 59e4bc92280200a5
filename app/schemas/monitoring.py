from typing import Literal

from pydantic import BaseModel, Field

TimeRange = Literal["1h", "24h", "7d", "30d"]


class PageViewRequest(BaseModel):
    """Client-side navigation reported by the frontend."""
    page_path: str = Field(..., min_length=1, max_length=255)


class PageViewResponse(BaseModel):
    success: bool = True
