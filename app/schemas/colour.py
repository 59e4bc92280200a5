from typing import Optional

from pydantic import BaseModel


class ColourPayload(BaseModel):
    """Create/update body. The name is sanitized and checked by the handler."""
    colour_name: Optional[str] = None


class ColourRead(BaseModel):
    colour_id: int
    colour_name: str

    model_config = {"from_attributes": True}
