from typing import List, Optional

from pydantic import BaseModel, Field


class AddSegmentModel(BaseModel):
    """A segment to add a user to, optionally for a limited time."""

    name: str = Field(..., min_length=1, max_length=255)
    expire: Optional[str] = Field(
        None, description="Relative duration, e.g. '1h', '30m', '1h30m'."
    )


class UserSegmentsUpdateModel(BaseModel):
    """Request body for adding and removing user segments in one call."""

    add_segments: List[AddSegmentModel] = Field(default_factory=list)
    remove_segments: List[str] = Field(default_factory=list)
