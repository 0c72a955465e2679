"""
Pydantic models for uploaded media and the dataset of known posts.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SENTINEL_RECORD_ID = -1

class MediaPayload(BaseModel):
    """Transport-safe encoding of an uploaded file."""
    model_config = ConfigDict(frozen=True)

    data: str = Field(..., description="Base64-encoded file content")
    mime_type: str = Field(..., description="Declared MIME type of the file")

class ContentDescription(BaseModel):
    """Structured description of the uploaded image produced by the describer stage."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    description: str = Field(..., min_length=1, description="Detailed description of the whole image")
    text_content: str = Field(..., min_length=1, description="All text found in the image")
    visual_elements: List[str] = Field(..., min_length=1, description="Key visual elements")
    theme: str = Field(..., min_length=1, description="Main subject or joke")

class DatasetRecord(BaseModel):
    """A known prior post the upload is compared against."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Record identifier")
    creator_username: Optional[str] = Field(None, description="Username of the post's creator")
    upload_date: Optional[str] = Field(None, description="When the post was published")
    image_url: Optional[str] = Field(None, description="URL of the post's image")
    post_link: Optional[str] = Field(None, description="Link to the original post")
    description: Optional[str] = Field(None, description="Text description of the post")
    created_at: Optional[str] = Field(None, description="When the record was added")

    @classmethod
    def sentinel(cls) -> "DatasetRecord":
        """Placeholder record used when no candidate exists."""
        return cls(
            id=SENTINEL_RECORD_ID,
            creator_username="",
            upload_date="",
            image_url="",
            post_link="",
            description="",
            created_at="",
        )

    @property
    def is_sentinel(self) -> bool:
        return self.id == SENTINEL_RECORD_ID

    @property
    def has_creator(self) -> bool:
        return bool(self.creator_username and self.creator_username.strip())
