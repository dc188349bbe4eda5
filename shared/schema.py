# shared/schema.py
# Model dùng chung giữa backend (FastAPI) và frontend (Streamlit + controller).
# Trên wire dùng camelCase: imageDataUrl, originalImageUrl, createdAt...

from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Style = Literal["editorial", "streetwear", "vintage", "minimalist", "cyberpunk", "watercolor"]

STYLE_OPTIONS: Tuple[Tuple[str, str], ...] = (
    ("editorial", "Editorial"),
    ("streetwear", "Streetwear"),
    ("vintage", "Vintage"),
    ("minimalist", "Minimalist"),
    ("cyberpunk", "Cyberpunk"),
    ("watercolor", "Watercolor"),
)

MAX_PROMPT_LENGTH = 500


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class GenerationRequest(CamelModel):
    """Input của một lần generate; giữ nguyên qua các lần retry."""

    model_config = ConfigDict(frozen=True)

    image_data_url: str = Field(min_length=1)
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    style: Style
    creativity: float = Field(default=50, ge=0, le=100)
    strength: float = Field(default=75, ge=0, le=100)


class Generation(CamelModel):
    """Kết quả generate thành công (cũng là item trong history)."""

    id: str
    image_url: str
    original_image_url: str
    prompt: str
    style: str
    created_at: Optional[datetime] = None


class UploadedFile(CamelModel):
    data_url: str
    original_name: str
    size: int
    mime_type: str
