# backend/model.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from shared.schema import CamelModel


class ErrorResponse(BaseModel):
    message: str
    errors: Optional[List[Dict[str, Any]]] = None


class UploadResponse(CamelModel):
    data_url: str
    original_name: str
    size: int
    mime_type: str
