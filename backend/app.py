# backend/app.py
# Backend mock: không có model thật, chỉ chọn ảnh placeholder theo style,
# giả lập độ trễ 1-2s và ~20% lỗi 500.

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.logging_setup import setup_logging
from config.settings import settings
from shared.data_url import build_data_url
from shared.schema import Generation, GenerationRequest

from .model import ErrorResponse, UploadResponse
from .storage import MemStorage, storage
from .utils import ALLOWED_UPLOAD_TYPES, get_timestamp_ms, placeholder_image_url

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="AI Studio Mock Service")


@dataclass
class MockBehavior:
    min_delay: float = settings.MOCK_MIN_DELAY
    max_delay: float = settings.MOCK_MAX_DELAY
    failure_rate: float = settings.MOCK_FAILURE_RATE


def get_mock_behavior() -> MockBehavior:
    return MockBehavior()


def get_storage() -> MemStorage:
    return storage


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Mọi lỗi trả về dạng {"message": ...}
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"message": "Validation error", "errors": jsonable_encoder(exc.errors())},
    )


@app.post("/api/upload", response_model=UploadResponse, responses={400: {"model": ErrorResponse}})
async def upload(image: UploadFile = File(...)):
    if image.content_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(status_code=400, detail="Only PNG and JPG files are allowed")

    data = await image.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File size must be less than 10MB")

    return UploadResponse(
        data_url=build_data_url(data, image.content_type),
        original_name=image.filename or "upload",
        size=len(data),
        mime_type=image.content_type,
    )


@app.post(
    "/api/generate",
    response_model=Generation,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def generate(
    req: GenerationRequest,
    behavior: MockBehavior = Depends(get_mock_behavior),
    store: MemStorage = Depends(get_storage),
):
    started = get_timestamp_ms()

    # Giả lập thời gian xử lý
    await asyncio.sleep(random.uniform(behavior.min_delay, behavior.max_delay))

    # Giả lập lỗi model
    if random.random() < behavior.failure_rate:
        logger.warning("Simulated failure for style=%s", req.style)
        raise HTTPException(status_code=500, detail="Model overloaded")

    generation = store.create_generation(
        image_url=placeholder_image_url(req.style),
        original_image_url=req.image_data_url,
        prompt=req.prompt,
        style=req.style,
    )
    logger.info(
        "Generation %s done, style=%s, took %dms",
        generation.id,
        req.style,
        get_timestamp_ms() - started,
    )
    return generation


@app.get("/api/generations", response_model=List[Generation])
async def list_generations(
    limit: int = Query(5, ge=1, le=50),
    store: MemStorage = Depends(get_storage),
):
    return store.get_generations(limit)


@app.get("/api/generations/{generation_id}", response_model=Generation)
async def get_generation(generation_id: str, store: MemStorage = Depends(get_storage)):
    generation = store.get_generation(generation_id)
    if generation is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return generation
