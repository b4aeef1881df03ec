import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, UploadFile, status
from pydantic import BaseModel

from app.config import settings
from app.parsers import parse_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])


class RowErrorResponse(BaseModel):
    index: int
    reason: str


class ImportResponse(BaseModel):
    filename: Optional[str]
    format_detected: str
    columns: list[str]
    records: list[dict[str, Any]]
    total_attempted: int
    valid_count: int
    failed_count: int
    errors: list[RowErrorResponse]
    warnings: list[str]


@router.post("", response_model=ImportResponse)
async def import_file(file: UploadFile):
    file_bytes = await file.read()
    if len(file_bytes) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_upload_bytes // (1024 * 1024)} MB limit",
        )
    if not file_bytes.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")

    result = parse_file(file_bytes)
    if result.valid_count == 0:
        logger.warning("Import of %r produced no records: %s", file.filename, result.error_summary())
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error_summary())

    logger.info(
        "Imported %d/%d record(s) from %r (%s)",
        result.valid_count, result.total_attempted, file.filename, result.format_detected,
    )
    return ImportResponse(
        filename=file.filename,
        format_detected=result.format_detected,
        columns=result.columns,
        records=result.records,
        total_attempted=result.total_attempted,
        valid_count=result.valid_count,
        failed_count=result.failed_count,
        errors=[RowErrorResponse(index=e.index, reason=e.reason) for e in result.errors],
        warnings=result.warnings,
    )
