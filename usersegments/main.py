from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette import status

from usersegments.clients.disk import YandexDiskClient
from usersegments.core.db import SessionLocal, create_tables, engine, get_db
from usersegments.core.exceptions import (
    ConflictException,
    NotFoundException,
    ReportStorageUnavailableException,
    ReportUploadException,
    SegmentsException,
    TransientStoreException,
    ValidationException,
)
from usersegments.core.logging_config import configure_logging
from usersegments.core.scheduler import ExpirationScheduler
from usersegments.core.settings import config_settings
from usersegments.models.schemas.user import UserSegmentsUpdateModel
from usersegments.services.segment_service import SegmentService
from usersegments.services.user_service import UserService


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config_settings.LOG_LEVEL)
    create_tables(engine)

    scheduler = ExpirationScheduler(
        SessionLocal, interval=config_settings.SWEEP_INTERVAL_SECONDS
    )
    if config_settings.SWEEPER_ENABLED:
        await scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(
    title="Dynamic user segmentation service",
    description="Stores users and the segments they belong to, with a full history of membership changes.",
    version="1.0.0",
    lifespan=lifespan,
)


# Domain exception -> HTTP status
_ERROR_STATUS = [
    (NotFoundException, status.HTTP_404_NOT_FOUND),
    (ConflictException, status.HTTP_409_CONFLICT),
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (TransientStoreException, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ReportStorageUnavailableException, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ReportUploadException, status.HTTP_502_BAD_GATEWAY),
]


@app.exception_handler(SegmentsException)
async def segments_exception_handler(request: Request, exc: SegmentsException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for exc_type, mapped_status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code = mapped_status
            break
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def get_disk_client() -> YandexDiskClient:
    return YandexDiskClient(
        token=config_settings.YANDEX_TOKEN,
        base_url=config_settings.YANDEX_DISK_API_URL,
        timeout=config_settings.HTTP_TIMEOUT_SECONDS,
    )


@app.get("/ping", response_class=PlainTextResponse)
def ping():
    return "pong!"


@app.post(
    "/v1/user/{user_id}",
    status_code=status.HTTP_201_CREATED,
    summary="Create user",
)
def create_user(
    user_id: int = Path(..., ge=1, description="The ID of the user."),
    db: Session = Depends(get_db),
):
    UserService(db).create_user(user_id)


@app.get(
    "/v1/user/{user_id}/segments",
    response_model=List[str],
    summary="Get user segments",
)
def get_user_segments(
    user_id: int = Path(..., ge=1, description="The ID of the user."),
    db: Session = Depends(get_db),
):
    return UserService(db).get_user_segments(user_id)


@app.post(
    "/v1/user/{user_id}/segments",
    status_code=status.HTTP_200_OK,
    summary="Add or remove user segments",
)
def update_user_segments(
    segments: UserSegmentsUpdateModel,
    user_id: int = Path(..., ge=1, description="The ID of the user."),
    db: Session = Depends(get_db),
):
    """
    Adds and removes segments for a user atomically. Additions are applied
    before removals.
    """
    UserService(db).update_user_segments(
        user_id, segments.add_segments, segments.remove_segments
    )


@app.get(
    "/v1/user/{user_id}/operations",
    response_class=PlainTextResponse,
    summary="Get user operations",
)
def get_user_operations(
    user_id: int = Path(..., ge=1, description="The ID of the user."),
    date: Optional[str] = Query(None, description="Month to report, YYYY-MM."),
    db: Session = Depends(get_db),
):
    operations = UserService(db).get_user_operations(user_id, date)
    return PlainTextResponse(
        "".join(f"{operation}\n" for operation in operations),
        media_type="text/csv",
    )


@app.get(
    "/v1/user/{user_id}/operations/report-link",
    response_class=PlainTextResponse,
    summary="Get user operations report link",
)
def get_user_operations_report_link(
    user_id: int = Path(..., ge=1, description="The ID of the user."),
    date: Optional[str] = Query(None, description="Month to report, YYYY-MM."),
    db: Session = Depends(get_db),
    disk_client: YandexDiskClient = Depends(get_disk_client),
):
    return UserService(db, disk_client=disk_client).build_operations_report(user_id, date)


@app.post(
    "/v1/segment/{segment_name}",
    status_code=status.HTTP_201_CREATED,
    summary="Create segment",
)
def create_segment(
    segment_name: str = Path(..., min_length=1, max_length=255),
    auto: Optional[float] = Query(
        None, ge=0, le=100, description="Percentage of users to add to the new segment."
    ),
    db: Session = Depends(get_db),
):
    segment_service = SegmentService(db)
    if auto is None:
        segment_service.create_segment(segment_name)
    else:
        segment_service.create_auto_segment(segment_name, auto)


@app.delete(
    "/v1/segment/{segment_name}",
    status_code=status.HTTP_200_OK,
    summary="Delete segment",
)
def delete_segment(
    segment_name: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
):
    SegmentService(db).delete_segment(segment_name)


@app.get(
    "/v1/segment/list",
    response_model=List[str],
    summary="Get segments",
)
def get_segments(db: Session = Depends(get_db)):
    return SegmentService(db).get_segments()


if __name__ == "__main__":
    uvicorn.run("usersegments.main:app", host="0.0.0.0", port=8080)
