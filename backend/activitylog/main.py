from __future__ import annotations

import json
from typing import List, Optional

import pydantic
import structlog
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models
from .activities import (
    Upload,
    create_activity,
    delete_activity,
    get_activity,
    list_activities_in_range,
    list_supervised_activities,
    list_user_activities,
    submit_activities,
    update_activity,
)
from .config import settings
from .database import engine, get_db
from .errors import ActivityLogError, ValidationError
from .logging_config import configure_logging
from .middleware import RequestContextMiddleware
from .rendering import render_report, report_filename
from .reports import GroupBy, ReportFlavor, ReportFormat, ReportRequest, build_report
from .repository import ActivityRepository
from .schemas import (
    ActivityCreateRequest,
    ActivityResponse,
    ActivitySubmitRequest,
    ActivitySubmitResponse,
    ActivityUpdateRequest,
    ErrorResponse,
    SupervisedActivityResponse,
)
from .timeutils import parse_date

configure_logging(settings.log_level, json=settings.log_json)
logger = structlog.get_logger(__name__)

models.Base.metadata.create_all(bind=engine)

ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 403, 404)}

app = FastAPI(title=settings.app_name, responses=ERROR_RESPONSES)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(ActivityLogError)
async def activity_log_error_handler(request: Request, exc: ActivityLogError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", code=exc.code, status_code=exc.status_code, detail=exc.message)
    body = ErrorResponse(detail=exc.message, code=exc.code)
    return JSONResponse(body.model_dump(), status_code=exc.status_code)


def get_repository(db: Session = Depends(get_db)) -> ActivityRepository:
    return ActivityRepository(db)


def current_user(
    x_user_id: Optional[str] = Header(None),
    repo: ActivityRepository = Depends(get_repository),
) -> models.User:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    user = repo.get_user(x_user_id)
    if user is None or not user.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def _optional_date(value: Optional[str]):
    return parse_date(value) if value else None


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/activities", response_model=list[ActivityResponse])
def activities_for_user(
    day: Optional[str] = None,
    state: Optional[str] = None,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> list[ActivityResponse]:
    return list_user_activities(repo, user.id, _optional_date(day), state)


@app.get("/activities/range/{date_from}/{date_to}", response_model=list[ActivityResponse])
def activities_in_range(
    date_from: str,
    date_to: str,
    state: str = models.ACTIVITY_STATE_SUBMITTED,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> list[ActivityResponse]:
    return list_activities_in_range(repo, user.id, date_from, date_to, state)


@app.get("/activities/supervised", response_model=list[SupervisedActivityResponse])
def supervised_activities(
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user_id: Optional[str] = None,
    project_id: Optional[str] = None,
    state: Optional[str] = None,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> list[SupervisedActivityResponse]:
    items = list_supervised_activities(
        repo,
        user,
        date_from=_optional_date(date_from),
        date_to=_optional_date(date_to),
        user_id=user_id,
        project_id=project_id,
        state=state,
    )
    return [
        SupervisedActivityResponse(
            activity=ActivityResponse.model_validate(item["activity"]),
            user_name=item["activity"].user.full_name if item["activity"].user else "",
            project_name=item["project_name"],
            activity_type_name=item["activity_type_name"],
            hours=item["hours"],
        )
        for item in items
    ]


@app.post("/activities/submit", response_model=ActivitySubmitResponse)
def submit(
    payload: ActivitySubmitRequest,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> ActivitySubmitResponse:
    submitted = submit_activities(repo, payload.ids, user.id)
    return ActivitySubmitResponse(
        submitted=len(submitted),
        activities=[ActivityResponse.model_validate(activity) for activity in submitted],
    )


@app.get("/activities/{activity_id}", response_model=ActivityResponse)
def read_activity(
    activity_id: str,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> ActivityResponse:
    return get_activity(repo, activity_id, user)


@app.post("/activities", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
async def add_activity(
    activity: str = Form(...),
    files: List[UploadFile] = File(default=[]),
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> ActivityResponse:
    try:
        payload = ActivityCreateRequest.model_validate(json.loads(activity))
    except (json.JSONDecodeError, pydantic.ValidationError) as exc:
        raise ValidationError("Datos de actividad inválidos") from exc
    if len(files) > settings.max_upload_files:
        raise ValidationError(f"Se permiten como máximo {settings.max_upload_files} archivos")
    uploads = []
    for upload in files:
        content = await upload.read()
        uploads.append(Upload(upload.filename or "documento", content, upload.content_type))
    return create_activity(
        repo,
        user.id,
        day=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        description=payload.description,
        project_id=payload.project_id,
        activity_type_id=payload.activity_type_id,
        system=payload.system,
        state=payload.state,
        documents=uploads,
    )


@app.put("/activities/{activity_id}", response_model=ActivityResponse)
def modify_activity(
    activity_id: str,
    payload: ActivityUpdateRequest,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> ActivityResponse:
    return update_activity(repo, activity_id, payload.changes(), user.id)


@app.delete("/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_activity(
    activity_id: str,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> Response:
    delete_activity(repo, activity_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _report_response(repo: ActivityRepository, flavor: ReportFlavor, request: ReportRequest, fmt: str) -> Response:
    report_format = ReportFormat.parse(fmt)
    result = build_report(repo, flavor, request)
    rendered = render_report(result, report_format)
    filename = report_filename(result.filename_subject, rendered.extension, result.generated_on)
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return Response(rendered.content, media_type=rendered.content_type, headers=headers)


@app.get("/reports/supervisee/{user_id}")
def supervisee_report(
    user_id: str,
    project_id: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    format: str = ReportFormat.SPREADSHEET.value,
    group_by: GroupBy = GroupBy.NONE,
    include_inactive: bool = True,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> Response:
    request = ReportRequest(
        caller_id=user.id,
        subject_id=user_id,
        project_id=project_id,
        date_from=_optional_date(date_from),
        date_to=_optional_date(date_to),
        group_by=group_by,
        include_inactive=include_inactive,
    )
    return _report_response(repo, ReportFlavor.SUPERVISEE, request, format)


@app.get("/reports/by-date")
def date_range_report(
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    project_id: Optional[str] = None,
    format: str = ReportFormat.SPREADSHEET.value,
    group_by: GroupBy = GroupBy.NONE,
    include_inactive: bool = True,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> Response:
    request = ReportRequest(
        caller_id=user.id,
        project_id=project_id,
        date_from=_optional_date(date_from),
        date_to=_optional_date(date_to),
        group_by=group_by,
        include_inactive=include_inactive,
    )
    return _report_response(repo, ReportFlavor.DATE_RANGE, request, format)


@app.get("/reports/by-project/{project_id}")
def project_report(
    project_id: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user_ids: List[str] = Query(default=[]),
    format: str = ReportFormat.SPREADSHEET.value,
    group_by: GroupBy = GroupBy.USER,
    include_inactive: bool = True,
    user: models.User = Depends(current_user),
    repo: ActivityRepository = Depends(get_repository),
) -> Response:
    request = ReportRequest(
        caller_id=user.id,
        project_id=project_id,
        user_ids=user_ids,
        date_from=_optional_date(date_from),
        date_to=_optional_date(date_to),
        group_by=group_by,
        include_inactive=include_inactive,
    )
    return _report_response(repo, ReportFlavor.PROJECT, request, format)
