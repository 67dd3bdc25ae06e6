from __future__ import annotations

import calendar
import datetime as dt
import re
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

import structlog

from .config import settings
from .errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from .models import (
    ACTIVITY_STATE_DRAFT,
    ACTIVITY_STATE_SUBMITTED,
    ACTIVITY_STATES,
    Activity,
    ActivityDocument,
    User,
)
from .overlap import has_overlap
from .repository import ActivityRepository
from .timeutils import TimeInterval, canonical_time, hours_between, parse_date

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = {"start_time", "end_time", "description", "project_id", "activity_type_id", "system", "state"}

NO_PROJECT_LABEL = "Sin proyecto"
NO_TYPE_LABEL = "Sin tipo"

OVERLAP_MESSAGE = "La actividad se superpone con otra actividad existente"


class Upload(NamedTuple):
    original_name: str
    content: bytes
    content_type: Optional[str] = None


def _today() -> dt.date:
    return dt.date.today()


def _get_activity(repo: ActivityRepository, activity_id: str) -> Activity:
    activity = repo.get_activity(activity_id)
    if activity is None:
        raise NotFoundError("Actividad no encontrada")
    return activity


def _ensure_owner(activity: Activity, caller_id: str, action: str) -> None:
    if activity.user_id != caller_id:
        raise PermissionDeniedError(f"No tiene permisos para {action} esta actividad")


def _ensure_not_past(day: dt.date, today: dt.date, message: str) -> None:
    if day < today:
        raise ValidationError(message)


def _ensure_references(repo: ActivityRepository, project_id: Optional[str], activity_type_id: Optional[str]) -> None:
    if project_id and repo.get_project(project_id) is None:
        raise NotFoundError("Proyecto no encontrado")
    if activity_type_id and repo.get_activity_type(activity_type_id) is None:
        raise NotFoundError("Tipo de actividad no encontrado")


def _normalize_state(value: Any) -> str:
    if value not in ACTIVITY_STATES:
        raise ValidationError("Estado de actividad desconocido")
    return value


def _activity_directory(activity_id: str) -> Path:
    path = settings.document_dir / activity_id
    path.mkdir(parents=True, exist_ok=True)
    return path


def _sanitize_filename(name: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9_.-]", "_", name.strip()) if name else ""
    return normalized or "documento"


def get_activity(repo: ActivityRepository, activity_id: str, caller: User) -> Activity:
    activity = _get_activity(repo, activity_id)
    if activity.user_id == caller.id:
        return activity
    if caller.is_supervisor and repo.is_supervised_by(activity.user_id, caller.id):
        return activity
    raise PermissionDeniedError("No tiene permisos para ver esta actividad")


def list_user_activities(
    repo: ActivityRepository,
    user_id: str,
    day: Optional[dt.date] = None,
    state: Optional[str] = None,
) -> List[Activity]:
    if state is not None:
        _normalize_state(state)
    return repo.find_activities_for_user(user_id, day, state)


def list_activities_in_range(
    repo: ActivityRepository,
    user_id: str,
    date_from: Any,
    date_to: Any,
    state: str = ACTIVITY_STATE_SUBMITTED,
) -> List[Activity]:
    start = parse_date(date_from)
    end = parse_date(date_to)
    if start > end:
        raise ValidationError("La fecha de inicio no puede ser posterior a la fecha fin")
    return repo.find_activities_in_range([user_id], start, end, [_normalize_state(state)])


def _subtract_months(day: dt.date, months: int) -> dt.date:
    year, month_index = divmod(day.year * 12 + (day.month - 1) - months, 12)
    month = month_index + 1
    # Clamp to the last day of shorter months, e.g. 31 May minus 3 months.
    return dt.date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def list_supervised_activities(
    repo: ActivityRepository,
    supervisor: User,
    date_from: Optional[Any] = None,
    date_to: Optional[Any] = None,
    user_id: Optional[str] = None,
    project_id: Optional[str] = None,
    state: Optional[str] = None,
    today: Optional[dt.date] = None,
) -> List[Dict[str, Any]]:
    """Activities of everyone reporting to ``supervisor`` with display fields resolved."""
    if not supervisor.is_supervisor:
        raise PermissionDeniedError("No tiene permisos para ver actividades de supervisados")
    current = today or _today()
    end = parse_date(date_to) if date_to is not None else current
    start = (
        parse_date(date_from)
        if date_from is not None
        else _subtract_months(end, settings.supervised_lookback_months)
    )
    team = repo.supervised_user_ids(supervisor.id)
    if user_id is not None:
        team = [member for member in team if member == user_id]
    if not team:
        logger.info("supervisor_without_team", supervisor_id=supervisor.id)
        return []
    wanted_state = _normalize_state(state) if state else ACTIVITY_STATE_SUBMITTED
    activities = repo.find_activities_in_range(team, start, end, [wanted_state], project_id)
    # Newest first.
    activities.sort(key=lambda activity: activity.date, reverse=True)
    return [
        {
            "activity": activity,
            "project_name": activity.project.name if activity.project else NO_PROJECT_LABEL,
            "activity_type_name": activity.activity_type.name if activity.activity_type else NO_TYPE_LABEL,
            "hours": activity.hours if activity.hours is not None else hours_between(activity.start_time, activity.end_time),
        }
        for activity in activities
    ]


def check_uploads(uploads: Sequence[Upload]) -> None:
    if len(uploads) > settings.max_upload_files:
        raise ValidationError(f"Se permiten como máximo {settings.max_upload_files} archivos")
    for upload in uploads:
        if len(upload.content) > settings.max_upload_bytes:
            raise ValidationError(f"El archivo {upload.original_name} excede el tamaño permitido")


def attach_documents(repo: ActivityRepository, activity: Activity, uploads: Iterable[Upload]) -> List[ActivityDocument]:
    if activity.state != ACTIVITY_STATE_DRAFT:
        raise InvalidStateError("Solo se pueden adjuntar documentos a actividades en borrador")
    uploads = list(uploads)
    check_uploads(uploads)
    documents: List[ActivityDocument] = []
    for upload in uploads:
        directory = _activity_directory(activity.id)
        suffix = Path(_sanitize_filename(upload.original_name)).suffix
        stored_path = directory / f"{uuid.uuid4().hex}{suffix}"
        with stored_path.open("wb") as handle:
            handle.write(upload.content)
        documents.append(
            repo.add_document(
                activity,
                upload.original_name or stored_path.name,
                str(stored_path),
                upload.content_type,
                len(upload.content),
            )
        )
    if documents:
        logger.info("activity_documents_attached", activity_id=activity.id, count=len(documents))
    return documents


def create_activity(
    repo: ActivityRepository,
    caller_id: str,
    *,
    day: Any,
    start_time: str,
    end_time: str,
    description: str,
    project_id: Optional[str] = None,
    activity_type_id: Optional[str] = None,
    system: Optional[str] = None,
    state: str = ACTIVITY_STATE_DRAFT,
    documents: Sequence[Upload] = (),
    today: Optional[dt.date] = None,
) -> Activity:
    """Create an activity for ``caller_id``.

    The row is always persisted as ``draft`` first so that documents can be
    attached while it is still mutable. When ``submitted`` was requested the
    activity is then moved there through a state-only update.
    """
    requested_state = _normalize_state(state)
    activity_day = parse_date(day)
    TimeInterval.from_strings(start_time, end_time)
    if not description or not description.strip():
        raise ValidationError("La descripción es obligatoria")
    _ensure_not_past(activity_day, today or _today(), "No se pueden crear actividades para fechas pasadas")
    _ensure_references(repo, project_id, activity_type_id)
    documents = list(documents)
    check_uploads(documents)
    if has_overlap(repo, caller_id, activity_day, start_time, end_time):
        raise ConflictError(OVERLAP_MESSAGE)

    activity = repo.add_activity(
        Activity(
            user_id=caller_id,
            date=activity_day,
            start_time=canonical_time(start_time),
            end_time=canonical_time(end_time),
            description=description.strip(),
            project_id=project_id,
            activity_type_id=activity_type_id,
            system=system,
            state=ACTIVITY_STATE_DRAFT,
        )
    )
    logger.info("activity_created", activity_id=activity.id, user_id=caller_id, day=str(activity_day))

    if documents:
        try:
            attach_documents(repo, activity, documents)
        except Exception:
            _discard_draft(repo, activity)
            raise

    if requested_state != ACTIVITY_STATE_DRAFT:
        activity = update_activity(repo, activity.id, {"state": requested_state}, caller_id, today=today)
    return activity


def update_activity(
    repo: ActivityRepository,
    activity_id: str,
    changes: Dict[str, Any],
    caller_id: str,
    today: Optional[dt.date] = None,
) -> Activity:
    activity = _get_activity(repo, activity_id)
    _ensure_owner(activity, caller_id, "editar")

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos no editables: {', '.join(sorted(unknown))}")

    if set(changes) == {"state"} and changes["state"] != activity.state:
        new_state = _normalize_state(changes["state"])
        if new_state == ACTIVITY_STATE_DRAFT:
            raise InvalidStateError("Una actividad enviada no puede volver a borrador")
        activity.state = new_state
        activity = repo.save(activity)
        logger.info("activity_state_changed", activity_id=activity.id, state=new_state)
        return activity

    if activity.state != ACTIVITY_STATE_DRAFT:
        raise InvalidStateError("No se puede editar una actividad que ya ha sido enviada")
    _ensure_not_past(activity.date, today or _today(), "No se pueden editar actividades de fechas pasadas")

    if "state" in changes:
        _normalize_state(changes["state"])
    if "project_id" in changes or "activity_type_id" in changes:
        _ensure_references(repo, changes.get("project_id"), changes.get("activity_type_id"))

    if changes.get("start_time") or changes.get("end_time"):
        start = changes.get("start_time") or activity.start_time
        end = changes.get("end_time") or activity.end_time
        TimeInterval.from_strings(start, end)
        if has_overlap(repo, caller_id, activity.date, start, end, exclude_activity_id=activity.id):
            raise ConflictError(OVERLAP_MESSAGE)
        activity.start_time = canonical_time(start)
        activity.end_time = canonical_time(end)
        activity.hours = None

    if "description" in changes:
        description = changes["description"]
        if not description or not str(description).strip():
            raise ValidationError("La descripción es obligatoria")
        activity.description = str(description).strip()
    if "project_id" in changes:
        activity.project_id = changes["project_id"]
    if "activity_type_id" in changes:
        activity.activity_type_id = changes["activity_type_id"]
    if "system" in changes:
        activity.system = changes["system"]
    if "state" in changes:
        activity.state = changes["state"]

    activity = repo.save(activity)
    logger.info("activity_updated", activity_id=activity.id, fields=sorted(changes))
    return activity


def delete_activity(repo: ActivityRepository, activity_id: str, caller_id: str) -> None:
    activity = _get_activity(repo, activity_id)
    _ensure_owner(activity, caller_id, "eliminar")
    if activity.state != ACTIVITY_STATE_DRAFT:
        raise InvalidStateError("No se puede eliminar una actividad que ya ha sido enviada")
    _discard_draft(repo, activity)
    logger.info("activity_deleted", activity_id=activity_id, user_id=caller_id)


def _discard_draft(repo: ActivityRepository, activity: Activity) -> None:
    directory = settings.document_dir / activity.id
    repo.delete_activity(activity)
    if directory.exists():
        shutil.rmtree(directory, ignore_errors=True)


def submit_activities(repo: ActivityRepository, activity_ids: Sequence[str], caller_id: str) -> List[Activity]:
    """Submit a batch of activities; nothing is written unless every id qualifies."""
    ordered_ids = list(dict.fromkeys(activity_ids))
    if not ordered_ids:
        raise ValidationError("Se requiere al menos una actividad")
    found = {activity.id: activity for activity in repo.get_activities(ordered_ids)}
    missing = [activity_id for activity_id in ordered_ids if activity_id not in found]
    if missing:
        raise NotFoundError("Actividad no encontrada")
    activities = [found[activity_id] for activity_id in ordered_ids]
    for activity in activities:
        if activity.user_id != caller_id:
            raise PermissionDeniedError("No tiene permisos para enviar esta actividad")
    for activity in activities:
        if activity.is_submitted:
            raise InvalidStateError("Una o más actividades ya han sido enviadas")
    submitted = repo.set_state(activities, ACTIVITY_STATE_SUBMITTED)
    logger.info("activities_submitted", user_id=caller_id, count=len(submitted))
    return submitted
