from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .models import ACTIVITY_STATE_SUBMITTED, Activity, Project, User
from .repository import ActivityRepository
from .timeutils import HOURS_QUANTUM, ZERO_HOURS, hours_between, parse_date

logger = structlog.get_logger(__name__)

SPANISH_MONTHS = (
    "Enero",
    "Febrero",
    "Marzo",
    "Abril",
    "Mayo",
    "Junio",
    "Julio",
    "Agosto",
    "Septiembre",
    "Octubre",
    "Noviembre",
    "Diciembre",
)

STATE_LABELS = {"draft": "Borrador", "submitted": "Enviado"}

NO_PROJECT = "Sin proyecto"
NO_TYPE = "Sin tipo"
NO_TYPE_PROJECT_REPORT = "N/A"
UNKNOWN_USER = "Usuario desconocido"
NO_USER_GROUP = "Sin usuario"
NO_DATE = "Sin fecha"
ALL_PROJECTS = "Todos los proyectos"
WHOLE_PERIOD = "Todo el período"


class GroupBy(str, Enum):
    NONE = "none"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    USER = "user"


class ReportFormat(str, Enum):
    SPREADSHEET = "spreadsheet"
    DELIMITED = "delimited"
    PDF = "pdf"

    @classmethod
    def parse(cls, value: str) -> "ReportFormat":
        """Accept the canonical names plus the ``excel``/``csv`` aliases clients send."""
        aliases = {"excel": cls.SPREADSHEET, "xlsx": cls.SPREADSHEET, "csv": cls.DELIMITED}
        normalized = (value or "").strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"Formato de informe no válido: {value}") from exc


class ReportFlavor(str, Enum):
    SUPERVISEE = "supervisee"
    DATE_RANGE = "date_range"
    PROJECT = "project"


@dataclass
class ReportRow:
    date: Optional[dt.date]
    date_label: str
    user_name: str
    project_name: str
    description: str
    type_name: str
    hours: Decimal
    state: Optional[str] = None


@dataclass
class ReportGroup:
    label: Optional[str]
    rows: List[ReportRow] = field(default_factory=list)


@dataclass
class ReportResult:
    flavor: ReportFlavor
    group_by: GroupBy
    title: str
    subject_label: Optional[str]
    subject_name: Optional[str]
    project_label: str
    period_label: str
    generated_by: str
    generated_on: dt.date
    filename_subject: str
    include_project_column: bool = True
    groups: List[ReportGroup] = field(default_factory=list)
    total_hours: Decimal = ZERO_HOURS
    total_rows: int = 0

    @property
    def rows(self) -> List[ReportRow]:
        return [row for group in self.groups for row in group.rows]

    @property
    def is_empty(self) -> bool:
        return self.total_rows == 0


@dataclass
class ReportRequest:
    """Transient description of what a caller wants exported."""

    caller_id: str
    subject_id: Optional[str] = None
    project_id: Optional[str] = None
    user_ids: Sequence[str] = ()
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    group_by: Optional[GroupBy] = None
    include_inactive: bool = True
    today: Optional[dt.date] = None


def format_day(value: dt.date) -> str:
    return value.strftime("%d/%m/%Y")


def _row_date(activity: Activity) -> Optional[dt.date]:
    try:
        return parse_date(activity.date)
    except ValidationError:
        return None


def _display_name(user: Optional[User], missing: str = UNKNOWN_USER) -> str:
    if user is None:
        return missing
    return user.display_name


def display_hours(activity: Activity) -> Decimal:
    if activity.hours is not None:
        return Decimal(activity.hours).quantize(HOURS_QUANTUM)
    return hours_between(activity.start_time, activity.end_time)


def _sort_key(group_by: GroupBy) -> Callable[[Activity], Tuple]:
    def key(activity: Activity) -> Tuple:
        if group_by is GroupBy.USER:
            return (_display_name(activity.user, NO_USER_GROUP),)
        day = _row_date(activity)
        if day is None:
            return (1,)
        if group_by is GroupBy.DAY:
            return (0, day)
        if group_by is GroupBy.WEEK:
            iso_year, iso_week, _ = day.isocalendar()
            return (0, iso_year, iso_week, day)
        return (0, day.year, day.month)

    return key


def group_label(activity: Activity, group_by: GroupBy, date_formatter: Callable[[dt.date], str] = format_day) -> Optional[str]:
    if group_by is GroupBy.NONE:
        return None
    if group_by is GroupBy.USER:
        return _display_name(activity.user, NO_USER_GROUP)
    day = _row_date(activity)
    if day is None:
        return NO_DATE
    if group_by is GroupBy.DAY:
        return date_formatter(day)
    if group_by is GroupBy.WEEK:
        iso_year, iso_week, _ = day.isocalendar()
        return f"Semana {iso_week}, {iso_year}"
    return f"{SPANISH_MONTHS[day.month - 1]} {day.year}"


def _to_row(
    activity: Activity,
    date_formatter: Callable[[dt.date], str],
    type_placeholder: str,
    include_state: bool,
) -> ReportRow:
    day = _row_date(activity)
    return ReportRow(
        date=day,
        date_label=date_formatter(day) if day is not None else NO_DATE,
        user_name=activity.user.full_name if activity.user is not None else UNKNOWN_USER,
        project_name=activity.project.name if activity.project is not None else NO_PROJECT,
        description=activity.description or "",
        type_name=activity.activity_type.name if activity.activity_type is not None else type_placeholder,
        hours=display_hours(activity),
        state=STATE_LABELS.get(activity.state, activity.state) if include_state else None,
    )


def aggregate(
    activities: Iterable[Activity],
    group_by: GroupBy = GroupBy.NONE,
    date_formatter: Callable[[dt.date], str] = format_day,
    type_placeholder: str = NO_TYPE,
    include_state: bool = False,
) -> Tuple[List[ReportGroup], Decimal, int]:
    """Group submitted activities into labelled, ordered sections with totals.

    Drafts never reach a report. With ``GroupBy.NONE`` the input order is
    kept as a single unlabelled group; otherwise rows are stably sorted by
    the grouping key and split wherever the rendered label changes.
    """
    group_by = GroupBy(group_by)
    submitted = [activity for activity in activities if activity.is_submitted]
    if group_by is not GroupBy.NONE:
        submitted = sorted(submitted, key=_sort_key(group_by))

    groups: List[ReportGroup] = []
    total = ZERO_HOURS
    for activity in submitted:
        label = group_label(activity, group_by, date_formatter)
        if not groups or groups[-1].label != label:
            groups.append(ReportGroup(label=label))
        row = _to_row(activity, date_formatter, type_placeholder, include_state)
        groups[-1].rows.append(row)
        total += row.hours
    return groups, total.quantize(HOURS_QUANTUM), len(submitted)


# -- report builders --------------------------------------------------------


def _require_user(repo: ActivityRepository, user_id: Optional[str], message: str) -> User:
    user = repo.get_user(user_id) if user_id else None
    if user is None:
        raise NotFoundError(message)
    return user


def _resolve_project(repo: ActivityRepository, project_id: Optional[str], include_inactive: bool) -> Optional[Project]:
    if not project_id:
        return None
    project = repo.get_project(project_id)
    if project is None:
        raise NotFoundError("Proyecto no encontrado")
    if not project.active and not include_inactive:
        raise ValidationError("El proyecto seleccionado está inactivo")
    return project


def _ordered_range(date_from: Optional[dt.date], date_to: Optional[dt.date]) -> None:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("La fecha de inicio no puede ser posterior a la fecha fin")


def _drop_inactive_projects(activities: List[Activity], include_inactive: bool) -> List[Activity]:
    if include_inactive:
        return activities
    return [activity for activity in activities if activity.project is None or activity.project.active]


def _period_label(date_from: dt.date, date_to: dt.date) -> str:
    return f"{format_day(date_from)} al {format_day(date_to)}"


def build_supervisee_report(repo: ActivityRepository, request: ReportRequest) -> ReportResult:
    """Submitted activities of one supervisee, as seen by their supervisor."""
    if not request.subject_id or not repo.is_supervised_by(request.subject_id, request.caller_id):
        raise PermissionDeniedError("No tienes permisos para acceder a este informe")
    supervisee = _require_user(repo, request.subject_id, "Supervisado no encontrado")
    supervisor = _require_user(repo, request.caller_id, "Supervisor no encontrado")
    project = _resolve_project(repo, request.project_id, request.include_inactive)

    today = request.today or dt.date.today()
    date_from = request.date_from or today.replace(day=1)
    date_to = request.date_to or today
    _ordered_range(date_from, date_to)

    activities = repo.find_activities_in_range(
        [supervisee.id], date_from, date_to, [ACTIVITY_STATE_SUBMITTED], request.project_id
    )
    activities = _drop_inactive_projects(activities, request.include_inactive)
    group_by = request.group_by or GroupBy.NONE
    groups, total_hours, total_rows = aggregate(activities, group_by)
    logger.info(
        "report_built",
        flavor=ReportFlavor.SUPERVISEE.value,
        caller_id=supervisor.id,
        subject_id=supervisee.id,
        rows=total_rows,
    )
    return ReportResult(
        flavor=ReportFlavor.SUPERVISEE,
        group_by=group_by,
        title="INFORME DE ACTIVIDADES",
        subject_label="Supervisado",
        subject_name=supervisee.full_name,
        project_label=project.name if project else ALL_PROJECTS,
        period_label=_period_label(date_from, date_to),
        generated_by=supervisor.display_name,
        generated_on=today,
        filename_subject=f"supervisado_{supervisee.id}",
        include_project_column=project is None,
        groups=groups,
        total_hours=total_hours,
        total_rows=total_rows,
    )


def build_date_range_report(repo: ActivityRepository, request: ReportRequest) -> ReportResult:
    """Submitted activities between two dates; a supervisor sees their whole team.

    Unlike the other flavors, an empty result is reported as ``NotFoundError``.
    """
    if request.date_from is None or request.date_to is None:
        raise ValidationError("Se requieren fecha de inicio y fecha fin")
    _ordered_range(request.date_from, request.date_to)
    caller = _require_user(repo, request.caller_id, "Usuario no encontrado")
    project = _resolve_project(repo, request.project_id, request.include_inactive)

    if caller.is_supervisor:
        user_ids = repo.supervised_user_ids(caller.id)
    else:
        user_ids = [caller.id]
    activities = repo.find_activities_in_range(
        user_ids, request.date_from, request.date_to, [ACTIVITY_STATE_SUBMITTED], request.project_id
    )
    activities = _drop_inactive_projects(activities, request.include_inactive)
    if not activities:
        logger.info("report_empty", flavor=ReportFlavor.DATE_RANGE.value, caller_id=caller.id)
        raise NotFoundError("No se encontraron actividades para el período seleccionado")

    group_by = request.group_by or GroupBy.NONE
    groups, total_hours, total_rows = aggregate(activities, group_by)
    logger.info("report_built", flavor=ReportFlavor.DATE_RANGE.value, caller_id=caller.id, rows=total_rows)
    today = request.today or dt.date.today()
    return ReportResult(
        flavor=ReportFlavor.DATE_RANGE,
        group_by=group_by,
        title="INFORME DE ACTIVIDADES POR FECHAS",
        subject_label="Usuario",
        subject_name=caller.full_name,
        project_label=project.name if project else ALL_PROJECTS,
        period_label=_period_label(request.date_from, request.date_to),
        generated_by=caller.display_name,
        generated_on=today,
        filename_subject=f"{request.date_from.isoformat()}_{request.date_to.isoformat()}",
        include_project_column=project is None,
        groups=groups,
        total_hours=total_hours,
        total_rows=total_rows,
    )


def build_project_report(repo: ActivityRepository, request: ReportRequest) -> ReportResult:
    caller = _require_user(repo, request.caller_id, "Usuario no encontrado")
    if not caller.is_supervisor:
        raise PermissionDeniedError("Solo los supervisores pueden generar informes de proyecto")
    if not request.project_id:
        raise ValidationError("Se requiere un proyecto")
    project = _resolve_project(repo, request.project_id, request.include_inactive)
    _ordered_range(request.date_from, request.date_to)

    activities = repo.find_activities_for_project(
        project.id,
        user_ids=list(request.user_ids) or None,
        date_from=request.date_from,
        date_to=request.date_to,
        states=[ACTIVITY_STATE_SUBMITTED],
    )
    group_by = request.group_by or GroupBy.USER
    groups, total_hours, total_rows = aggregate(
        activities,
        group_by,
        type_placeholder=NO_TYPE_PROJECT_REPORT,
        include_state=True,
    )
    if request.date_from is not None and request.date_to is not None:
        period = _period_label(request.date_from, request.date_to)
    else:
        period = WHOLE_PERIOD
    logger.info("report_built", flavor=ReportFlavor.PROJECT.value, caller_id=caller.id, project_id=project.id, rows=total_rows)
    return ReportResult(
        flavor=ReportFlavor.PROJECT,
        group_by=group_by,
        title="INFORME DE PROYECTO",
        subject_label=None,
        subject_name=None,
        project_label=project.name,
        period_label=period,
        generated_by=caller.display_name,
        generated_on=request.today or dt.date.today(),
        filename_subject=f"proyecto_{project.id}",
        include_project_column=False,
        groups=groups,
        total_hours=total_hours,
        total_rows=total_rows,
    )


BUILDERS = {
    ReportFlavor.SUPERVISEE: build_supervisee_report,
    ReportFlavor.DATE_RANGE: build_date_range_report,
    ReportFlavor.PROJECT: build_project_report,
}


def build_report(repo: ActivityRepository, flavor: ReportFlavor, request: ReportRequest) -> ReportResult:
    return BUILDERS[ReportFlavor(flavor)](repo, request)
