from __future__ import annotations

import csv
import datetime as dt
import io
import re
from typing import List, NamedTuple, Optional

import structlog
from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from .config import settings
from .errors import UnsupportedFormatError
from .reports import ReportFlavor, ReportFormat, ReportResult, ReportRow, format_day

logger = structlog.get_logger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_CONTENT_TYPE = "text/csv"

SHEET_TITLES = {
    ReportFlavor.SUPERVISEE: "Informe de Actividades",
    ReportFlavor.DATE_RANGE: "Informe de Actividades",
    ReportFlavor.PROJECT: "Informe del Proyecto",
}

COLUMN_WIDTHS = {
    "Fecha": 15,
    "Usuario": 25,
    "Proyecto": 20,
    "Actividad": 40,
    "Tipo": 15,
    "Horas": 10,
    "Estado": 15,
}


class RenderedReport(NamedTuple):
    content: bytes
    content_type: str
    extension: str


def columns_for(result: ReportResult) -> List[str]:
    if result.flavor is ReportFlavor.PROJECT:
        return ["Fecha", "Usuario", "Actividad", "Tipo", "Horas", "Estado"]
    if result.include_project_column:
        return ["Fecha", "Usuario", "Proyecto", "Actividad", "Tipo", "Horas"]
    return ["Fecha", "Usuario", "Actividad", "Tipo", "Horas"]


def _row_values(result: ReportResult, row: ReportRow) -> List[object]:
    values: List[object] = [row.date_label, row.user_name]
    if result.flavor is not ReportFlavor.PROJECT and result.include_project_column:
        values.append(row.project_name)
    values.extend([row.description, row.type_name, float(row.hours)])
    if result.flavor is ReportFlavor.PROJECT:
        values.append(row.state or "")
    return values


def subtitle(result: ReportResult) -> str:
    parts = []
    if result.subject_label:
        parts.append(f"{result.subject_label}: {result.subject_name}")
    parts.append(f"Proyecto: {result.project_label}")
    parts.append(f"Período: {result.period_label}")
    return " | ".join(parts)


def _write_xlsx(result: ReportResult) -> bytes:
    columns = columns_for(result)
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLES[result.flavor]
    ws.append([result.title])
    ws.append([subtitle(result)])
    ws.append(
        [
            f"Fecha de generación: {format_day(result.generated_on)}",
            f"Generado por: {result.generated_by}",
        ]
    )
    ws.append([])
    ws.append(columns)
    for group in result.groups:
        if group.label is not None:
            ws.append([group.label])
        for row in group.rows:
            ws.append(_row_values(result, row))
    ws.append([])
    ws.append(["RESUMEN"])
    ws.append(["Total de horas:", float(result.total_hours), "Total de actividades:", result.total_rows])
    ws.append([])
    ws.append([settings.report_footer])

    for index, column in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(index)].width = COLUMN_WIDTHS[column]

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _write_csv(result: ReportResult) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns_for(result))
    for group in result.groups:
        if group.label is not None:
            writer.writerow([group.label])
        for row in group.rows:
            values = _row_values(result, row)
            writer.writerow([f"{row.hours:.2f}" if isinstance(value, float) else value for value in values])
    writer.writerow(["Total de horas", f"{result.total_hours:.2f}"])
    writer.writerow(["Total de actividades", result.total_rows])
    return buffer.getvalue().encode("utf-8")


def render_report(result: ReportResult, fmt: ReportFormat) -> RenderedReport:
    """Encode an aggregated report as bytes plus the metadata a download needs."""
    fmt = ReportFormat(fmt)
    if fmt is ReportFormat.DELIMITED:
        return RenderedReport(_write_csv(result), CSV_CONTENT_TYPE, "csv")
    if fmt is ReportFormat.PDF:
        if result.flavor is not ReportFlavor.SUPERVISEE:
            raise UnsupportedFormatError("El formato PDF no está disponible para este informe")
        # Supervisee reports fall back to the spreadsheet encoding.
        logger.info("report_pdf_fallback", flavor=result.flavor.value)
    return RenderedReport(_write_xlsx(result), XLSX_CONTENT_TYPE, "xlsx")


def _sanitize_subject(subject: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9_.-]", "_", subject.strip()) if subject else ""
    return normalized or "informe"


def report_filename(subject: str, extension: str, today: Optional[dt.date] = None) -> str:
    day = today or dt.date.today()
    return f"informe_{_sanitize_subject(subject)}_{day.isoformat()}.{extension}"
