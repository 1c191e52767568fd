"""
E-mail rendering for notification firings.
Messages are built from the firing snapshot only, never from live records.
"""
from datetime import date, datetime
from html import escape
from typing import List, Optional, Tuple

from ..schemas.notifications import RuleKind
from .evaluator import Firing


SYSTEM_NAME = "Sistema de Gestión de Equipos de Laboratorio"
IMPORTANT_TEXT = (
    "Este es un correo automático del Sistema de Gestión de Equipos de Laboratorio. "
    "Para más detalles, ingrese al sistema o contacte al administrador."
)
FOOTER_TEXT = "Este correo fue enviado automáticamente, por favor no responder."

# kind -> (subject prefix, header colour)
_KIND_STYLE = {
    RuleKind.maintenance_overdue.value: ("Mantenimiento VENCIDO", "#dc2626"),
    RuleKind.calibration_due.value: ("Calibración Próxima a Vencer", "#2563eb"),
    RuleKind.maintenance_reminder.value: ("Recordatorio: Mantenimiento Programado", "#2563eb"),
    RuleKind.maintenance_completed.value: ("Mantenimiento COMPLETADO", "#16a34a"),
}
_CUSTOM_STYLE = ("Notificación de LabWise", "#4b5563")

_STATUS_LABELS = {
    "scheduled": "Programado",
    "in_progress": "En Progreso",
    "completed": "Completado",
    "cancelled": "Cancelado",
}
_TYPE_LABELS = {
    "preventive": "Preventivo",
    "corrective": "Correctivo",
    "predictive": "Predictivo",
    "other": "Otro",
}
_PRIORITY_LABELS = {"low": "Baja", "medium": "Media", "high": "Alta"}


def _fmt(value) -> str:
    if value is None or value == "":
        return "N/A"
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    return str(value)


def _rows(pairs: List[Tuple[str, object]]) -> str:
    return "".join(
        f'<tr><td style="font-weight:600;color:#4b5563;padding:6px 0">{escape(label)}:</td>'
        f'<td style="text-align:right;color:#1f2937">{escape(_fmt(value))}</td></tr>'
        for label, value in pairs
    )


def render_subject(firing: Firing) -> str:
    prefix, _ = _KIND_STYLE.get(firing.rule_kind, _CUSTOM_STYLE)
    return f"{prefix} - {firing.equipment.instrument}"


def _header(firing: Firing) -> str:
    prefix, _ = _KIND_STYLE.get(firing.rule_kind, _CUSTOM_STYLE)
    if firing.rule_kind == RuleKind.calibration_due.value and firing.days_until_due is not None:
        unit = "día" if firing.days_until_due == 1 else "días"
        return f"Calibración Externa Próxima a Vencer - {firing.days_until_due} {unit}"
    return f"{prefix} - {firing.equipment.instrument}"


def render_message(firing: Firing, recipient_name: Optional[str] = None) -> Tuple[str, str]:
    """
    Render subject and HTML body for one firing.

    Args:
        firing: Firing snapshot produced by the evaluator or a task transition
        recipient_name: Greeting name; defaults to the generic "Equipo"

    Returns:
        (subject, html)
    """
    subject = render_subject(firing)
    _, colour = _KIND_STYLE.get(firing.rule_kind, _CUSTOM_STYLE)
    eq = firing.equipment

    equipment_rows = [
        ("Instrumento", eq.instrument),
        ("Código Interno", eq.internal_code),
        ("Marca", eq.brand),
        ("Modelo", eq.model),
        ("Número de Serie", eq.serial_number),
        ("Número de Sistema", eq.system_number),
    ]
    if firing.rule_kind in (RuleKind.calibration_due.value, RuleKind.maintenance_reminder.value):
        equipment_rows.append(("Última Calibración Externa", eq.last_external_calibration))
        equipment_rows.append(("Próxima Calibración Externa", eq.next_external_calibration))

    sections = [("Información del Equipo", equipment_rows)]

    task = firing.task
    if task is not None:
        title = "Detalles del Mantenimiento"
        if firing.rule_kind == RuleKind.maintenance_completed.value:
            title = "Detalles del Mantenimiento Completado"
        task_rows = [
            ("Acción", task.action),
            ("Tipo", _TYPE_LABELS.get(task.maintenance_type, task.maintenance_type)),
            ("Estado", _STATUS_LABELS.get(task.status, task.status)),
            ("Prioridad", _PRIORITY_LABELS.get(task.priority, task.priority)),
            ("Fecha Programada", task.scheduled_date),
        ]
        if task.completion_date is not None:
            task_rows.append(("Fecha de Realización", task.completion_date))
        task_rows.append(("Responsable", task.responsible))
        task_rows.append(("Descripción", task.description))
        sections.append((title, task_rows))

    body = "".join(
        f'<div style="border:1px solid #e5e7eb;border-radius:8px;padding:16px;margin-bottom:20px">'
        f'<h3 style="margin-top:0">{escape(section_title)}</h3>'
        f'<table style="width:100%">{_rows(rows)}</table></div>'
        for section_title, rows in sections
    )
    greeting = escape(recipient_name or "Equipo")

    html = (
        "<!DOCTYPE html>"
        '<html lang="es"><head><meta charset="UTF-8">'
        f"<title>{escape(subject)}</title></head>"
        '<body style="font-family:Helvetica,Arial,sans-serif;background:#f4f4f7;padding:20px;color:#333">'
        '<div style="max-width:600px;margin:auto;background:#ffffff;border-radius:8px;overflow:hidden">'
        f'<div style="background:{colour};color:#ffffff;padding:20px;text-align:center;'
        f'font-size:22px;font-weight:bold">{escape(_header(firing))}</div>'
        f'<div style="padding:20px"><p>Hola {greeting},</p>{body}'
        f'<div style="background:#eef2ff;border-radius:8px;padding:16px;color:#4338ca">'
        f"<strong>Información importante</strong><p>{escape(IMPORTANT_TEXT)}</p></div></div>"
        f'<div style="background:#f8f9fa;padding:15px;text-align:center;font-size:12px;color:#6c757d">'
        f"{escape(FOOTER_TEXT)}<br>{escape(SYSTEM_NAME)}</div>"
        "</div></body></html>"
    )
    return subject, html
