from __future__ import annotations

from collections import defaultdict
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from callup.models import UserTransportAllowance
from callup.schemas import TransportAllowanceRead, UserCompensationRowRead
from callup.services.payments import (
    build_user_compensation_rows,
    get_batch,
    load_batch_trainings,
    to_allowance_read,
)

COMPENSATION_HEADERS = [
    "Date",
    "Training",
    "Rank",
    "Name",
    "Service No.",
    "Hours",
    "Weekend",
    "Daily Rate",
    "Override",
    "Paid",
]
MEMBER_TOTAL_HEADERS = ["Rank", "Name", "Service No.", "Trainings", "Compensation", "Transport", "Total"]
TRANSPORT_HEADERS = ["Name", "Address", "Amount", "Note"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="1F3A5F")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")
HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)
MONEY_FORMAT = "#,##0"


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _style_total_row(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER


def _format_money_columns(ws: Worksheet, columns: list[int]) -> None:
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for index in columns:
            row[index - 1].number_format = MONEY_FORMAT


def _write_compensation_sheet(ws: Worksheet, rows: list[UserCompensationRowRead]) -> None:
    ws.append(COMPENSATION_HEADERS)
    for row in rows:
        ws.append(
            [
                row.training_date,
                row.title,
                row.rank or "",
                row.user_name,
                row.service_number or "",
                row.training_hours,
                "Y" if row.is_weekend else "",
                row.daily_rate,
                row.override_rate,
                row.final_rate,
            ]
        )
    ws.append(["Total", "", "", "", "", "", "", "", "", sum(row.final_rate for row in rows)])
    _style_header(ws)
    _style_total_row(ws, ws.max_row)
    _format_money_columns(ws, [8, 9, 10])
    for (cell,) in ws.iter_rows(min_row=2, max_row=ws.max_row - 1, max_col=1):
        cell.number_format = "yyyy-mm-dd"
    ws.freeze_panes = "A2"


def _write_member_totals_sheet(
    ws: Worksheet,
    rows: list[UserCompensationRowRead],
    allowances: list[TransportAllowanceRead],
) -> None:
    ws.append(MEMBER_TOTAL_HEADERS)

    compensation_by_user: dict[int, int] = defaultdict(int)
    trainings_by_user: dict[int, int] = defaultdict(int)
    identity: dict[int, UserCompensationRowRead] = {}
    for row in rows:
        compensation_by_user[row.user_id] += row.final_rate
        trainings_by_user[row.user_id] += 1
        identity.setdefault(row.user_id, row)
    transport_by_user = {item.user_id: item.amount for item in allowances}
    names_from_transport = {item.user_id: item.user_name for item in allowances}

    user_ids = sorted(
        set(compensation_by_user) | set(transport_by_user),
        key=lambda user_id: (identity[user_id].user_name if user_id in identity else names_from_transport.get(user_id) or ""),
    )
    for user_id in user_ids:
        person = identity.get(user_id)
        compensation = compensation_by_user.get(user_id, 0)
        transport = transport_by_user.get(user_id, 0)
        ws.append(
            [
                person.rank if person and person.rank else "",
                person.user_name if person else names_from_transport.get(user_id) or "",
                person.service_number if person and person.service_number else "",
                trainings_by_user.get(user_id, 0),
                compensation,
                transport,
                compensation + transport,
            ]
        )

    compensation_total = sum(compensation_by_user.values())
    transport_total = sum(transport_by_user.values())
    ws.append(["Total", "", "", "", compensation_total, transport_total, compensation_total + transport_total])
    _style_header(ws)
    _style_total_row(ws, ws.max_row)
    _format_money_columns(ws, [5, 6, 7])
    ws.freeze_panes = "A2"


def _write_transport_sheet(ws: Worksheet, allowances: list[TransportAllowanceRead]) -> None:
    ws.append(TRANSPORT_HEADERS)
    for item in allowances:
        ws.append([item.user_name or "", item.address or "", item.amount, item.note or ""])
    ws.append(["Total", "", sum(item.amount for item in allowances), ""])
    _style_header(ws)
    _style_total_row(ws, ws.max_row)
    _format_money_columns(ws, [3])
    ws.freeze_panes = "A2"


def build_roster_xlsx_bytes(
    *,
    batch_name: str,
    rows: list[UserCompensationRowRead],
    allowances: list[TransportAllowanceRead],
) -> bytes:
    wb = Workbook()
    compensation_ws = wb.active
    compensation_ws.title = "Compensation"
    _write_compensation_sheet(compensation_ws, rows)

    _write_member_totals_sheet(wb.create_sheet("Members"), rows, allowances)
    _write_transport_sheet(wb.create_sheet("Transport"), allowances)

    for ws in wb.worksheets:
        _auto_width(ws)
    wb.properties.title = f"{batch_name} payment roster"

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def build_batch_roster_xlsx(db: Session, *, batch_id: int) -> tuple[str, bytes]:
    batch = get_batch(db, batch_id)
    trainings = load_batch_trainings(db, batch.id)
    rows = build_user_compensation_rows(db, batch_id=batch.id, trainings=trainings)
    allowances = [
        to_allowance_read(item)
        for item in db.scalars(
            select(UserTransportAllowance)
            .where(UserTransportAllowance.batch_id == batch.id)
            .options(selectinload(UserTransportAllowance.user))
        ).all()
    ]
    allowances.sort(key=lambda item: item.user_name or "")
    return batch.name, build_roster_xlsx_bytes(batch_name=batch.name, rows=rows, allowances=allowances)
