from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from pathlib import PurePosixPath
import re
from typing import Any, Callable
import zipfile

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from cargotrol.blobs import ensure_filename_extension
from cargotrol.mapper import join_awaiting, parse_float, parse_int, split_awaiting
from cargotrol.models import ATTACHMENT_FILE_STEMS, Attachment, ContainerItem, Status
from cargotrol.runtime_log import append_runtime_log, log_runtime_error

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ZIP_MIME_TYPE = "application/zip"
SUPPORTED_IMPORT_EXTENSIONS = {".xlsx", ".xls"}

# (header, item field, numeric)
EXPORT_COLUMNS: list[tuple[str, str, bool]] = [
    ("Reference Code", "reference_code", False),
    ("Supplier", "supplier", False),
    ("CBM", "cbm", True),
    ("Cartons", "cartons", True),
    ("Gross Weight", "gross_weight", True),
    ("Product Cost", "product_cost", True),
    ("Freight Cost", "freight_cost", True),
    ("Awaiting", "awaiting", False),
    ("Production Days", "production_days", True),
    ("Production Ready", "production_ready", False),
    ("Status", "status", False),
    ("Client", "client", False),
]
EXPORT_HEADERS = [header for header, _, _ in EXPORT_COLUMNS]

IMPORT_HEADER_ALIASES: dict[str, list[str]] = {
    "reference_code": ["Reference Code", "Ref", "Reference", "Ref Code"],
    "supplier": ["Supplier"],
    "cbm": ["CBM"],
    "cartons": ["Cartons", "CTNS"],
    "gross_weight": ["Gross Weight", "GW"],
    "product_cost": ["Product Cost"],
    "freight_cost": ["Freight Cost"],
    "awaiting": ["Awaiting"],
    "production_days": ["Production Days"],
    "production_ready": ["Production Ready"],
    "status": ["Status"],
    "client": ["Client"],
}

MAX_COLUMN_WIDTH = 50
SHEET_ZOOM_SCALE = 150
EVEN_ROW_FILL_COLOR = "ADD8E6"
EXPORT_FONT_NAME = "Calibri"
EXPORT_FONT_SIZE = 11
SUMMARY_GAP_ROWS = 2
INVALID_SHEET_TITLE_CHARS = re.compile(r"[\[\]\:\*\?\/\\]")

AttachmentReader = Callable[[Attachment], tuple[bytes, str]]


class WorkbookImportError(ValueError):
    pass


@dataclass(frozen=True)
class ExportBundle:
    filename: str
    data: bytes
    mime_type: str


def normalize_header_token(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", value.casefold())


def find_first_header(headers: list[str], aliases: list[str]) -> str | None:
    alias_tokens = {normalize_header_token(alias) for alias in aliases}
    for header in headers:
        if normalize_header_token(str(header)) in alias_tokens:
            return header
    return None


def safe_sheet_title(name: str) -> str:
    title = INVALID_SHEET_TITLE_CHARS.sub("_", str(name).strip()).strip("'")
    return title[:31] or "Container"


def safe_folder_name(reference_code: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", reference_code)


def export_file_stem(container_name: str) -> str:
    stem = re.sub(r'[\\/:*?"<>|]+', "_", str(container_name).strip()) or "Container"
    return f"{stem} CBM & PI"


def export_cell_value(item: ContainerItem, field_name: str) -> Any:
    value = getattr(item, field_name)
    if field_name == "awaiting":
        return join_awaiting(list(value))
    if isinstance(value, Status):
        return value.value
    return value


def apply_default_box_border(worksheet: Any, row_index: int, start_col: int, end_col: int) -> None:
    side = Side(border_style="thin", color="000000")
    boxed_border = Border(left=side, right=side, top=side, bottom=side)

    for column in range(start_col, end_col + 1):
        worksheet.cell(row=row_index, column=column).border = boxed_border


def style_export_row(worksheet: Any, row_index: int, *, bold: bool = False, fill: PatternFill | None = None) -> None:
    font = Font(name=EXPORT_FONT_NAME, size=EXPORT_FONT_SIZE, bold=bold)
    for column_index, (_, _, numeric) in enumerate(EXPORT_COLUMNS, start=1):
        cell = worksheet.cell(row=row_index, column=column_index)
        cell.font = font
        cell.alignment = Alignment(horizontal="right" if numeric and not bold else "left", vertical="center")
        if fill is not None:
            cell.fill = fill
    apply_default_box_border(worksheet, row_index, 1, len(EXPORT_COLUMNS))


def keep_text_cells_literal(worksheet: Any, row_index: int) -> None:
    # openpyxl turns any "=..." string into a formula; data cells hold text only.
    for column_index, (_, _, numeric) in enumerate(EXPORT_COLUMNS, start=1):
        cell = worksheet.cell(row=row_index, column=column_index)
        if not numeric and cell.data_type == "f":
            cell.data_type = "s"


def write_summary_block(worksheet: Any, first_data_row: int, last_data_row: int) -> None:
    cbm_range = f"C{first_data_row}:C{last_data_row}"
    product_range = f"F{first_data_row}:F{last_data_row}"
    freight_range = f"G{first_data_row}:G{last_data_row}"
    status_range = f"K{first_data_row}:K{last_data_row}"
    summary_rows = [
        ("Total CBM", f"=SUM({cbm_range})"),
        ("Total Cost", f"=SUM({product_range})+SUM({freight_range})"),
        ("CBM Ready to Ship", f'=SUMIF({status_range},"{Status.READY_TO_SHIP.value}",{cbm_range})'),
    ]
    label_font = Font(name=EXPORT_FONT_NAME, size=EXPORT_FONT_SIZE, bold=True)
    value_font = Font(name=EXPORT_FONT_NAME, size=EXPORT_FONT_SIZE)
    start_row = last_data_row + SUMMARY_GAP_ROWS + 1
    for offset, (label, formula) in enumerate(summary_rows):
        row_index = start_row + offset
        label_cell = worksheet.cell(row=row_index, column=1, value=label)
        label_cell.font = label_font
        label_cell.alignment = Alignment(horizontal="left", vertical="center")
        value_cell = worksheet.cell(row=row_index, column=3, value=formula)
        value_cell.font = value_font
        value_cell.alignment = Alignment(horizontal="right", vertical="center")
        apply_default_box_border(worksheet, row_index, 1, 3)


def build_export_workbook(container_name: str, items: list[ContainerItem]) -> bytes:
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = safe_sheet_title(container_name)
    worksheet.sheet_view.zoomScale = SHEET_ZOOM_SCALE

    worksheet.append(EXPORT_HEADERS)
    style_export_row(worksheet, 1, bold=True)

    widths = [len(header) for header in EXPORT_HEADERS]
    even_fill = PatternFill(fill_type="solid", start_color=EVEN_ROW_FILL_COLOR, end_color=EVEN_ROW_FILL_COLOR)
    for data_index, item in enumerate(items, start=1):
        values = [export_cell_value(item, field_name) for _, field_name, _ in EXPORT_COLUMNS]
        worksheet.append(values)
        keep_text_cells_literal(worksheet, data_index + 1)
        style_export_row(worksheet, data_index + 1, fill=even_fill if data_index % 2 == 0 else None)
        for column_index, value in enumerate(values):
            widths[column_index] = max(widths[column_index], len(str(value)))

    for column_index, width in enumerate(widths, start=1):
        worksheet.column_dimensions[get_column_letter(column_index)].width = min(MAX_COLUMN_WIDTH, width + 2)

    if items:
        write_summary_block(worksheet, 2, len(items) + 1)

    output = BytesIO()
    workbook.save(output)
    return output.getvalue()


def unique_archive_name(folder: str, name: str, used: set[str]) -> str:
    candidate = f"{folder}/{name}"
    if candidate not in used:
        used.add(candidate)
        return candidate
    path = PurePosixPath(name)
    counter = 2
    while True:
        candidate = f"{folder}/{path.stem} ({counter}){path.suffix}"
        if candidate not in used:
            used.add(candidate)
            return candidate
        counter += 1


def build_export_archive(
    container_name: str,
    items: list[ContainerItem],
    workbook_bytes: bytes,
    read_attachment: AttachmentReader,
) -> bytes:
    """Zip the workbook with one folder of attachments per referenced row.

    Attachments are fetched one at a time; a fetch that fails is logged and
    left out of the archive.
    """
    output = BytesIO()
    used_names: set[str] = set()
    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(f"{export_file_stem(container_name)}.xlsx", workbook_bytes)
        for item in items:
            reference_code = item.reference_code.strip()
            if not reference_code:
                continue
            folder = safe_folder_name(reference_code)
            if f"{folder}/" not in used_names:
                archive.writestr(zipfile.ZipInfo(f"{folder}/"), b"")
                used_names.add(f"{folder}/")
            for field_name, attachment in item.attachments():
                try:
                    content, mime_type = read_attachment(attachment)
                except Exception as exc:
                    log_runtime_error(f"exchange.export.{reference_code}.{field_name}", exc)
                    continue
                file_name = ensure_filename_extension(
                    getattr(attachment, "name", ""),
                    mime_type,
                    ATTACHMENT_FILE_STEMS[field_name],
                )
                archive.writestr(unique_archive_name(folder, file_name, used_names), content)
    return output.getvalue()


def export_container(
    container_name: str,
    items: list[ContainerItem],
    read_attachment: AttachmentReader,
) -> ExportBundle:
    workbook_bytes = build_export_workbook(container_name, items)
    stem = export_file_stem(container_name)
    if not any(item.has_attachments for item in items):
        return ExportBundle(filename=f"{stem}.xlsx", data=workbook_bytes, mime_type=XLSX_MIME_TYPE)

    archive_bytes = build_export_archive(container_name, items, workbook_bytes, read_attachment)
    append_runtime_log("INFO", "exchange.export", f"Exported `{container_name}` with attachments ({len(items)} rows).")
    return ExportBundle(filename=f"{stem}.zip", data=archive_bytes, mime_type=ZIP_MIME_TYPE)


def normalize_import_cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass

    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.hour == 0 and value.minute == 0 and value.second == 0:
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def import_cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_import_frame(data: bytes, filename: str) -> pd.DataFrame:
    extension = PurePosixPath(str(filename).strip().lower()).suffix
    if extension not in SUPPORTED_IMPORT_EXTENSIONS:
        raise WorkbookImportError("Unsupported file type. Choose an .xlsx or .xls workbook.")
    engine = "xlrd" if extension == ".xls" else "openpyxl"
    try:
        return pd.read_excel(
            BytesIO(data),
            sheet_name=0,
            header=None,
            dtype=object,
            engine=engine,
            keep_default_na=False,
        )
    except Exception as exc:
        raise WorkbookImportError(f"Could not read `{filename}`. Confirm it is a valid workbook.") from exc


def import_row_fields(values: dict[str, Any]) -> dict[str, Any]:
    return {
        "reference_code": import_cell_text(values.get("reference_code")),
        "supplier": import_cell_text(values.get("supplier")),
        "cbm": parse_float(values.get("cbm")),
        "cartons": parse_int(values.get("cartons")),
        "gross_weight": parse_float(values.get("gross_weight")),
        "product_cost": parse_float(values.get("product_cost")),
        "freight_cost": parse_float(values.get("freight_cost")),
        "awaiting": split_awaiting(import_cell_text(values.get("awaiting"))),
        "production_days": parse_int(values.get("production_days")),
        "production_ready": import_cell_text(values.get("production_ready")),
        "status": Status.parse(values.get("status")),
        "client": import_cell_text(values.get("client")),
    }


def read_import_rows(data: bytes, filename: str) -> list[dict[str, Any]]:
    """Rows of the first sheet as item field dicts.

    The first row is the header. The data block ends at the first fully
    blank row, which also keeps an exported summary block out of the import.
    """
    frame = read_import_frame(data, filename)
    if frame.empty:
        return []

    records = [[normalize_import_cell(value) for value in row] for row in frame.itertuples(index=False, name=None)]
    headers = [import_cell_text(value) for value in records[0]]
    column_by_field: dict[str, int] = {}
    for field_name, aliases in IMPORT_HEADER_ALIASES.items():
        header = find_first_header(headers, aliases)
        if header is not None:
            column_by_field[field_name] = headers.index(header)

    if not column_by_field:
        raise WorkbookImportError("No recognized column headers were found in the first row.")

    rows: list[dict[str, Any]] = []
    for record in records[1:]:
        if all(value is None for value in record):
            break
        values = {field_name: record[index] if index < len(record) else None for field_name, index in column_by_field.items()}
        rows.append(import_row_fields(values))
    return rows
