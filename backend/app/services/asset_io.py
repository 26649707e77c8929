"""
Spreadsheet import/export for assets.

Reading accepts CSV (UTF-8, optional BOM) or XLSX. Header cells are matched
loosely: lower-cased, reduced to letters, then tested against the keyword
rules in HEADER_RULES, so "Item Number *", "item_number" and "ITEM NO.
NUMBER" all land on ``item_number``. Row cleaning turns raw cell values into
asset field values and raises RowError for anything the import must reject.

Writing produces CSV text or XLSX bytes from plain header/row lists.
"""
import csv
import io
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from app.models.asset import ASSET_STATUSES, AssetCondition, DEFAULT_STATUS, canonical_status
from app.schemas.asset import normalize_ipv4

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
IMPORT_SHEET = "Asset Import"
TEMPLATE_ROWS = 500

# (header, key, width)
COLUMNS = [
    ("Item Number *", "item_number", 15),
    ("Serial Number", "serial_number", 18),
    ("Manufacturer", "manufacturer", 20),
    ("Model", "model", 20),
    ("Category", "category", 18),
    ("Description", "description", 30),
    ("Status", "status", 22),
    ("Condition", "condition", 14),
    ("Acquired Date", "acquired_date", 14),
    ("Purchase Price", "purchase_price", 14),
    ("Supplier", "supplier", 20),
    ("Order Number", "order_number", 15),
    ("Hostname", "hostname", 18),
    ("Device Username", "device_username", 16),
    ("Device Password", "device_password", 16),
    ("LAN MAC", "lan_mac_address", 18),
    ("WLAN MAC", "wlan_mac_address", 18),
    ("IP Addresses", "ip_addresses", 20),
    ("Assigned To", "assigned_to", 20),
    ("Location", "location", 20),
    ("Warranty Expiration", "warranty_expiration", 18),
    ("End of Life Date", "end_of_life_date", 16),
    ("Comments", "comments", 30),
]
HEADERS = [c[0] for c in COLUMNS]
KEYS = [c[1] for c in COLUMNS]

# First matching rule wins; order matters ("wlanmac" before "lanmac").
HEADER_RULES = [
    (("itemnumber",), "item_number"),
    (("serialnumber",), "serial_number"),
    (("manufacturer",), "manufacturer"),
    (("model",), "model"),
    (("category",), "category"),
    (("description",), "description"),
    (("status",), "status"),
    (("condition",), "condition"),
    (("acquired",), "acquired_date"),
    (("price",), "purchase_price"),
    (("supplier",), "supplier"),
    (("order",), "order_number"),
    (("hostname",), "hostname"),
    (("username",), "device_username"),
    (("password",), "device_password"),
    (("wlanmac",), "wlan_mac_address"),
    (("lanmac",), "lan_mac_address"),
    (("ipaddress",), "ip_addresses"),
    (("assigned",), "assigned_to"),
    (("location",), "location"),
    (("warranty",), "warranty_expiration"),
    (("endoflife", "eol"), "end_of_life_date"),
    (("comments", "notes"), "comments"),
]

DATE_FIELDS = ("acquired_date", "warranty_expiration", "end_of_life_date")
TEXT_FIELDS = (
    "serial_number", "model", "description", "order_number", "hostname",
    "device_username", "device_password", "lan_mac_address", "wlan_mac_address",
    "assigned_to", "comments",
)
LOOKUP_FIELDS = ("manufacturer", "category", "supplier", "location")

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y")
_IP_SPLIT = re.compile(r"[,;\s]+")


class ImportFileError(ValueError):
    """The uploaded file as a whole cannot be imported."""


class RowError(ValueError):
    """A single data row is invalid."""


# ── header matching ───────────────────────────────────────────────────────────

def normalize_header(value: Any) -> str:
    return re.sub(r"[^a-z]", "", str(value or "").lower())


def match_header(value: Any) -> Optional[str]:
    header = normalize_header(value)
    if not header:
        return None
    if header == "ip":
        return "ip_addresses"
    for keywords, key in HEADER_RULES:
        if any(k in header for k in keywords):
            return key
    return None


def map_headers(header_row: Sequence[Any]) -> Dict[int, str]:
    """Column index -> field key; the first column claiming a key keeps it."""
    mapping: Dict[int, str] = {}
    claimed = set()
    for index, cell in enumerate(header_row):
        key = match_header(cell)
        if key and key not in claimed:
            mapping[index] = key
            claimed.add(key)
    return mapping


# ── reading ───────────────────────────────────────────────────────────────────

def is_xlsx(filename: Optional[str], content: bytes) -> bool:
    if filename and filename.lower().endswith(".xlsx"):
        return True
    return content[:2] == b"PK"


def _xlsx_rows(content: bytes) -> List[Sequence[Any]]:
    try:
        workbook = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    except Exception as e:
        raise ImportFileError(f"Could not read Excel file: {e}")
    sheet = workbook[IMPORT_SHEET] if IMPORT_SHEET in workbook.sheetnames else workbook.worksheets[0]
    rows = [tuple(row) for row in sheet.iter_rows(values_only=True)]
    workbook.close()
    return rows


def _csv_rows(content: bytes) -> List[Sequence[Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ImportFileError("CSV file must be UTF-8 encoded")
    return list(csv.reader(io.StringIO(text)))


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def read_records(content: bytes, filename: Optional[str], max_rows: int) -> List[Dict[str, Any]]:
    """Parse an uploaded sheet into ``{field_key: raw_value}`` dicts, one per data row.

    Fully blank rows are dropped. Raises ImportFileError when the file has no
    recognisable header, no data rows, or more than ``max_rows`` rows.
    """
    rows = _xlsx_rows(content) if is_xlsx(filename, content) else _csv_rows(content)
    if not rows:
        raise ImportFileError("File is empty or has no data rows")

    mapping = map_headers(rows[0])
    if "item_number" not in mapping.values():
        raise ImportFileError("Header row must contain an Item Number column")

    records = []
    for row in rows[1:]:
        if all(_blank(cell) for cell in row):
            continue
        records.append({
            key: row[index] if index < len(row) else None
            for index, key in mapping.items()
        })

    if not records:
        raise ImportFileError("File is empty or has no data rows")
    if len(records) > max_rows:
        raise ImportFileError(f"Too many rows: {len(records)} (maximum is {max_rows})")
    return records


# ── cell coercion ─────────────────────────────────────────────────────────────

def cell_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    text = text.split("T")[0].split(" ")[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise RowError(f'Invalid date "{value}". Use YYYY-MM-DD')


def parse_price(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value)).quantize(Decimal("0.01"))
    text = str(value).strip().replace(",", "")
    for symbol in ("$", "£", "€"):
        text = text.replace(symbol, "")
    if not text:
        return None
    try:
        price = Decimal(text)
    except InvalidOperation:
        raise RowError(f'Invalid purchase price "{value}"')
    if price < 0:
        raise RowError("Purchase price cannot be negative")
    return price.quantize(Decimal("0.01"))


def parse_ips(value: Any) -> List[str]:
    text = cell_text(value)
    if not text:
        return []
    ips = []
    for part in _IP_SPLIT.split(text):
        if not part:
            continue
        try:
            ip = normalize_ipv4(part)
        except ValueError as e:
            raise RowError(str(e))
        if ip not in ips:
            ips.append(ip)
    return ips


def clean_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Validate one raw record.

    Returns ``item_number``, ``status`` and ``condition`` (None when the cell
    was blank), the text/date/price asset fields, ``lookups`` (name per
    lookup kind, None when blank) and ``ips``. Raises RowError.
    """
    item_number = cell_text(record.get("item_number"))
    if not item_number:
        raise RowError("Item Number is required")

    status = None
    raw_status = cell_text(record.get("status"))
    if raw_status:
        try:
            status = canonical_status(raw_status)
        except ValueError as e:
            raise RowError(str(e))

    condition = None
    raw_condition = cell_text(record.get("condition"))
    if raw_condition:
        wanted = raw_condition.upper().replace(" ", "_").replace("-", "_")
        try:
            condition = AssetCondition(wanted).value
        except ValueError:
            raise RowError(
                f'Invalid condition "{raw_condition}". Must be one of: '
                + ", ".join(c.value for c in AssetCondition)
            )

    fields: Dict[str, Any] = {name: cell_text(record.get(name)) for name in TEXT_FIELDS}
    for name in DATE_FIELDS:
        fields[name] = parse_date(record.get(name))
    fields["purchase_price"] = parse_price(record.get("purchase_price"))

    return {
        "item_number": item_number,
        "status": status,
        "condition": condition,
        "fields": fields,
        "lookups": {kind: cell_text(record.get(kind)) for kind in LOOKUP_FIELDS},
        "ips": parse_ips(record.get("ip_addresses")),
    }


# ── writing ───────────────────────────────────────────────────────────────────

def export_row(asset, device_password: Optional[str] = None) -> List[Any]:
    """One export row in COLUMNS order; lookups by name, IPs comma-separated."""
    values = {
        "item_number": asset.item_number,
        "serial_number": asset.serial_number,
        "manufacturer": asset.manufacturer.name if asset.manufacturer else None,
        "model": asset.model,
        "category": asset.category.name if asset.category else None,
        "description": asset.description,
        "status": asset.status,
        "condition": asset.condition,
        "acquired_date": asset.acquired_date,
        "purchase_price": float(asset.purchase_price) if asset.purchase_price is not None else None,
        "supplier": asset.supplier.name if asset.supplier else None,
        "order_number": asset.order_number,
        "hostname": asset.hostname,
        "device_username": asset.device_username,
        "device_password": device_password,
        "lan_mac_address": asset.lan_mac_address,
        "wlan_mac_address": asset.wlan_mac_address,
        "ip_addresses": ", ".join(ip.ip for ip in asset.ips),
        "assigned_to": asset.assigned_to,
        "location": asset.location.name if asset.location else None,
        "warranty_expiration": asset.warranty_expiration,
        "end_of_life_date": asset.end_of_life_date,
        "comments": asset.comments,
    }
    return [values[key] for key in KEYS]


def render_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([
            v.isoformat() if isinstance(v, (date, datetime)) else ("" if v is None else v)
            for v in row
        ])
    return output.getvalue()


def _style_header(sheet, column_count: int) -> None:
    fill = PatternFill(fill_type="solid", fgColor="FF4472C4")
    font = Font(bold=True, color="FFFFFFFF")
    for col in range(1, column_count + 1):
        cell = sheet.cell(row=1, column=col)
        cell.fill = fill
        cell.font = font
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for col, (_, _, width) in enumerate(COLUMNS[:column_count], start=1):
        sheet.column_dimensions[get_column_letter(col)].width = width
    sheet.freeze_panes = "A2"


def _set_number_formats(sheet, first_row: int, last_row: int) -> None:
    for key, fmt in (
        ("acquired_date", "yyyy-mm-dd"),
        ("warranty_expiration", "yyyy-mm-dd"),
        ("end_of_life_date", "yyyy-mm-dd"),
        ("purchase_price", "#,##0.00"),
    ):
        col = KEYS.index(key) + 1
        for row in range(first_row, last_row + 1):
            sheet.cell(row=row, column=col).number_format = fmt


def _workbook_bytes(workbook: Workbook) -> bytes:
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def render_xlsx(rows: Iterable[Sequence[Any]], sheet_title: str = "Assets") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(HEADERS)
    count = 0
    for row in rows:
        sheet.append(list(row))
        count += 1
    _style_header(sheet, len(HEADERS))
    if count:
        _set_number_formats(sheet, 2, count + 1)
    return _workbook_bytes(workbook)


TEMPLATE_INSTRUCTIONS = [
    "Asset Import Template - Instructions",
    "",
    "GETTING STARTED",
    f'1. Enter asset data on the "{IMPORT_SHEET}" sheet, one asset per row from row 2',
    "2. Save the file and upload it from Settings > Data",
    "",
    "REQUIRED FIELDS",
    "- Item Number: must be unique for each asset (marked with *)",
    "",
    "LIST FIELDS",
    "- Status: " + ", ".join(ASSET_STATUSES),
    "- Condition: " + ", ".join(c.value for c in AssetCondition),
    "- Manufacturer, Category, Supplier, Location: pick an existing name or type a new one",
    "",
    "OTHER FIELDS",
    "- Dates use YYYY-MM-DD",
    "- IP Addresses: one or more IPv4 addresses separated by commas",
    f"- Blank Status defaults to {DEFAULT_STATUS}; blank Condition defaults to {AssetCondition.GOOD.value}",
    "",
    "IMPORT OPTIONS",
    "- Skip duplicates: rows whose Item Number already exists are skipped",
    "- Update existing: rows whose Item Number already exists update that asset",
    "- Neither: duplicate Item Numbers are reported as errors",
]


def render_template_xlsx(lookup_names: Dict[str, List[str]]) -> bytes:
    """Blank import workbook with README and a hidden Lookups sheet feeding dropdowns.

    ``lookup_names`` maps manufacturer/category/supplier/location to existing names.
    """
    workbook = Workbook()
    data_sheet = workbook.active
    data_sheet.title = IMPORT_SHEET
    data_sheet.append(HEADERS)
    _style_header(data_sheet, len(HEADERS))
    _set_number_formats(data_sheet, 2, TEMPLATE_ROWS)

    readme = workbook.create_sheet("README")
    readme.column_dimensions["A"].width = 100
    for index, line in enumerate(TEMPLATE_INSTRUCTIONS, start=1):
        cell = readme.cell(row=index, column=1, value=line)
        if index == 1:
            cell.font = Font(bold=True, size=14, color="FF4472C4")
        elif line and line.isupper():
            cell.font = Font(bold=True)

    lookups = workbook.create_sheet("Lookups")
    lookups.sheet_state = "hidden"
    lists = [
        ("manufacturer", "Manufacturers", lookup_names.get("manufacturer", [])),
        ("category", "Categories", lookup_names.get("category", [])),
        ("supplier", "Suppliers", lookup_names.get("supplier", [])),
        ("location", "Locations", lookup_names.get("location", [])),
        ("status", "Status", ASSET_STATUSES),
        ("condition", "Condition", [c.value for c in AssetCondition]),
    ]
    for col, (key, title, values) in enumerate(lists, start=1):
        letter = get_column_letter(col)
        lookups.cell(row=1, column=col, value=title)
        for row, value in enumerate(values, start=2):
            lookups.cell(row=row, column=col, value=value)
        if not values:
            continue
        validation = DataValidation(
            type="list",
            formula1=f"Lookups!${letter}$2:${letter}${len(values) + 1}",
            allow_blank=True,
        )
        data_sheet.add_data_validation(validation)
        target = get_column_letter(KEYS.index(key) + 1)
        validation.add(f"{target}2:{target}{TEMPLATE_ROWS}")

    return _workbook_bytes(workbook)
