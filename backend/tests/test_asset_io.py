import io
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from openpyxl import Workbook, load_workbook

from app.services import asset_io
from app.services.asset_io import ImportFileError, RowError


def xlsx_bytes(rows, title="Sheet1"):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title
    for row in rows:
        sheet.append(row)
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


@pytest.mark.parametrize("header,key", [
    ("Item Number *", "item_number"),
    ("item_number", "item_number"),
    ("Serial Number", "serial_number"),
    ("WLAN MAC", "wlan_mac_address"),
    ("LAN MAC", "lan_mac_address"),
    ("IP", "ip_addresses"),
    ("IP Addresses", "ip_addresses"),
    ("Purchase Price ($)", "purchase_price"),
    ("EOL", "end_of_life_date"),
    ("Notes", "comments"),
    ("Device Username", "device_username"),
    ("Something else", None),
    (None, None),
])
def test_match_header(header, key):
    assert asset_io.match_header(header) == key


def test_every_export_header_maps_back_to_its_key():
    assert [asset_io.match_header(h) for h in asset_io.HEADERS] == asset_io.KEYS


def test_map_headers_first_column_wins():
    assert asset_io.map_headers(["Item Number", "Model", "model (old)"]) == {0: "item_number", 1: "model"}


def test_read_csv_records_drops_blank_rows():
    content = (
        "\ufeffItem Number,Model,Unknown Column\n"
        "100,Latitude,x\n"
        ",,\n"
        "101,Optiplex,\n"
    ).encode("utf-8")
    records = asset_io.read_records(content, "assets.csv", max_rows=10)
    assert records == [
        {"item_number": "100", "model": "Latitude"},
        {"item_number": "101", "model": "Optiplex"},
    ]


def test_read_xlsx_prefers_import_sheet():
    workbook = Workbook()
    workbook.active.title = "README"
    workbook.active.append(["Instructions only"])
    sheet = workbook.create_sheet(asset_io.IMPORT_SHEET)
    sheet.append(["Item Number *", "Purchase Price"])
    sheet.append([42, 199.5])
    output = io.BytesIO()
    workbook.save(output)

    records = asset_io.read_records(output.getvalue(), "upload.xlsx", max_rows=10)
    assert records == [{"item_number": 42, "purchase_price": 199.5}]


def test_read_records_detects_xlsx_without_extension():
    content = xlsx_bytes([["Item Number"], ["7"]])
    assert asset_io.is_xlsx("upload", content)
    assert asset_io.read_records(content, "upload", max_rows=10) == [{"item_number": "7"}]


def test_read_records_requires_item_number_column():
    with pytest.raises(ImportFileError, match="Item Number"):
        asset_io.read_records(b"Model,Serial\nA,B\n", "a.csv", max_rows=10)


def test_read_records_rejects_empty_file():
    with pytest.raises(ImportFileError, match="no data rows"):
        asset_io.read_records(b"Item Number\n", "a.csv", max_rows=10)


def test_read_records_enforces_row_limit():
    content = ("Item Number\n" + "".join(f"{i}\n" for i in range(4))).encode()
    with pytest.raises(ImportFileError, match="Too many rows"):
        asset_io.read_records(content, "a.csv", max_rows=3)


def test_read_records_rejects_non_utf8_csv():
    with pytest.raises(ImportFileError, match="UTF-8"):
        asset_io.read_records("Item Number\n\xe9\n".encode("latin-1"), "a.csv", max_rows=3)


def test_cell_text():
    assert asset_io.cell_text(None) is None
    assert asset_io.cell_text("  ") is None
    assert asset_io.cell_text(1001.0) == "1001"
    assert asset_io.cell_text(" abc ") == "abc"


@pytest.mark.parametrize("value,expected", [
    (None, None),
    ("", None),
    ("2024-03-01", date(2024, 3, 1)),
    ("01/03/2024", date(2024, 3, 1)),
    ("2024-03-01T10:00:00Z", date(2024, 3, 1)),
    (datetime(2024, 3, 1, 9, 30), date(2024, 3, 1)),
    (date(2024, 3, 1), date(2024, 3, 1)),
])
def test_parse_date(value, expected):
    assert asset_io.parse_date(value) == expected


def test_parse_date_invalid():
    with pytest.raises(RowError, match="Invalid date"):
        asset_io.parse_date("next tuesday")


def test_parse_price():
    assert asset_io.parse_price("$1,299.999") == Decimal("1300.00")
    assert asset_io.parse_price(250) == Decimal("250.00")
    assert asset_io.parse_price(" ") is None
    with pytest.raises(RowError):
        asset_io.parse_price("cheap")
    with pytest.raises(RowError, match="negative"):
        asset_io.parse_price("-5")


def test_parse_ips():
    assert asset_io.parse_ips("10.0.0.1, 10.0.0.2;10.0.0.1 10.0.0.3") == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert asset_io.parse_ips(None) == []
    with pytest.raises(RowError, match="Invalid IPv4"):
        asset_io.parse_ips("10.0.0.300")


def test_clean_record():
    row = asset_io.clean_record({
        "item_number": 1001.0,
        "status": "in use - infrastructure",
        "condition": "non functional",
        "manufacturer": "Dell",
        "category": "",
        "acquired_date": "2023-01-15",
        "purchase_price": "899",
        "ip_addresses": "10.1.1.5",
        "model": " Latitude ",
    })
    assert row["item_number"] == "1001"
    assert row["status"] == "In Use - Infrastructure"
    assert row["condition"] == "NON_FUNCTIONAL"
    assert row["lookups"] == {"manufacturer": "Dell", "category": None, "supplier": None, "location": None}
    assert row["fields"]["acquired_date"] == date(2023, 1, 15)
    assert row["fields"]["purchase_price"] == Decimal("899.00")
    assert row["fields"]["model"] == "Latitude"
    assert row["fields"]["hostname"] is None
    assert row["ips"] == ["10.1.1.5"]


def test_clean_record_blank_status_and_condition():
    row = asset_io.clean_record({"item_number": "5"})
    assert row["status"] is None
    assert row["condition"] is None


@pytest.mark.parametrize("record,message", [
    ({"item_number": "  "}, "Item Number is required"),
    ({"item_number": "1", "status": "Lost"}, "Invalid status"),
    ({"item_number": "1", "condition": "Shiny"}, "Invalid condition"),
    ({"item_number": "1", "warranty_expiration": "soon"}, "Invalid date"),
])
def test_clean_record_errors(record, message):
    with pytest.raises(RowError, match=message):
        asset_io.clean_record(record)


def _export_asset():
    return SimpleNamespace(
        item_number="12", serial_number="SN1", manufacturer=SimpleNamespace(name="HP"), model="EliteBook",
        category=None, description=None, status="In Use", condition="GOOD", acquired_date=date(2024, 2, 1),
        purchase_price=Decimal("1200.00"), supplier=None, order_number=None, hostname="lt-12",
        device_username="admin", lan_mac_address=None, wlan_mac_address=None,
        ips=[SimpleNamespace(ip="10.0.0.4"), SimpleNamespace(ip="10.0.0.9")],
        assigned_to="J. Smith", location=None, warranty_expiration=None, end_of_life_date=None, comments=None,
    )


def test_export_row_and_csv():
    row = asset_io.export_row(_export_asset(), device_password="hunter22")
    values = dict(zip(asset_io.KEYS, row))
    assert values["manufacturer"] == "HP"
    assert values["device_password"] == "hunter22"
    assert values["ip_addresses"] == "10.0.0.4, 10.0.0.9"
    assert values["purchase_price"] == 1200.0

    text = asset_io.render_csv(asset_io.HEADERS, [row])
    lines = text.strip().splitlines()
    assert lines[0].startswith("Item Number *,Serial Number")
    assert "2024-02-01" in lines[1]
    assert '"10.0.0.4, 10.0.0.9"' in lines[1]


def test_render_xlsx_round_trips_through_reader():
    content = asset_io.render_xlsx([asset_io.export_row(_export_asset())])
    records = asset_io.read_records(content, "export.xlsx", max_rows=10)
    assert len(records) == 1
    cleaned = asset_io.clean_record(records[0])
    assert cleaned["item_number"] == "12"
    assert cleaned["lookups"]["manufacturer"] == "HP"
    assert cleaned["fields"]["acquired_date"] == date(2024, 2, 1)
    assert cleaned["ips"] == ["10.0.0.4", "10.0.0.9"]


def test_render_template_xlsx():
    content = asset_io.render_template_xlsx({"manufacturer": ["Dell", "HP"], "category": []})
    workbook = load_workbook(io.BytesIO(content))
    assert workbook.sheetnames == [asset_io.IMPORT_SHEET, "README", "Lookups"]
    assert workbook["Lookups"].sheet_state == "hidden"
    assert [c.value for c in workbook[asset_io.IMPORT_SHEET][1]] == asset_io.HEADERS
    assert workbook["Lookups"]["A3"].value == "HP"
    formulas = {dv.formula1 for dv in workbook[asset_io.IMPORT_SHEET].data_validations.dataValidation}
    assert "Lookups!$A$2:$A$3" in formulas
    assert not any("$B$" in f for f in formulas)
