import csv
from datetime import datetime
from io import StringIO

from stockledger.ledger.replay import MonthEndSnapshot
from stockledger.utils.money import quantize_money, quantize_qty


CSV_HEADERS = [
    "SKU",
    "Product",
    "Variant",
    "Category",
    "Warehouse",
    "Location",
    "Qty On Hand",
    "Unit Cost",
    "Stock Value",
]


def snapshot_to_csv(snapshot: MonthEndSnapshot, *, generated_at: datetime | None = None) -> str:
    """Render a month-end snapshot: title lines, header, one row per balance, totals row.

    Text cells are always double-quoted with embedded quotes doubled; numbers are bare.
    """
    buffer = StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    writer.writerow([f"Month-end stock {snapshot.label}"])
    writer.writerow(["Generated", (generated_at or datetime.utcnow()).strftime("%Y-%m-%d")])
    writer.writerow([])
    writer.writerow(CSV_HEADERS)

    total_qty = quantize_qty(0)
    total_value = quantize_money(0)
    for row in snapshot.rows:
        writer.writerow(
            [
                row.sku,
                row.name,
                row.variant_name or "",
                row.category or "",
                row.warehouse_name,
                row.location_code,
                row.qty_on_hand,
                row.unit_cost,
                row.stock_value,
            ]
        )
        total_qty += row.qty_on_hand
        total_value += row.stock_value

    writer.writerow([])
    writer.writerow(["Total", "", "", "", "", "", total_qty, "", total_value])
    return buffer.getvalue()
