import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO

from budget_table import BudgetEntry, TableState, TableView

EXPORT_HEADER = [
    "Subgroup",
    "Category",
    "TipoGasto",
    "Efectivo",
    "Credito",
    "AhorroEfectivo",
    "AhorroCredito",
    "Total",
    "Balance",
]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_simulation(state: TableState, view: TableView) -> str:
    """Write the table rows in display order, one line per category and subtotal."""
    categories = {c.id: c for c in state.categories}
    subgroups = {sg.id: sg for sg in state.subgroups}
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for row in view.rows:
        if row.kind == "header":
            continue
        group_name = subgroups[row.subgroup_id].name if row.subgroup_id else ""
        if row.kind == "subtotal":
            subtotal = view.subtotals[row.id]
            writer.writerow(
                [
                    sanitize_csv_value(group_name),
                    "Subtotal",
                    "",
                    format_cents(subtotal.efectivo),
                    format_cents(subtotal.credito),
                    format_cents(subtotal.ahorro_efectivo),
                    format_cents(subtotal.ahorro_credito),
                    format_cents(subtotal.total),
                    format_cents(view.subgroup_balances.get(row.id, 0)),
                ]
            )
            continue
        category = categories[row.id]
        entry = state.entries.get(row.id, BudgetEntry())
        writer.writerow(
            [
                sanitize_csv_value(group_name),
                sanitize_csv_value(category.name),
                category.tipo_gasto.value if category.tipo_gasto else "",
                format_cents(entry.efectivo),
                format_cents(entry.credito),
                format_cents(entry.ahorro_efectivo),
                format_cents(entry.ahorro_credito),
                format_cents(entry.total),
                format_cents(view.balances.get(row.id, state.total_income)),
            ]
        )
    totals = view.totals
    writer.writerow(
        [
            "",
            "Total",
            "",
            format_cents(totals.efectivo),
            format_cents(totals.credito),
            format_cents(totals.ahorro_efectivo),
            format_cents(totals.ahorro_credito),
            format_cents(totals.total),
            format_cents(totals.final_balance),
        ]
    )
    return output.getvalue()
