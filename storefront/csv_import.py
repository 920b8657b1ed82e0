"""Parse product spreadsheets exported from other shop systems."""
import csv
import io
from typing import Optional

REQUIRED_FIELDS = {
    "name": ["name", "product_name", "title"],
    "category": ["category", "product_category"],
    "price": ["price", "selling_price"],
    "mrp": ["mrp", "original_price", "list_price"],
}

OPTIONAL_FIELDS = {
    "description": ["description", "product_description"],
    "subcategory": ["subcategory", "sub_category"],
    "stock": ["stock", "quantity", "inventory"],
    "weight": ["weight", "weight_grams"],
    "dimensions": ["dimensions", "size"],
    "tags": ["tags", "keywords"],
    "is_active": ["active", "is_active", "status"],
    "featured": ["featured", "is_featured"],
    "gst_percentage": ["gstpercentage", "gst_percentage", "gst", "tax_percentage"],
    "tax_inclusive": ["taxinclusive", "tax_inclusive", "price_includes_tax"],
}

TRUE_VALUES = {
    "is_active": {"true", "1", "active"},
    "featured": {"true", "1", "yes"},
    "tax_inclusive": {"true", "1", "yes"},
}


class CSVFormatError(ValueError):
    pass


def _map_columns(headers: list[str]) -> dict[str, int]:
    """Map field names to column indices.

    Exact header matches win; otherwise the first unclaimed header containing
    an alias is used, so "subcategory" is never taken for "category".
    """
    normalized = [h.strip().strip('"').lower() for h in headers]
    mapping: dict[str, int] = {}
    fields = list(REQUIRED_FIELDS.items()) + list(OPTIONAL_FIELDS.items())

    for field, aliases in fields:
        for idx, header in enumerate(normalized):
            if header in aliases and idx not in mapping.values():
                mapping[field] = idx
                break

    for field, aliases in fields:
        if field in mapping:
            continue
        for idx, header in enumerate(normalized):
            if idx in mapping.values():
                continue
            if any(alias in header for alias in aliases):
                mapping[field] = idx
                break

    for field, aliases in REQUIRED_FIELDS.items():
        if field not in mapping:
            raise CSVFormatError(
                f"Required field '{field}' not found in CSV headers. Expected one of: {', '.join(aliases)}"
            )
    return mapping


def _number(value: str, cast=float) -> Optional[float]:
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def parse_products_csv(text: str) -> tuple[list[dict], list[str]]:
    """Return ``(rows, errors)``; each row is ready for bulk product creation."""
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise CSVFormatError("CSV must contain header row and at least one data row")

    reader = csv.reader(io.StringIO("\n".join(lines)))
    headers = next(reader)
    mapping = _map_columns(headers)

    rows: list[dict] = []
    errors: list[str] = []
    for row_number, values in enumerate(reader, start=2):
        values = [v.strip() for v in values]
        if len(values) < len(headers):
            errors.append(f"Row {row_number}: Insufficient columns")
            continue

        def get(field: str) -> Optional[str]:
            idx = mapping.get(field)
            return None if idx is None else values[idx]

        price = _number(get("price"))
        mrp = _number(get("mrp"))
        product = {
            "_row": row_number,
            "name": get("name"),
            "category": get("category"),
            "price": price,
            "mrp": mrp,
            "gst_percentage": 5,
            "tax_inclusive": False,
            "is_active": True,
            "featured": False,
        }
        if not product["name"] or not product["category"] or price is None or mrp is None:
            errors.append(f"Row {row_number}: Missing or invalid required fields")
            continue

        for field in ("description", "subcategory", "dimensions", "tags"):
            if field in mapping:
                product[field] = get(field) or None
        if "stock" in mapping:
            product["stock"] = max(int(_number(get("stock"), int) or 0), 0)
        if "weight" in mapping:
            weight = _number(get("weight"))
            product["weight"] = int(weight) if weight is not None else 0
        if "gst_percentage" in mapping:
            gst = _number(get("gst_percentage"))
            product["gst_percentage"] = 5 if gst is None else gst
        for field, truthy in TRUE_VALUES.items():
            if field in mapping:
                product[field] = get(field).lower() in truthy

        rows.append(product)
    return rows, errors
