import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from ..models import Product
from ..pricing import to_decimal, validate_pricing
from ..slugs import generate_sku, generate_slug

logger = logging.getLogger(__name__)


class StockError(Exception):
    """Raised when a cart cannot be fulfilled from current stock."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def get_product(db: Session, product_id: str) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_by_slug(db: Session, slug: str, active_only: bool = True) -> Optional[Product]:
    query = db.query(Product).filter(Product.slug == slug)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.first()


def generate_unique_sku(db: Session, name: str, category: str, product_id: str) -> str:
    base = generate_sku(name, category, product_id)
    sku = base
    counter = 1
    while db.query(Product.id).filter(Product.sku == sku, Product.id != product_id).first():
        sku = f"{base}{counter}"
        counter += 1
    return sku


def _check_name(db: Session, name: Any, exclude_id: Optional[str] = None) -> str:
    name = (str(name) if name is not None else "").strip()
    if not name:
        raise ValueError("name_required")
    query = db.query(Product).filter(func.lower(Product.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ValueError("duplicate_product_name")
    return name


def _check_ranges(product_data: dict) -> None:
    gst = product_data.get("gst_percentage")
    if gst is not None and not 0 <= to_decimal(gst) <= 100:
        raise ValueError("GST percentage must be between 0 and 100")
    if (product_data.get("weight") or 0) < 0:
        raise ValueError("Weight cannot be negative")
    if (product_data.get("stock") or 0) < 0:
        raise ValueError("Stock cannot be negative")


def _build_product(db: Session, product_data: dict) -> Product:
    name = _check_name(db, product_data.get("name"))
    errors = validate_pricing(price=product_data.get("price"), mrp=product_data.get("mrp"))
    if errors:
        raise ValueError(errors[0])
    _check_ranges(product_data)

    db_product = Product(**{**product_data, "name": name})
    db_product.id = db_product.id or str(uuid.uuid4())
    db_product.slug = generate_slug(product_data.get("slug") or name)
    if not db_product.slug:
        raise ValueError("invalid_slug")
    db_product.sku = generate_unique_sku(db, name, db_product.category or "", db_product.id)
    if db_product.images is None:
        db_product.images = []
    return db_product


def create_product(db: Session, product_data: dict) -> Product:
    db_product = _build_product(db, product_data)
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def bulk_create_products(db: Session, rows: Iterable[dict]) -> tuple[list[Product], list[str]]:
    """Insert many products in one transaction.

    Rows that fail validation are skipped and reported as ``(products, errors)``.
    Each row may carry a ``_row`` number used in its error message.
    """
    created: list[Product] = []
    errors: list[str] = []
    seen_names: set[str] = set()
    try:
        for row in rows:
            row = dict(row)
            row_number = row.pop("_row", len(created) + len(errors) + 1)
            key = (row.get("name") or "").strip().lower()
            if key in seen_names:
                errors.append(f"Row {row_number}: duplicate product name in file")
                continue
            try:
                db_product = _build_product(db, row)
            except ValueError as e:
                errors.append(f"Row {row_number}: {_describe_error(e)}")
                continue
            db.add(db_product)
            # SKU uniqueness checks query the pending rows
            db.flush()
            seen_names.add(key)
            created.append(db_product)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return created, errors


def _describe_error(error: ValueError) -> str:
    code = str(error)
    if code == "duplicate_product_name":
        return "Product name already exists"
    if code == "name_required":
        return "Product name is required"
    return code


def get_products(
    db: Session,
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.query(Product)
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
                Product.tags.ilike(search_pattern),
            )
        )
    if category:
        query = query.filter(Product.category == category)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))

    total = query.count()
    products = (
        query.order_by(Product.created_at.desc(), Product.name)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return products, total


def get_categories(db: Session) -> list[str]:
    rows = (
        db.query(Product.category)
        .filter(Product.is_active.is_(True), Product.category.isnot(None))
        .distinct()
        .order_by(Product.category)
        .all()
    )
    return [r[0] for r in rows]


def update_product(db: Session, product_id: str, update_data: dict) -> Optional[Product]:
    """Apply a partial update.

    Renaming a product re-derives its slug unless a slug is given explicitly.
    """
    db_product = get_product(db, product_id)
    if not db_product:
        return None

    if "name" in update_data and update_data.get("name") is not None:
        update_data["name"] = _check_name(db, update_data["name"], exclude_id=product_id)
        if not update_data.get("slug"):
            update_data["slug"] = update_data["name"]
    if update_data.get("slug") is not None:
        update_data["slug"] = generate_slug(update_data["slug"])
        if not update_data["slug"]:
            raise ValueError("invalid_slug")

    errors = validate_pricing(
        price=update_data.get("price", db_product.price),
        mrp=update_data.get("mrp", db_product.mrp),
    )
    if errors:
        raise ValueError(errors[0])

    for key, value in update_data.items():
        if value is not None:
            setattr(db_product, key, value)
    db.commit()
    db.refresh(db_product)
    return db_product


def rewrite_image_paths(db: Session, db_product: Product, old_slug: str, new_slug: str) -> Product:
    old_prefix, new_prefix = f"products/{old_slug}/", f"products/{new_slug}/"
    if db_product.main_image:
        db_product.main_image = db_product.main_image.replace(old_prefix, new_prefix)
    db_product.images = [img.replace(old_prefix, new_prefix) for img in (db_product.images or [])]
    db.commit()
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, product_id: str):
    db_product = get_product(db, product_id)
    if db_product:
        db.delete(db_product)
        db.commit()
    return db_product


# -----------------------------
# Stock
# -----------------------------

def _merge_items(items: Iterable[dict]) -> dict[str, int]:
    merged: dict[str, int] = {}
    for item in items:
        pid = str(item["product_id"])
        qty = int(item["quantity"])
        if qty <= 0:
            raise ValueError("quantity must be > 0")
        merged[pid] = merged.get(pid, 0) + qty
    return merged


def check_product_stock(db: Session, product_id: str) -> Optional[int]:
    row = (
        db.query(Product.stock)
        .filter(Product.id == product_id, Product.is_active.is_(True))
        .first()
    )
    return None if row is None else int(row[0])


def validate_cart_stock(db: Session, items: Iterable[dict]) -> list[str]:
    errors = []
    for pid, qty in _merge_items(items).items():
        available = check_product_stock(db, pid)
        if available is None:
            errors.append(f"Product {pid} not found or inactive")
        elif available < qty:
            errors.append(f"Insufficient stock for product {pid}. Available: {available}, Requested: {qty}")
    return errors


def decrease_product_stock(db: Session, product_id: str, quantity: int) -> bool:
    """Guarded decrement; returns False when stock is short. Caller commits."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def increase_product_stock(db: Session, product_id: str, quantity: int) -> bool:
    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def update_product_stock(db: Session, product_id: str, stock: int) -> Optional[Product]:
    db_product = get_product(db, product_id)
    if not db_product:
        return None
    db_product.stock = stock
    db.commit()
    db.refresh(db_product)
    return db_product


def process_stock_deduction(db: Session, items: Iterable[dict]) -> None:
    """Validate and deduct stock for every cart line, all or nothing.

    Raises StockError listing every problem found.
    """
    items = list(items)
    errors = validate_cart_stock(db, items)
    if errors:
        raise StockError(errors)

    merged = _merge_items(items)
    try:
        # Stable order keeps concurrent checkouts from deadlocking
        for pid in sorted(merged):
            if not decrease_product_stock(db, pid, merged[pid]):
                raise StockError([f"Failed to update stock for product {pid}"])
        db.commit()
    except Exception:
        db.rollback()
        raise


def restore_stock(db: Session, items: Iterable[dict]) -> list[str]:
    """Put stock back for the given lines, one commit per product.

    Failures are logged and returned; the remaining products are still restored.
    """
    failed = []
    for item in items:
        pid = item.get("product_id")
        if not pid:
            continue
        try:
            if not increase_product_stock(db, pid, int(item["quantity"])):
                logger.warning("Stock restore skipped, product %s no longer exists", pid)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to restore stock for product %s", pid)
            failed.append(pid)
    return failed
