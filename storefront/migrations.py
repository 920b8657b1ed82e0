import logging

from sqlalchemy import inspect, text

from .crud.products import generate_unique_sku
from .database import SessionLocal, engine
from .models import Product
from .slugs import generate_slug

logger = logging.getLogger(__name__)

# Columns added to products after the first release
PRODUCT_COLUMNS = {
    "slug": "VARCHAR(220)",
    "sku": "VARCHAR(50)",
    "gst_percentage": "NUMERIC(5, 2) NOT NULL DEFAULT 5",
    "tax_inclusive": "BOOLEAN NOT NULL DEFAULT FALSE",
}


def add_missing_product_columns():
    existing = {col["name"] for col in inspect(engine).get_columns("products")}
    with engine.begin() as connection:
        for name, ddl in PRODUCT_COLUMNS.items():
            if name in existing:
                continue
            connection.execute(text(f"ALTER TABLE products ADD COLUMN {name} {ddl}"))
            logger.info("Column '%s' added to products table", name)


def backfill_slugs_and_skus():
    db = SessionLocal()
    try:
        products = db.query(Product).filter((Product.slug.is_(None)) | (Product.sku.is_(None))).all()
        for product in products:
            if not product.slug:
                product.slug = generate_slug(product.name)
            if not product.sku:
                product.sku = generate_unique_sku(db, product.name, product.category or "", product.id)
            db.flush()
        db.commit()
        if products:
            logger.info("Backfilled slug/SKU for %d products", len(products))
    except Exception:
        db.rollback()
        logger.exception("Error backfilling product slugs and SKUs")
        raise
    finally:
        db.close()


def run_migrations():
    add_missing_product_columns()
    backfill_slugs_and_skus()
