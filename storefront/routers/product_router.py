import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import storage
from ..auth import get_current_admin, get_current_staff
from ..crud import products as crud
from ..csv_import import CSVFormatError, parse_products_csv
from ..database import get_db
from ..models import User
from ..schemas import Pagination, ProductCreate, ProductListResponse, ProductOut, ProductUpdate, StockUpdate
from ..slugs import generate_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])

CSV_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}


def _raise_for_value_error(e: ValueError):
    if str(e) == "duplicate_product_name":
        raise HTTPException(status_code=409, detail="Product name already exists")
    if str(e) == "name_required":
        raise HTTPException(status_code=400, detail="Product name is required")
    if str(e) == "invalid_slug":
        raise HTTPException(status_code=400, detail="Invalid product name for slug generation")
    raise HTTPException(status_code=400, detail=str(e))


def _raise_for_storage_error(e: storage.StorageError):
    if isinstance(e, storage.StorageConfigError):
        raise HTTPException(status_code=500, detail=str(e))
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


def _slug_from_name(product_name: str) -> str:
    slug = generate_slug(product_name)
    if not slug:
        raise HTTPException(status_code=400, detail="Invalid product name for slug generation")
    return slug


@router.get("/", response_model=ProductListResponse)
def list_products(
    search: Optional[str] = Query(None, description="**Search** in name, description or tags"),
    category: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    products, total = crud.get_products(
        db, search=search, category=category, is_active=is_active, limit=limit, offset=offset
    )
    return {
        "products": products,
        "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        "categories": crud.get_categories(db),
    }


@router.post("/", response_model=ProductOut, status_code=201)
def create_product(
    body: ProductCreate,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_product(db, body.model_dump())
    except ValueError as e:
        _raise_for_value_error(e)
    except IntegrityError:
        # DB-level unique constraint (race conditions)
        db.rollback()
        raise HTTPException(status_code=409, detail="Product name already exists")


@router.post("/upload-csv")
async def upload_products_csv(
    csv_file: UploadFile = File(..., alias="csv", description="**CSV file** with a header row"),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    filename = (csv_file.filename or "").lower()
    if csv_file.content_type not in CSV_CONTENT_TYPES and not filename.endswith(".csv"):
        raise HTTPException(status_code=400, detail="Valid CSV file is required")

    raw = await csv_file.read()
    try:
        rows, errors = parse_products_csv(raw.decode("utf-8-sig"))
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
    except CSVFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    created, row_errors = crud.bulk_create_products(db, rows)
    errors.extend(row_errors)
    if not created:
        raise HTTPException(status_code=400, detail={"error": "No valid products found in CSV", "errors": errors})

    logger.info("Imported %d products from CSV (%d rows rejected)", len(created), len(errors))
    return {
        "success": True,
        "message": f"Successfully imported {len(created)} products",
        "imported": len(created),
        "errors": errors,
    }


# -----------------------------
# Images (R2)
# -----------------------------

@router.post("/images", status_code=201)
async def upload_product_image(
    image: UploadFile = File(..., description="**Image** (JPEG, PNG or WebP, max 5MB)"),
    product_name: str = Form(..., description="**Product name** used to derive the image folder", examples=[""]),
    filename: Optional[str] = Form(None, description="**Stored filename** (defaults to the uploaded name)", examples=[""]),
    current_staff: User = Depends(get_current_staff),
):
    slug = _slug_from_name(product_name)
    data = await image.read()
    target = filename or image.filename or "main.jpg"
    try:
        storage.validate_image(target, image.content_type, len(data), storage.MAX_PRODUCT_IMAGE_BYTES)
        key = storage.upload_product_image(slug, target, data, image.content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except storage.StorageError as e:
        _raise_for_storage_error(e)
    return {"success": True, "image_path": key, "url": storage.public_url(key)}


@router.post("/images/gallery", status_code=201)
async def upload_product_gallery(
    images: List[UploadFile] = File(..., description="**Images** (up to 5)"),
    product_name: str = Form(..., description="**Product name** used to derive the image folder", examples=[""]),
    current_staff: User = Depends(get_current_staff),
):
    slug = _slug_from_name(product_name)
    if len(images) > storage.MAX_GALLERY_IMAGES:
        raise HTTPException(status_code=400, detail=f"Maximum {storage.MAX_GALLERY_IMAGES} images allowed per product")

    files = []
    for upload in images:
        data = await upload.read()
        try:
            storage.validate_image(upload.filename, upload.content_type, len(data), storage.MAX_PRODUCT_IMAGE_BYTES)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        files.append((upload.filename, data, upload.content_type))

    try:
        keys = storage.upload_product_gallery(slug, files)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except storage.StorageError as e:
        _raise_for_storage_error(e)
    return {
        "success": True,
        "image_paths": keys,
        "urls": [storage.public_url(k) for k in keys],
    }


@router.delete("/images")
def delete_product_image(
    slug: str = Query(..., min_length=1),
    filename: str = Query(..., min_length=1),
    current_staff: User = Depends(get_current_staff),
):
    try:
        key = storage.delete_product_image(slug, filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except storage.StorageError as e:
        _raise_for_storage_error(e)
    return {"success": True, "deleted": key}


@router.get("/images/{folder}")
def list_product_images(
    folder: str,
    current_staff: User = Depends(get_current_staff),
):
    try:
        keys = storage.list_product_images(folder)
    except storage.StorageError as e:
        _raise_for_storage_error(e)
    if not keys:
        raise HTTPException(status_code=404, detail="No images found")
    return {
        "image": storage.public_url(keys[0]),
        "images": [storage.public_url(k) for k in keys],
    }


# -----------------------------
# Single product
# -----------------------------

@router.get("/{product_id}", response_model=ProductOut)
def get_product(
    product_id: str,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    product = crud.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.patch("/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdate,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    """Update a product. A slug change moves its images to the new folder."""
    existing = crud.get_product(db, product_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    old_slug = existing.slug

    update_data = body.model_dump(exclude_unset=True)
    try:
        product = crud.update_product(db, product_id, update_data)
    except ValueError as e:
        _raise_for_value_error(e)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Product name already exists")

    image_move = None
    if old_slug and product.slug != old_slug:
        image_move = storage.move_product_images(old_slug, product.slug)
        if image_move["success"]:
            product = crud.rewrite_image_paths(db, product, old_slug, product.slug)
        else:
            logger.warning("Product %s renamed but images stayed in %s: %s", product_id, old_slug, image_move.get("error"))

    return {
        "product": ProductOut.model_validate(product),
        "image_move": image_move,
    }


@router.patch("/{product_id}/stock", response_model=ProductOut)
def update_product_stock(
    product_id: str,
    body: StockUpdate,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    product = crud.update_product_stock(db, product_id, body.stock)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.delete("/{product_id}", response_model=ProductOut)
def delete_product(
    product_id: str,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    product = crud.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    product_data = ProductOut.model_validate(product)
    crud.delete_product(db, product_id)
    if product_data.slug and storage.is_configured():
        result = storage.delete_product_images(product_data.slug)
        if not result["success"]:
            logger.warning("Product %s deleted but its images were kept: %s", product_id, result.get("error"))
    return product_data
