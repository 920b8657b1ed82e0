from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ..crud import products as crud
from ..database import get_db
from ..pricing import get_price_info
from ..schemas import Pagination, ProductListResponse, ProductOut

router = APIRouter(prefix="/shop", tags=["Shop"])

CACHE_CONTROL = "public, max-age=300"


@router.get("/products", response_model=ProductListResponse)
def list_shop_products(
    response: Response,
    search: Optional[str] = Query(None, description="**Search** in name, description or tags"),
    category: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Public catalog; only active products are listed."""
    products, total = crud.get_products(
        db, search=search, category=category, is_active=True, limit=limit, offset=offset
    )
    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "products": products,
        "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        "categories": crud.get_categories(db),
    }


@router.get("/products/{slug}")
def get_shop_product(slug: str, response: Response, db: Session = Depends(get_db)):
    product = crud.get_product_by_slug(db, slug)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "product": ProductOut.model_validate(product),
        "pricing": get_price_info(price=product.price, mrp=product.mrp),
        "in_stock": product.stock > 0,
    }
