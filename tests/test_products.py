"""Tests for the catalog: products, CSV import and stock handling."""

import pytest

from storefront.crud import products as crud
from storefront.csv_import import parse_products_csv
from storefront.models import Product


def test_create_product_derives_slug_and_sku(make_product):
    product = make_product(name="Kashmiri Chilli Powder", category="Spices")
    assert product.slug == "kashmiri-chilli-powder"
    assert product.sku == f"KASP-{product.id[:6].upper()}"
    assert product.images == []


def test_create_product_rejects_duplicate_name(make_product):
    make_product(name="Green Tea")
    with pytest.raises(ValueError, match="duplicate_product_name"):
        make_product(name="  green tea ")


def test_create_product_validates_pricing(make_product):
    with pytest.raises(ValueError, match="Price cannot be greater than MRP"):
        make_product(price=150, mrp=100)


def test_bulk_create_skips_bad_rows(db, make_product):
    make_product(name="Existing")
    rows = [
        {"_row": 2, "name": "Saffron", "category": "Spices", "price": 500, "mrp": 600},
        {"_row": 3, "name": "Existing", "category": "Spices", "price": 5, "mrp": 6},
        {"_row": 4, "name": "saffron", "category": "Spices", "price": 5, "mrp": 6},
        {"_row": 5, "name": "Pepper", "category": "Spices", "price": 10, "mrp": 5},
    ]
    created, errors = crud.bulk_create_products(db, rows)
    assert [p.name for p in created] == ["Saffron"]
    assert errors == [
        "Row 3: Product name already exists",
        "Row 4: duplicate product name in file",
        "Row 5: Price cannot be greater than MRP",
    ]


def test_bulk_create_checks_gst_and_weight(db):
    rows, parse_errors = parse_products_csv(
        "name,category,price,mrp,gst,weight\n"
        "Pepper,Spices,90,100,-40,100\n"
        "Clove,Spices,90,100,140,100\n"
        "Mace,Spices,90,100,12,-5\n"
        "Nutmeg,Spices,90,100,12,250\n"
    )
    assert parse_errors == []
    created, errors = crud.bulk_create_products(db, rows)
    assert [p.name for p in created] == ["Nutmeg"]
    assert errors == [
        "Row 2: GST percentage must be between 0 and 100",
        "Row 3: GST percentage must be between 0 and 100",
        "Row 4: Weight cannot be negative",
    ]


def test_get_products_filters(db, make_product):
    make_product(name="Black Tea", category="Tea", tags="assam")
    make_product(name="Cardamom", category="Spices")
    make_product(name="Hidden Tea", category="Tea", is_active=False)

    products, total = crud.get_products(db, category="Tea")
    assert total == 2
    products, total = crud.get_products(db, search="assam")
    assert [p.name for p in products] == ["Black Tea"]
    products, total = crud.get_products(db, is_active=True, category="Tea")
    assert total == 1
    assert crud.get_categories(db) == ["Spices", "Tea"]


def test_rename_rederives_slug(db, make_product):
    product = make_product(name="Old Name")
    updated = crud.update_product(db, product.id, {"name": "New Name"})
    assert updated.slug == "new-name"

    updated = crud.update_product(db, product.id, {"name": "Newer Name", "slug": "Custom Slug"})
    assert updated.slug == "custom-slug"


def test_empty_slug_is_rejected(db, make_product):
    product = make_product(name="Star Anise")
    with pytest.raises(ValueError, match="invalid_slug"):
        crud.update_product(db, product.id, {"slug": ""})
    db.expire_all()
    assert db.get(Product, product.id).slug == "star-anise"

    updated = crud.update_product(db, product.id, {"name": "Whole Star Anise", "slug": ""})
    assert updated.slug == "whole-star-anise"


def test_update_checks_price_against_existing_mrp(db, make_product):
    product = make_product(price=90, mrp=100)
    with pytest.raises(ValueError, match="Price cannot be greater than MRP"):
        crud.update_product(db, product.id, {"price": 120})


def test_rewrite_image_paths(db, make_product):
    product = make_product(
        name="Tea Box",
        main_image="https://cdn.example.com/products/tea-box/main.jpg",
        images=["products/tea-box/image-1.jpg", "products/other/image-1.jpg"],
    )
    crud.rewrite_image_paths(db, product, "tea-box", "gift-box")
    assert product.main_image == "https://cdn.example.com/products/gift-box/main.jpg"
    assert product.images == ["products/gift-box/image-1.jpg", "products/other/image-1.jpg"]


def _stock(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


def test_validate_cart_stock_messages(db, make_product):
    product = make_product(stock=3)
    inactive = make_product(is_active=False)
    errors = crud.validate_cart_stock(
        db,
        [
            {"product_id": product.id, "quantity": 2},
            {"product_id": product.id, "quantity": 2},
            {"product_id": inactive.id, "quantity": 1},
            {"product_id": "missing", "quantity": 1},
        ],
    )
    assert errors == [
        f"Insufficient stock for product {product.id}. Available: 3, Requested: 4",
        f"Product {inactive.id} not found or inactive",
        "Product missing not found or inactive",
    ]


def test_process_stock_deduction(db, make_product):
    a = make_product(stock=5)
    b = make_product(stock=2)
    crud.process_stock_deduction(db, [{"product_id": a.id, "quantity": 3}, {"product_id": b.id, "quantity": 2}])
    assert _stock(db, a.id) == 2
    assert _stock(db, b.id) == 0


def test_process_stock_deduction_is_all_or_nothing(db, make_product):
    a = make_product(stock=5)
    b = make_product(stock=1)
    with pytest.raises(crud.StockError) as exc:
        crud.process_stock_deduction(db, [{"product_id": a.id, "quantity": 3}, {"product_id": b.id, "quantity": 2}])
    assert len(exc.value.errors) == 1
    assert _stock(db, a.id) == 5
    assert _stock(db, b.id) == 1


def test_guarded_decrement_refuses_to_oversell(db, make_product):
    product = make_product(stock=1)
    assert crud.decrease_product_stock(db, product.id, 2) is False
    assert crud.decrease_product_stock(db, product.id, 1) is True
    db.commit()
    assert _stock(db, product.id) == 0


def test_restore_stock_continues_past_missing_products(db, make_product):
    product = make_product(stock=1)
    failed = crud.restore_stock(
        db,
        [{"product_id": "gone", "quantity": 1}, {"product_id": None, "quantity": 1}, {"product_id": product.id, "quantity": 4}],
    )
    assert failed == []
    assert _stock(db, product.id) == 5


# -----------------------------
# HTTP
# -----------------------------

def test_product_routes_require_staff(client, customer_headers):
    assert client.get("/products/").status_code in (401, 403)
    assert client.get("/products/", headers=customer_headers).status_code == 403


def test_create_and_list_products(client, staff_headers):
    response = client.post(
        "/products/",
        json={"name": "Masala Chai", "category": "Tea", "price": "180", "mrp": "200", "stock": 4},
        headers=staff_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["slug"] == "masala-chai"

    duplicate = client.post(
        "/products/",
        json={"name": "masala chai", "category": "Tea", "price": "1", "mrp": "2"},
        headers=staff_headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Product name already exists"

    listing = client.get("/products/", headers=staff_headers).json()
    assert listing["pagination"]["total"] == 1
    assert listing["categories"] == ["Tea"]


def test_upload_csv(client, staff_headers):
    text = "name,category,price,mrp,stock\nGinger,Spices,40,50,3\nBroken,Spices\n"
    response = client.post(
        "/products/upload-csv",
        files={"csv": ("products.csv", text.encode(), "text/csv")},
        headers=staff_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["imported"] == 1
    assert body["errors"] == ["Row 3: Insufficient columns"]


def test_upload_csv_without_valid_rows(client, staff_headers):
    response = client.post(
        "/products/upload-csv",
        files={"csv": ("products.csv", b"name,category,price,mrp\n,Spices,1,2\n", "text/csv")},
        headers=staff_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "No valid products found in CSV"


def test_update_stock_and_delete(client, staff_headers, admin_headers, make_product):
    product = make_product()
    response = client.patch(f"/products/{product.id}/stock", json={"stock": 42}, headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["stock"] == 42

    assert client.delete(f"/products/{product.id}", headers=staff_headers).status_code == 403
    response = client.delete(f"/products/{product.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["id"] == product.id
    assert client.get(f"/products/{product.id}", headers=admin_headers).status_code == 404


def test_shop_lists_only_active_products(client, make_product):
    make_product(name="Visible", price=80, mrp=100)
    make_product(name="Draft", is_active=False)

    response = client.get("/shop/products")
    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=300"
    assert [p["name"] for p in response.json()["products"]] == ["Visible"]

    detail = client.get("/shop/products/visible").json()
    assert detail["in_stock"] is True
    assert detail["pricing"]["discount_percent"] == 20
    assert client.get("/shop/products/draft").status_code == 404
