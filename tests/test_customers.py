from storefront.crud import customers as crud
from storefront.crud import orders as order_crud
from storefront.models import Order, OrderItem


def _order_for(db, make_product, email, first_name="Ravi", quantity=1):
    product = make_product(stock=10, price=100, mrp=100, weight=0, gst_percentage=0)
    quote = order_crud.quote_cart(db, [{"product_id": product.id, "quantity": quantity}])
    return order_crud.create_order(db, {"first_name": first_name, "last_name": "Kumar", "email": email}, quote)


def test_upsert_customer_lowercases_email(db):
    customer = crud.upsert_customer(db, {"first_name": "Meera", "email": " Meera@Example.COM "})
    db.commit()
    assert customer.email == "meera@example.com"
    assert crud.get_customer_by_email(db, "MEERA@example.com").id == customer.id


def test_customer_list_aggregates(db, make_product):
    _order_for(db, make_product, "ravi@example.com", quantity=2)
    _order_for(db, make_product, "ravi@example.com")
    crud.upsert_customer(db, {"first_name": "Zoya", "last_name": "Zaman", "email": "zoya@example.com"})
    db.commit()

    rows, total = crud.get_customers(db)
    assert total == 2
    by_email = {r["customer"].email: r for r in rows}
    assert by_email["ravi@example.com"]["order_count"] == 2
    assert by_email["ravi@example.com"]["total_spent"] == 300
    assert by_email["zoya@example.com"]["order_count"] == 0

    rows, total = crud.get_customers(db, search="zoya")
    assert total == 1


def test_recent_orders_and_delete(db, make_product):
    order = _order_for(db, make_product, "ravi@example.com", quantity=3)
    customer_id = order.customer_id

    recent = crud.get_customer_recent_orders(db, customer_id)
    assert recent[0]["id"] == order.id
    assert recent[0]["item_count"] == 1

    crud.delete_customer(db, customer_id)
    assert crud.get_customer(db, customer_id) is None
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0


def test_customer_routes(client, db, make_product, staff_headers, admin_headers):
    order = _order_for(db, make_product, "ravi@example.com")

    listing = client.get("/customers/", headers=staff_headers).json()
    assert listing["customers"][0]["email"] == "ravi@example.com"
    assert listing["customers"][0]["order_count"] == 1

    detail = client.get(f"/customers/{order.customer_id}", headers=staff_headers).json()
    assert detail["recent_orders"][0]["order_number"] == f"ORD-{order.id:06d}"

    assert client.delete(f"/customers/{order.customer_id}", headers=staff_headers).status_code == 403
    response = client.delete(f"/customers/{order.customer_id}", headers=admin_headers)
    assert response.json()["message"] == "Customer ravi@example.com deleted"
    assert client.get(f"/customers/{order.customer_id}", headers=staff_headers).status_code == 404
