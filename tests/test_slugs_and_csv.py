import pytest

from storefront.csv_import import CSVFormatError, parse_products_csv
from storefront.slugs import generate_sku, generate_slug, generate_username_base, order_number


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Organic Turmeric Powder", "organic-turmeric-powder"),
        ("  Chai -- Masala (200g)! ", "chai-masala-200g"),
        ("snake_case_name", "snake-case-name"),
        ("!!!", ""),
    ],
)
def test_generate_slug(name, expected):
    assert generate_slug(name) == expected


def test_generate_sku():
    assert generate_sku("Turmeric", "Spices", "abcdef12-3456") == "TUSP-ABCDEF"
    # short or non-letter parts are padded
    assert generate_sku("7", "", "123456") == "XXXX-123456"


def test_generate_username_base():
    assert generate_username_base("Jane Doe") == "janed"
    assert generate_username_base("Al") == "aluser"


def test_order_number():
    assert order_number(42) == "ORD-000042"


def test_parse_csv_with_aliases():
    text = (
        "Product_Name,Product_Category,Selling_Price,MRP,Stock,Active,GST,Sub_Category\n"
        "Cumin,Spices,90,100,5,true,12,Seeds\n"
        "Clove,Spices,150,160,-3,no,,Whole\n"
    )
    rows, errors = parse_products_csv(text)
    assert errors == []
    assert [r["name"] for r in rows] == ["Cumin", "Clove"]
    cumin, clove = rows
    assert cumin["_row"] == 2
    assert cumin["category"] == "Spices"
    assert cumin["subcategory"] == "Seeds"
    assert cumin["price"] == 90
    assert cumin["stock"] == 5
    assert cumin["is_active"] is True
    assert cumin["gst_percentage"] == 12
    assert clove["stock"] == 0
    assert clove["is_active"] is False
    assert clove["gst_percentage"] == 5


def test_parse_csv_reports_bad_rows():
    text = "name,category,price,mrp\nGood,Tea,10,12\nShort,Tea\n,Tea,10,12\nBad,Tea,abc,12\n"
    rows, errors = parse_products_csv(text)
    assert [r["name"] for r in rows] == ["Good"]
    assert errors == [
        "Row 3: Insufficient columns",
        "Row 4: Missing or invalid required fields",
        "Row 5: Missing or invalid required fields",
    ]


def test_parse_csv_missing_required_header():
    with pytest.raises(CSVFormatError, match="Required field 'mrp'"):
        parse_products_csv("name,category,price\nTea,Drinks,10\n")


def test_parse_csv_needs_a_data_row():
    with pytest.raises(CSVFormatError):
        parse_products_csv("name,category,price,mrp\n")
