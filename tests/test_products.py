import pytest

from conftest import create_product


def test_create_and_fetch_product(client, user_headers):
    created = create_product(client, user_headers)
    assert created["title"] == "Runner Sneaker"
    assert created["price"] == 49.99
    assert created["image2"] is None

    response = client.get(f"/products/{created['id']}")
    assert response.status_code == 200
    assert response.json() == created


def test_create_product_requires_auth(client):
    response = client.post("/products", json={"title": "Runner Sneaker"})
    assert response.status_code == 401


def test_create_product_validates(client, user_headers):
    response = client.post("/products", json={
        "title": "Runner Sneaker", "price": 1, "quantity": 1,
        "description": "Lightweight everyday running sneaker", "category": "shoes",
        "image1": "https://img.shop.io/1.jpg",
    }, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == '"price" must be greater than or equal to 2'


def test_non_numeric_price_is_a_400(client, user_headers):
    response = client.post("/products", json={"title": "Runner Sneaker", "price": "cheap"}, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"].startswith('"price"')


def test_list_products(client, user_headers):
    create_product(client, user_headers)
    create_product(client, user_headers, title="Trail Boot Pro")
    response = client.get("/products")
    assert response.status_code == 200
    assert [p["title"] for p in response.json()] == ["Runner Sneaker", "Trail Boot Pro"]


def test_missing_product(client):
    response = client.get("/products/999")
    assert response.status_code == 400
    assert response.json()["detail"] == "Product not found"


@pytest.mark.parametrize("raw_id", [
    "1 OR 1=1",
    "1; DROP TABLE products",
    "1' --",
    "0 UNION SELECT * FROM users",
])
def test_product_id_with_sql_metacharacters(client, product, raw_id):
    response = client.get(f"/products/{raw_id}")
    assert response.status_code == 400
    # The table is untouched and still queryable
    listing = client.get("/products")
    assert listing.status_code == 200
    assert [p["id"] for p in listing.json()] == [product["id"]]


def test_update_product(client, user_headers, product):
    response = client.put(f"/products/{product['id']}", json={"price": 59.5, "label": "sale"},
                          headers=user_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["price"] == 59.5
    assert body["label"] == "sale"
    assert body["title"] == product["title"]


def test_update_missing_product(client, user_headers):
    response = client.put("/products/999", json={"price": 59.5}, headers=user_headers)
    assert response.status_code == 400


def test_delete_product(client, user_headers, product):
    response = client.delete(f"/products/{product['id']}", headers=user_headers)
    assert response.status_code == 200
    assert client.get(f"/products/{product['id']}").status_code == 400
    assert client.delete(f"/products/{product['id']}", headers=user_headers).status_code == 400


def test_create_product_price_too_large(client, user_headers):
    response = client.post("/products", json={
        "title": "Runner Sneaker", "price": 1000000, "quantity": 1,
        "description": "Lightweight everyday running sneaker", "category": "shoes",
        "image1": "https://img.shop.io/1.jpg",
    }, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == '"price" must be less than or equal to 999999.99'


@pytest.mark.parametrize("changes,message", [
    ({"title": "", "description": "x"}, '"title" is not allowed to be empty'),
    ({"description": "x"}, '"description" length must be at least 10 characters long'),
    ({"price": 1}, '"price" must be greater than or equal to 2'),
    ({"category": ""}, '"category" is not allowed to be empty'),
])
def test_update_product_enforces_catalog_rules(client, user_headers, product, changes, message):
    response = client.put(f"/products/{product['id']}", json=changes, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == message
    assert client.get(f"/products/{product['id']}").json() == product
