from conftest import add_to_cart, login_headers, signup


def test_add_to_cart_always_starts_at_one(client, user_headers, product):
    response = add_to_cart(client, user_headers, product["id"], quantity=5)
    assert response.status_code == 200
    line = response.json()
    assert line["quantity"] == 1
    assert line["product_id"] == product["id"]
    assert line["size"] == "9"


def test_add_unknown_product(client, user_headers):
    response = add_to_cart(client, user_headers, 999)
    assert response.status_code == 400
    assert response.json()["detail"] == "Product not found"


def test_add_requires_size(client, user_headers, product):
    response = client.post("/cart", json={"product_id": product["id"], "cart_image": "x.jpg"},
                           headers=user_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == '"size" is required'


def test_list_cart_with_line_totals(client, user_headers, product):
    line = add_to_cart(client, user_headers, product["id"]).json()
    client.put("/cart", json={"id": line["id"], "quantity": 3}, headers=user_headers)
    response = client.get("/cart", headers=user_headers)
    assert response.status_code == 200
    [row] = response.json()
    assert row["cart_id"] == line["id"]
    assert row["cart_quantity"] == 3
    assert row["title"] == product["title"]
    assert abs(row["total_price"] - 3 * 49.99) < 0.001


def test_update_quantity_must_be_positive(client, user_headers, product):
    line = add_to_cart(client, user_headers, product["id"]).json()
    response = client.put("/cart", json={"id": line["id"], "quantity": 0}, headers=user_headers)
    assert response.status_code == 400


def test_cannot_touch_another_users_line(client, user_headers, product):
    line = add_to_cart(client, user_headers, product["id"]).json()
    signup(client, username="johndoe")
    other = login_headers(client, username="johndoe")

    assert client.put("/cart", json={"id": line["id"], "quantity": 4}, headers=other).status_code == 400
    assert client.delete(f"/cart/{line['id']}", headers=other).status_code == 400
    [row] = client.get("/cart", headers=user_headers).json()
    assert row["cart_quantity"] == 1


def test_delete_single_line(client, user_headers, product):
    first = add_to_cart(client, user_headers, product["id"], size="9").json()
    add_to_cart(client, user_headers, product["id"], size="10")
    response = client.delete(f"/cart/{first['id']}", headers=user_headers)
    assert response.status_code == 200
    assert [r["size"] for r in client.get("/cart", headers=user_headers).json()] == ["10"]


def test_clear_cart_only_affects_current_user(client, user_headers, product):
    signup(client, username="johndoe")
    other = login_headers(client, username="johndoe")
    add_to_cart(client, user_headers, product["id"])
    add_to_cart(client, user_headers, product["id"], size="10")
    add_to_cart(client, other, product["id"])

    response = client.delete("/cart", headers=user_headers)
    assert response.status_code == 200
    assert client.get("/cart", headers=user_headers).json() == []
    assert len(client.get("/cart", headers=other).json()) == 1
