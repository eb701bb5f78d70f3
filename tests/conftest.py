import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from payments import StripeGateway

PASSWORD = "secret123"


class FakeGateway(StripeGateway):
    """Records checkout sessions instead of calling Stripe."""

    def __init__(self, webhook_secret=None):
        super().__init__("sk_test_fake", webhook_secret)
        self.sessions = []

    def create_checkout_session(self, **kwargs):
        self.sessions.append(kwargs)
        return f"cs_test_{len(self.sessions)}"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'storefront.db'}",
        token_secret="test-secret",
        frontend_domain_url="http://shop.test",
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(settings, gateway):
    app = create_app(settings, payments=gateway)
    with TestClient(app) as c:
        yield c


def signup(client, username="janedoe", email=None, password=PASSWORD):
    return client.post("/signup", json={
        "username": username,
        "firstname": "Jane",
        "lastname": "Doering",
        "email": email or f"{username}@shop.io",
        "password": password,
    })


def login_headers(client, username="janedoe", password=PASSWORD):
    response = client.post("/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"auth-token": response.json()["access_token"]}


def create_product(client, headers, **overrides):
    data = {
        "title": "Runner Sneaker",
        "price": 49.99,
        "quantity": 10,
        "description": "Lightweight everyday running sneaker",
        "category": "shoes",
        "label": "new",
        "image1": "https://img.shop.io/runner-1.jpg",
        "btn_color1": "red",
        "btn_color2": "blue",
        "btn_color3": "black",
        "btn_color4": "white",
    }
    data.update(overrides)
    response = client.post("/products", json=data, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def add_to_cart(client, headers, product_id, size="9", **extra):
    body = {"product_id": product_id, "size": size, "cart_image": "https://img.shop.io/cart.jpg"}
    body.update(extra)
    return client.post("/cart", json=body, headers=headers)


@pytest.fixture
def user_headers(client):
    assert signup(client).status_code == 200
    return login_headers(client)


@pytest.fixture
def product(client, user_headers):
    return create_product(client, user_headers)
