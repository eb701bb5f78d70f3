import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from auth import TOKEN_HEADER, create_access_token, get_current_username, hash_password, verify_password
from config import Settings, setup_logging
from database import (
    Database,
    address,
    cart,
    cart_lines_query,
    checkout_sessions,
    ensure_schema,
    orders,
    orders_query,
    products,
    serialize_row,
    serialize_user,
    users,
)
from payments import CHECKOUT_COMPLETED, StripeGateway, WebhookError, build_line_items
from schemas import (
    AddressIn,
    AddressUpdate,
    CartItemIn,
    CartQuantityUpdate,
    LoginInput,
    PasswordChange,
    ProductIn,
    ProductUpdate,
    RegisterInput,
    TokenResponse,
    UserUpdate,
)
from validation import (
    address_validation,
    cart_validation,
    login_validation,
    password_validation,
    product_validation,
    product_update_validation,
    profile_validation,
    register_validation,
)

logger = logging.getLogger(__name__)

ORDER_STATUS = "ordered"

router = APIRouter()


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payments(request: Request) -> StripeGateway:
    return request.app.state.payments


def resolve_user(conn, username: str):
    user = conn.execute(select(users).where(users.c.username == username)).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def check(error: Optional[str]) -> None:
    if error:
        raise HTTPException(status_code=400, detail=error)


def settable(table, data) -> Dict[str, Any]:
    """Fields the client sent; null is only kept for nullable columns."""
    return {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or table.c[k].nullable
    }


# Routes
@router.get("/")
def read_root():
    return {"message": "Storefront API"}


@router.get("/health")
def health(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "dialect": db.engine.dialect.name,
    }
    try:
        if db.ping():
            response["database"] = "✅ Connected & Working"
    except SQLAlchemyError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
@router.post("/signup")
def signup(payload: RegisterInput, db: Database = Depends(get_db)):
    check(register_validation(payload.username, payload.firstname, payload.lastname,
                              payload.email, payload.password))
    with db.begin() as conn:
        if conn.execute(select(users.c.id).where(users.c.username == payload.username)).first():
            raise HTTPException(status_code=400, detail="Username already taken!")
        if conn.execute(select(users.c.id).where(users.c.email == payload.email)).first():
            raise HTTPException(status_code=400, detail="Email already exists!")
        try:
            result = conn.execute(insert(users).values(
                username=payload.username,
                firstname=payload.firstname,
                lastname=payload.lastname,
                email=payload.email,
                password=hash_password(payload.password),
            ))
        except IntegrityError:
            # Lost a race with a concurrent signup for the same username or email
            raise HTTPException(status_code=400, detail="Username or email already registered")
        user_id = result.inserted_primary_key[0]
        created = conn.execute(select(users).where(users.c.id == user_id)).first()
    logger.info("Registered user %s", payload.username)
    return serialize_user(created)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginInput, response: Response, db: Database = Depends(get_db),
          settings: Settings = Depends(get_settings)):
    check(login_validation(payload.username, payload.password))
    with db.begin() as conn:
        user = conn.execute(select(users.c.password).where(users.c.username == payload.username)).first()
    if not user:
        raise HTTPException(status_code=400, detail="Username is not found")
    if not verify_password(payload.password, user.password):
        raise HTTPException(status_code=400, detail="Invalid password")
    token = create_access_token(payload.username, settings.token_secret,
                                timedelta(days=settings.token_expire_days))
    response.headers[TOKEN_HEADER] = token
    return TokenResponse(access_token=token)


@router.get("/user")
def get_user(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        return serialize_user(resolve_user(conn, username))


@router.put("/user")
def update_user(data: UserUpdate, username: str = Depends(get_current_username),
                db: Database = Depends(get_db)):
    changes = settable(users, data)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    check(profile_validation(changes.get("firstname"), changes.get("lastname"), changes.get("email")))
    with db.begin() as conn:
        user = resolve_user(conn, username)
        if "email" in changes:
            taken = conn.execute(
                select(users.c.id).where(users.c.email == changes["email"], users.c.id != user.id)
            ).first()
            if taken:
                raise HTTPException(status_code=400, detail="Email already exists!")
        try:
            conn.execute(update(users).where(users.c.id == user.id).values(**changes))
        except IntegrityError:
            raise HTTPException(status_code=400, detail="Email already exists!")
        updated = conn.execute(select(users).where(users.c.id == user.id)).first()
    return serialize_user(updated)


@router.put("/user/password")
def change_password(data: PasswordChange, username: str = Depends(get_current_username),
                    db: Database = Depends(get_db)):
    if not data.current_password:
        raise HTTPException(status_code=400, detail='"current_password" is required')
    check(password_validation(data.new_password))
    with db.begin() as conn:
        user = resolve_user(conn, username)
        if not verify_password(data.current_password, user.password):
            raise HTTPException(status_code=400, detail="Invalid password")
        conn.execute(update(users).where(users.c.id == user.id).values(password=hash_password(data.new_password)))
    return {"message": "Your password was changed."}


@router.delete("/user")
def delete_user(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        for table in (checkout_sessions, orders, cart, address):
            conn.execute(delete(table).where(table.c.user_id == user.id))
        conn.execute(delete(users).where(users.c.id == user.id))
    logger.info("Deleted user %s", username)
    return {"message": "Your account was deleted."}


# Products
@router.post("/products")
def create_product(data: ProductIn, username: str = Depends(get_current_username),
                   db: Database = Depends(get_db)):
    check(product_validation(data.title, data.price, data.quantity, data.description, data.category,
                             data.label, data.image1, data.image2, data.image3, data.image4))
    with db.begin() as conn:
        result = conn.execute(insert(products).values(**data.model_dump()))
        product_id = result.inserted_primary_key[0]
        created = conn.execute(select(products).where(products.c.id == product_id)).first()
    return serialize_row(created)


@router.get("/products")
def list_products(db: Database = Depends(get_db)):
    with db.begin() as conn:
        rows = conn.execute(select(products).order_by(products.c.id)).all()
    return [serialize_row(r) for r in rows]


@router.get("/products/{product_id}")
def get_product(product_id: int, db: Database = Depends(get_db)):
    with db.begin() as conn:
        product = conn.execute(select(products).where(products.c.id == product_id)).first()
    if not product:
        raise HTTPException(status_code=400, detail="Product not found")
    return serialize_row(product)


@router.put("/products/{product_id}")
def update_product(product_id: int, data: ProductUpdate, username: str = Depends(get_current_username),
                   db: Database = Depends(get_db)):
    changes = settable(products, data)
    check(product_update_validation(changes))
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    with db.begin() as conn:
        res = conn.execute(update(products).where(products.c.id == product_id).values(**changes))
        if res.rowcount == 0:
            raise HTTPException(status_code=400, detail="Product not found")
        product = conn.execute(select(products).where(products.c.id == product_id)).first()
    return serialize_row(product)


@router.delete("/products/{product_id}")
def delete_product(product_id: int, username: str = Depends(get_current_username),
                   db: Database = Depends(get_db)):
    with db.begin() as conn:
        if not conn.execute(select(products.c.id).where(products.c.id == product_id)).first():
            raise HTTPException(status_code=400, detail="Product not found")
        if conn.execute(select(orders.c.id).where(orders.c.product_id == product_id).limit(1)).first():
            raise HTTPException(status_code=400, detail="Product has orders and cannot be deleted")
        conn.execute(delete(cart).where(cart.c.product_id == product_id))
        conn.execute(delete(products).where(products.c.id == product_id))
    return {"message": "The product was deleted."}


# Cart
@router.post("/cart")
def add_to_cart(item: CartItemIn, username: str = Depends(get_current_username),
                db: Database = Depends(get_db)):
    check(cart_validation(item.product_id, item.size, item.cart_image))
    with db.begin() as conn:
        user = resolve_user(conn, username)
        if not conn.execute(select(products.c.id).where(products.c.id == item.product_id)).first():
            raise HTTPException(status_code=400, detail="Product not found")
        # New lines always start at 1; the requested quantity is ignored.
        result = conn.execute(insert(cart).values(
            product_id=item.product_id,
            user_id=user.id,
            quantity=1,
            size=item.size,
            cart_image=item.cart_image,
        ))
        line_id = result.inserted_primary_key[0]
        created = conn.execute(select(cart).where(cart.c.id == line_id)).first()
    return serialize_row(created)


@router.get("/cart")
def get_cart(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        rows = conn.execute(cart_lines_query(user.id)).all()
    return [serialize_row(r) for r in rows]


@router.put("/cart")
def update_cart(item: CartQuantityUpdate, username: str = Depends(get_current_username),
                db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        res = conn.execute(
            update(cart)
            .where(cart.c.id == item.id, cart.c.user_id == user.id)
            .values(quantity=item.quantity)
        )
        if res.rowcount == 0:
            raise HTTPException(status_code=400, detail="Cart item not found")
        line = conn.execute(select(cart).where(cart.c.id == item.id)).first()
    return serialize_row(line)


@router.delete("/cart/{cart_id}")
def delete_cart_item(cart_id: int, username: str = Depends(get_current_username),
                     db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        res = conn.execute(delete(cart).where(cart.c.id == cart_id, cart.c.user_id == user.id))
        if res.rowcount == 0:
            raise HTTPException(status_code=400, detail="Cart item not found")
    return {"message": "The item was deleted from cart."}


@router.delete("/cart")
def clear_cart(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        conn.execute(delete(cart).where(cart.c.user_id == user.id))
    return {"message": "Your cart was cleared."}


# Orders
@router.get("/orders")
def list_orders(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        rows = conn.execute(orders_query(user.id)).all()
    return [serialize_row(r) for r in rows]


# Address
@router.post("/address")
def add_address(data: AddressIn, username: str = Depends(get_current_username),
                db: Database = Depends(get_db)):
    check(address_validation(data.address, data.locality, data.city, data.state, data.zip))
    with db.begin() as conn:
        user = resolve_user(conn, username)
        result = conn.execute(insert(address).values(
            zip=str(data.zip),
            address=data.address,
            locality=data.locality,
            city=data.city,
            state=data.state,
            user_id=user.id,
        ))
        address_id = result.inserted_primary_key[0]
        created = conn.execute(select(address).where(address.c.id == address_id)).first()
    return serialize_row(created)


@router.get("/address")
def list_addresses(username: str = Depends(get_current_username), db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        rows = conn.execute(
            select(address).where(address.c.user_id == user.id).order_by(address.c.id)
        ).all()
    return [serialize_row(r) for r in rows]


@router.put("/address")
def update_address(data: AddressUpdate, username: str = Depends(get_current_username),
                   db: Database = Depends(get_db)):
    check(address_validation(data.address, data.locality, data.city, data.state, data.zip))
    with db.begin() as conn:
        user = resolve_user(conn, username)
        res = conn.execute(
            update(address)
            .where(address.c.id == data.id, address.c.user_id == user.id)
            .values(zip=str(data.zip), address=data.address, locality=data.locality,
                    city=data.city, state=data.state)
        )
        if res.rowcount == 0:
            raise HTTPException(status_code=400, detail="Address not found")
        updated = conn.execute(select(address).where(address.c.id == data.id)).first()
    return serialize_row(updated)


@router.delete("/address/{address_id}")
def delete_address(address_id: int, username: str = Depends(get_current_username),
                   db: Database = Depends(get_db)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        res = conn.execute(delete(address).where(address.c.id == address_id, address.c.user_id == user.id))
        if res.rowcount == 0:
            raise HTTPException(status_code=400, detail="Address not found")
    return {"message": "The address was deleted."}


# Checkout
@router.post("/create-checkout-session")
def create_checkout_session(username: str = Depends(get_current_username),
                            db: Database = Depends(get_db),
                            settings: Settings = Depends(get_settings),
                            gateway: StripeGateway = Depends(get_payments)):
    with db.begin() as conn:
        user = resolve_user(conn, username)
        lines = [dict(r._mapping) for r in conn.execute(cart_lines_query(user.id))]
    if not lines:
        raise HTTPException(status_code=400, detail="Your cart is empty")
    session_id = gateway.create_checkout_session(
        customer_email=user.email,
        line_items=build_line_items(lines),
        user_id=user.id,
        success_url=f"{settings.frontend_domain_url}/success",
        cancel_url=f"{settings.frontend_domain_url}/canceled",
    )
    logger.info("Created checkout session %s for user %s", session_id, user.id)
    return {"id": session_id}


def fulfil_checkout(db: Database, session: Dict[str, Any]) -> int:
    """Turn the paying user's cart into orders. Returns the number of orders created.

    Runs in one transaction; a session already recorded in ``checkout_sessions``
    is skipped, so duplicate deliveries create nothing.
    """
    session_id = session.get("id")
    user_id = (session.get("metadata") or {}).get("user_id")
    if not session_id or user_id is None:
        logger.error("Checkout session without id or user metadata: %r", session_id)
        return 0
    if session.get("payment_status") != "paid":
        logger.warning("Checkout session %s not paid (%s)", session_id, session.get("payment_status"))
        return 0
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        logger.error("Checkout session %s has malformed user id %r", session_id, user_id)
        return 0
    try:
        with db.begin() as conn:
            if not conn.execute(select(users.c.id).where(users.c.id == user_id)).first():
                logger.error("Paid checkout session %s for unknown user %s", session_id, user_id)
                return 0
            seen = conn.execute(
                select(checkout_sessions.c.session_id).where(checkout_sessions.c.session_id == session_id)
            ).first()
            if seen:
                logger.info("Checkout session %s already fulfilled", session_id)
                return 0
            conn.execute(insert(checkout_sessions).values(
                session_id=session_id, user_id=user_id, payment_status="paid"
            ))
            lines = conn.execute(cart_lines_query(user_id)).all()
            new_orders: List[Dict[str, Any]] = [
                {
                    "product_id": line.product_id,
                    "user_id": user_id,
                    "order_quantity": line.cart_quantity,
                    "order_size": line.size,
                    "order_image": line.cart_image,
                    "status": ORDER_STATUS,
                }
                for line in lines
            ]
            if new_orders:
                conn.execute(insert(orders), new_orders)
            conn.execute(delete(cart).where(cart.c.user_id == user_id))
    except IntegrityError:
        # Primary key on session_id: a concurrent delivery committed first
        logger.info("Checkout session %s fulfilled concurrently", session_id)
        return 0
    logger.info("Checkout session %s: %d orders for user %s", session_id, len(new_orders), user_id)
    return len(new_orders)


@router.post("/webhook")
async def webhook(request: Request,
                  stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
                  db: Database = Depends(get_db),
                  gateway: StripeGateway = Depends(get_payments)):
    payload = await request.body()
    try:
        event = gateway.parse_event(payload, stripe_signature)
    except WebhookError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    if event["type"] == CHECKOUT_COMPLETED:
        session = (event.get("data") or {}).get("object") or {}
        await run_in_threadpool(fulfil_checkout, db, session)
    else:
        logger.info("Unhandled event type %s", event["type"])
    return {"received": True}


# Error handlers

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})
    first = errors[0]
    field = first.get("loc", ["body"])[-1]
    return JSONResponse(status_code=400, content={"detail": f'"{field}" {first.get("msg", "is invalid")}'})


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def stripe_exception_handler(request: Request, exc: stripe.StripeError):
    logger.error("Stripe error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Payment provider error"})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Optional[Settings] = None, payments=None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.database_url)
        ensure_schema(db.connect())
        app.state.db = db
        logger.info("Connected to %s database", db.engine.dialect.name)
        try:
            yield
        finally:
            db.dispose()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.payments = payments or StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[TOKEN_HEADER],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(stripe.StripeError, stripe_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
