"""
Database

Relational schema and store handle for the storefront.

Tables are declared with SQLAlchemy Core so every statement the handlers
issue is built from bound parameters. ``Database`` owns the engine (the
connection pool); it is opened at application startup and disposed at
shutdown.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
    Column("firstname", String(255), nullable=False),
    Column("lastname", String(255), nullable=False),
    Column("phone", Numeric(20, 0)),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("price", Numeric(8, 2), nullable=False),
    Column("category", String(255), nullable=False),
    Column("label", String(255)),
    Column("description", String(500), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("image1", String(1000), nullable=False),
    Column("image2", String(1000)),
    Column("image3", String(1000)),
    Column("image4", String(1000)),
    Column("btn_color1", String(255), nullable=False),
    Column("btn_color2", String(255), nullable=False),
    Column("btn_color3", String(255), nullable=False),
    Column("btn_color4", String(255), nullable=False),
)

address = Table(
    "address",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("zip", String(255), nullable=False),
    Column("address", String(255), nullable=False),
    Column("locality", String(255), nullable=False),
    Column("city", String(255), nullable=False),
    Column("state", String(255), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id")),
)

cart = Table(
    "cart",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id")),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("quantity", Integer, nullable=False),
    Column("size", String(255), nullable=False),
    Column("cart_image", String(1000), nullable=False),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id")),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("order_quantity", Integer, nullable=False),
    Column("order_size", String(255), nullable=False),
    Column("order_image", String(1000), nullable=False),
    Column("status", String(255), nullable=False),
    Column("order_date", Date, nullable=False, server_default=text("CURRENT_DATE")),
)

# One row per completed checkout session; the primary key makes webhook
# processing idempotent.
checkout_sessions = Table(
    "checkout_sessions",
    metadata,
    Column("session_id", String(255), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("payment_status", String(64), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

SCHEMA = (users, products, address, cart, orders, checkout_sessions)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Store handle wrapping a SQLAlchemy engine."""

    def __init__(self, url: str):
        self.url = url
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    def connect(self) -> Engine:
        if self._engine is None:
            kwargs: Dict[str, Any] = {"pool_pre_ping": True}
            if self.url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
            self._engine = create_engine(self.url, **kwargs)
            if self._engine.dialect.name == "sqlite":
                event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        return self._engine

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def begin(self):
        """Connection with a transaction committed on exit, rolled back on error."""
        return self.engine.begin()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1


def ensure_schema(engine: Engine) -> None:
    """Create any missing table. Failures are logged, never raised."""
    for table in SCHEMA:
        try:
            table.create(bind=engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error("Could not create table %s: %s", table.name, e)


def serialize_row(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = {}
    for k, v in row._mapping.items():
        if isinstance(v, (date, datetime)):
            out[k] = v.isoformat()
        elif isinstance(v, Decimal):
            out[k] = int(v) if v.as_tuple().exponent >= 0 else float(v)
        else:
            out[k] = v
    return out


def serialize_user(row) -> Optional[Dict[str, Any]]:
    user = serialize_row(row)
    if user is not None:
        # Never send password hash
        user.pop("password", None)
    return user


def cart_lines_query(user_id: int):
    """Cart lines of one user joined with their product."""
    return (
        select(
            products.c.id.label("product_id"),
            products.c.title,
            products.c.description,
            products.c.price,
            cart.c.cart_image,
            products.c.image2,
            products.c.image3,
            products.c.image4,
            cart.c.id.label("cart_id"),
            cart.c.quantity.label("cart_quantity"),
            cart.c.size,
            (cart.c.quantity * products.c.price).label("total_price"),
        )
        .select_from(products.join(cart, products.c.id == cart.c.product_id))
        .where(cart.c.user_id == user_id)
        .order_by(cart.c.id)
    )


def orders_query(user_id: int):
    return (
        select(
            products.c.title,
            products.c.price,
            orders.c.id.label("order_id"),
            orders.c.order_quantity,
            orders.c.order_size,
            orders.c.order_image,
            (orders.c.order_quantity * products.c.price).label("total_price"),
            orders.c.status,
            orders.c.order_date,
        )
        .select_from(orders.join(products, products.c.id == orders.c.product_id))
        .where(orders.c.user_id == user_id)
        .order_by(orders.c.id)
    )
