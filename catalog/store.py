"""
catalog/store.py -- SQLAlchemy-backed persistence layer for categories and products.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Allow-list invariant: every category write passes allowed_groups through
with_admin(), so "admin" is present on create AND on update, not only by
convention in the route layer.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CatalogStore()                                # SQLite default
    store = CatalogStore("postgresql://user:pw@host/db")  # PostgreSQL
    cid = store.create_category(Category(name="Tools", allowed_groups=["user"]))
    store.get_category(cid).allowed_groups                # ["user", "admin"]
    store.close()
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from catalog.models import Category, Product

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'stockroom_catalog.db'}"

ADMIN_GROUP = "admin"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("allowed_groups", Text, nullable=False),  # JSON array serialized as text
    Column("created_at", String(32), nullable=False),
)

_products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("category_id", Integer),  # NULL = uncategorized
    Column("quantity", Integer, nullable=False, server_default="0"),
    Column("price", Float, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

# Column names a partial product update may touch. Anything else is a
# programming error in the caller, not user input.
_PRODUCT_UPDATABLE = {"name", "description", "category_id", "quantity", "price"}
_CATEGORY_UPDATABLE = {"name", "description", "allowed_groups"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def with_admin(groups: Optional[list[str]]) -> list[str]:
    """Return the allow-list with "admin" guaranteed present.

    None means the field was not supplied: default to admin-only. Order of
    the supplied groups is preserved and duplicates are dropped.
    """
    if groups is None:
        return [ADMIN_GROUP]
    result: list[str] = []
    for g in groups:
        if g not in result:
            result.append(g)
    if ADMIN_GROUP not in result:
        result.append(ADMIN_GROUP)
    return result


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    """Repository for Category and Product entities."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def create_category(self, category: Category) -> int:
        """Insert a category and return its ID. allowed_groups gains "admin" if missing."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _categories.insert().values(
                    name=category.name,
                    description=category.description,
                    allowed_groups=json.dumps(with_admin(category.allowed_groups)),
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_category(self, category_id: int) -> Optional[Category]:
        with self.engine.connect() as conn:
            row = conn.execute(_categories.select().where(_categories.c.id == category_id)).fetchone()
        return _row_to_category(row) if row is not None else None

    def list_categories(self) -> list[Category]:
        with self.engine.connect() as conn:
            rows = conn.execute(_categories.select().order_by(_categories.c.id)).fetchall()
        return [_row_to_category(r) for r in rows]

    def update_category(self, category_id: int, **fields) -> bool:
        """Apply a partial update. Returns False if category_id was not found.

        allowed_groups, when present, is re-normalized through with_admin().
        """
        unknown = set(fields) - _CATEGORY_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown category fields: {unknown!r}")
        if "allowed_groups" in fields:
            fields["allowed_groups"] = json.dumps(with_admin(fields["allowed_groups"]))
        if not fields:
            return self.get_category(category_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_categories.update().where(_categories.c.id == category_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_category(self, category_id: int) -> bool:
        """Delete a category. Products that referenced it keep the dangling id.

        The access evaluator treats a dangling category reference as
        "cannot prove access" and denies non-admins.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_categories.delete().where(_categories.c.id == category_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, product: Product) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _products.insert().values(
                    name=product.name,
                    description=product.description,
                    category_id=product.category_id,
                    quantity=product.quantity,
                    price=product.price,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.engine.connect() as conn:
            row = conn.execute(_products.select().where(_products.c.id == product_id)).fetchone()
        return _row_to_product(row) if row is not None else None

    def list_products(self, limit: Optional[int] = None, offset: Optional[int] = None) -> list[Product]:
        """Return products in insertion order, optionally paginated.

        Non-positive limits and negative offsets are ignored rather than rejected.
        """
        query = _products.select().order_by(_products.c.id)
        if offset is not None and offset >= 0:
            query = query.offset(offset)
        if limit is not None and limit > 0:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_product(r) for r in rows]

    def update_product(self, product_id: int, **fields) -> bool:
        """Apply a partial update. Returns False if product_id was not found."""
        unknown = set(fields) - _PRODUCT_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown product fields: {unknown!r}")
        if not fields:
            return self.get_product(product_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_products.update().where(_products.c.id == product_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_product(self, product_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_products.delete().where(_products.c.id == product_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_category(row) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        description=row.description,
        allowed_groups=json.loads(row.allowed_groups) if row.allowed_groups else [ADMIN_GROUP],
        created_at=row.created_at,
    )


def _row_to_product(row) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        description=row.description,
        category_id=row.category_id,
        quantity=row.quantity,
        price=row.price,
        created_at=row.created_at,
    )
