"""
api/routes/v1/products.py -- Product CRUD endpoints.

Access to a product is inherited from its category (see auth/access.py).
Creating a product, or moving one into another category, is checked against
the destination category; only admins may leave a product uncategorized.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import ProductCreate, ProductListResponse, ProductResponse, ProductUpdate
from auth.access import AccessEvaluator, enforce
from auth.dependencies import get_current_actor, require_product_access
from auth.models import Actor
from catalog.models import Product
from catalog.store import CatalogStore
from core.errors import internal_error, not_found, validation_error

# Auth policy:
# - GET    /products:       requires auth (collection-level allow)
# - POST   /products:       requires create access on the target category
# - GET    /products/{id}:  requires product access
# - PUT    /products/{id}:  requires product access (+ create access on a new category)
# - DELETE /products/{id}:  requires product access
router = APIRouter()

_NOT_NULL = ("name", "quantity", "price")


def _load(catalog: CatalogStore, product_id: int) -> Product:
    product = catalog.get_product(product_id)
    if product is None:
        raise not_found("Product not found.")
    return product


@router.get("/products", response_model=ProductListResponse)
def list_products(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: Optional[int] = Query(default=None, ge=0),
    actor: Actor = Depends(get_current_actor),
) -> ProductListResponse:
    access: AccessEvaluator = request.app.state.access
    enforce(access.check_product(actor, None))
    catalog: CatalogStore = request.app.state.catalog
    products = catalog.list_products(limit=limit, offset=offset)
    return ProductListResponse(products=[ProductResponse.from_product(p) for p in products])


@router.post("/products", response_model=ProductResponse, status_code=201)
def create_product(
    request: Request,
    body: ProductCreate,
    actor: Actor = Depends(get_current_actor),
) -> ProductResponse:
    """Create a product in a category the caller can access."""
    access: AccessEvaluator = request.app.state.access
    enforce(access.check_product_create(actor, body.category_id))

    catalog: CatalogStore = request.app.state.catalog
    product_id = catalog.create_product(
        Product(
            name=body.name,
            description=body.description,
            category_id=body.category_id,
            quantity=body.quantity,
            price=body.price,
        )
    )
    created = catalog.get_product(product_id)
    if created is None:
        raise internal_error()
    return ProductResponse.from_product(created)


@router.get("/products/{product_id}", response_model=ProductResponse)
def get_product(
    request: Request,
    product_id: int,
    actor: Actor = Depends(require_product_access),
) -> ProductResponse:
    return ProductResponse.from_product(_load(request.app.state.catalog, product_id))


@router.put("/products/{product_id}", response_model=ProductResponse)
def update_product(
    request: Request,
    product_id: int,
    body: ProductUpdate,
    actor: Actor = Depends(require_product_access),
) -> ProductResponse:
    """Partial update. Unknown fields are rejected by the request model."""
    catalog: CatalogStore = request.app.state.catalog
    access: AccessEvaluator = request.app.state.access

    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise validation_error("No valid fields provided for update")
    nulls = [f"field `{name}` cannot be null" for name in _NOT_NULL if name in fields and fields[name] is None]
    if nulls:
        raise validation_error(*nulls)

    current = _load(catalog, product_id)
    if "category_id" in fields and fields["category_id"] != current.category_id:
        enforce(access.check_product_create(actor, fields["category_id"]))

    if not catalog.update_product(product_id, **fields):
        raise not_found("Product not found.")
    return ProductResponse.from_product(_load(catalog, product_id))


@router.delete("/products/{product_id}", status_code=204)
def delete_product(
    request: Request,
    product_id: int,
    actor: Actor = Depends(require_product_access),
) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.delete_product(product_id):
        raise not_found("Product not found.")
    return Response(status_code=204)
