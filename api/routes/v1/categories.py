"""
api/routes/v1/categories.py -- Category CRUD endpoints.

Every handler is guarded through auth/dependencies.py or an explicit
enforce() call; the handler body only runs once access is decided.

Allow-list rules (enforced by CatalogStore.with_admin on every write):
  - omitted allowedGroups -> ["admin"]
  - "admin" is appended when missing
Only admins may change allowedGroups, even on categories they can otherwise edit.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import CategoryCreate, CategoryListResponse, CategoryResponse, CategoryUpdate
from auth.access import AccessEvaluator, enforce
from auth.dependencies import get_current_actor, require_admin, require_category_access
from auth.models import Actor
from catalog.models import Category
from catalog.store import CatalogStore
from core.errors import internal_error, not_found, validation_error

# Auth policy:
# - GET    /categories:       requires auth (collection-level allow)
# - POST   /categories:       requires admin
# - GET    /categories/{id}:  requires category access
# - PUT    /categories/{id}:  requires category access; allowedGroups needs admin
# - DELETE /categories/{id}:  requires admin
router = APIRouter()


def _load(catalog: CatalogStore, category_id: int) -> Category:
    category = catalog.get_category(category_id)
    if category is None:
        raise not_found("Category not found.")
    return category


@router.get("/categories", response_model=CategoryListResponse)
def list_categories(request: Request, actor: Actor = Depends(get_current_actor)) -> CategoryListResponse:
    access: AccessEvaluator = request.app.state.access
    enforce(access.check_category(actor, None))
    catalog: CatalogStore = request.app.state.catalog
    return CategoryListResponse(categories=[CategoryResponse.from_category(c) for c in catalog.list_categories()])


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    request: Request,
    body: CategoryCreate,
    actor: Actor = Depends(require_admin),
) -> CategoryResponse:
    """Create a category. Admin only."""
    catalog: CatalogStore = request.app.state.catalog
    groups = [g.value for g in body.allowed_groups] if body.allowed_groups is not None else None
    category_id = catalog.create_category(
        Category(name=body.name, description=body.description, allowed_groups=groups)
    )
    created = catalog.get_category(category_id)
    if created is None:
        raise internal_error()
    return CategoryResponse.from_category(created)


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    request: Request,
    category_id: int,
    actor: Actor = Depends(require_category_access),
) -> CategoryResponse:
    return CategoryResponse.from_category(_load(request.app.state.catalog, category_id))


@router.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    request: Request,
    category_id: int,
    body: CategoryUpdate,
    actor: Actor = Depends(require_category_access),
) -> CategoryResponse:
    """Apply the fields present in the body."""
    catalog: CatalogStore = request.app.state.catalog
    access: AccessEvaluator = request.app.state.access

    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise validation_error("No valid fields provided for update")
    if "name" in fields and fields["name"] is None:
        raise validation_error("field `name` cannot be null")
    if "allowed_groups" in fields:
        enforce(access.require_admin(actor))
        if fields["allowed_groups"] is not None:
            fields["allowed_groups"] = [g.value for g in fields["allowed_groups"]]

    if not catalog.update_category(category_id, **fields):
        raise not_found("Category not found.")
    return CategoryResponse.from_category(_load(catalog, category_id))


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(
    request: Request,
    category_id: int,
    actor: Actor = Depends(require_admin),
) -> Response:
    """Delete a category. Admin only. Its products keep the dangling reference."""
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.delete_category(category_id):
        raise not_found("Category not found.")
    return Response(status_code=204)
