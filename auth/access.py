"""
auth/access.py -- Attribute-based access control over categories and products.

Each check returns a Decision (allow, or deny with an error kind and reason)
instead of raising or calling a continuation. The route layer lists the
guards it needs and enforce() evaluates them in order, stopping at the first
denial.

Evaluation order for a single-resource check:
  1. no actor                -> unauthorized
  2. actor is admin          -> allow (allow-lists are never consulted)
  3. no resource id          -> allow (collection-level operation)
  4. resource lookup:
       category: missing -> not_found; allow iff group in allowed_groups
       product:  missing -> not_found; no category -> allow;
                 category missing -> forbidden (cannot prove access);
                 allow iff group in allowed_groups

Product creation has no product id yet, so it is evaluated from the target
category id instead (check_product_create).

Fail closed: any store error while evaluating becomes an internal_error
denial, never an allow.

Layer rule: imports catalog/ (read-only) and core/. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from sqlalchemy.exc import SQLAlchemyError

from auth.models import Actor
from catalog.models import Category
from catalog.store import CatalogStore
from core.errors import ErrorKind, ServiceError

logger = logging.getLogger("stockroom.access")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    kind: ErrorKind | None = None
    reason: str = ""

    def to_error(self) -> ServiceError:
        return ServiceError(self.kind or ErrorKind.FORBIDDEN, self.reason or "Access denied.")


ALLOW = Decision(allowed=True)


def deny(kind: ErrorKind, reason: str) -> Decision:
    return Decision(allowed=False, kind=kind, reason=reason)


Guard = Union[Decision, Callable[[], Decision]]


def enforce(*guards: Guard) -> None:
    """Evaluate guards in order; raise the first denial as a ServiceError.

    A guard may be a Decision or a zero-argument callable returning one.
    Callables are evaluated lazily, so a later guard's store lookup is
    skipped once an earlier guard denies.
    """
    for guard in guards:
        decision = guard() if callable(guard) else guard
        if not decision.allowed:
            raise decision.to_error()


def _group_allowed(actor: Actor, category: Category) -> bool:
    return actor.group in (category.allowed_groups or [])


class AccessEvaluator:
    """Decides whether an actor may touch a category or product."""

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    def require_actor(self, actor: Actor | None) -> Decision:
        if actor is None:
            return deny(ErrorKind.UNAUTHORIZED, "Authentication required.")
        return ALLOW

    def require_admin(self, actor: Actor | None) -> Decision:
        decision = self.require_actor(actor)
        if not decision.allowed:
            return decision
        if not actor.is_admin:
            return deny(ErrorKind.FORBIDDEN, "Insufficient permissions.")
        return ALLOW

    def check_category(self, actor: Actor | None, category_id: int | None) -> Decision:
        """Access to one category (or to the collection when category_id is None)."""
        decision = self.require_actor(actor)
        if not decision.allowed or actor.is_admin or category_id is None:
            return decision
        try:
            category = self.catalog.get_category(category_id)
        except SQLAlchemyError:
            logger.exception("Category lookup failed during access check (id=%s)", category_id)
            return deny(ErrorKind.INTERNAL, "An unexpected error occurred.")
        if category is None:
            return deny(ErrorKind.NOT_FOUND, "Category not found.")
        if _group_allowed(actor, category):
            return ALLOW
        logger.info("Denied user id=%s (group=%s) on category %s", actor.id, actor.group, category_id)
        return deny(ErrorKind.FORBIDDEN, "You do not have access to this category.")

    def check_product(self, actor: Actor | None, product_id: int | None) -> Decision:
        """Access to one product, inherited from its category."""
        decision = self.require_actor(actor)
        if not decision.allowed or actor.is_admin or product_id is None:
            return decision
        try:
            product = self.catalog.get_product(product_id)
            if product is None:
                return deny(ErrorKind.NOT_FOUND, "Product not found.")
            if product.category_id is None:
                return ALLOW
            category = self.catalog.get_category(product.category_id)
        except SQLAlchemyError:
            logger.exception("Product lookup failed during access check (id=%s)", product_id)
            return deny(ErrorKind.INTERNAL, "An unexpected error occurred.")
        if category is None:
            # Referenced but missing: access cannot be proven, so deny.
            logger.warning("Product %s references missing category %s", product_id, product.category_id)
            return deny(ErrorKind.FORBIDDEN, "Unable to determine access to this product.")
        if _group_allowed(actor, category):
            return ALLOW
        logger.info("Denied user id=%s (group=%s) on product %s", actor.id, actor.group, product_id)
        return deny(ErrorKind.FORBIDDEN, "You do not have access to this product category.")

    def check_product_create(self, actor: Actor | None, category_id: int | None) -> Decision:
        """Access to create a product in category_id (None = uncategorized)."""
        decision = self.require_actor(actor)
        if not decision.allowed:
            return decision
        if category_id is None:
            if not actor.is_admin:
                return deny(ErrorKind.FORBIDDEN, "Only administrators can create products without a category.")
            return ALLOW
        try:
            category = self.catalog.get_category(category_id)
        except SQLAlchemyError:
            logger.exception("Category lookup failed during product create check (id=%s)", category_id)
            return deny(ErrorKind.INTERNAL, "An unexpected error occurred.")
        if category is None:
            return deny(ErrorKind.NOT_FOUND, "Category not found.")
        if actor.is_admin or _group_allowed(actor, category):
            return ALLOW
        return deny(ErrorKind.FORBIDDEN, "You do not have access to this category.")
