"""
catalog/models.py -- Domain dataclasses for the Stockroom catalog.

These are pure data containers with zero logic. The allow-list rules
(admin always present, default admin-only) live in catalog/store.py so
they are applied on every write path.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Category:
    """A group of products gated by an allow-list of user groups.

    allowed_groups always contains "admin" once the record has been written.
    id is None before the record is written to the database.
    """

    name: str
    description: Optional[str] = None
    allowed_groups: list[str] = field(default_factory=lambda: ["admin"])
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Product:
    """A stock item. Access is inherited from its category, if it has one.

    category_id is None for uncategorized products, which any authenticated
    actor may read.
    """

    name: str
    quantity: int
    price: float
    description: Optional[str] = None
    category_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
