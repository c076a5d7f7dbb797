"""
API request and response models for Stockroom REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Wire names are camelCase (avatarUrl, allowedGroups, categoryId); Python
attribute names stay snake_case through Field aliases. Responses are always
dumped by alias.

Unknown fields: update bodies (and create bodies for catalog resources) use
extra="forbid", so a misspelled field is a validation error rather than a
silently ignored no-op.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User
from catalog.models import Category, Product

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GroupEnum(str, Enum):
    admin = "admin"
    user = "user"
    guest = "guest"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Presence, type and email syntax are checked here. The remaining content
    rules (lengths, closed group set) belong to AuthService, which also
    re-checks the email for callers that bypass HTTP.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(max_length=255)
    email: EmailStr
    password: str = Field(max_length=255)
    group: str = Field(max_length=32)
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")


class LoginRequest(BaseModel):
    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/refresh-token and /auth/logout (non-cookie clients)."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Optional[str] = Field(default=None, alias="refreshToken", max_length=256)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    email: Optional[EmailStr] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")


class GroupUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/users/{user_id}/group."""

    group: str = Field(max_length=32)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. There is deliberately no password field."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    username: str
    email: str
    group: str
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            group=user.group,
            avatar_url=user.avatar_url,
        )


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Catalog -- categories
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    """Request body for POST /api/v1/categories. allowedGroups defaults to admin-only."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    allowed_groups: Optional[list[GroupEnum]] = Field(default=None, alias="allowedGroups", max_length=10)


class CategoryUpdate(BaseModel):
    """Request body for PUT /api/v1/categories/{category_id}. All fields optional."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    allowed_groups: Optional[list[GroupEnum]] = Field(default=None, alias="allowedGroups", max_length=10)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str
    description: Optional[str]
    allowed_groups: list[str] = Field(alias="allowedGroups")
    created_at: str = Field(alias="createdAt")

    @classmethod
    def from_category(cls, category: Category) -> "CategoryResponse":
        return cls(
            id=category.id,
            name=category.name,
            description=category.description,
            allowed_groups=category.allowed_groups,
            created_at=category.created_at,
        )


class CategoryListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    categories: list[CategoryResponse]


# ---------------------------------------------------------------------------
# Catalog -- products
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    """Request body for POST /api/v1/products."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    quantity: int = Field(ge=0)
    price: float = Field(ge=0)


class ProductUpdate(BaseModel):
    """Request body for PUT /api/v1/products/{product_id}.

    Only fields present in the body are applied. categoryId: null moves the
    product out of its category, which is an admin-only operation.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)


class ProductResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str
    description: Optional[str]
    category_id: Optional[int] = Field(alias="categoryId")
    quantity: int
    price: float
    created_at: str = Field(alias="createdAt")

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            category_id=product.category_id,
            quantity=product.quantity,
            price=product.price,
            created_at=product.created_at,
        )


class ProductListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    products: list[ProductResponse]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload. code is an ErrorKind value or rate_limited."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    violations: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """status is "healthy" when every component reports ok, else "degraded"."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
