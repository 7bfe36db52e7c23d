"""
Database Schemas for the storefront

Each record model describes one collection ("user" -> users, "product" -> products,
"order" -> orders). Documents are stored with camelCase keys, which is also the
wire format, so every model here validates and dumps by alias.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as SchemaValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError

M = TypeVar("M", bound=BaseModel)


def sanitize(value: Any) -> Any:
    """Trim a string and drop characters that could break out of HTML markup."""
    if not isinstance(value, str):
        return value
    return re.sub(r"[<>\"']", "", value.strip())


def field_errors(exc, skip_prefix: tuple = ()) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if str(p) not in skip_prefix]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


def parse(model: Type[M], data: Any) -> M:
    """Validate raw input against a model, raising the API's ValidationError."""
    try:
        return model.model_validate(data if data is not None else {})
    except SchemaValidationError as e:
        errors = field_errors(e)
        message = errors[0]["message"] if len(errors) == 1 else "Input validation failed"
        raise ValidationError(message, errors=errors)


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    CUSTOMER = "customer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    E_WALLET = "e_wallet"
    CASH_ON_DELIVERY = "cash_on_delivery"


CATEGORIES = ["Electronics", "Fashion", "Home", "Sports"]


def _lower(value: Any) -> Any:
    return sanitize(value).lower() if isinstance(value, str) else value


def _category(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = sanitize(value)
        for c in CATEGORIES:
            if c.lower() == cleaned.lower():
                return c
        raise ValueError(f"Invalid category. Allowed: {', '.join(CATEGORIES)}")
    return value


def _positive_price(value: Union[int, float]) -> Union[int, float]:
    if value <= 0:
        raise ValueError("Price must be a positive number")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


# ---------- Records ----------

class User(CamelModel):
    id: int
    username: str
    email: str
    password_hash: str
    full_name: str
    role: Role = Role.CUSTOMER
    is_active: bool = True
    created_at: datetime
    last_login: Optional[datetime] = None


class Product(CamelModel):
    id: int
    name: str
    description: str
    price: Union[int, float]
    category: str
    stock: int = Field(0, ge=0)
    image: str = ""
    is_active: bool = True
    featured: bool = False
    created_at: datetime
    updated_at: datetime
    created_by: Optional[int] = None


class OrderItem(CamelModel):
    product_id: int
    product_name: str
    product_image: Optional[str] = None
    price: Union[int, float]
    quantity: int
    subtotal: Union[int, float]


class ShippingAddress(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    address: str = Field(..., min_length=5, max_length=200)
    city: str = Field(..., min_length=2, max_length=50)
    postal_code: str = Field(..., min_length=3, max_length=20)
    phone: str = Field(..., min_length=6, max_length=20)

    strip_markup = field_validator("*", mode="before")(sanitize)


class Order(CamelModel):
    id: int
    user_id: int
    order_number: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    notes: str = ""
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    subtotal: Union[int, float]
    shipping_cost: Union[int, float]
    total_amount: Union[int, float]
    tracking_number: Optional[str] = None
    admin_notes: str = ""
    created_at: datetime
    updated_at: datetime
    estimated_delivery: Optional[datetime] = None


# ---------- Requests ----------

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&]).*$")


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-z0-9_]+$")
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., min_length=2, max_length=100, pattern=r"^[a-zA-Z\s]+$")

    @field_validator("username", mode="before")
    @classmethod
    def lower_username(cls, v):
        return _lower(v)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return _lower(v)

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_full_name(cls, v):
        return sanitize(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return v


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return _lower(v)


class ProductCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: Union[int, float]
    category: str
    stock: int = Field(0, ge=0, le=999999)
    image: Optional[str] = None
    featured: bool = False

    strip_markup = field_validator("name", "description", "image", mode="before")(sanitize)
    canonical_category = field_validator("category", mode="before")(_category)
    positive_price = field_validator("price")(_positive_price)


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[Union[int, float]] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0, le=999999)
    image: Optional[str] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None

    strip_markup = field_validator("name", "description", "image", mode="before")(sanitize)
    canonical_category = field_validator("category", mode="before")(_category)

    @field_validator("price")
    @classmethod
    def positive_price(cls, v):
        return v if v is None else _positive_price(v)


class CartLine(CamelModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderCreate(CamelModel):
    items: List[CartLine] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=500)

    strip_notes = field_validator("notes", mode="before")(sanitize)
    lower_method = field_validator("payment_method", mode="before")(_lower)


class OrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    payment_status: Optional[PaymentStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=1000, validation_alias=AliasChoices("notes", "adminNotes"))

    lower_enums = field_validator("status", "payment_status", mode="before")(_lower)
    strip_markup = field_validator("tracking_number", "admin_notes", mode="before")(sanitize)


class RateLimitReset(CamelModel):
    endpoint: Optional[str] = None
    ip: Optional[str] = None
    clear_all: bool = False
