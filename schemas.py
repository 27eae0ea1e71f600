"""
Database Schemas

MongoDB collection schemas defined as Pydantic models.
Each model validates a document before it is written.

Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection
- Order -> "order" collection
- Address -> "address" collection

References between collections are stored on the child document only
(product.user_id, order.buyer_id, address.user_id, ...).
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.networks import validate_email

PHONE_PATTERN = r"^\d{10}$"
MAX_PRODUCT_IMAGES = 5


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class Category(str, Enum):
    BEAUTY = "Beauty"
    FASHION = "Fashion"
    TOYS = "Toys"
    STYLE = "Style"
    CLOTHING = "Clothing"
    ELECTRONICS = "Electronics"
    HOME = "Home"
    SPORTS = "Sports"
    OTHER = "Other"


class AddressType(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class OrderStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    RETURNED = "RETURNED"
    CANCELED = "CANCELED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    name: str = Field(..., min_length=1, max_length=50, description="Full name")
    username: str = Field(..., min_length=1, description="Unique handle")
    email: str = Field(..., description="Unique email address, stored exactly as given")
    password_hash: str = Field(..., description="Salted PBKDF2 password hash")
    role: Role = Field(Role.BUYER, description="buyer | seller | admin")

    @field_validator("email")
    @classmethod
    def deliverable_email(cls, value):
        # validate only; the normalized form lowercases the domain and would not match at login
        validate_email(value)
        return value


class Review(BaseModel):
    user_id: str = Field(..., description="Reviewer _id as string")
    comment: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product" (lowercase of class name)
    """
    user_id: str = Field(..., description="Owning user _id as string")
    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., gt=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Units available")
    category: Category = Field(Category.OTHER, description="Catalog category")
    description: Optional[str] = Field(None, description="Product description")
    brand: Optional[str] = Field(None, description="Brand name")
    pics_url: List[str] = Field(default_factory=list, max_length=MAX_PRODUCT_IMAGES, description="Image URLs")
    rating: float = Field(0, ge=0, le=5, description="Mean review rating")
    reviews: List[Review] = Field(default_factory=list)


class Address(BaseModel):
    """
    Addresses collection schema
    Collection name: "address" (lowercase of class name)
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., description="Owning user _id as string")
    type: AddressType = Field(AddressType.HOME)
    name: str = Field(..., min_length=1, description="Contact name")
    phone_number: str = Field(..., alias="phoneNumber", pattern=PHONE_PATTERN)
    address_line1: str = Field(..., alias="addressLine1", min_length=1)
    address_line2: Optional[str] = Field(None, alias="addressLine2")
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    postal_code: str = Field(..., alias="postalCode", min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = Field(False, alias="isDefault")


class OrderItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., gt=0, description="Unit price captured when the order was placed")


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order" (lowercase of class name)
    """
    buyer_id: str = Field(..., description="User placing the order")
    seller_id: str = Field(..., description="User fulfilling the order")
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = Field(OrderStatus.IN_PROGRESS)
    payment_status: PaymentStatus = Field(PaymentStatus.PENDING)
    order_date: datetime
    delivery_date: Optional[datetime] = None
    shipping_address_id: str
    return_reason: Optional[str] = None
    stock_released: bool = Field(False, description="Item stock already returned to the catalog")


# Request payloads. Field aliases follow the camelCase names the mobile client sends.

class RegisterPayload(BaseModel):
    name: str
    username: str
    email: str
    password: str
    role: Optional[Role] = None


class LoginPayload(BaseModel):
    email: str
    password: str


class UserUpdatePayload(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class ProductPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    price: float
    category: Category = Category.OTHER
    stock: int = 0
    description: Optional[str] = None
    brand: Optional[str] = None
    pics_url: List[str] = Field(default_factory=list, alias="picsUrl")

    @field_validator("category", mode="before")
    @classmethod
    def first_category(cls, value):
        # the mobile client sends categories as a one-element list
        if isinstance(value, list):
            return value[0] if value else Category.OTHER
        return value


class ProductUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    price: Optional[float] = None
    category: Optional[Category] = None
    stock: Optional[int] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    pics_url: Optional[List[str]] = Field(None, alias="picsUrl")


class ReviewPayload(BaseModel):
    comment: Optional[str] = None
    rating: int


class AddressPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: AddressType = AddressType.HOME
    name: str
    phone_number: str = Field(..., alias="phoneNumber")
    address_line1: str = Field(..., alias="addressLine1")
    address_line2: Optional[str] = Field(None, alias="addressLine2")
    city: str
    state: Optional[str] = None
    postal_code: str = Field(..., alias="postalCode")
    country: str
    is_default: bool = Field(False, alias="isDefault")


class AddressUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[AddressType] = None
    name: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    address_line1: Optional[str] = Field(None, alias="addressLine1")
    address_line2: Optional[str] = Field(None, alias="addressLine2")
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None
    is_default: Optional[bool] = Field(None, alias="isDefault")


class OrderItemPayload(BaseModel):
    product_id: Optional[str] = Field(None, validation_alias=AliasChoices("product_id", "productId", "product"))
    quantity: Optional[int] = None


class OrderPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    buyer_id: Optional[str] = Field(None, alias="buyerId")
    seller_id: Optional[str] = Field(None, alias="sellerId")
    items: List[OrderItemPayload] = Field(default_factory=list)
    shipping_address_id: Optional[str] = Field(None, alias="shippingAddressId")


class OrderUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    payment_status: Optional[str] = Field(None, alias="paymentStatus")
    return_reason: Optional[str] = Field(None, alias="returnReason")


class ReturnPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = Field(None, alias="returnReason")
