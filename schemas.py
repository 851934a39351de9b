"""
Database Schemas for the SkinHub storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name, except for
ProductVariant which lives in "variant".
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cod", "esewa", "khalti", "fonepay"]
PaymentStatus = Literal["pending", "paid", "failed"]


class Address(BaseModel):
    id: str = ""
    name: str = Field(..., description="Recipient name")
    phone: str
    street: str
    city: str
    district: str
    postal_code: str
    is_default: bool = False


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    role: Literal["customer", "admin"] = "customer"
    phone: Optional[str] = None
    addresses: List[Address] = []


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str = "customer"
    phone: Optional[str] = None
    addresses: List[Address] = []


class Product(BaseModel):
    id: Optional[str] = None
    name: str
    brand: str
    category: str
    description: str = ""
    images: List[str] = []
    skin_type: List[str] = []
    ingredients: List[str] = []
    usage_instructions: str = ""
    tags: List[str] = []
    attribute_keys: List[str] = Field([], description="Declared variant attributes, e.g. ['Size', 'Type']")
    rating: float = 0.0
    review_count: int = 0
    featured: bool = False
    best_seller: bool = False
    status: Literal["draft", "published"] = "draft"


class ProductVariant(BaseModel):
    id: Optional[str] = None
    product_id: str
    sku: str
    attributes: Dict[str, str] = Field(..., description="e.g. {'Size': '50ml'}")
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0, description="Pre-discount price for display")
    stock: int = Field(0, ge=0)
    images: List[str] = []
    active: bool = True


class ProductSnapshot(Product):
    """Copy of a product frozen at the moment it entered a cart."""
    model_config = ConfigDict(frozen=True)

    @classmethod
    def of(cls, product: Product) -> "ProductSnapshot":
        return cls.model_validate(product.model_dump())


class VariantSnapshot(ProductVariant):
    """Copy of a variant (price, attributes) frozen at the moment it entered a cart."""
    model_config = ConfigDict(frozen=True)

    @classmethod
    def of(cls, variant: ProductVariant) -> "VariantSnapshot":
        return cls.model_validate(variant.model_dump())


class CartItem(BaseModel):
    product_id: str
    variant_id: str
    product: ProductSnapshot
    variant: VariantSnapshot
    quantity: int = Field(..., ge=1)

    @property
    def line_total(self) -> float:
        return self.variant.price * self.quantity


class Order(BaseModel):
    id: str
    user_id: str
    items: List[CartItem]
    subtotal: float
    shipping_fee: float
    total: float
    shipping_address: Address
    payment_method: PaymentMethod = "cod"
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Review(BaseModel):
    product_id: str
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    verified: bool = False


class StoreSettings(BaseModel):
    store_name: str = "SkinHub"
    store_email: Optional[str] = None
    store_phone: Optional[str] = None
    cod_enabled: bool = True
    cod_minimum_order: float = Field(0, ge=0)
    delivery_charges: float = Field(100, ge=0)
    free_delivery_threshold: float = Field(1000, ge=0)


class ActivityLog(BaseModel):
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    user_name: str
    details: Dict[str, Optional[str]] = {}
