"""
Database Schemas for the store

Each collection model below describes one MongoDB collection
(products, customers, orders, order_items). The *In models are the JSON
bodies accepted by the API; they keep the camelCase keys the storefront sends.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from datetime import datetime


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    image: str = ""
    category: str = ""
    stock: int = 0


class Customer(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None


class Order(BaseModel):
    customer_id: str
    total: float
    status: str = "PENDING"  # PENDING, PAID, SHIPPED, DELIVERED, CANCELLED
    payment_card_name: Optional[str] = None
    payment_card_number_masked: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float
    created_at: Optional[datetime] = None


# Request bodies

class ProductIn(Product):
    pass


class CustomerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = Field(None, alias="zipCode")

    def to_customer(self) -> Customer:
        return Customer(
            full_name=self.name,
            email=self.email or None,
            phone=self.phone,
            address=self.address,
            city=self.city,
            postal_code=self.zip_code,
        )


class ProductRef(BaseModel):
    id: str
    name: Optional[str] = None
    price: float


class OrderItemIn(BaseModel):
    product: ProductRef
    quantity: int = Field(..., ge=1)


class PaymentInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    card_name: Optional[str] = Field(None, alias="cardName")
    card_number: Optional[str] = Field(None, alias="cardNumber")


class OrderIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: CustomerIn
    items: List[OrderItemIn]
    total: float
    payment_info: Optional[PaymentInfo] = Field(None, alias="paymentInfo")


class OrderStatusIn(BaseModel):
    status: str


class NotificationIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    product_name: Optional[str] = Field(None, alias="productName")
    admin_emails: List[EmailStr] = Field(default_factory=list, alias="adminEmails")
    customer_name: Optional[str] = Field(None, alias="customerName")
    order_id: Optional[str] = Field(None, alias="orderId")
    order_total: Optional[float] = Field(None, alias="orderTotal")
