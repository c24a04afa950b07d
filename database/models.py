from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel, Relationship

# Money columns keep 4 decimal places so stored bills reconcile exactly
MONEY = dict(max_digits=14, decimal_places=4)

# Timestamps are stored timezone-aware, in UTC
TIMESTAMP = dict(sa_type=DateTime(timezone=True))

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# --- User Model (cashiers) ---
class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str  # bcrypt hash, never plain text
    full_name: Optional[str] = None
    role: str = Field(default="cashier")  # admin, cashier
    is_active: bool = Field(default=True)

    transactions: List["Transaction"] = Relationship(back_populates="cashier")

# --- Product Model ---
class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    brand: str = Field(default="Generic", index=True)
    hsn_code: Optional[str] = Field(default=None, unique=True, index=True)
    barcode: Optional[str] = Field(default=None, unique=True, index=True)
    mrp: Decimal = Field(default=Decimal("0"), **MONEY)
    cost_price: Decimal = Field(default=Decimal("0"), **MONEY)
    selling_price: Optional[Decimal] = Field(default=None, **MONEY)  # falls back to mrp
    gst_rate: Decimal = Field(default=Decimal("18"), max_digits=5, decimal_places=2)
    price_includes_gst: bool = Field(default=True)
    stock_quantity: int = Field(default=0)
    min_stock_level: int = Field(default=5)  # Alert level
    created_at: datetime = Field(default_factory=utcnow, **TIMESTAMP)
    updated_at: datetime = Field(default_factory=utcnow, **TIMESTAMP)

# --- Customer Model ---
class Customer(SQLModel, table=True):
    __tablename__ = "customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    phone: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = None
    loyalty_points: int = Field(default=0)
    total_spent: Decimal = Field(default=Decimal("0"), **MONEY)
    created_at: datetime = Field(default_factory=utcnow, **TIMESTAMP)

    transactions: List["Transaction"] = Relationship(back_populates="customer")

# --- Transaction Models (Header & Detail) ---
class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_number: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, **TIMESTAMP)

    # Foreign Keys
    cashier_id: Optional[int] = Field(default=None, foreign_key="users.id")
    customer_id: Optional[int] = Field(default=None, foreign_key="customers.id")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    subtotal: Decimal = Field(default=Decimal("0"), **MONEY)  # tax-exclusive base
    gst_amount: Decimal = Field(default=Decimal("0"), **MONEY)
    discount_amount: Decimal = Field(default=Decimal("0"), **MONEY)
    discount_percentage: Decimal = Field(default=Decimal("0"), max_digits=7, decimal_places=2)
    loyalty_discount_amount: Decimal = Field(default=Decimal("0"), **MONEY)
    rounding_adjustment: Decimal = Field(default=Decimal("0"), **MONEY)
    total_amount: Decimal = Field(default=Decimal("0"), **MONEY)  # rounded
    total_savings: Decimal = Field(default=Decimal("0"), **MONEY)

    payment_method: str = Field(default="cash")  # cash, card, upi
    cash_received: Optional[Decimal] = Field(default=None, **MONEY)
    change_amount: Optional[Decimal] = Field(default=None, **MONEY)

    loyalty_points_earned: int = Field(default=0)
    loyalty_points_redeemed: int = Field(default=0)
    status: str = Field(default="completed")

    cashier: Optional[User] = Relationship(back_populates="transactions")
    customer: Optional[Customer] = Relationship(back_populates="transactions")
    items: List["TransactionItem"] = Relationship(back_populates="transaction")

class TransactionItem(SQLModel, table=True):
    __tablename__ = "transaction_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: Optional[int] = Field(default=None, foreign_key="transactions.id")
    product_id: Optional[int] = Field(default=None, foreign_key="products.id", ondelete="SET NULL")

    # Snapshot in case the product changes or disappears later
    product_name: str
    brand: Optional[str] = None
    hsn_code: Optional[str] = None
    quantity: int
    unit_price: Decimal = Field(**MONEY)
    selling_price: Decimal = Field(**MONEY)
    mrp: Decimal = Field(default=Decimal("0"), **MONEY)
    cost_price: Decimal = Field(default=Decimal("0"), **MONEY)
    gst_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    price_includes_gst: bool = Field(default=True)
    total_price: Decimal = Field(**MONEY)

    transaction: Optional[Transaction] = Relationship(back_populates="items")

class LoyaltyTransaction(SQLModel, table=True):
    __tablename__ = "loyalty_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: int = Field(foreign_key="customers.id")
    transaction_id: int = Field(foreign_key="transactions.id")
    points_earned: int = Field(default=0)
    points_redeemed: int = Field(default=0)
    discount_amount: Decimal = Field(default=Decimal("0"), **MONEY)
    transaction_type: str  # earned, redeemed
    created_at: datetime = Field(default_factory=utcnow, **TIMESTAMP)

# --- Store Settings (key/value) ---
class Setting(SQLModel, table=True):
    __tablename__ = "settings"

    key: str = Field(primary_key=True)
    value: Optional[str] = None
