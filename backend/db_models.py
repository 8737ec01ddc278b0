"""
SQLAlchemy ORM models for the Litter Marketplace core.

Tables:
    users         buyer / breeder / admin accounts (identity only)
    breeders      breeder profiles that own litters
    litters       product lines, mirrored to Stripe products + two prices
    puppies       sellable items; is_available is owned by the order core
    orders        finalized purchases (paid → cancelled → archived → deleted)
    order_items   one row per puppy claimed by an order
"""
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base


class User(Base):
    """Accounts known to the core. Authentication happens elsewhere."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="buyer")  # "buyer" | "breeder" | "admin"
    created_at = Column(DateTime, default=datetime.utcnow)


class Breeder(Base):
    """Breeder profile; user_id is the account that controls its litters."""
    __tablename__ = "breeders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    business_name = Column(String(200), nullable=False)
    delivery_fee = Column(Integer, nullable=False, default=0)  # cents
    delivery_areas = Column(JSON, nullable=True)  # list of ZIP codes
    created_at = Column(DateTime, default=datetime.utcnow)

    litters = relationship("Litter", back_populates="breeder", lazy="select")


class Litter(Base):
    """
    A product line. Mirrored in Stripe as one product with one active price
    per gender tier; the three stripe_* columns always name the current ones.
    """
    __tablename__ = "litters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    breeder_id = Column(Integer, ForeignKey("breeders.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    breed = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active | upcoming | sold_out | archived
    price_per_male = Column(Integer, nullable=False, default=0)  # cents
    price_per_female = Column(Integer, nullable=False, default=0)  # cents
    quantity_discounts = Column(JSON, nullable=True)  # [{"quantity": 2, "discount_percentage": 5}]

    stripe_product_id = Column(String(64), nullable=True, index=True)
    stripe_male_price_id = Column(String(64), nullable=True)
    stripe_female_price_id = Column(String(64), nullable=True)

    total_puppies = Column(Integer, nullable=False, default=0)
    available_puppies = Column(Integer, nullable=False, default=0)
    is_test_data = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    breeder = relationship("Breeder", back_populates="litters")
    puppies = relationship("Puppy", back_populates="litter", lazy="select")

    def tier_price(self, gender: str) -> int:
        """Price in cents for the given gender tier."""
        return self.price_per_male if gender == "male" else self.price_per_female


class Puppy(Base):
    """
    A sellable item.

    is_available is False iff a non-terminal order references this puppy.
    reserved_by marks a buyer with an open checkout session until
    reserved_until (the session's expiry); it does not take the puppy off
    sale, and an expired hold no longer blocks other buyers.
    """
    __tablename__ = "puppies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    litter_id = Column(Integer, ForeignKey("litters.id"), nullable=False, index=True)
    name = Column(String(100), nullable=True)
    gender = Column(String(10), nullable=False)  # "male" | "female"
    color = Column(String(50), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    stripe_price_id = Column(String(64), nullable=True)
    sold_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    reserved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reserved_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    litter = relationship("Litter", back_populates="puppies")

    __table_args__ = (
        Index("ix_puppies_litter_available", "litter_id", "is_available"),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    stripe_session_id = Column(String(255), nullable=True)  # dedup key for finalize
    stripe_payment_intent_id = Column(String(255), nullable=True)
    subtotal_amount = Column(Integer, nullable=False, default=0)  # cents
    discount_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="paid", index=True)  # paid | cancelled | archived

    delivery_type = Column(String(20), nullable=False, default="pickup")  # pickup | delivery
    delivery_option = Column(String(50), nullable=True)
    delivery_cost = Column(Integer, nullable=False, default=0)
    delivery_zip_code = Column(String(20), nullable=True)
    scheduling_deadline = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="select")

    __table_args__ = (
        UniqueConstraint("stripe_session_id", name="uq_orders_stripe_session_id"),
        # For buyer order history
        Index("ix_orders_user_created", "user_id", "created_at"),
        # For the retention purge
        Index("ix_orders_status_updated", "status", "updated_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    puppy_id = Column(Integer, ForeignKey("puppies.id"), nullable=False, index=True)
    price = Column(Integer, nullable=False, default=0)  # cents, tier price at time of sale
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="items")
