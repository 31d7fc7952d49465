from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionKind(str, Enum):
    spend = "spend"
    deposit = "deposit"
    addfunds = "addfunds"
    use_product = "use_product"


SPENDING_KINDS = (TransactionKind.spend.value, TransactionKind.use_product.value)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Envelope(Base, TimestampMixin):
    __tablename__ = "envelopes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default="uncategorized"
    )
    allocation: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_individual: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    rollover: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="envelope"
    )
    products: Mapped[list["Product"]] = relationship(
        "Product", back_populates="envelope"
    )

    __table_args__ = (
        CheckConstraint("allocation >= 0", name="ck_envelope_allocation_positive"),
        CheckConstraint(
            "(is_individual AND user_id IS NOT NULL) "
            "OR (NOT is_individual AND user_id IS NULL)",
            name="ck_envelope_owner_matches_scope",
        ),
        # Names only need to be unique among active rows so a deleted
        # envelope's name can be reused or the row re-enabled.
        Index(
            "uq_envelope_shared_name_active",
            "name",
            unique=True,
            sqlite_where=text("user_id IS NULL AND is_deleted = 0"),
            postgresql_where=text("user_id IS NULL AND is_deleted = false"),
        ),
        Index(
            "uq_envelope_individual_name_active",
            "name",
            "user_id",
            unique=True,
            sqlite_where=text("user_id IS NOT NULL AND is_deleted = 0"),
            postgresql_where=text("user_id IS NOT NULL AND is_deleted = false"),
        ),
        Index("ix_envelopes_deleted_name", "is_deleted", "name"),
    )

    @property
    def owner_label(self) -> str:
        return self.user_id if self.user_id is not None else "Shared"


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(64))
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    envelope: Mapped["Envelope"] = relationship(
        "Envelope", back_populates="transactions"
    )
    product: Mapped[Optional["Product"]] = relationship("Product")

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_transactions_amount_nonzero"),
        Index("ix_transactions_envelope_created", "envelope_id", "created_at"),
    )


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    envelope: Mapped["Envelope"] = relationship("Envelope", back_populates="products")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price_positive"),
        Index(
            "uq_product_name_active",
            "name",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )


class SystemState(Base):
    __tablename__ = "system_state"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
