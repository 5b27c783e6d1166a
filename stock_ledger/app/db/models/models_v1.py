from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, synonym

from stock_ledger.app.db.base import Base, BigIntId
from stock_ledger.app.db.models.core_types import (
    LocationKind,
    MovementType,
    OfferStatus,
    DeliveryStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    # On persiste les valeurs ("IN", "rack_slot"...) et pas les noms Python
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ---------- LOCATIONS ----------
class Location(Base):
    """
    Noeud de la hiérarchie Warehouse -> RackGroup -> RackLevel -> RackSlot.

    Chaque noeud ne connaît que son parent (arène indexée par id), jamais ses
    enfants : pas de graphe d'objets cyclique.
    """

    __tablename__ = "locations"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id", ondelete="CASCADE"),
        index=True,
    )
    kind: Mapped[LocationKind] = mapped_column(_enum(LocationKind, "location_kind"), nullable=False, index=True)

    code: Mapped[str | None] = mapped_column(String(64))
    name: Mapped[str | None] = mapped_column(String(200))
    number: Mapped[int | None] = mapped_column(Integer)  # level_number / slot_number
    address: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("parent_id", "code", name="uq_location_parent_code"),
        UniqueConstraint("parent_id", "number", name="uq_location_parent_number"),
        CheckConstraint("number IS NULL OR number > 0", name="ck_location_number_pos"),
    )

    @property
    def is_leaf(self) -> bool:
        return self.kind == LocationKind.rack_slot

    @property
    def level_number(self) -> int | None:
        return self.number if self.kind == LocationKind.rack_level else None

    @property
    def slot_number(self) -> int | None:
        return self.number if self.kind == LocationKind.rack_slot else None


# ---------- INVENTORY ----------
class StockRecord(Base):
    __tablename__ = "stock_records"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    variant_id: Mapped[str | None] = mapped_column(String(64))
    # variant_id ou "" : NULL casserait l'unicité (NULL != NULL)
    variant_key: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    variant_name: Mapped[str | None] = mapped_column(String(255))
    variant_sku: Mapped[str | None] = mapped_column(String(64))

    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("product_id", "variant_key", "location_id", name="uq_stock_record_product_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_stock_reserved_le_quantity"),
    )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity


class StockMovement(Base):
    """Journal append-only. Jamais d'UPDATE ni de DELETE."""

    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    movement_type: Mapped[MovementType] = mapped_column(_enum(MovementType, "movement_type"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    variant_id: Mapped[str | None] = mapped_column(String(64))
    variant_name: Mapped[str | None] = mapped_column(String(255))

    # signée : + entrée dans la location, - sortie
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # pas de FK : le journal survit à la suppression des locations
    source_location_id: Mapped[int | None] = mapped_column(BigIntId, index=True)
    target_location_id: Mapped[int | None] = mapped_column(BigIntId, index=True)

    reference: Mapped[str | None] = mapped_column(String(128))
    note: Mapped[str | None] = mapped_column(Text)
    quotation_id: Mapped[str | None] = mapped_column(String(64), index=True)
    correlation_id: Mapped[str | None] = mapped_column(String(36), index=True)
    reversal_of_id: Mapped[int | None] = mapped_column(
        ForeignKey("stock_movements.id", ondelete="RESTRICT"),
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # l'ordre total du journal = l'id auto-incrémenté
    sequence = synonym("id")

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_stock_movement_qty_nonzero"),
        Index("ix_stock_movements_product_time", "product_id", "created_at"),
    )

    @property
    def location_id(self) -> int | None:
        """Location dont le solde a bougé avec ce mouvement."""
        return self.target_location_id if self.quantity > 0 else self.source_location_id


class MinStockThreshold(Base):
    __tablename__ = "min_stock_thresholds"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str | None] = mapped_column(String(64))
    variant_key: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    min_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "variant_key", name="uq_min_stock_product"),
        CheckConstraint("min_stock >= 0", name="ck_min_stock_nonneg"),
    )


# ---------- SALES (entités externes, lues par le ledger) ----------
class Quotation(Base):
    __tablename__ = "quotations"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    number: Mapped[str | None] = mapped_column(String(64))
    offer_status: Mapped[OfferStatus] = mapped_column(
        _enum(OfferStatus, "offer_status"),
        default=OfferStatus.pending,
        nullable=False,
    )
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "delivery_status"),
        default=DeliveryStatus.none,
        nullable=False,
    )
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["QuotationLine"]] = relationship(
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationLine.id",
    )


class QuotationLine(Base):
    __tablename__ = "quotation_lines"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    quotation_id: Mapped[str] = mapped_column(
        ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str | None] = mapped_column(String(64))
    variant_name: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    quotation: Mapped[Quotation] = relationship(back_populates="lines")


class StockReservation(Base):
    __tablename__ = "stock_reservations"
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    quotation_id: Mapped[str] = mapped_column(
        ForeignKey("quotations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    stock_record_id: Mapped[int] = mapped_column(
        ForeignKey("stock_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("quotation_id", "stock_record_id", name="uq_reservation_quotation_record"),
        CheckConstraint("quantity > 0", name="ck_reservation_qty_pos"),
    )
