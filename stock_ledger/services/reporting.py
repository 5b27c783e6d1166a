"""
Reporting (lecture seule).

Tout est recalculé à la demande depuis stock_records + stock_movements, sans
verrou ni cache. Une passe par table : linéaire en nombre de records.
Pas de données -> listes vides, jamais d'erreur.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from stock_ledger.app.db.models.core_types import LocationKind, MovementType
from stock_ledger.app.db.models.models_v1 import MinStockThreshold, StockMovement, StockRecord
from stock_ledger.services.errors import ValidationError
from stock_ledger.services.inventory import variant_key
from stock_ledger.services.locations import load_arena
from stock_ledger.services.transaction import atomic

logger = logging.getLogger(__name__)


# ---------- Seuils (config externe) ----------
def list_thresholds(db: Session) -> list[MinStockThreshold]:
    return list(
        db.execute(
            select(MinStockThreshold).order_by(MinStockThreshold.product_id, MinStockThreshold.variant_key)
        )
        .scalars()
        .all()
    )


def set_min_stock(db: Session, *, product_id: str, min_stock: int, variant_id: str | None = None) -> MinStockThreshold:
    product_id = (product_id or "").strip()
    if not product_id:
        raise ValidationError("product_id is required")
    if min_stock is None or min_stock < 0:
        raise ValidationError("min_stock must be >= 0")

    with atomic(db, "set_min_stock"):
        vkey = variant_key(variant_id)
        th = db.execute(
            select(MinStockThreshold)
            .where(MinStockThreshold.product_id == product_id)
            .where(MinStockThreshold.variant_key == vkey)
        ).scalar_one_or_none()
        if not th:
            th = MinStockThreshold(product_id=product_id, variant_id=vkey or None, variant_key=vkey, min_stock=0)
            db.add(th)
        th.min_stock = int(min_stock)
        db.flush()

    logger.info(f"[set_min_stock] product={product_id} variant={variant_id} min_stock={min_stock}")
    return th


# ---------- Agrégats ----------
def report_by_warehouse(db: Session) -> list[dict]:
    """
    Totaux par entrepôt. total_items compte tous les StockRecord, vides
    compris (lignes existantes) ; voir report_by_product pour locations_count.
    """
    arena = load_arena(db)
    totals = {
        loc.id: {
            "warehouse_id": loc.id,
            "warehouse_code": loc.code,
            "warehouse_name": loc.name,
            "total_items": 0,
            "total_quantity": 0,
            "total_reserved": 0,
        }
        for loc in arena.nodes.values()
        if loc.kind == LocationKind.warehouse
    }

    rows = db.execute(
        select(
            StockRecord.location_id,
            func.count(StockRecord.id),
            func.coalesce(func.sum(StockRecord.quantity), 0),
            func.coalesce(func.sum(StockRecord.reserved_quantity), 0),
        ).group_by(StockRecord.location_id)
    ).all()

    for location_id, items, quantity, reserved in rows:
        warehouse = arena.warehouse_of(location_id)
        if warehouse is None:
            continue
        agg = totals[warehouse.id]
        agg["total_items"] += int(items)
        agg["total_quantity"] += int(quantity)
        agg["total_reserved"] += int(reserved)

    for agg in totals.values():
        agg["available"] = agg["total_quantity"] - agg["total_reserved"]
    return sorted(totals.values(), key=lambda a: (a["warehouse_code"] or "", a["warehouse_id"]))


def _product_aggregates(db: Session) -> list[dict]:
    thresholds = {(t.product_id, t.variant_key): t for t in list_thresholds(db)}

    rows = db.execute(
        select(
            StockRecord.product_id,
            StockRecord.variant_key,
            func.max(StockRecord.variant_id),
            func.max(StockRecord.variant_name),
            func.max(StockRecord.variant_sku),
            func.coalesce(func.sum(case((StockRecord.quantity > 0, 1), else_=0)), 0),
            func.coalesce(func.sum(StockRecord.quantity), 0),
            func.coalesce(func.sum(StockRecord.reserved_quantity), 0),
        )
        .group_by(StockRecord.product_id, StockRecord.variant_key)
    ).all()

    aggregates: dict[tuple[str, str], dict] = {}
    for product_id, vkey, variant_id, variant_name, variant_sku, locations, quantity, reserved in rows:
        aggregates[(product_id, vkey)] = {
            "product_id": product_id,
            "variant_id": variant_id,
            "variant_name": variant_name,
            "variant_sku": variant_sku,
            "locations_count": int(locations),
            "total_quantity": int(quantity),
            "total_reserved": int(reserved),
        }

    # un seuil sans aucun stock reste un produit à surveiller
    for key, th in thresholds.items():
        if key not in aggregates:
            aggregates[key] = {
                "product_id": th.product_id,
                "variant_id": th.variant_id,
                "variant_name": None,
                "variant_sku": None,
                "locations_count": 0,
                "total_quantity": 0,
                "total_reserved": 0,
            }

    out = []
    for key in sorted(aggregates):
        agg = aggregates[key]
        th = thresholds.get(key)
        agg["available"] = agg["total_quantity"] - agg["total_reserved"]
        agg["min_stock"] = th.min_stock if th else None
        agg["is_low_stock"] = th is not None and agg["total_quantity"] < th.min_stock
        out.append(agg)
    return out


def report_by_product(db: Session) -> list[dict]:
    """
    Totaux par (produit, variante). locations_count ne compte que les slots
    qui portent réellement du stock (quantity > 0) : un record vidé reste en
    base mais n'est plus un emplacement du produit.
    """
    return _product_aggregates(db)


def low_stock(db: Session) -> list[dict]:
    out = []
    for agg in _product_aggregates(db):
        if agg["is_low_stock"]:
            agg["shortage"] = agg["min_stock"] - agg["total_quantity"]
            out.append(agg)
    out.sort(key=lambda a: (-a["shortage"], a["product_id"], a["variant_id"] or ""))
    return out


def movement_summary(
    db: Session,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
) -> list[dict]:
    """
    Somme des mouvements par (produit, variante) et par type.
    Sert d'audit de conservation : net == stock total quand le journal est complet.
    """
    stmt = select(
        StockMovement.product_id,
        func.coalesce(StockMovement.variant_id, ""),
        StockMovement.movement_type,
        func.sum(StockMovement.quantity),
    )
    if since is not None:
        stmt = stmt.where(StockMovement.created_at >= since)
    if until is not None:
        stmt = stmt.where(StockMovement.created_at < until)
    stmt = stmt.group_by(
        StockMovement.product_id,
        func.coalesce(StockMovement.variant_id, ""),
        StockMovement.movement_type,
    )

    summary: dict[tuple[str, str], dict] = {}
    for product_id, vkey, movement_type, total in db.execute(stmt).all():
        entry = summary.setdefault(
            (product_id, vkey),
            {
                "product_id": product_id,
                "variant_id": vkey or None,
                **{mt.value: 0 for mt in MovementType},
                "net": 0,
            },
        )
        entry[MovementType(movement_type).value] += int(total)
        entry["net"] += int(total)

    return [summary[key] for key in sorted(summary)]
