"""
Location registry.

Hiérarchie fixe à 4 niveaux : Warehouse -> RackGroup -> RackLevel -> RackSlot.
Seul un RackSlot (feuille) peut porter du stock.

Les noeuds sont stockés à plat (une table, parent_id) ; toutes les remontées
d'ancêtres se font par id, via LocationArena pour les traitements en masse.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from stock_ledger.app.db.models.core_types import LocationKind, PARENT_KIND
from stock_ledger.app.db.models.models_v1 import Location, StockRecord
from stock_ledger.services.errors import ConflictError, NotFoundError, ValidationError
from stock_ledger.services.transaction import atomic

logger = logging.getLogger(__name__)

ADDRESS_SEPARATOR = " / "

# champs modifiables par niveau
EDITABLE_FIELDS = {
    LocationKind.warehouse: {"name", "code", "address", "description"},
    LocationKind.rack_group: {"name", "code", "description"},
    LocationKind.rack_level: {"name", "number"},
    LocationKind.rack_slot: {"name", "number"},
}


def address_segment(loc: Location) -> str:
    if loc.kind == LocationKind.rack_level:
        return f"L{loc.number}"
    if loc.kind == LocationKind.rack_slot:
        return f"S{loc.number}"
    return loc.code or str(loc.id)


class LocationArena:
    """
    Vue en mémoire de toutes les locations, indexée par id.

    Les noeuds ne référencent que leur parent ; l'index parent -> enfants est
    un simple dict d'ids construit à la demande.
    """

    def __init__(self, locations: Iterable[Location]):
        self.nodes: dict[int, Location] = {loc.id: loc for loc in locations}
        self._children: dict[int, list[int]] | None = None

    def get(self, location_id: int) -> Location | None:
        return self.nodes.get(location_id)

    def ancestors(self, location_id: int) -> list[Location]:
        """Chaîne [noeud, parent, ..., warehouse]."""
        chain = []
        current = self.nodes.get(location_id)
        while current is not None:
            chain.append(current)
            if current.parent_id is None:
                break
            current = self.nodes.get(current.parent_id)
        return chain

    def warehouse_of(self, location_id: int) -> Location | None:
        chain = self.ancestors(location_id)
        if chain and chain[-1].kind == LocationKind.warehouse:
            return chain[-1]
        return None

    def full_address(self, location_id: int) -> str | None:
        chain = self.ancestors(location_id)
        if not chain:
            return None
        return ADDRESS_SEPARATOR.join(address_segment(loc) for loc in reversed(chain))

    def descendants(self, location_id: int) -> set[int]:
        if self._children is None:
            self._children = defaultdict(list)
            for loc in self.nodes.values():
                if loc.parent_id is not None:
                    self._children[loc.parent_id].append(loc.id)

        out: set[int] = set()
        stack = list(self._children.get(location_id, []))
        while stack:
            loc_id = stack.pop()
            out.add(loc_id)
            stack.extend(self._children.get(loc_id, []))
        return out


def load_arena(db: Session) -> LocationArena:
    return LocationArena(db.execute(select(Location)).scalars().all())


# ---------- Lookups ----------
def get_location(db: Session, location_id: int, kind: LocationKind | None = None) -> Location:
    loc = db.get(Location, location_id)
    if not loc or (kind is not None and loc.kind != kind):
        label = kind.value if kind else "location"
        raise NotFoundError(f"{label} {location_id} not found")
    return loc


def get_slot(db: Session, location_id: int, *, lock: bool = False) -> Location:
    """
    Location feuille, la seule qui accepte du stock.

    lock=True (mutations) : FOR KEY SHARE sur la ligne du slot, un
    delete_location concurrent attend la fin de la transaction au lieu de
    supprimer le slot sous nos pieds.
    """
    if lock:
        loc = db.execute(
            select(Location)
            .where(Location.id == location_id)
            .with_for_update(read=True, key_share=True)
        ).scalar_one_or_none()
    else:
        loc = db.get(Location, location_id)
    if not loc:
        raise NotFoundError(f"location {location_id} not found")
    if not loc.is_leaf:
        raise NotFoundError(f"location {location_id} is not a rack slot")
    return loc


def list_children(db: Session, kind: LocationKind, parent_id: int | None = None) -> list[Location]:
    stmt = select(Location).where(Location.kind == kind)
    if parent_id is not None:
        stmt = stmt.where(Location.parent_id == parent_id)
    stmt = stmt.order_by(Location.parent_id, Location.number, Location.code, Location.id)
    return list(db.execute(stmt).scalars().all())


def resolve_full_address(db: Session, slot_id: int) -> str:
    slot = get_slot(db, slot_id)
    chain = [slot]
    while chain[-1].parent_id is not None:
        chain.append(db.get(Location, chain[-1].parent_id))
    return ADDRESS_SEPARATOR.join(address_segment(loc) for loc in reversed(chain))


# ---------- Validation ----------
def _required_text(value: str | None, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def _positive_number(value: int | None, field: str) -> int:
    if value is None or int(value) <= 0:
        raise ValidationError(f"{field} must be > 0")
    return int(value)


def _ensure_unique(
    db: Session,
    *,
    kind: LocationKind,
    parent_id: int | None,
    code: str | None = None,
    number: int | None = None,
    exclude_id: int | None = None,
) -> None:
    clauses = []
    if code is not None:
        clauses.append(Location.code == code)
    if number is not None:
        clauses.append(Location.number == number)
    if not clauses:
        return

    stmt = select(Location.id).where(Location.kind == kind).where(or_(*clauses))
    if parent_id is None:
        stmt = stmt.where(Location.parent_id.is_(None))
    else:
        stmt = stmt.where(Location.parent_id == parent_id)
    if exclude_id is not None:
        stmt = stmt.where(Location.id != exclude_id)

    if db.execute(stmt).first():
        what = f"code '{code}'" if code is not None else f"number {number}"
        raise ConflictError(f"{kind.value} with {what} already exists under this parent")


def _create(db: Session, *, kind: LocationKind, parent_id: int | None, **fields) -> Location:
    with atomic(db, f"create_{kind.value}"):
        if parent_id is not None:
            get_location(db, parent_id, PARENT_KIND[kind])
        _ensure_unique(db, kind=kind, parent_id=parent_id, code=fields.get("code"), number=fields.get("number"))

        loc = Location(kind=kind, parent_id=parent_id, **fields)
        db.add(loc)
        db.flush()

    logger.info(f"[locations] created {kind.value} id={loc.id} parent={parent_id}")
    return loc


# ---------- CRUD ----------
def create_warehouse(
    db: Session,
    *,
    name: str,
    code: str,
    address: str | None = None,
    description: str | None = None,
) -> Location:
    return _create(
        db,
        kind=LocationKind.warehouse,
        parent_id=None,
        name=_required_text(name, "name"),
        code=_required_text(code, "code"),
        address=address,
        description=description,
    )


def create_rack_group(
    db: Session,
    *,
    warehouse_id: int,
    name: str,
    code: str,
    description: str | None = None,
) -> Location:
    return _create(
        db,
        kind=LocationKind.rack_group,
        parent_id=warehouse_id,
        name=_required_text(name, "name"),
        code=_required_text(code, "code"),
        description=description,
    )


def create_rack_level(db: Session, *, rack_group_id: int, level_number: int, name: str | None = None) -> Location:
    return _create(
        db,
        kind=LocationKind.rack_level,
        parent_id=rack_group_id,
        number=_positive_number(level_number, "level_number"),
        name=name,
    )


def create_rack_slot(db: Session, *, rack_level_id: int, slot_number: int, name: str | None = None) -> Location:
    return _create(
        db,
        kind=LocationKind.rack_slot,
        parent_id=rack_level_id,
        number=_positive_number(slot_number, "slot_number"),
        name=name,
    )


def update_location(db: Session, location_id: int, *, kind: LocationKind, **fields) -> Location:
    """
    Met à jour les champs descriptifs. Le parent ne change jamais :
    déplacer un noeud invaliderait les adresses déjà journalisées.
    """
    unknown = set(fields) - EDITABLE_FIELDS[kind]
    if unknown:
        raise ValidationError(f"Cannot update {', '.join(sorted(unknown))} on {kind.value}")

    with atomic(db, f"update_{kind.value}"):
        loc = get_location(db, location_id, kind)

        if "name" in fields and kind in (LocationKind.warehouse, LocationKind.rack_group):
            fields["name"] = _required_text(fields["name"], "name")
        if "code" in fields:
            fields["code"] = _required_text(fields["code"], "code")
        if "number" in fields:
            fields["number"] = _positive_number(fields["number"], "number")

        _ensure_unique(
            db,
            kind=kind,
            parent_id=loc.parent_id,
            code=fields.get("code"),
            number=fields.get("number"),
            exclude_id=loc.id,
        )
        for key, value in fields.items():
            setattr(loc, key, value)
        db.flush()

    logger.info(f"[locations] updated {kind.value} id={location_id} fields={sorted(fields)}")
    return loc


def delete_location(db: Session, location_id: int, *, kind: LocationKind) -> list[int]:
    """
    Supprime une location et tous ses descendants.

    Refusé (ConflictError) si un slot descendant porte encore du stock ou du
    réservé. Les StockRecord vides des slots supprimés partent avec eux.
    Retourne les ids supprimés.
    """
    with atomic(db, f"delete_{kind.value}"):
        get_location(db, location_id, kind)

        # niveaux successifs, du noeud vers les feuilles (4 niveaux max) ;
        # locations verrouillées avant les records, comme stock_in / transfer
        levels: list[list[int]] = [[location_id]]
        db.execute(select(Location.id).where(Location.id == location_id).with_for_update())
        while levels[-1]:
            children = db.execute(
                select(Location.id)
                .where(Location.parent_id.in_(levels[-1]))
                .order_by(Location.id)
                .with_for_update()
            ).scalars().all()
            levels.append(list(children))
        all_ids = [loc_id for level in levels for loc_id in level]

        busy = (
            db.execute(
                select(StockRecord)
                .where(StockRecord.location_id.in_(all_ids))
                .where((StockRecord.quantity > 0) | (StockRecord.reserved_quantity > 0))
                .order_by(StockRecord.location_id, StockRecord.product_id, StockRecord.variant_key)
                .with_for_update()
            )
            .scalars()
            .all()
        )
        if busy:
            raise ConflictError(
                f"Cannot delete {kind.value} {location_id}: {len(busy)} stock record(s) still hold stock",
                stock_record_ids=[int(r.id) for r in busy],
            )

        db.execute(delete(StockRecord).where(StockRecord.location_id.in_(all_ids)))
        for level in reversed(levels):
            if level:
                db.execute(delete(Location).where(Location.id.in_(level)))

    logger.info(f"[locations] deleted {kind.value} id={location_id} cascade={len(all_ids)}")
    return all_ids
