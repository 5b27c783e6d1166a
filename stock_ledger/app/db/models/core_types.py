import enum


class LocationKind(str, enum.Enum):
    warehouse = "warehouse"
    rack_group = "rack_group"
    rack_level = "rack_level"
    rack_slot = "rack_slot"


# Parent attendu pour chaque niveau (hiérarchie fixe à 4 niveaux)
PARENT_KIND = {
    LocationKind.warehouse: None,
    LocationKind.rack_group: LocationKind.warehouse,
    LocationKind.rack_level: LocationKind.rack_group,
    LocationKind.rack_slot: LocationKind.rack_level,
}

CHILD_KIND = {parent: child for child, parent in PARENT_KIND.items() if parent is not None}


class MovementType(str, enum.Enum):
    stock_in = "IN"
    transfer = "TRANSFER"
    delivery_out = "DELIVERY_OUT"
    delivery_revert = "DELIVERY_REVERT"
    adjust = "ADJUST"


class OfferStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class DeliveryStatus(str, enum.Enum):
    none = "none"
    delivered = "delivered"
