"""GridCast — Update Classifier.

Maps a change event to the update kind viewers understand and the key used
to route it. Total: any input yields an update, unknown shapes degrade to
``unknownUpdate``.
"""

from typing import Any, Dict

from gridcast.core.tables import TableRegistry, TableRole
from gridcast.models.updates import ChangeEvent, ClassifiedUpdate, UpdateKind

# role → (update kind, payload field holding the routing key)
ROLE_UPDATES: Dict[TableRole, tuple[UpdateKind, str]] = {
    TableRole.LAYOUTS: (UpdateKind.LAYOUT, "layoutId"),
    TableRole.GRID_ITEMS: (UpdateKind.GRID_ITEM, "layoutId"),
    TableRole.SCHEDULED_ADS: (UpdateKind.SCHEDULED_AD, "layoutId"),
    TableRole.ADS: (UpdateKind.AD, "adId"),
}

# Tried in order for tables outside the registry
FALLBACK_KEYS = ("id", "layoutId")


def _key_from(payload: Dict[str, Any], field: str) -> str:
    value = payload.get(field)
    return "" if value is None else str(value)


def classify(registry: TableRegistry, event: ChangeEvent) -> ClassifiedUpdate:
    """Classify one change event."""
    payload = event.new_image if isinstance(event.new_image, dict) else {}
    role = registry.role_for(event.source_table)

    if role is None:
        routing_key = ""
        for field in FALLBACK_KEYS:
            routing_key = _key_from(payload, field)
            if routing_key:
                break
        return ClassifiedUpdate(
            update_kind=UpdateKind.UNKNOWN, routing_key=routing_key, payload=payload
        )

    kind, key_field = ROLE_UPDATES[role]
    return ClassifiedUpdate(
        update_kind=kind, routing_key=_key_from(payload, key_field), payload=payload
    )
