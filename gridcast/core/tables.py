"""GridCast — Watched Table Registry.

Maps physical DynamoDB table names to the role each table plays in a layout.
The mapping is built once at startup and validated there, so a missing or
duplicated table name stops the service before any stream is opened.
"""

from enum import Enum
from typing import Dict, Iterator, List, Optional

from gridcast.config import Settings


class TableConfigError(Exception):
    """Raised when the table-role mapping is incomplete or ambiguous."""


class TableRole(str, Enum):
    """What a watched table holds."""

    LAYOUTS = "layouts"
    GRID_ITEMS = "grid_items"
    SCHEDULED_ADS = "scheduled_ads"
    ADS = "ads"


class TableRegistry:
    """Validated ``table name → TableRole`` mapping."""

    def __init__(self, mapping: Dict[str, TableRole]):
        seen: Dict[TableRole, str] = {}
        for name, role in mapping.items():
            if not name or not name.strip():
                raise TableConfigError(f"Empty table name for role {role.value}")
            if role in seen:
                raise TableConfigError(
                    f"Role {role.value} mapped twice: {seen[role]!r} and {name!r}"
                )
            seen[role] = name

        missing = [role.value for role in TableRole if role not in seen]
        if missing:
            raise TableConfigError(f"No table configured for: {', '.join(missing)}")

        self._by_name: Dict[str, TableRole] = dict(mapping)
        self._by_role: Dict[TableRole, str] = seen

    @classmethod
    def from_settings(cls, settings: Settings) -> "TableRegistry":
        """Build the registry from the configured table names."""
        names = [
            (settings.dynamodb_table_layouts, TableRole.LAYOUTS),
            (settings.dynamodb_table_griditems, TableRole.GRID_ITEMS),
            (settings.dynamodb_table_scheduledads, TableRole.SCHEDULED_ADS),
            (settings.dynamodb_table_ads, TableRole.ADS),
        ]
        mapping: Dict[str, TableRole] = {}
        for name, role in names:
            if name in mapping:
                raise TableConfigError(
                    f"Table {name!r} configured for both "
                    f"{mapping[name].value} and {role.value}"
                )
            mapping[name] = role
        return cls(mapping)

    def role_for(self, table_name: str) -> Optional[TableRole]:
        """Return the role of a table, or None if it is not watched."""
        return self._by_name.get(table_name)

    def table_for(self, role: TableRole) -> str:
        return self._by_role[role]

    @property
    def table_names(self) -> List[str]:
        """Watched tables in role order."""
        return [self._by_role[role] for role in TableRole]

    def __iter__(self) -> Iterator[str]:
        return iter(self.table_names)

    def __repr__(self) -> str:
        return f"<TableRegistry {self._by_role}>"
