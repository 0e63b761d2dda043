# src/campus_sync/core/schema.py
"""
Table-driven entity descriptions.

Offices, levels and students share one repository/reconciler/merge
implementation; everything that differs between them lives here.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Reference:
    """
    A foreign key to another synced entity.

    The row stores the referenced row's uuid (stable, known offline) and its
    remote id (what the remote store understands, known only once the
    referenced row has been pushed).
    """
    name: str          # "office"
    target: str        # entity kind of the referenced table
    id_column: str     # "office_id" -> remote id, FK to <target>.supabase_id
    uuid_column: str   # "office_uuid"


@dataclass(frozen=True)
class EntitySchema:
    kind: str
    table: str
    display_name: str
    fields: Tuple[str, ...]                 # business fields pushed to remote
    required: Tuple[str, ...] = ("name",)
    unique_field: str = "name"
    references: Tuple[Reference, ...] = field(default_factory=tuple)

    @property
    def name_constraint(self) -> str:
        """Remote unique constraint on the business key."""
        return f"{self.table}_{self.unique_field}_key"

    @property
    def uuid_constraint(self) -> str:
        return f"{self.table}_uuid_key"

    @property
    def local_fields(self) -> Tuple[str, ...]:
        """Business columns plus local-only reference uuids."""
        return self.fields + tuple(r.uuid_column for r in self.references)

    def reference(self, name: str) -> Optional[Reference]:
        """The reference called name, or None for a plain field."""
        for ref in self.references:
            if ref.name == name:
                return ref
        return None


OFFICES = EntitySchema(
    kind="offices",
    table="offices",
    display_name="office",
    fields=("name",),
)

LEVELS = EntitySchema(
    kind="levels",
    table="levels",
    display_name="level",
    fields=("name",),
)

STUDENTS = EntitySchema(
    kind="students",
    table="students",
    display_name="student",
    fields=("name", "birth_date", "phone", "address", "office_id", "level_id"),
    required=("name", "office", "level"),
    references=(
        Reference("office", "offices", "office_id", "office_uuid"),
        Reference("level", "levels", "level_id", "level_uuid"),
    ),
)

SCHEMAS: Dict[str, EntitySchema] = {s.kind: s for s in (OFFICES, LEVELS, STUDENTS)}

# Referenced kinds come first so their remote ids exist before dependents push.
SYNC_ORDER: Tuple[str, ...] = ("offices", "levels", "students")


def get_schema(kind: str) -> EntitySchema:
    try:
        return SCHEMAS[kind]
    except KeyError:
        raise KeyError(f"Unknown entity kind: {kind}") from None
