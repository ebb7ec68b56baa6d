"""
Small link value objects shared by builders and the discovery graph.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from recordgraph.core.fields import EntityType


class ExternalReference(BaseModel):
    """
    Link to whichever record of ``target_type`` has ``target_field == external_id``.

    Resolved lazily: ``resolved_builder`` is filled by the pre-existence pass
    when an in-flight builder matches; otherwise the persistence engine gets
    a raw external-id lookup.
    """
    relationship_field: str
    target_type: EntityType
    target_field: str
    external_id: Any
    # Using Any for the builder since builder.py imports this module
    resolved_builder: Optional[Any] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def is_pre_existing(self) -> bool:
        return self.resolved_builder is not None

    def __repr__(self) -> str:
        return (
            f"ExternalReference({self.relationship_field} -> "
            f"{self.target_type}.{self.target_field}={self.external_id!r})"
        )


class ParentLink(BaseModel):
    """Resolved direct relationship: ``child.field`` points at ``parent``."""
    child: Any = Field(exclude=True)
    field: str
    parent: Any = Field(exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ParentLink({self.child!r}.{self.field} -> {self.parent!r})"


class SyncLink(BaseModel):
    """Mirrors ``source.source_field`` into ``target.target_field`` during reclamation."""
    source: Any = Field(exclude=True)
    source_field: str
    target: Any = Field(exclude=True)
    target_field: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SyncLink({self.source!r}.{self.source_field} -> {self.target!r}.{self.target_field})"
