"""
Field identifiers and records.

Every public entry point accepts either a plain field name, a qualified
``"Type.Field"`` string or a ``FieldRef``. ``as_field_ref`` and ``field_name``
normalize those forms at the boundary so the rest of the package only ever
deals with one canonical identifier.
"""
from copy import deepcopy
from typing import Any, Dict, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

EntityType = str


class FieldRef(BaseModel):
    """Canonical identifier for a field, optionally qualified by its entity type."""
    entity_type: Optional[EntityType] = None
    name: str

    model_config = ConfigDict(frozen=True)

    def qualified(self) -> str:
        if self.entity_type:
            return f"{self.entity_type}.{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.qualified()


FieldLike = Union[str, FieldRef]


def as_field_ref(field: FieldLike, entity_type: Optional[EntityType] = None) -> FieldRef:
    """
    Normalize a field identifier.

    Args:
        field: Field name, ``"Type.Field"`` string or FieldRef
        entity_type: Type to qualify an unqualified field with

    Returns:
        FieldRef, qualified whenever the type is known
    """
    if isinstance(field, FieldRef):
        if field.entity_type is None and entity_type is not None:
            return FieldRef(entity_type=entity_type, name=field.name)
        return field

    if not isinstance(field, str) or not field.strip():
        raise ValueError(f"Invalid field identifier: {field!r}")

    text = field.strip()
    if "." in text:
        type_part, _, name = text.partition(".")
        if not type_part or not name:
            raise ValueError(f"Invalid qualified field identifier: {field!r}")
        return FieldRef(entity_type=type_part, name=name)
    return FieldRef(entity_type=entity_type, name=text)


def field_name(field: FieldLike) -> str:
    """Resolve any field identifier to its stable field-name string."""
    return as_field_ref(field).name


class Record(BaseModel):
    """
    A mutable mapping of field name to value, tagged with its entity type.

    ``id`` stays None until the record has been committed (or simulated).
    """
    entity_type: EntityType
    id: Optional[Any] = None
    fields: Dict[str, Any] = Field(default_factory=dict)

    def __getitem__(self, key: FieldLike) -> Any:
        return self.fields[field_name(key)]

    def __setitem__(self, key: FieldLike, value: Any) -> None:
        self.fields[field_name(key)] = value

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, FieldRef)):
            return field_name(key) in self.fields
        return False

    def keys(self) -> Iterator[str]:
        return iter(list(self.fields))

    def get(self, key: FieldLike, default: Any = None) -> Any:
        return self.fields.get(field_name(key), default)

    def put(self, key: FieldLike, value: Any) -> None:
        self.fields[field_name(key)] = value

    def remove(self, key: FieldLike) -> Any:
        return self.fields.pop(field_name(key), None)

    def copy_record(self, exclude: Optional[set] = None) -> "Record":
        """Deep copy of this record, optionally without some fields."""
        excluded = exclude or set()
        return Record(
            entity_type=self.entity_type,
            id=self.id,
            fields={k: deepcopy(v) for k, v in self.fields.items() if k not in excluded},
        )

    def __repr__(self) -> str:
        return f"Record({self.entity_type}, id={self.id}, fields={self.fields})"
