"""Model definitions collected from plugins and their mapped classes."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import Column, DateTime, DefaultClause, ForeignKey, Index, Integer, func, select
from sqlalchemy.orm import DeclarativeBase

from .errors import ModelDefinitionError

if TYPE_CHECKING:
    from .core import Core
    from .database import Database


def create_declarative_base() -> type[DeclarativeBase]:
    """A fresh declarative base, so every database owns an isolated metadata."""

    class Model(DeclarativeBase):
        __allow_unmapped__ = True

    return Model


class ModelMixin:
    """Convenience queries bound to the database the model was registered with."""

    core: ClassVar[Core | None] = None
    database: ClassVar[Database | None] = None

    @classmethod
    def _require_database(cls) -> Database:
        if cls.database is None:
            raise ModelDefinitionError(f"model {cls.__name__} is not registered with a database")
        return cls.database

    @classmethod
    async def bulk_create(cls, rows: Iterable[Mapping[str, Any]]) -> list[Any]:
        instances = [cls(**dict(row)) for row in rows]
        async with cls._require_database().session() as session:
            session.add_all(instances)
        return instances

    @classmethod
    async def find_one(cls, **filters: Any) -> Any | None:
        async with cls._require_database().session() as session:
            result = await session.execute(select(cls).filter_by(**filters).limit(1))
            return result.scalar_one_or_none()

    @classmethod
    async def find_all(cls, **filters: Any) -> list[Any]:
        async with cls._require_database().session() as session:
            result = await session.execute(select(cls).filter_by(**filters))
            return list(result.scalars().all())


@dataclass(slots=True)
class ModelDefinition:
    default: type
    schema: dict[str, Column[Any]]
    indexes: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def coerce(cls, name: str, value: Any) -> ModelDefinition:
        if isinstance(value, ModelDefinition):
            return value
        if not isinstance(value, Mapping):
            raise ModelDefinitionError(f"model {name} must be a mapping with 'default' and 'schema'")
        default = value.get("default", ModelMixin)
        schema = value.get("schema")
        if not isinstance(default, type):
            raise ModelDefinitionError(f"model {name} 'default' must be a class")
        if not isinstance(schema, Mapping):
            raise ModelDefinitionError(f"model {name} 'schema' must be a mapping of columns")
        return cls(default=default, schema=dict(schema), indexes=list(value.get("indexes") or []))


def resolve_definition(name: str, value: Any, *, core: Core) -> ModelDefinition:
    """Static definitions pass through; callables are invoked with `(ModelMixin, {"core": core})`."""
    if callable(value) and not isinstance(value, (type, Mapping, ModelDefinition)):
        value = value(ModelMixin, {"core": core})
    return ModelDefinition.coerce(name, value)


def table_name_for(model_name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", model_name).lower()


def _generator_argument(label: str, generator: Any) -> Any:
    if generator is None:
        return None
    if not hasattr(generator, "arg"):
        raise ModelDefinitionError(f"column {label} uses an unsupported default {generator!r}")
    return generator.arg


def _rebuild_column(name: str, model_name: str, column: Column[Any]) -> Column[Any]:
    """Fresh column with the declared settings, so one schema can back several tables."""
    label = f"{model_name}.{name}"
    server_default = column.server_default
    if server_default is not None:
        if not isinstance(server_default, DefaultClause):
            raise ModelDefinitionError(f"column {label} uses an unsupported server default {server_default!r}")
        server_default = DefaultClause(server_default.arg, for_update=server_default.for_update)
    foreign_keys = [
        ForeignKey(key.target_fullname, ondelete=key.ondelete, onupdate=key.onupdate)
        for key in column.foreign_keys
    ]
    positional: list[Any] = [column.name] if column.name else []
    return Column(
        *positional,
        column.type,
        *foreign_keys,
        primary_key=column.primary_key,
        nullable=column.nullable,
        default=_generator_argument(label, column.default),
        server_default=server_default,
        onupdate=_generator_argument(label, column.onupdate),
        unique=column.unique,
        index=column.index,
        autoincrement=column.autoincrement,
        comment=column.comment,
    )


def _column(name: str, model_name: str, value: Any) -> Column[Any]:
    if isinstance(value, Column):
        return _rebuild_column(name, model_name, value)
    if isinstance(value, type) or hasattr(value, "compile"):
        return Column(value)
    if isinstance(value, Mapping):
        options = dict(value)
        column_type = options.pop("type", None)
        if column_type is None:
            raise ModelDefinitionError(f"column {model_name}.{name} needs a 'type'")
        return Column(column_type, **options)
    raise ModelDefinitionError(f"column {model_name}.{name} has unsupported definition {value!r}")


def _indexes(table_name: str, model_name: str, indexes: Sequence[Mapping[str, Any]]) -> list[Index]:
    built: list[Index] = []
    for spec in indexes:
        fields = list(spec.get("fields") or [])
        if not fields:
            raise ModelDefinitionError(f"index on {model_name} needs at least one field")
        index_name = spec.get("name") or f"ix_{table_name}_{'_'.join(fields)}"
        built.append(Index(index_name, *fields, unique=bool(spec.get("unique", False))))
    return built


def build_model(
    name: str,
    definition: ModelDefinition,
    base: type[DeclarativeBase],
    *,
    core: Core | None = None,
    database: Database | None = None,
) -> type:
    """Create the mapped class `name` from a definition's class, schema and indexes."""
    table_name = table_name_for(name)
    attributes: dict[str, Any] = {"__tablename__": table_name}
    columns = {key: _column(key, name, value) for key, value in definition.schema.items()}
    if not any(column.primary_key for column in columns.values()):
        attributes["id"] = Column(Integer, primary_key=True, autoincrement=True)
    attributes.update(columns)
    attributes.setdefault("created_at", Column(DateTime(timezone=True), server_default=func.now(), nullable=False))
    attributes.setdefault(
        "updated_at",
        Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    )
    if definition.indexes:
        attributes["__table_args__"] = tuple(_indexes(table_name, name, definition.indexes))

    bases: tuple[type, ...] = (definition.default, base)
    if not issubclass(definition.default, ModelMixin):
        bases = (definition.default, ModelMixin, base)
    model = type(name, bases, attributes)
    model.core = core
    model.database = database
    return model
