from __future__ import annotations

import pytest
from sqlalchemy import Column, ForeignKey, Integer, String

from corekit.errors import ModelDefinitionError
from corekit.models import (
    ModelDefinition,
    ModelMixin,
    build_model,
    create_declarative_base,
    resolve_definition,
    table_name_for,
)


def test_table_names_are_snake_case() -> None:
    assert table_name_for("Cat") == "cat"
    assert table_name_for("BlogPost") == "blog_post"


def test_build_model_adds_primary_key_timestamps_and_mixin() -> None:
    class Cat:
        @classmethod
        def describe(cls) -> str:
            return cls.__name__

    definition = ModelDefinition.coerce(
        "Cat",
        {
            "default": Cat,
            "schema": {
                "name": Column(String, nullable=False),
                "color": String,
                "lives": {"type": Integer, "default": 9},
            },
            "indexes": [{"fields": ["name"], "unique": True}],
        },
    )

    model = build_model("Cat", definition, create_declarative_base())

    columns = model.__table__.columns
    assert model.__tablename__ == "cat"
    assert columns["id"].primary_key is True
    assert {"name", "color", "lives", "created_at", "updated_at"} <= set(columns.keys())
    assert columns["name"].nullable is False
    assert issubclass(model, ModelMixin)
    assert model.describe() == "Cat"
    assert [index.name for index in model.__table__.indexes] == ["ix_cat_name"]


def test_declared_primary_key_replaces_default_id() -> None:
    definition = ModelDefinition.coerce(
        "Tag",
        {"schema": {"slug": Column(String, primary_key=True)}},
    )

    model = build_model("Tag", definition, create_declarative_base())

    assert "id" not in model.__table__.columns
    assert model.__table__.columns["slug"].primary_key is True


def test_shared_schema_columns_can_be_registered_twice() -> None:
    schema = {"name": Column(String)}
    first = build_model("Dog", ModelDefinition.coerce("Dog", {"schema": schema}), create_declarative_base())
    second = build_model("Dog", ModelDefinition.coerce("Dog", {"schema": schema}), create_declarative_base())

    assert first.__table__ is not second.__table__


def test_dynamic_definitions_receive_mixin_and_core() -> None:
    seen: dict[str, object] = {}
    core = object()

    def definition(base: type, context: dict) -> dict:
        seen["base"] = base
        seen["core"] = context["core"]

        class Owl(base):
            pass

        return {"default": Owl, "schema": {"name": String}}

    resolved = resolve_definition("Owl", definition, core=core)  # type: ignore[arg-type]

    assert seen == {"base": ModelMixin, "core": core}
    assert resolved.default.__name__ == "Owl"
    model = build_model("Owl", resolved, create_declarative_base())
    assert model.__mro__[1] is resolved.default


@pytest.mark.parametrize(
    "value",
    [
        "not a mapping",
        {"default": "not a class", "schema": {}},
        {"schema": ["name"]},
    ],
)
def test_malformed_definitions_are_rejected(value: object) -> None:
    with pytest.raises(ModelDefinitionError):
        ModelDefinition.coerce("Broken", value)


def test_column_definition_without_type_is_rejected() -> None:
    definition = ModelDefinition.coerce("Broken", {"schema": {"name": {"nullable": False}}})

    with pytest.raises(ModelDefinitionError, match="needs a 'type'"):
        build_model("Broken", definition, create_declarative_base())


@pytest.mark.asyncio
async def test_mixin_queries_require_a_database() -> None:
    class Loose(ModelMixin):
        pass

    with pytest.raises(ModelDefinitionError):
        await Loose.find_one(name="x")


def test_shared_columns_keep_their_declared_settings() -> None:
    schema = {
        "owner_id": Column(Integer, ForeignKey("owner.id", ondelete="CASCADE"), nullable=False),
        "nickname": Column(String, default="rex", server_default="rex", unique=True),
    }

    models = [
        build_model("Dog", ModelDefinition.coerce("Dog", {"schema": schema}), create_declarative_base())
        for _ in range(2)
    ]

    for model in models:
        columns = model.__table__.columns
        owner_id = columns["owner_id"]
        [foreign_key] = owner_id.foreign_keys
        assert owner_id.nullable is False
        assert (foreign_key.target_fullname, foreign_key.ondelete) == ("owner.id", "CASCADE")
        nickname = columns["nickname"]
        assert nickname.default.arg == "rex"
        assert nickname.server_default.arg == "rex"
        assert nickname.unique is True
    assert getattr(schema["nickname"], "table", None) is None
