"""
Tests for the attribute pipeline: defaults, mutators, validators,
serializers, timestamps and lazy validators.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

import pytest

from dynamodm import (
    Field,
    InMemoryBackend,
    MetadataRegistry,
    Model,
    ValidationError,
    mutates,
    validates,
)
from dynamodm.models.fields import FieldMetadata
from dynamodm.models.pipeline import AttributePipeline

registry = MetadataRegistry()
backend = InMemoryBackend()


def _is_email(value):
    return "@" in value or "must be an email address"


class Account(Model, registry=registry, model_backend=backend, table_name="pipeline_accounts"):
    id: str = Field(primary_key=True, default=lambda: uuid4().hex)
    email: str = Field(mutators=[str.strip, str.lower], validators=[_is_email])
    code: Optional[str] = Field(mutators=[lambda v: v + "-x", str.upper])
    peak: int = Field(default=0, mutators=[lambda previous, value: max(previous or 0, value)])
    age: int = Field(default=0, validators=[lambda v: v >= 0])
    nickname: Optional[str] = None
    tags: list[str] = Field(
        default_factory=list,
        to_store=lambda v: ",".join(v) if v else None,
        from_store=lambda v: v.split(","),
    )
    full_name: Optional[str] = Field(db_column="name")


class Handle(Model, registry=registry, model_backend=backend, table_name="pipeline_handles"):
    id: str = Field(primary_key=True)
    username: str

    @mutates("username")
    def normalize_username(cls, value):
        return value.strip().lower()

    @validates("username")
    def username_has_no_spaces(cls, value):
        return " " not in value or "username cannot contain spaces"

    @validates("username", lazy=True)
    async def username_available(cls, value):
        return value != "admin" or "username is reserved"


class Stamped(Model, registry=registry, model_backend=backend, table_name="pipeline_stamped"):
    id: str = Field(primary_key=True)
    created_at: Optional[datetime] = Field(created_at=True)
    updated_at: Optional[datetime] = Field(updated_at=True)


@pytest.fixture(autouse=True)
def clear_backend():
    backend.clear()
    yield
    backend.clear()


class TestDefaults:
    """Test default values."""

    def test_callable_default_evaluated_per_instance(self):
        first = Account(email="a@example.com")
        second = Account(email="b@example.com")

        assert first.id and second.id
        assert first.id != second.id

    def test_explicit_value_wins(self):
        assert Account(id="fixed", email="a@example.com").id == "fixed"

    def test_none_is_absent(self):
        account = Account(email="a@example.com", age=None)
        assert account.age == 0

    def test_default_factory(self):
        first = Account(email="a@example.com")
        second = Account(email="b@example.com")
        first.tags.append("x")
        assert second.tags == []


class TestMutators:
    """Test mutators."""

    def test_mutators_run_in_declaration_order(self):
        account = Account(email="a@example.com", code="ab")
        assert account.code == "AB-X"

    def test_builtin_mutators(self):
        account = Account(email="  Alice@Example.COM ")
        assert account.email == "alice@example.com"

    def test_mutator_receives_previous_value(self):
        account = Account(email="a@example.com", peak=5)
        account.peak = 3
        assert account.peak == 5
        account.peak = 9
        assert account.peak == 9

    def test_assignment_runs_mutators(self):
        account = Account(email="a@example.com")
        account.email = " B@EXAMPLE.COM "
        assert account.email == "b@example.com"

    def test_hook_mutator(self):
        handle = Handle(id="h1", username="  Alice ")
        assert handle.username == "alice"


class TestValidators:
    """Test validators."""

    def test_message_failure(self):
        with pytest.raises(ValidationError) as exc_info:
            Account(email="not-an-email")

        assert exc_info.value.field == "email"
        assert exc_info.value.message == "must be an email address"
        assert exc_info.value.to_dict() == {"field": "email", "message": "must be an email address"}

    def test_false_failure_gets_generic_message(self):
        with pytest.raises(ValidationError) as exc_info:
            Account(email="a@example.com", age=-1)

        assert exc_info.value.field == "age"
        assert exc_info.value.message == "invalid value for age"

    def test_first_failure_stops(self):
        calls = []

        def first(value):
            calls.append("first")
            return "first failed"

        def second(value):
            calls.append("second")
            return True

        pipeline = AttributePipeline(FieldMetadata(name="value", storage_name="value", validators=[first, second]))

        with pytest.raises(ValidationError, match="first failed"):
            pipeline.prepare("x")
        assert calls == ["first"]

    def test_validators_see_mutated_value(self):
        # Lowercased before validation, so the check passes
        pipeline = AttributePipeline(FieldMetadata(
            name="value",
            storage_name="value",
            mutators=[str.lower],
            validators=[lambda v: v == v.lower()],
        ))
        assert pipeline.prepare("ABC") == "abc"

    def test_failed_assignment_keeps_previous_value(self):
        account = Account(email="a@example.com")

        with pytest.raises(ValidationError):
            account.email = "broken"
        assert account.email == "a@example.com"

    def test_required_field(self):
        with pytest.raises(ValidationError) as exc_info:
            Account()

        assert exc_info.value.field == "email"
        assert exc_info.value.message == "email is required"

    def test_type_errors_carry_field(self):
        with pytest.raises(ValidationError) as exc_info:
            Account(email="a@example.com", age="many")

        assert exc_info.value.field == "age"

    def test_hook_validator(self):
        with pytest.raises(ValidationError, match="cannot contain spaces"):
            Handle(id="h1", username="al ice")

    def test_validator_exceptions_become_validation_errors(self):
        def strict(value):
            raise ValueError("nope")

        pipeline = AttributePipeline(FieldMetadata(name="value", storage_name="value", validators=[strict]))

        with pytest.raises(ValidationError, match="nope"):
            pipeline.validate("x")


class TestSerialization:
    """Test to_store and from_store converters."""

    def test_to_store(self):
        account = Account(id="a1", email="a@example.com", tags=["red", "blue"], full_name="Alice")
        item = account.to_store()

        assert item["tags"] == "red,blue"
        assert item["name"] == "Alice"
        assert "full_name" not in item
        assert "nickname" not in item

    def test_from_store(self):
        account = Account._from_store({"id": "a1", "email": "A@EXAMPLE.COM", "tags": "red,blue", "name": "Alice"})

        assert account.tags == ["red", "blue"]
        assert account.full_name == "Alice"
        # Stored values are not mutated again
        assert account.email == "A@EXAMPLE.COM"
        assert account._is_persisted

    async def test_round_trip_through_store(self):
        await Account.create(id="a1", email="a@example.com", tags=["red", "blue"], full_name="Alice")

        loaded = await Account.get(id="a1")
        assert loaded.tags == ["red", "blue"]
        assert loaded.full_name == "Alice"
        assert loaded.email == "a@example.com"


class TestLazyValidators:
    """Test validators deferred to save time."""

    def test_construction_does_not_run_lazy_validators(self):
        handle = Handle(id="h1", username="admin")
        assert handle.username == "admin"

    async def test_save_runs_lazy_validators(self):
        with pytest.raises(ValidationError, match="reserved"):
            await Handle.create(id="h1", username="admin")

        assert await Handle.get(id="h1") is None

    async def test_save_passes_lazy_validators(self):
        handle = await Handle.create(id="h1", username="alice")
        assert handle._is_persisted


class TestTimestamps:
    """Test created_at and updated_at stamping."""

    async def test_insert_sets_both(self):
        record = await Stamped.create(id="s1")

        assert record.created_at is not None
        assert record.created_at == record.updated_at
        assert record.created_at.tzinfo is not None

    async def test_later_writes_only_touch_updated_at(self):
        record = await Stamped.create(id="s1")
        created_at = record.created_at

        await record.save()

        assert record.created_at == created_at
        assert record.updated_at >= created_at

    def test_construction_does_not_stamp(self):
        assert Stamped(id="s1").created_at is None
