"""
Tests for entities whose sort key is their creation timestamp.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Type
from uuid import uuid4

import pytest

import dynamodm.models.base
from dynamodm import Field, Model, ValidationError, transaction
from dynamodm.testing import MultiBackendTestBase


class Order(Model, table_name="stamped_orders"):
    """Orders of a user, keyed by when they were placed."""
    user_id: str = Field(partition_key=True)
    created_at: datetime = Field(sort_key=True, created_at=True)
    reference: str = Field(unique=True, default=lambda: uuid4().hex)
    total: float = 0.0


@pytest.fixture
def clock(monkeypatch):
    """Deterministic clock that moves one second per reading."""
    readings = []

    def tick():
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=len(readings))
        readings.append(moment)
        return moment

    monkeypatch.setattr(dynamodm.models.base, "utcnow", tick)
    return readings


class TestTimestampSortKey(MultiBackendTestBase):
    """Test create, query, unique checks and upsert on a timestamp key."""

    def get_test_models(self) -> List[Type]:
        return [Order]

    async def _seed(self):
        for total in (10.0, 20.0, 30.0):
            await Order.create(user_id="u1", total=total)
        await Order.create(user_id="u2", total=99.0)

    async def test_create_stamps_key(self, orm, clock):
        order = await Order.create(user_id="u1", total=5.0)

        assert order.created_at == clock[-1]
        loaded = await Order.get(user_id="u1", created_at=order.created_at)
        assert loaded.total == 5.0
        assert loaded.reference == order.reference

    async def test_latest_by_descending_limit(self, orm, clock):
        await self._seed()

        latest = await Order.where({"user_id": "u1"}, {"order": "DESC", "limit": 1})

        assert [o.total for o in latest] == [30.0]
        assert (await Order.last({"user_id": "u1"})).total == 30.0
        assert (await Order.first({"user_id": "u1"})).total == 10.0

    async def test_range_on_timestamp(self, orm, clock):
        await self._seed()
        middle = (await Order.where({"user_id": "u1"}))[1].created_at

        later = await Order.where({"user_id": "u1", "created_at": {">=": middle}})
        assert [o.total for o in later] == [20.0, 30.0]

    async def test_unique_field(self, orm, clock):
        await Order.create(user_id="u1", reference="r-1")

        with pytest.raises(ValidationError) as exc_info:
            await Order.create(user_id="u2", reference="r-1")

        assert exc_info.value.field == "reference"
        assert await Order.count() == 1

    async def test_update_keeps_own_unique_value(self, orm, clock):
        order = await Order.create(user_id="u1", reference="r-1")

        await order.update(total=12.5)

        loaded = await Order.get(user_id="u1", created_at=order.created_at)
        assert loaded.total == 12.5
        assert loaded.reference == "r-1"

    async def test_upsert(self, orm, clock):
        created = await Order.upsert(user_id="u1", reference="r-1", total=1.0)

        replaced = await Order.upsert(
            user_id="u1", created_at=created.created_at, reference="r-1", total=2.0
        )

        assert replaced.created_at == created.created_at
        assert await Order.count() == 1
        assert (await Order.get(user_id="u1", created_at=created.created_at)).total == 2.0

    async def test_get_requires_every_key_part(self, orm, clock):
        await self._seed()

        with pytest.raises(ValidationError) as exc_info:
            await Order.get(user_id="u1")
        assert exc_info.value.field == "created_at"

    async def test_exists_ignores_skip(self, orm, clock):
        await self._seed()

        assert await Order.exists({"user_id": "u2"}, skip=5)
        assert await Order.count({"user_id": "u2"}, skip=5) == 1

    async def test_transaction_stamps_before_write(self, orm, clock):
        driver, _ = orm

        async with transaction(driver.backend) as tx:
            tx.add_save(Order(user_id="u1", total=1.0))
            tx.add_save(Order(user_id="u1", total=2.0))

        assert [o.total for o in await Order.where({"user_id": "u1"})] == [1.0, 2.0]
