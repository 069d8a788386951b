"""
Tests for the query facade across all backends.
"""

from typing import List, Type

import pytest

from dynamodm import Field, Model, QueryError
from dynamodm.testing import MultiBackendTestBase


class Customer(Model, table_name="query_customers"):
    """Customer keyed by partition key only."""
    id: str = Field(primary_key=True)
    name: str
    status: str = "active"
    age: int = 0


class Purchase(Model, table_name="query_purchases"):
    """Purchase keyed by customer and sequence number."""
    customer_id: str = Field(partition_key=True)
    number: int = Field(sort_key=True)
    status: str = "pending"
    total: float = 0.0


class TestWhereOverloads(MultiBackendTestBase):
    """Test every where() call shape."""

    def get_test_models(self) -> List[Type]:
        return [Customer, Purchase]

    async def _seed(self):
        await Customer.create(id="c1", name="Alice", age=30)
        await Customer.create(id="c2", name="Bob", age=25, status="inactive")
        await Customer.create(id="c3", name="Alfred", age=41)
        await Customer.create(id="c4", name="Carol", age=35)

        await Purchase.create(customer_id="c1", number=1, status="paid", total=20.0)
        await Purchase.create(customer_id="c1", number=2, status="shipped", total=150.0)
        await Purchase.create(customer_id="c1", number=3, status="paid", total=99.5)
        await Purchase.create(customer_id="c2", number=1, status="pending", total=300.0)

    async def test_field_value(self, orm):
        await self._seed()

        customers = await Customer.where("status", "active")
        assert [c.id for c in customers] == ["c1", "c3", "c4"]

    async def test_field_operator_value(self, orm):
        await self._seed()

        purchases = await Purchase.where("total", ">=", 100)
        assert sorted((p.customer_id, p.number) for p in purchases) == [("c1", 2), ("c2", 1)]

    async def test_filters(self, orm):
        await self._seed()

        purchases = await Purchase.where({"customer_id": "c1", "total": {">": 50, "<=": 150}})
        assert [p.number for p in purchases] == [2, 3]

    async def test_filters_and_options(self, orm):
        await self._seed()

        purchases = await Purchase.where({"customer_id": "c1"}, {"order": "DESC", "limit": 2})
        assert [p.number for p in purchases] == [3, 2]

    async def test_keyword_lookups_and_options(self, orm):
        await self._seed()

        purchases = await Purchase.where(customer_id="c1", total__gte=50, order="desc")
        assert [p.number for p in purchases] == [3, 2]

    async def test_list_value_is_membership(self, orm):
        await self._seed()

        purchases = await Purchase.where({"customer_id": "c1", "status": ["paid", "shipped"]})
        assert [p.number for p in purchases] == [1, 2, 3]

        customers = await Customer.where({"id": {"not-in": ["c1", "c2"]}})
        assert [c.id for c in customers] == ["c3", "c4"]

    async def test_not_equal_and_prefix(self, orm):
        await self._seed()

        customers = await Customer.where("name", "begins_with", "Al")
        assert [c.name for c in customers] == ["Alice", "Alfred"]

        customers = await Customer.where("status", "!=", "active")
        assert [c.id for c in customers] == ["c2"]

    async def test_unknown_operator(self, orm):
        with pytest.raises(QueryError):
            await Purchase.where("total", "approx", 1)

    async def test_unknown_option(self, orm):
        with pytest.raises(QueryError):
            await Purchase.where({"customer_id": "c1"}, {"sort": "DESC"})


class TestOrderingAndPagination(MultiBackendTestBase):
    """Test order, skip, limit, first and last."""

    def get_test_models(self) -> List[Type]:
        return [Customer, Purchase]

    async def _seed(self):
        for number in range(1, 6):
            await Purchase.create(customer_id="c1", number=number, total=float(number * 10))
        await Purchase.create(customer_id="c2", number=7, total=5.0)
        for index, name in enumerate(["Dan", "Eve", "Fay"]):
            await Customer.create(id=f"c{index + 1}", name=name, age=20 + index)

    async def test_desc_limit_one_uses_key_query(self, orm, monkeypatch):
        driver, backend_name = orm
        await self._seed()

        calls = []
        original_query = driver.backend.query
        original_scan = driver.backend.scan

        async def spy_query(table, *args, **kwargs):
            calls.append(("query", kwargs.get("descending")))
            return await original_query(table, *args, **kwargs)

        async def spy_scan(table, *args, **kwargs):
            calls.append(("scan", None))
            return await original_scan(table, *args, **kwargs)

        monkeypatch.setattr(driver.backend, "query", spy_query)
        monkeypatch.setattr(driver.backend, "scan", spy_scan)

        latest = await Purchase.where({"customer_id": "c1"}, {"order": "DESC", "limit": 1})

        assert [p.number for p in latest] == [5]
        assert calls == [("query", True)]

    async def test_first_and_last(self, orm):
        await self._seed()

        first = await Purchase.first({"customer_id": "c1"})
        last = await Purchase.last({"customer_id": "c1"})

        assert first.number == 1
        assert last.number == 5
        assert await Purchase.first({"customer_id": "nobody"}) is None

    async def test_last_respects_explicit_order(self, orm):
        await self._seed()

        last = await Purchase.last({"customer_id": "c1"}, {"order": "DESC"})
        assert last.number == 1

    async def test_skip_and_limit(self, orm):
        await self._seed()

        page = await Purchase.where({"customer_id": "c1"}, {"skip": 1, "limit": 2})
        assert [p.number for p in page] == [2, 3]

        page = await Purchase.where({"customer_id": "c1"}, skip=4, limit=10)
        assert [p.number for p in page] == [5]

    async def test_scan_orders_by_partition_key(self, orm):
        await self._seed()

        customers = await Customer.where({}, {"order": "DESC"})
        assert [c.id for c in customers] == ["c3", "c2", "c1"]

        customers = await Customer.where({}, {"skip": 1, "limit": 1})
        assert [c.id for c in customers] == ["c2"]

    async def test_order_by_other_field(self, orm):
        await self._seed()

        purchases = await Purchase.where({"customer_id": "c1"}, {"order_by": "total", "order": "DESC", "limit": 2})
        assert [p.number for p in purchases] == [5, 4]

    async def test_count_and_exists(self, orm):
        await self._seed()

        assert await Purchase.count({"customer_id": "c1"}) == 5
        assert await Purchase.count({"customer_id": "c1"}, {"limit": 2}) == 5
        assert await Purchase.exists({"customer_id": "c2"})
        assert not await Purchase.exists({"customer_id": "c9"})
        assert len(await Purchase.all()) == 6

    async def test_attribute_projection(self, orm):
        await self._seed()

        customers = await Customer.where({"id": "c1"}, {"attributes": ["name"]})

        assert len(customers) == 1
        assert customers[0].id == "c1"
        assert customers[0].name == "Dan"

    async def test_projection_of_unknown_field(self, orm):
        with pytest.raises(QueryError):
            await Customer.where({}, {"attributes": ["shoe_size"]})


class TestBulkWrites(MultiBackendTestBase):
    """Test class-level update and delete."""

    def get_test_models(self) -> List[Type]:
        return [Purchase]

    async def _seed(self):
        await Purchase.create(customer_id="c1", number=1, status="paid", total=10.0)
        await Purchase.create(customer_id="c1", number=2, status="paid", total=20.0)
        await Purchase.create(customer_id="c1", number=3, status="pending", total=30.0)

    async def test_update_matching(self, orm):
        await self._seed()

        updated = await Purchase.update({"status": "shipped"}, {"customer_id": "c1", "status": "paid"})

        assert updated == 2
        assert [p.number for p in await Purchase.where({"status": "shipped"})] == [1, 2]
        assert (await Purchase.get(customer_id="c1", number=3)).status == "pending"

    async def test_update_skips_absent_values(self, orm):
        await self._seed()

        updated = await Purchase.update({"status": None, "total": 5.0}, {"customer_id": "c1", "number": 1})

        assert updated == 1
        purchase = await Purchase.get(customer_id="c1", number=1)
        assert purchase.status == "paid"
        assert purchase.total == 5.0

    async def test_update_without_matches(self, orm):
        assert await Purchase.update({"status": "shipped"}, {"customer_id": "nobody"}) == 0

    async def test_delete_matching(self, orm):
        await self._seed()

        deleted = await Purchase.delete({"customer_id": "c1", "status": "paid"})

        assert deleted == 2
        assert [p.number for p in await Purchase.where({"customer_id": "c1"})] == [3]
