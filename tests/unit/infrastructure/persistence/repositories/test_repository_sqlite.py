"""Behaviour of SqlRepository against an in-memory SQLite store.

Covers soft-delete visibility, audit stamping, permanent delete,
pagination through list(), batch all-or-nothing, tracking and eager loading.
"""

import pytest
from pydantic import ValidationError
from sqlalchemy import event, inspect, select
from sqlalchemy.orm import selectinload

from repokit.domain.exceptions import EntityValidationError, StorageError
from repokit.domain.models.entity import as_utc
from repokit.domain.models.enums import EntityOperation
from repokit.domain.services.lifecycle import LifecyclePipeline
from tests.entities import (
    Gadget,
    Part,
    SqlGadgetRepository,
    SqlPartRepository,
    SqlWidgetRepository,
    Widget,
)


@pytest.fixture
def widgets(session, clock):
    return SqlWidgetRepository(session, LifecyclePipeline(clock=clock))


@pytest.fixture
def gadgets(session):
    return SqlGadgetRepository(session)


async def _seed(repo, n):
    return await repo.apply_operation_range(
        EntityOperation.CREATE, [Widget(name=f"w{i:02d}") for i in range(1, n + 1)], True
    )


# --- create / get ---

async def test_create_persists_and_stamps_created_at(widgets, clock):
    widget = await widgets.create(Widget(name="w"))
    assert widget.id is not None
    assert widget.created_at == clock.now
    assert (await widgets.get_by_id(widget.id)) is widget


async def test_get_returns_none_when_not_found(widgets):
    assert await widgets.get(Widget.name == "missing") is None


async def test_get_by_id_returns_none_when_not_found(widgets):
    assert await widgets.get_by_id(404) is None


async def test_entity_specific_query(widgets):
    await widgets.create(Widget(name="special"))
    assert (await widgets.get_by_name("special")).name == "special"


# --- update ---

async def test_update_stamps_updated_at_after_created_at(widgets):
    widget = await widgets.create(Widget(name="w"))
    widget.name = "renamed"
    await widgets.update(widget)
    assert as_utc(widget.updated_at) >= as_utc(widget.created_at)


async def test_update_is_visible_from_another_session(widgets, session_factory):
    widget = await widgets.create(Widget(name="w"))
    widget.name = "renamed"
    await widgets.update(widget)

    async with session_factory() as other:
        stored = await SqlWidgetRepository(other).get_by_id(widget.id)
        assert stored.name == "renamed"
        assert stored.updated_at is not None


async def test_update_of_detached_entity(session_factory):
    async with session_factory() as first:
        created = await SqlWidgetRepository(first).create(Widget(name="w"))

    async with session_factory() as second:
        repo = SqlWidgetRepository(second)
        widget = await repo.get_by_id(created.id, tracked=False)
        assert inspect(widget).detached
        widget.name = "renamed"
        await repo.update(widget)

    async with session_factory() as third:
        assert (await SqlWidgetRepository(third).get_by_id(created.id)).name == "renamed"


async def test_update_of_unknown_id_does_not_insert(widgets, session_factory):
    with pytest.raises(StorageError, match="no stored Widget"):
        await widgets.update(Widget(id=999, name="ghost"))

    async with session_factory() as other:
        assert await SqlWidgetRepository(other).get_by_id(999, include_deleted=True) is None


async def test_update_without_id_does_not_insert(widgets):
    with pytest.raises(StorageError):
        await widgets.update(Widget(name="ghost"))
    assert await widgets.any(include_deleted=True) is False


async def test_update_after_permanent_delete_does_not_restore_record(widgets):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget, permanent=True)
    with pytest.raises(StorageError):
        await widgets.update(Widget(id=widget.id, name="back"))
    assert await widgets.any(include_deleted=True) is False


async def test_rejected_update_is_not_committed_by_a_later_call(gadgets, session_factory):
    gadget = await gadgets.create(Gadget(sku="A"))
    gadget.sku = ""
    with pytest.raises(EntityValidationError):
        await gadgets.update(gadget)
    await gadgets.create(Gadget(sku="B"))

    assert gadget.sku == "A"
    async with session_factory() as other:
        assert (await SqlGadgetRepository(other).get_by_id(gadget.id)).sku == "A"


async def test_rejected_batch_update_reverts_every_entity(gadgets, session_factory):
    first, second = await gadgets.apply_operation_range(
        EntityOperation.CREATE, [Gadget(sku="A"), Gadget(sku="B")], True
    )
    first.sku = "A2"
    second.sku = ""
    with pytest.raises(EntityValidationError):
        await gadgets.apply_operation_range(EntityOperation.UPDATE, [first, second], True)
    await gadgets.create(Gadget(sku="C"))

    async with session_factory() as other:
        stored = await SqlGadgetRepository(other).list(order_by=[Gadget.sku])
    assert [g.sku for g in stored.items] == ["A", "B", "C"]


# --- soft delete ---

async def test_soft_delete_marks_record(widgets, clock):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget)
    assert widget.is_deleted is True
    assert widget.deleted_at == clock.now


async def test_soft_delete_of_unknown_id_does_not_insert(widgets):
    with pytest.raises(StorageError):
        await widgets.delete(Widget(id=777, name="never"))
    assert await widgets.any(include_deleted=True) is False


async def test_soft_deleted_record_is_hidden_by_default(widgets):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget)

    assert await widgets.get_by_id(widget.id) is None
    assert await widgets.any(Widget.id == widget.id) is False
    assert (await widgets.list()).total_count == 0


async def test_soft_deleted_record_retrievable_with_include_deleted(widgets):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget)

    assert await widgets.get_by_id(widget.id, include_deleted=True) is widget
    assert await widgets.any(Widget.id == widget.id, include_deleted=True) is True
    assert (await widgets.list(include_deleted=True)).total_count == 1


# --- permanent delete ---

async def test_permanent_delete_removes_record_without_marking(widgets):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget, permanent=True)

    assert widget.is_deleted is False
    assert widget.deleted_at is None
    assert await widgets.any(include_deleted=True) is False


async def test_permanent_delete_runs_validation(gadgets):
    gadget = await gadgets.create(Gadget(sku="G-1", locked=True))
    with pytest.raises(EntityValidationError, match="locked"):
        await gadgets.delete(gadget, permanent=True)
    assert await gadgets.any(Gadget.sku == "G-1") is True


async def test_permanent_delete_of_entity_without_soft_delete(session):
    widget = await SqlWidgetRepository(session).create(Widget(name="w"))
    parts = SqlPartRepository(session)
    part = await parts.create(Part(widget_id=widget.id, label="bolt"))
    await parts.delete(part, permanent=True)
    assert await parts.any() is False


async def test_soft_delete_of_entity_without_soft_delete_keeps_record(session):
    widget = await SqlWidgetRepository(session).create(Widget(name="w"))
    parts = SqlPartRepository(session)
    part = await parts.create(Part(widget_id=widget.id, label="bolt"))
    await parts.delete(part)
    assert await parts.any() is True


# --- list / pagination ---

async def test_list_last_page(widgets):
    await _seed(widgets, 25)
    page = await widgets.list(order_by=[Widget.name], page_index=2, page_size=10)
    assert [w.name for w in page.items] == [f"w{i}" for i in range(21, 26)]
    assert page.total_pages == 3
    assert page.has_next is False
    assert page.has_previous is True


async def test_list_page_size_zero_returns_everything(widgets):
    await _seed(widgets, 25)
    page = await widgets.list()
    assert len(page.items) == 25
    assert page.page_index == 0
    assert page.total_pages == 1


async def test_list_filters_with_predicate(widgets):
    await _seed(widgets, 12)
    page = await widgets.list(Widget.name.like("w1%"), order_by=[Widget.name])
    assert [w.name for w in page.items] == ["w10", "w11", "w12"]


async def test_list_negative_page_size_is_rejected(widgets):
    with pytest.raises(ValidationError):
        await widgets.list(page_size=-1)


async def test_list_from_applies_soft_delete_filter(widgets):
    seeded = await _seed(widgets, 3)
    await widgets.delete(seeded[0])
    page = await widgets.list_from(select(Widget).where(Widget.name != "w03"))
    assert [w.name for w in page.items] == ["w02"]


async def test_list_from_with_include_deleted(widgets):
    seeded = await _seed(widgets, 3)
    await widgets.delete(seeded[0])
    page = await widgets.list_from(
        select(Widget).where(Widget.name != "w03"), order_by=[Widget.name], include_deleted=True
    )
    assert [w.name for w in page.items] == ["w01", "w02"]


# --- any ---

async def test_any_does_not_materialize_rows(widgets):
    await _seed(widgets, 3)
    widgets.session.expunge_all()
    loaded = []

    def on_load(target, context):
        loaded.append(target)

    event.listen(Widget, "load", on_load)
    try:
        assert await widgets.any(Widget.name == "w02") is True
        assert await widgets.any(Widget.name == "nope") is False
    finally:
        event.remove(Widget, "load", on_load)
    assert loaded == []


# --- batches ---

async def test_range_with_one_invalid_entity_persists_none(gadgets):
    batch = [Gadget(sku="A"), Gadget(sku=""), Gadget(sku="C")]
    with pytest.raises(EntityValidationError):
        await gadgets.apply_operation_range(EntityOperation.CREATE, batch, True)
    assert await gadgets.any() is False


async def test_range_create_persists_all(gadgets):
    created = await gadgets.apply_operation_range(
        EntityOperation.CREATE, [Gadget(sku="A"), Gadget(sku="B")], True
    )
    assert all(g.id is not None for g in created)
    assert (await gadgets.list()).total_count == 2


async def test_range_soft_delete(widgets):
    seeded = await _seed(widgets, 4)
    await widgets.apply_operation_range(EntityOperation.DELETE, seeded[:2], True)
    assert (await widgets.list()).total_count == 2
    assert (await widgets.list(include_deleted=True)).total_count == 4


async def test_range_permanent_delete(widgets):
    seeded = await _seed(widgets, 4)
    await widgets.apply_operation_range(
        EntityOperation.DELETE, seeded[:3], True, permanent_delete=True
    )
    assert (await widgets.list(include_deleted=True)).total_count == 1


# --- validation hooks against stored records ---

async def test_hook_rejects_duplicate_using_existing_records(gadgets):
    await gadgets.create(Gadget(sku="DUP"))
    with pytest.raises(EntityValidationError, match="already exists"):
        await gadgets.create(Gadget(sku="DUP"))
    assert (await gadgets.list()).total_count == 1


async def test_storage_error_when_validation_skipped_and_constraint_fails(gadgets):
    await gadgets.create(Gadget(sku="DUP"))
    with pytest.raises(StorageError):
        await gadgets.create(Gadget(sku="DUP"), also_validate=False)
    assert (await gadgets.list()).total_count == 1


async def test_existing_records_view_counts_and_finds(gadgets):
    await gadgets.create(Gadget(sku="A"))
    view = gadgets.records_view()
    assert await view.count() == 1
    assert (await view.first(Gadget.sku == "A")).sku == "A"
    assert await view.first(Gadget.sku == "Z") is None


async def test_existing_records_view_hides_soft_deleted(widgets):
    widget = await widgets.create(Widget(name="w"))
    await widgets.delete(widget)
    view = widgets.records_view()
    assert await view.any() is False
    assert await view.count(include_deleted=True) == 1


# --- tracking and eager loading ---

async def test_untracked_get_returns_detached_entity(session_factory):
    async with session_factory() as first:
        created = await SqlWidgetRepository(first).create(Widget(name="w"))

    async with session_factory() as second:
        widget = await SqlWidgetRepository(second).get_by_id(created.id, tracked=False)
        assert widget not in second


async def test_tracked_get_keeps_entity_in_session(session_factory):
    async with session_factory() as first:
        created = await SqlWidgetRepository(first).create(Widget(name="w"))

    async with session_factory() as second:
        widget = await SqlWidgetRepository(second).get_by_id(created.id)
        assert widget in second


async def test_untracked_read_leaves_already_tracked_entity_tracked(widgets):
    widget = await widgets.create(Widget(name="w"))
    assert await widgets.get_by_id(widget.id, tracked=False) is widget
    assert widget in widgets.session


async def test_untracked_list_detaches_items(session_factory):
    async with session_factory() as first:
        await _seed(SqlWidgetRepository(first), 3)

    async with session_factory() as second:
        page = await SqlWidgetRepository(second).list(tracked=False)
        assert all(w not in second for w in page.items)


async def test_include_eager_loads_relationships(session_factory):
    async with session_factory() as first:
        widget = await SqlWidgetRepository(first).create(Widget(name="w"))
        await SqlPartRepository(first).apply_operation_range(
            EntityOperation.CREATE,
            [Part(widget_id=widget.id, label="a"), Part(widget_id=widget.id, label="b")],
            True,
        )

    async with session_factory() as second:
        loaded = await SqlWidgetRepository(second).get(
            Widget.name == "w", include=[selectinload(Widget.parts)], tracked=False
        )
    assert sorted(p.label for p in loaded.parts) == ["a", "b"]
