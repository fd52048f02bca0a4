from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from src.todo_api.errors import InvalidStateError, NotFoundError, ValidationError
from src.todo_api.models import TaskState
from src.todo_api.schemas import ReorderItem, TaskPatch
from src.todo_api.service import TaskService


def ids(tasks) -> list:
    return [t["id"] for t in tasks]


class TestCreate:
    @pytest.mark.asyncio
    async def test_sequential_creates_get_creation_index_as_order(self, service: TaskService) -> None:
        created = [await service.create(f"Task {i}") for i in range(5)]
        assert [t["order"] for t in created] == [0, 1, 2, 3, 4]

        active = await service.list_active()
        assert ids(active) == ids(created)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title", ["", "   ", "\t\n"])
    async def test_blank_title_is_rejected(self, service: TaskService, title: str) -> None:
        with pytest.raises(ValidationError):
            await service.create(title)
        assert await service.list_active() == []

    @pytest.mark.asyncio
    async def test_create_defaults(self, service: TaskService) -> None:
        task = await service.create("  Buy milk  ")
        assert task["title"] == "Buy milk"
        assert task["completed"] is False
        assert task["state"] == TaskState.active
        assert task["category"] == "Uncategorized"
        assert task["deleted_at"] is None
        assert task["due_date"] is None
        assert task["created_at"] == task["updated_at"]

    @pytest.mark.asyncio
    async def test_create_with_category_and_due_date(self, service: TaskService) -> None:
        due = datetime(2099, 12, 25)
        task = await service.create("Pay bills", category="Work", due_date=due)
        fetched = await service.get(task["id"])
        assert fetched["category"] == "Work"
        assert fetched["due_date"] == due

    @pytest.mark.asyncio
    async def test_blank_category_falls_back_to_default(self, service: TaskService) -> None:
        task = await service.create("Walk", category="   ")
        assert task["category"] == "Uncategorized"

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_orders(self, service: TaskService) -> None:
        created = await asyncio.gather(*(service.create(f"Task {i}") for i in range(10)))
        assert sorted(t["order"] for t in created) == list(range(10))

    @pytest.mark.asyncio
    async def test_create_after_trash_appends_at_active_count(self, service: TaskService) -> None:
        a = await service.create("A")
        b = await service.create("B")
        c = await service.create("C")
        await service.soft_delete(b["id"])

        # No renumbering: C keeps order 2 and the new task also gets 2
        d = await service.create("D")
        assert (await service.get(c["id"]))["order"] == 2
        assert d["order"] == 2
        assert set(ids(await service.list_active())) == {a["id"], c["id"], d["id"]}


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update_leaves_other_fields(self, service: TaskService) -> None:
        task = await service.create("Partial", category="Work", due_date=datetime(2099, 1, 1))
        updated = await service.update(task["id"], TaskPatch(title="Partial Updated", completed=True))

        assert updated["title"] == "Partial Updated"
        assert updated["completed"] is True
        assert updated["category"] == "Work"
        assert updated["due_date"] == datetime(2099, 1, 1)
        assert updated["order"] == task["order"]
        assert updated["created_at"] == task["created_at"]
        assert updated["updated_at"] >= task["updated_at"]

    @pytest.mark.asyncio
    async def test_explicit_null_clears_due_date_and_resets_category(self, service: TaskService) -> None:
        task = await service.create("Dated", category="Shopping", due_date=datetime(2099, 1, 1))
        updated = await service.update(task["id"], {"due_date": None, "category": None})
        assert updated["due_date"] is None
        assert updated["category"] == "Uncategorized"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("patch", [{"title": None}, {"title": "  "}, {"completed": None}, {"order": None}, {"order": -1}])
    async def test_invalid_values_are_rejected(self, service: TaskService, patch: dict) -> None:
        task = await service.create("Keep me")
        with pytest.raises(ValidationError):
            await service.update(task["id"], patch)
        assert (await service.get(task["id"]))["title"] == "Keep me"

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(self, service: TaskService) -> None:
        task = await service.create("Strict")
        with pytest.raises(ValidationError):
            await service.update(task["id"], {"state": "trashed"})

    @pytest.mark.asyncio
    async def test_missing_task(self, service: TaskService) -> None:
        with pytest.raises(NotFoundError):
            await service.update("does-not-exist", TaskPatch(title="Nope"))

    @pytest.mark.asyncio
    async def test_trashed_task_can_be_updated(self, service: TaskService) -> None:
        task = await service.create("In trash")
        await service.soft_delete(task["id"])
        updated = await service.update(task["id"], TaskPatch(completed=True))
        assert updated["completed"] is True
        assert updated["state"] == TaskState.trashed
        assert updated["deleted_at"] is not None

    @pytest.mark.asyncio
    async def test_empty_patch_returns_task_unchanged(self, service: TaskService) -> None:
        task = await service.create("Same")
        assert await service.update(task["id"], TaskPatch()) == task


class TestTrashLifecycle:
    @pytest.mark.asyncio
    async def test_soft_delete_moves_task_to_trash(self, service: TaskService) -> None:
        keep = await service.create("Keep")
        gone = await service.create("Gone")

        trashed = await service.soft_delete(gone["id"])
        assert trashed["state"] == TaskState.trashed
        assert trashed["deleted_at"] is not None
        assert trashed["order"] == gone["order"]

        assert ids(await service.list_active()) == [keep["id"]]
        assert ids(await service.list_trashed()) == [gone["id"]]

    @pytest.mark.asyncio
    async def test_soft_delete_then_restore_round_trips(self, service: TaskService) -> None:
        await service.create("First")
        task = await service.create("Second", category="Private", due_date=datetime(2099, 3, 1))
        before = await service.get(task["id"])

        await service.soft_delete(task["id"])
        restored = await service.restore(task["id"])

        assert restored["state"] == TaskState.active
        assert restored["deleted_at"] is None
        assert restored == before

    @pytest.mark.asyncio
    async def test_restore_keeps_stale_order(self, service: TaskService) -> None:
        a = await service.create("A")
        await service.soft_delete(a["id"])
        b = await service.create("B")  # active count is 0 again
        restored = await service.restore(a["id"])

        assert restored["order"] == b["order"] == 0
        assert set(ids(await service.list_active())) == {a["id"], b["id"]}

    @pytest.mark.asyncio
    async def test_trash_is_sorted_by_deletion_time_descending(self, service: TaskService) -> None:
        tasks = [await service.create(f"T{i}") for i in range(3)]
        for t in tasks:
            await service.soft_delete(t["id"])
        trashed = await service.list_trashed()
        assert ids(trashed) == ids(reversed(tasks))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["soft_delete", "restore", "permanent_delete", "get"])
    async def test_missing_task_raises_not_found(self, service: TaskService, operation: str) -> None:
        with pytest.raises(NotFoundError):
            await getattr(service, operation)("missing-id")

    @pytest.mark.asyncio
    async def test_permanent_delete_removes_trashed_task(self, service: TaskService) -> None:
        task = await service.create("Temporary")
        await service.soft_delete(task["id"])

        removed = await service.permanent_delete(task["id"])
        assert removed["id"] == task["id"]

        with pytest.raises(NotFoundError):
            await service.get(task["id"])
        with pytest.raises(NotFoundError):
            await service.update(task["id"], TaskPatch(title="Back?"))
        with pytest.raises(NotFoundError):
            await service.permanent_delete(task["id"])
        assert await service.list_trashed() == []

    @pytest.mark.asyncio
    async def test_permanent_delete_requires_trash(self, service: TaskService) -> None:
        task = await service.create("Still active")
        with pytest.raises(InvalidStateError):
            await service.permanent_delete(task["id"])
        assert (await service.get(task["id"]))["state"] == TaskState.active

    def test_invalid_state_is_a_validation_error(self) -> None:
        assert issubclass(InvalidStateError, ValidationError)


class TestPurgeCompleted:
    @pytest.mark.asyncio
    async def test_only_completed_active_tasks_are_trashed(self, service: TaskService) -> None:
        x = await service.create("X")
        y = await service.create("Y")
        z = await service.create("Z")
        w = await service.create("W")
        await service.update(x["id"], TaskPatch(completed=True))
        await service.update(y["id"], TaskPatch(completed=True))

        assert await service.purge_completed() == 2

        assert set(ids(await service.list_active())) == {z["id"], w["id"]}
        trashed = await service.list_trashed()
        assert set(ids(trashed)) == {x["id"], y["id"]}
        assert all(t["deleted_at"] is not None for t in trashed)

    @pytest.mark.asyncio
    async def test_already_trashed_completed_task_is_not_counted(self, service: TaskService) -> None:
        t = await service.create("Done earlier")
        await service.update(t["id"], TaskPatch(completed=True))
        await service.soft_delete(t["id"])
        first = (await service.get(t["id"]))["deleted_at"]

        assert await service.purge_completed() == 0
        assert (await service.get(t["id"]))["deleted_at"] == first

    @pytest.mark.asyncio
    async def test_nothing_to_purge(self, service: TaskService) -> None:
        await service.create("Open")
        assert await service.purge_completed() == 0


class TestReorder:
    @pytest.mark.asyncio
    async def test_reorder_changes_active_listing(self, service: TaskService) -> None:
        a = await service.create("A")
        b = await service.create("B")
        c = await service.create("C")

        count = await service.reorder([(a["id"], 2), (b["id"], 0), (c["id"], 1)])

        assert count == 3
        assert ids(await service.list_active()) == [b["id"], c["id"], a["id"]]

    @pytest.mark.asyncio
    async def test_reorder_accepts_items_and_mappings(self, service: TaskService) -> None:
        a = await service.create("A")
        b = await service.create("B")
        await service.reorder([ReorderItem(id=a["id"], order=1), {"_id": b["id"], "order": 0}])
        assert ids(await service.list_active()) == [b["id"], a["id"]]

    @pytest.mark.asyncio
    async def test_unknown_ids_are_skipped(self, service: TaskService) -> None:
        a = await service.create("A")
        count = await service.reorder([("ghost", 0), (a["id"], 5)])
        assert count == 1
        assert (await service.get(a["id"]))["order"] == 5

    @pytest.mark.asyncio
    async def test_empty_batch_is_a_no_op(self, service: TaskService) -> None:
        assert await service.reorder([]) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            "not a list",
            {"id": "x", "order": 0},
            [("a", -1)],
            [("a", "first")],
            [("a", True)],
            [{"order": 0}],
            [("", 0)],
            [("dup", 0), ("dup", 1)],
            [("a", 0, "extra")],
        ],
    )
    async def test_malformed_payload_is_rejected(self, service: TaskService, payload) -> None:
        with pytest.raises(ValidationError):
            await service.reorder(payload)

    @pytest.mark.asyncio
    async def test_rejected_batch_changes_nothing(self, service: TaskService) -> None:
        a = await service.create("A")
        b = await service.create("B")
        with pytest.raises(ValidationError):
            await service.reorder([(a["id"], 1), (b["id"], -3)])
        assert ids(await service.list_active()) == [a["id"], b["id"]]

    @pytest.mark.asyncio
    async def test_duplicate_orders_are_stored_as_given(self, service: TaskService) -> None:
        a = await service.create("A")
        b = await service.create("B")
        await service.reorder([(a["id"], 0), (b["id"], 0)])
        assert {t["order"] for t in await service.list_active()} == {0}


class TestListing:
    @pytest.mark.asyncio
    async def test_listings_never_mix_states(self, service: TaskService) -> None:
        tasks = [await service.create(f"T{i}") for i in range(6)]
        for t in tasks[::2]:
            await service.soft_delete(t["id"])

        assert all(t["state"] == TaskState.active for t in await service.list_active())
        assert all(t["state"] == TaskState.trashed for t in await service.list_trashed())
        assert len(await service.list_active()) == 3
        assert len(await service.list_trashed()) == 3

    @pytest.mark.asyncio
    async def test_active_filters(self, service: TaskService) -> None:
        milk = await service.create("Buy milk", category="Shopping")
        report = await service.create("Write report", category="Work")
        bread = await service.create("Buy bread", category="Shopping")
        await service.update(bread["id"], TaskPatch(completed=True))

        assert ids(await service.list_active(category="Shopping")) == [milk["id"], bread["id"]]
        assert ids(await service.list_active(completed=True)) == [bread["id"]]
        assert ids(await service.list_active(search="BUY")) == [milk["id"], bread["id"]]
        assert ids(await service.list_active(search="report", category="Work")) == [report["id"]]
        assert len(await service.list_active(search="   ")) == 3

    def test_categories_include_default(self, store) -> None:
        svc = TaskService(store, default_category="Inbox")
        categories = svc.categories()
        assert categories[0] == "Inbox"
        assert "Work" in categories
