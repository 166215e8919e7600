from __future__ import annotations

import logging
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from cs2_tracker.models.db_models import ItemPrice, ItemUser, StorageBox
from cs2_tracker.schemas.inventory import NormalizedRecord, StagedImport, StagedItem
from cs2_tracker.services import inventory_import as import_svc
from cs2_tracker.services.staging import IMPORT_PREFIX
from snapshot_builders import (
    AK_REDLINE,
    AWP_ASIIMOV,
    CHARM_AVA,
    GLOCK_WATER,
    STICKER_CROWN,
    item,
    keychain_line,
    snapshot_json,
    sticker_line,
    storage_unit,
)


async def _records(db, user_id):
    result = await db.execute(select(ItemUser).where(ItemUser.user_id == user_id).order_by(ItemUser.id))
    return list(result.scalars().all())


def _keys(entries):
    return [e.selection_key for e in entries]


# ── preview ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_preview_splits_matched_and_unmatched(db, store, user, catalog):
    text = snapshot_json(
        item("1001", AK_REDLINE, float_value=0.25, pattern=661),
        item("1002", AWP_ASIIMOV, float_value=0.31),
        item("1003", "M4A4 | Howl (Field-Tested)"),
    )
    preview = await import_svc.prepare_import_preview(db, store, user.id, text, "")

    assert preview.errors == []
    assert preview.total_items == 3
    assert sorted(_keys(preview.items_to_add)) == ["add-1001", "add-1002"]
    assert preview.items_to_remove == []
    assert [u.market_hash_name for u in preview.unmatched_items] == ["M4A4 | Howl (Field-Tested)"]
    assert preview.session_key.startswith(IMPORT_PREFIX)


@pytest.mark.asyncio
async def test_trade_locked_snapshot_is_merged_and_deduplicated(db, store, user, catalog):
    tradeable = snapshot_json(item("1001", AK_REDLINE))
    trade_locked = snapshot_json(item("1001", AK_REDLINE), item("1002", AWP_ASIIMOV))

    preview = await import_svc.prepare_import_preview(db, store, user.id, tradeable, trade_locked)

    assert preview.total_items == 2
    assert sorted(_keys(preview.items_to_add)) == ["add-1001", "add-1002"]


@pytest.mark.asyncio
async def test_malformed_snapshot_blocks_both(db, store, user, catalog):
    preview = await import_svc.prepare_import_preview(
        db, store, user.id, snapshot_json(item("1001", AK_REDLINE)), '{"assets": ['
    )

    assert preview.has_errors
    assert "trade-locked" in preview.errors[0]
    assert preview.session_key is None
    assert preview.items_to_add == []
    assert len(store.session) == 0


@pytest.mark.asyncio
async def test_two_blank_inputs_are_rejected(db, store, user):
    preview = await import_svc.prepare_import_preview(db, store, user.id, "", None)
    assert preview.errors == [import_svc.NO_SNAPSHOT_ERROR]
    preview = await import_svc.prepare_import_preview(db, store, user.id, "   ", "\n")
    assert preview.errors == [import_svc.NO_SNAPSHOT_ERROR]
    assert len(store.session) == 0


@pytest.mark.asyncio
async def test_empty_but_valid_snapshots_propose_removing_everything(db, store, user, catalog):
    user_id = user.id
    db.add(ItemUser(user_id=user_id, item=catalog[AK_REDLINE], asset_id="A"))
    await db.commit()

    empty = '{"assets": [], "descriptions": [], "asset_properties": []}'
    preview = await import_svc.prepare_import_preview(db, store, user_id, empty, empty)

    assert preview.errors == []
    assert preview.total_items == 0
    assert _keys(preview.items_to_remove) == ["remove-A"]

    result = await import_svc.apply_import(db, store, user_id, preview.session_key, (), ["remove-A"])
    assert result.removed_count == 1
    assert await _records(db, user_id) == []


@pytest.mark.asyncio
async def test_preview_entries_carry_prices(db, store, user, catalog):
    when = datetime(2025, 6, 1)
    db.add_all([
        ItemPrice(item_id=catalog[AK_REDLINE].id, price_date=when, price=5.00, median_price=4.90),
        ItemPrice(item_id=catalog[STICKER_CROWN].id, price_date=when, price=10.00),
        ItemPrice(item_id=catalog[CHARM_AVA].id, price_date=when, price=2.50),
    ])
    await db.commit()

    text = snapshot_json(item(
        "1001",
        AK_REDLINE,
        lines=[sticker_line("Sticker: Crown (Foil)"), keychain_line("Charm: Lil' Ava")],
    ))
    preview = await import_svc.prepare_import_preview(db, store, user.id, text)

    [entry] = preview.items_to_add
    assert entry.price == pytest.approx(5.00)
    assert entry.median_price == pytest.approx(4.90)
    assert entry.sticker_value == pytest.approx(10.00)
    assert entry.keychain_value == pytest.approx(2.50)
    assert entry.total_price == pytest.approx(17.50)
    assert entry.tradeable_value == pytest.approx(7.50)


# ── diff properties ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reimporting_same_snapshot_is_a_noop(db, store, user, catalog):
    user_id = user.id
    text = snapshot_json(item("1001", AK_REDLINE, float_value=0.25), item("1002", AWP_ASIIMOV))

    first = await import_svc.prepare_import_preview(db, store, user_id, text)
    result = await import_svc.apply_import(db, store, user_id, first.session_key, _keys(first.items_to_add))
    assert result.added_count == 2
    assert result.is_success

    second = await import_svc.prepare_import_preview(db, store, user_id, text)
    assert second.items_to_add == []
    assert second.items_to_remove == []


@pytest.mark.asyncio
async def test_contained_records_never_enter_the_import_diff(db, store, user, catalog):
    user_id = user.id
    box = StorageBox(user_id=user_id, asset_id="900", name="Stash")
    db.add(box)
    await db.flush()
    db.add_all([
        ItemUser(user_id=user_id, item=catalog[AK_REDLINE], asset_id="A"),
        ItemUser(user_id=user_id, item=catalog[AWP_ASIIMOV], asset_id="B"),
        ItemUser(user_id=user_id, item=catalog[GLOCK_WATER], asset_id="C", storage_box_id=box.id),
    ])
    await db.commit()

    preview = await import_svc.prepare_import_preview(db, store, user_id, snapshot_json(item("A", AK_REDLINE)))

    assert preview.items_to_add == []
    assert [e.asset_id for e in preview.items_to_remove] == ["B"]

    result = await import_svc.apply_import(
        db, store, user_id, preview.session_key, [], ["remove-B", "remove-C"]
    )
    assert result.removed_count == 1
    assert result.error_count == 0
    assert "remove-C" in result.skipped_items
    assert sorted(r.asset_id for r in await _records(db, user_id)) == ["A", "C"]


@pytest.mark.asyncio
async def test_deletion_is_scoped_to_active_inventory(db, store, user, catalog):
    user_id = user.id
    box = StorageBox(user_id=user_id, asset_id="900", name="Stash")
    db.add(box)
    await db.flush()
    db.add(ItemUser(user_id=user_id, item=catalog[GLOCK_WATER], asset_id="C", storage_box_id=box.id))
    await db.commit()

    # a staged diff naming a contained record still cannot delete it
    token = store.store(user_id, StagedImport(user_id=user_id, items_to_remove=["C"]), IMPORT_PREFIX)
    result = await import_svc.apply_import(db, store, user_id, token, [], ["remove-C"])

    assert result.removed_count == 0
    assert [r.asset_id for r in await _records(db, user_id)] == ["C"]


@pytest.mark.asyncio
async def test_removal_only_hits_the_acting_user(db, store, user, other_user, catalog):
    user_id, other_id = user.id, other_user.id
    db.add(ItemUser(user_id=other_id, item=catalog[AK_REDLINE], asset_id="X"))
    await db.commit()

    token = store.store(user_id, StagedImport(user_id=user_id, items_to_remove=["X"]), IMPORT_PREFIX)
    result = await import_svc.apply_import(db, store, user_id, token, [], ["remove-X"])

    assert result.removed_count == 0
    assert [r.asset_id for r in await _records(db, other_id)] == ["X"]


# ── apply ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_apply_inserts_only_selected_rows(db, store, user, catalog):
    user_id = user.id
    text = snapshot_json(
        item("1001", AK_REDLINE, float_value=0.25, pattern=661, lines=[sticker_line("Sticker: Crown (Foil)")]),
        item("1002", AWP_ASIIMOV),
    )
    preview = await import_svc.prepare_import_preview(db, store, user_id, text)

    result = await import_svc.apply_import(db, store, user_id, preview.session_key, ["add-1001"])

    assert result.added_count == 1
    assert result.total_processed == 1
    [record] = await _records(db, user_id)
    assert record.asset_id == "1001"
    assert record.storage_box_id is None
    assert record.wear_category == "FT"
    assert record.pattern_index == 661
    assert record.stickers[0]["name"] == "Crown (Foil)"
    assert store.retrieve(user_id, preview.session_key, StagedImport) is None


@pytest.mark.asyncio
async def test_unknown_selection_keys_are_skipped_not_errors(db, store, user, catalog, caplog):
    user_id = user.id
    preview = await import_svc.prepare_import_preview(db, store, user_id, snapshot_json(item("1001", AK_REDLINE)))

    with caplog.at_level(logging.WARNING):
        result = await import_svc.apply_import(
            db, store, user_id, preview.session_key, ["add-1001", "add-424242"], ["remove-777"]
        )

    assert result.added_count == 1
    assert result.removed_count == 0
    assert result.error_count == 0
    assert set(result.skipped_items) == {"add-424242", "remove-777"}
    assert "not in staged diff" in caplog.text


@pytest.mark.asyncio
async def test_invalid_staged_records_are_skipped_individually(db, store, user, catalog):
    user_id = user.id
    staged = StagedImport(
        user_id=user_id,
        items_to_add=[
            StagedItem(item_id=catalog[AK_REDLINE].id, data=NormalizedRecord(
                asset_id="good", class_id="1", instance_id="0", float_value=0.1,
            )),
            StagedItem(item_id=catalog[AWP_ASIIMOV].id, data=NormalizedRecord(
                asset_id="bad-float", class_id="2", instance_id="0", float_value=1.5,
            )),
            StagedItem(item_id=987654, data=NormalizedRecord(
                asset_id="no-item", class_id="3", instance_id="0",
            )),
        ],
    )
    token = store.store(user_id, staged, IMPORT_PREFIX)

    result = await import_svc.apply_import(
        db, store, user_id, token, ["add-good", "add-bad-float", "add-no-item"]
    )

    assert result.added_count == 1
    assert result.error_count == 2
    assert result.total_processed == 3
    assert set(result.skipped_items) == {"add-bad-float", "add-no-item"}
    assert [r.asset_id for r in await _records(db, user_id)] == ["good"]


@pytest.mark.asyncio
async def test_already_tracked_asset_is_not_inserted_twice(db, store, user, other_user, catalog):
    user_id = user.id
    db.add(ItemUser(user_id=other_user.id, item=catalog[AK_REDLINE], asset_id="1001"))
    await db.commit()

    token = store.store(user_id, StagedImport(user_id=user_id, items_to_add=[
        StagedItem(item_id=catalog[AK_REDLINE].id, data=NormalizedRecord(asset_id="1001", class_id="1", instance_id="0")),
    ]), IMPORT_PREFIX)
    result = await import_svc.apply_import(db, store, user_id, token, ["add-1001"])

    assert result.added_count == 0
    assert result.error_count == 1
    assert "already tracked" in result.errors[0]


@pytest.mark.asyncio
async def test_hard_failure_rolls_back_every_change(db, store, user, catalog, session_factory, monkeypatch):
    user_id = user.id
    db.add(ItemUser(user_id=user_id, item=catalog[AWP_ASIIMOV], asset_id="B"))
    await db.commit()

    preview = await import_svc.prepare_import_preview(
        db, store, user_id, snapshot_json(item("1001", AK_REDLINE), item("1002", GLOCK_WATER))
    )
    assert _keys(preview.items_to_remove) == ["remove-B"]

    monkeypatch.setattr(
        db, "flush", AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("database is locked")))
    )
    result = await import_svc.apply_import(
        db, store, user_id, preview.session_key, _keys(preview.items_to_add), ["remove-B"]
    )

    assert result.added_count == 0
    assert result.removed_count == 0
    assert result.error_count == 1
    assert result.errors[0].startswith("Import failed")

    async with session_factory() as fresh:
        assert [r.asset_id for r in await _records(fresh, user_id)] == ["B"]
    # the staged diff survives so the user can retry
    assert store.retrieve(user_id, preview.session_key, StagedImport) is not None


@pytest.mark.asyncio
async def test_missing_staged_diff_is_a_single_error(db, store, user, catalog):
    result = await import_svc.apply_import(db, store, user.id, "inventory_import_deadbeef", ["add-1"])

    assert result.errors == [import_svc.SESSION_EXPIRED_ERROR]
    assert result.error_count == 1
    assert result.added_count == 0


@pytest.mark.asyncio
async def test_staged_diff_belongs_to_its_user(db, store, user, other_user, catalog):
    preview = await import_svc.prepare_import_preview(db, store, user.id, snapshot_json(item("1001", AK_REDLINE)))

    result = await import_svc.apply_import(db, store, other_user.id, preview.session_key, ["add-1001"])

    assert result.errors == [import_svc.SESSION_EXPIRED_ERROR]
    assert await _records(db, other_user.id) == []


@pytest.mark.asyncio
async def test_storage_boxes_are_synced_on_apply_only(db, store, user, catalog):
    user_id = user.id
    manual = StorageBox(user_id=user_id, asset_id=None, name="Lent out", reported_count=4)
    db.add(manual)
    await db.commit()

    text = snapshot_json(item("1001", AK_REDLINE), storage_unit("900", name_tag="Stash", count=12))
    preview = await import_svc.prepare_import_preview(db, store, user_id, text)
    assert preview.storage_box_count == 1
    steam_boxes = (await db.execute(select(StorageBox).where(StorageBox.asset_id.is_not(None)))).scalars().all()
    assert steam_boxes == []

    await import_svc.apply_import(db, store, user_id, preview.session_key)

    box = (await db.execute(select(StorageBox).where(StorageBox.asset_id == "900"))).scalar_one()
    assert box.name == "Stash"
    assert box.reported_count == 12
    await db.refresh(manual)
    assert manual.reported_count == 4
    assert manual.name == "Lent out"


@pytest.mark.asyncio
async def test_cancel_drops_the_staged_diff(db, store, user, catalog):
    user_id = user.id
    preview = await import_svc.prepare_import_preview(db, store, user_id, snapshot_json(item("1001", AK_REDLINE)))

    assert import_svc.cancel_import(store, user_id, preview.session_key) is True
    assert import_svc.cancel_import(store, user_id, preview.session_key) is False
    result = await import_svc.apply_import(db, store, user_id, preview.session_key, ["add-1001"])
    assert result.errors == [import_svc.SESSION_EXPIRED_ERROR]
