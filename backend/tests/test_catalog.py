import uuid

import pytest

from backend.app.catalog import GENERIC_SUPPLIER_CODE, IdentifierResolver, ItemCandidate, is_well_formed_id
from backend.app.config import settings


def test_well_formed_ids():
    assert is_well_formed_id(str(uuid.uuid4()))
    assert is_well_formed_id(uuid.uuid4())
    assert not is_well_formed_id("item-1")
    assert not is_well_formed_id(None)


def test_candidate_drops_placeholder_strings():
    c = ItemCandidate(item_id="undefined", supplier_code=" null ", barcode="  ")
    assert c.item_id is None and c.supplier_code is None and c.barcode is None


def test_resolution_order_prefers_id_then_code_then_barcode(store):
    by_code = store.add("items", supplier_code="SC-1", barcode="111")
    by_barcode = store.add("items", supplier_code="SC-2", barcode="222")
    resolver = IdentifierResolver(store)

    assert resolver.resolve(ItemCandidate(item_id=by_barcode["id"], supplier_code="SC-1")) == by_barcode["id"]
    assert resolver.resolve(ItemCandidate(supplier_code="SC-1", barcode="222")) == by_code["id"]
    assert resolver.resolve(ItemCandidate(barcode="222")) == by_barcode["id"]
    assert resolver.created_ids == []


def test_missing_id_falls_through_to_supplier_code(store):
    row = store.add("items", supplier_code="SC-1")
    resolver = IdentifierResolver(store)
    assert resolver.resolve(ItemCandidate(item_id=str(uuid.uuid4()), supplier_code="SC-1")) == row["id"]
    assert resolver.resolve(ItemCandidate(item_id="not-a-uuid", supplier_code="SC-1")) == row["id"]


def test_same_supplier_code_twice_creates_one_item(store):
    resolver = IdentifierResolver(store, supplier_id="sup-1")
    first = resolver.resolve(ItemCandidate(supplier_code="NEW-1", description="Widget"))
    second = resolver.resolve(ItemCandidate(supplier_code="NEW-1", description="Widget"))
    assert first == second
    items = store.rows("items")
    assert len(items) == 1
    assert items[0]["supplier_code"] == "NEW-1"
    assert items[0]["supplier_id"] == "sup-1"
    assert items[0]["description"] == "Widget"


def test_auto_created_item_gets_generated_code(store):
    resolver = IdentifierResolver(store)
    item_id = resolver.resolve(ItemCandidate(description="Loose part"))
    row = store.get("items", item_id)
    assert row["supplier_code"].startswith("AUTO-") and len(row["supplier_code"]) == 13
    assert resolver.created_ids == [item_id]


def test_unique_race_re_reads_the_winner(store):
    winner = {}

    def _concurrent_writer(s, row):
        if not winner:
            winner.update(s.add("items", supplier_code=row["supplier_code"], barcode="999"))

    store.before_insert["items"] = _concurrent_writer
    resolver = IdentifierResolver(store)
    item_id = resolver.resolve(ItemCandidate(supplier_code="RACE-1"))
    assert item_id == winner["id"]
    assert len(store.rows("items")) == 1


def test_strict_mode_leaves_unknown_items_unresolved(store, monkeypatch):
    monkeypatch.setattr(settings, "catalog_auto_create", False)
    resolver = IdentifierResolver(store)
    assert resolver.resolve(ItemCandidate(supplier_code="NOPE")) is None
    assert resolver.create_minimal_item(ItemCandidate(description="x"), 1) is None
    assert resolver.generic_item_id() is None
    assert store.rows("items") == []


def test_minimal_item_uses_fresh_codes(store):
    resolver = IdentifierResolver(store, auto_create=True)
    item_id = resolver.create_minimal_item(ItemCandidate(description="Bolt"), 3)
    row = store.get("items", item_id)
    assert row["barcode"].startswith("AUTO-") and row["barcode"].endswith("-3")
    assert row["category"] == "Auto-generated"
    assert row["unit_of_measure"] == "EA"


def test_generic_item_is_created_once_and_reused(store):
    resolver = IdentifierResolver(store)
    first = resolver.generic_item_id()
    assert resolver.generic_item_id() == first
    assert IdentifierResolver(store).generic_item_id() == first
    assert [r["supplier_code"] for r in store.rows("items")] == [GENERIC_SUPPLIER_CODE]


@pytest.mark.parametrize("column", ["supplier_code", "barcode"])
def test_cache_is_populated_from_every_row_seen(store, column):
    row = store.add("items", supplier_code="C-1", barcode="B-1")
    resolver = IdentifierResolver(store)
    resolver.get_item(row["id"])
    value = row[column]
    store.tables["items"].clear()
    assert resolver.lookup(column, value)["id"] == row["id"]
