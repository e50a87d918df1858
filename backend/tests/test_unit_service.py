"""
Unit inventory store tests.

Covers intake, edits, idempotent removal and scanner lookup.
"""

import pytest

from unitpos.extensions import db
from unitpos.models import StockUnit, StockMovement
from unitpos.errors import DuplicateCode, UnitNotFound, AlreadyPaired
from unitpos.services import unit_service, reservation_service, pair_service


class TestNormalizeUnitCode:
    def test_strips_non_alphanumerics_and_uppercases(self):
        assert unit_service.normalize_unit_code("ac-1001 / b") == "AC1001B"

    def test_none_and_blank(self):
        assert unit_service.normalize_unit_code(None) == ""
        assert unit_service.normalize_unit_code(" -- ") == ""


class TestCreateUnit:
    def test_create_normalizes_code_and_logs_intake(self, db_session, variant, location):
        unit = unit_service.create_unit(variant.id, location.id, "sn-0001", notes="First box")

        assert unit.unit_code == "SN0001"
        assert unit.status == "available"
        assert unit.reservation_key is None

        movements = db_session.query(StockMovement).all()
        assert len(movements) == 1
        assert movements[0].movement_type == "in"
        assert movements[0].quantity == 1
        assert movements[0].unit_codes == ["SN0001"]
        assert movements[0].reference_type == "intake"

    def test_duplicate_code_after_normalization(self, db_session, variant, location):
        unit_service.create_unit(variant.id, location.id, "SN-0001")

        with pytest.raises(DuplicateCode):
            unit_service.create_unit(variant.id, location.id, "sn0001")

        assert db_session.query(StockUnit).count() == 1

    def test_rejects_workflow_statuses(self, db_session, variant, location):
        with pytest.raises(ValueError):
            unit_service.create_unit(variant.id, location.id, "SN-1", status="reserved")
        with pytest.raises(ValueError):
            unit_service.create_unit(variant.id, location.id, "SN-2", status="sold")

    def test_damaged_intake_allowed(self, db_session, variant, location):
        unit = unit_service.create_unit(variant.id, location.id, "SN-3", status="damaged")
        assert unit.status == "damaged"

    def test_rejects_empty_code_and_unknown_refs(self, db_session, variant, location):
        with pytest.raises(ValueError):
            unit_service.create_unit(variant.id, location.id, "---")
        with pytest.raises(ValueError):
            unit_service.create_unit(999999, location.id, "SN-4")
        with pytest.raises(ValueError):
            unit_service.create_unit(variant.id, 999999, "SN-4")


class TestCountAndList:
    def test_count_by_status(self, db_session, variant, location, make_units):
        make_units(3, prefix="A")
        make_units(2, prefix="D", status="damaged")

        assert unit_service.count_units(variant.id, location.id) == 5
        assert unit_service.count_units(variant.id, location.id, status="available") == 3
        assert unit_service.count_units(variant.id, location.id, status="damaged") == 2

    def test_list_newest_first(self, db_session, variant, location, make_units):
        ids = make_units(3)

        listed = unit_service.list_units(variant_id=variant.id, location_id=location.id)
        assert [u.id for u in listed] == list(reversed(ids))

    def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(ValueError):
            unit_service.list_units(status="lost")


class TestUpdateUnit:
    def test_update_notes_and_code(self, db_session, pool):
        unit = unit_service.update_unit(pool[0], {"notes": "Display piece", "unit_code": "disp-01"})
        assert unit.notes == "Display piece"
        assert unit.unit_code == "DISP01"

    def test_damage_and_repair(self, db_session, pool):
        assert unit_service.update_unit(pool[0], {"status": "damaged"}).status == "damaged"
        assert unit_service.update_unit(pool[0], {"status": "available"}).status == "available"

    def test_cannot_jump_to_sold(self, db_session, pool):
        with pytest.raises(ValueError):
            unit_service.update_unit(pool[0], {"status": "sold"})

    def test_reserved_unit_status_locked(self, db_session, variant, location, pool):
        result = reservation_service.reserve(variant.id, location.id, 1, "cart-1")
        with pytest.raises(ValueError):
            unit_service.update_unit(result.unit_ids[0], {"status": "damaged"})

    def test_paired_unit_status_locked(self, db_session, pool):
        pair_service.create_pair(pool[0], pool[1], "AC-PAIR-1")
        with pytest.raises(AlreadyPaired):
            unit_service.update_unit(pool[0], {"status": "damaged"})

    def test_unknown_fields_and_units(self, db_session, pool):
        with pytest.raises(ValueError):
            unit_service.update_unit(pool[0], {"reservation_key": "sneaky"})
        with pytest.raises(UnitNotFound):
            unit_service.update_unit(999999, {"notes": "x"})

    def test_code_collision(self, db_session, pool):
        with pytest.raises(DuplicateCode):
            unit_service.update_unit(pool[0], {"unit_code": "U0002"})

    def test_location_change_only_when_available(self, db_session, variant, location, other_location, pool):
        moved = unit_service.update_unit(pool[0], {"location_id": other_location.id})
        assert moved.location_id == other_location.id

        result = reservation_service.reserve(variant.id, location.id, 1, "cart-1")
        with pytest.raises(ValueError):
            unit_service.update_unit(result.unit_ids[0], {"location_id": other_location.id})


class TestRemoveUnits:
    def test_damage_mode_skips_reserved(self, db_session, variant, location, make_units):
        ids = make_units(4)
        reservation_service.reserve(variant.id, location.id, 1, "cart-1")

        removed = unit_service.remove_units(ids, mode="damage", reason="Water damage")
        assert removed == 3

        damaged = db_session.query(StockUnit).filter_by(status="damaged").all()
        assert len(damaged) == 3
        assert all(u.notes == "Water damage" for u in damaged)
        assert db_session.query(StockUnit).filter_by(status="reserved").count() == 1

    def test_second_call_is_a_noop(self, db_session, make_units):
        ids = make_units(2)
        assert unit_service.remove_units(ids, mode="damage") == 2
        assert unit_service.remove_units(ids, mode="damage") == 0
        assert unit_service.remove_units(ids, mode="delete") == 0

    def test_delete_mode_removes_rows_and_logs_out(self, db_session, variant, location, make_units):
        ids = make_units(3)

        removed = unit_service.remove_units(ids[:2], mode="delete", reason="Entered twice")
        assert removed == 2
        assert db_session.query(StockUnit).count() == 1

        movement = db_session.query(StockMovement).filter_by(movement_type="out").one()
        assert movement.quantity == 2
        assert movement.reference_type == "manual_removal"
        assert sorted(movement.unit_codes) == ["U0001", "U0002"]

    def test_paired_units_are_skipped(self, db_session, pool):
        pair_service.create_pair(pool[0], pool[1], "AC-PAIR-1")
        assert unit_service.remove_units(pool[:3], mode="delete") == 1

    def test_invalid_mode(self, db_session, pool):
        with pytest.raises(ValueError):
            unit_service.remove_units(pool, mode="shred")


class TestResolveByCode:
    def test_lookup_normalizes(self, db_session, pool):
        unit = unit_service.resolve_by_code("u-0001")
        assert unit is not None
        assert unit.id == pool[0]

    def test_miss_is_none(self, db_session, pool):
        assert unit_service.resolve_by_code("NOPE") is None
        assert unit_service.resolve_by_code("") is None
        assert unit_service.resolve_by_code(None) is None


class TestLinkUnitsToBill:
    def test_only_sold_units_are_linked(self, db_session, variant, location, order, pool):
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")
        sold = reservation_service.fulfill("cart-1", order_id=order.id)

        linked = unit_service.link_units_to_bill(pool, bill_id=77, notes="Linked late")
        assert linked == 2

        db.session.expire_all()
        for unit in db_session.query(StockUnit).all():
            if unit.id in {u.id for u in sold}:
                assert unit.bill_id == 77
            else:
                assert unit.bill_id is None
