"""
Inventory bike lifecycle.

Verifies:
- Create validates money, type and unknown fields
- Status machine (Available/Reserved/Unavailable; Sold only via sale)
- Tombstone delete keeps the ref reserved and hides the bike
- Every mutation bumps the "bikes" collection version and writes an event
"""

import pytest

from bikeshop.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from bikeshop.models import Bike, BikeEvent, SecurityEvent
from bikeshop.services import collection_service, inventory_service
from bikeshop.services.permission_service import PermissionDeniedError

from conftest import bike_payload


# =============================================================================
# CREATE
# =============================================================================


class TestCreateBike:

    def test_new_bike_is_available(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)

        assert bike.id is not None
        assert bike.status == "Available"
        assert bike.additional_costs == 0
        assert bike.observations == ""
        assert bike.entry_date is not None
        assert bike.final_sell_price is None

    def test_duplicate_ref_conflicts(self, db_session, editor_actor):
        inventory_service.create_bike(bike_payload(), actor=editor_actor)
        with pytest.raises(ConflictError):
            inventory_service.create_bike(bike_payload(brand="Giant"), actor=editor_actor)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"purchase_price": -1},
            {"sell_price": 12.5},
            {"sell_price": "1e6"},
            {"purchase_price": 1_000_000_000},
            {"type": "Tandem"},
            {"brand": "   "},
            {"status": "Sold"},
            {"colour": "red"},
            {"image_url": "bike.png"},
            {"image_url": "javascript:alert(1)"},
            {"image_url": "/images/../secret.png"},
        ],
    )
    def test_rejects_bad_input(self, db_session, editor_actor, overrides):
        with pytest.raises(ValidationError):
            inventory_service.create_bike(bike_payload(**overrides), actor=editor_actor)

    @pytest.mark.parametrize("url", ["/images/abc123.png", "https://cdn.example.com/trek.jpg"])
    def test_accepts_store_and_absolute_image_urls(self, db_session, editor_actor, url):
        bike = inventory_service.create_bike(bike_payload(image_url=url), actor=editor_actor)
        assert bike.image_url == url

    def test_missing_required_fields(self, db_session, editor_actor):
        payload = bike_payload()
        del payload["sell_price"]
        with pytest.raises(ValidationError, match="sell_price"):
            inventory_service.create_bike(payload, actor=editor_actor)

    def test_viewer_cannot_create_and_denial_is_logged(self, db_session, viewer_actor):
        with pytest.raises(PermissionDeniedError):
            inventory_service.create_bike(bike_payload(), actor=viewer_actor)

        assert db_session.query(Bike).count() == 0
        denial = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert denial.user_id == viewer_actor.user_id
        assert denial.action == "CREATE"

    def test_create_bumps_collection_and_writes_event(self, db_session, editor_actor):
        before = collection_service.current_version(collection_service.BIKES)
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)

        assert collection_service.current_version(collection_service.BIKES) == before + 1
        event = db_session.query(BikeEvent).filter_by(entity_id=bike.id, event_type="bike.created").one()
        assert event.actor_user_id == editor_actor.user_id


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateBike:

    def test_patch_fields(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)

        updated = inventory_service.update_bike(
            bike.id, {"sell_price": 59900, "observations": "Nueva cadena"}, actor=editor_actor
        )

        assert updated.sell_price == 59900
        assert updated.observations == "Nueva cadena"
        assert updated.version_id == 2

    def test_ref_is_not_writable(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        with pytest.raises(ValidationError):
            inventory_service.update_bike(bike.id, {"ref_number": "0099"}, actor=editor_actor)

    def test_sale_fields_only_on_sold_bike(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        with pytest.raises(ValidationError):
            inventory_service.update_bike(bike.id, {"final_sell_price": 60000}, actor=editor_actor)

    def test_unknown_bike(self, db_session, editor_actor):
        with pytest.raises(NotFoundError):
            inventory_service.update_bike(9999, {"brand": "Giant"}, actor=editor_actor)


# =============================================================================
# STATUS MACHINE
# =============================================================================


class TestChangeStatus:

    @pytest.mark.parametrize(
        "path",
        [
            ["Reserved", "Available"],
            ["Unavailable", "Available"],
            ["Reserved", "Unavailable", "Reserved"],
        ],
    )
    def test_allowed_paths(self, db_session, editor_actor, path):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        for status in path:
            bike = inventory_service.change_status(bike.id, status, actor=editor_actor)
            assert bike.status == status

    def test_sold_only_through_sale(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)

        with pytest.raises(InvalidTransitionError) as exc_info:
            inventory_service.change_status(bike.id, "Sold", actor=editor_actor)

        assert exc_info.value.current_status == "Available"
        assert exc_info.value.requested_status == "Sold"
        assert db_session.get(Bike, bike.id).status == "Available"

    def test_unknown_status(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        with pytest.raises(ValidationError):
            inventory_service.change_status(bike.id, "Lost", actor=editor_actor)

    def test_same_status_is_noop(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        version = collection_service.current_version(collection_service.BIKES)

        inventory_service.change_status(bike.id, "Available", actor=editor_actor)

        assert collection_service.current_version(collection_service.BIKES) == version

    def test_can_transition_table(self):
        assert inventory_service.can_transition("Available", "Reserved")
        assert inventory_service.can_transition("Unavailable", "Available")
        assert not inventory_service.can_transition("Sold", "Available")
        assert not inventory_service.can_transition("Available", "Sold")


# =============================================================================
# DELETE / REFS
# =============================================================================


class TestDeleteBike:

    def test_tombstone_hides_bike(self, db_session, editor_actor):
        bike = inventory_service.create_bike(
            bike_payload(serial_number="WTU123", observations="rayada"), actor=editor_actor
        )

        inventory_service.delete_bike(bike.id, actor=editor_actor)

        row = db_session.get(Bike, bike.id)
        assert row.deleted_at is not None
        assert row.serial_number is None
        assert row.observations == ""
        assert (row.brand, row.model, row.size) == ("", "", "")
        assert (row.purchase_price, row.additional_costs, row.sell_price) == (0, 0, 0)
        assert row.final_sell_price is None
        assert row.ref_number == "0001"
        assert row.status == "Available"
        with pytest.raises(NotFoundError):
            inventory_service.get_bike(bike.id, actor=editor_actor)
        assert inventory_service.list_bikes(actor=editor_actor)["count"] == 0

    def test_deleted_ref_is_never_reused(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(ref_number="0007"), actor=editor_actor)
        inventory_service.delete_bike(bike.id, actor=editor_actor)

        assert inventory_service.get_next_ref_number(actor=editor_actor) == "0008"
        with pytest.raises(ConflictError):
            inventory_service.create_bike(bike_payload(ref_number="0007"), actor=editor_actor)

    def test_delete_twice_is_not_found(self, db_session, editor_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        inventory_service.delete_bike(bike.id, actor=editor_actor)
        with pytest.raises(NotFoundError):
            inventory_service.delete_bike(bike.id, actor=editor_actor)

    def test_viewer_cannot_delete(self, db_session, editor_actor, viewer_actor):
        bike = inventory_service.create_bike(bike_payload(), actor=editor_actor)
        with pytest.raises(PermissionDeniedError):
            inventory_service.delete_bike(bike.id, actor=viewer_actor)
        assert db_session.get(Bike, bike.id).deleted_at is None


class TestListBikes:

    def test_filters_and_search(self, db_session, editor_actor):
        inventory_service.create_bike(bike_payload(ref_number="0001"), actor=editor_actor)
        inventory_service.create_bike(
            bike_payload(ref_number="0002", brand="Specialized", model="Allez", type="Road"),
            actor=editor_actor,
        )

        assert inventory_service.list_bikes(actor=editor_actor, bike_type="Road")["count"] == 1
        found = inventory_service.list_bikes(actor=editor_actor, search="alle")
        assert [b["ref_number"] for b in found["items"]] == ["0002"]

    def test_pagination(self, db_session, editor_actor):
        for i in range(1, 6):
            inventory_service.create_bike(bike_payload(ref_number=f"{i:04d}"), actor=editor_actor)

        page = inventory_service.list_bikes(actor=editor_actor, page=2, per_page=2)

        assert page["count"] == 2
        assert page["pagination"]["total"] == 5
        assert page["pagination"]["total_pages"] == 3
        assert page["pagination"]["has_next"] is True
        assert page["pagination"]["has_prev"] is True
