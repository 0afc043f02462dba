"""
Sale and trade-in settlement.

Verifies:
- Cash and TradeIn money composition
- Both trade-in pointers and the settlement are written together
- Already sold / Unavailable bikes are rejected without side effects
- Idempotency key replays the stored sale and flags broken trade-in links
- A store failure mid-sale rolls back the trade-in bike with everything else
"""

import pytest
from sqlalchemy.exc import OperationalError

from bikeshop.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailureError,
    StoreUnavailableError,
    ValidationError,
)
from bikeshop.extensions import db
from bikeshop.models import Bike, BikeEvent, Settlement
from bikeshop.services import collection_service, inventory_service, reporting_service, sale_service
from bikeshop.services.concurrency import begin_immediate_if_sqlite
from bikeshop.services.permission_service import PermissionDeniedError

from conftest import bike_payload


TRADE_IN = {
    "brand": "Giant",
    "model": "Talon 3",
    "type": "Mountain",
    "size": "L",
    "purchase_price": 15000,
    "sell_price": 29900,
}


@pytest.fixture
def bike(db_session, editor_actor):
    return inventory_service.create_bike(bike_payload(), actor=editor_actor)


class TestCashSale:

    def test_cash_sale(self, bike, editor_actor):
        result = sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)

        assert result.replayed is False
        assert result.trade_in_bike is None
        assert result.bike.status == "Sold"
        assert result.bike.final_sell_price == 62000
        assert result.bike.sold_date is not None
        assert result.settlement.cash_portion == 62000
        assert result.settlement.trade_in_value == 0
        assert result.settlement.final_sell_price == 62000

    def test_reserved_bike_is_sellable(self, bike, editor_actor):
        inventory_service.change_status(bike.id, "Reserved", actor=editor_actor)
        result = sale_service.sell_bike(bike.id, "Cash", 65000, actor=editor_actor)
        assert result.bike.status == "Sold"

    def test_cash_portion_as_digit_string(self, bike, editor_actor):
        result = sale_service.sell_bike(bike.id, "Cash", "65000", actor=editor_actor)
        assert result.bike.final_sell_price == 65000

    def test_writes_event_and_bumps_collection(self, db_session, bike, editor_actor):
        before = collection_service.current_version(collection_service.BIKES)
        result = sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)

        assert collection_service.current_version(collection_service.BIKES) == before + 1
        event = db_session.query(BikeEvent).filter_by(event_type="bike.sold", entity_id=bike.id).one()
        assert event.settlement_id == result.settlement.id

    @pytest.mark.parametrize("cash", [None, -5, 12.5, "12,50", 1_000_000_000])
    def test_invalid_cash_portion(self, bike, editor_actor, cash):
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "Cash", cash, actor=editor_actor)

    def test_invalid_sale_type(self, bike, editor_actor):
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "Barter", 100, actor=editor_actor)

    def test_trade_in_rejected_for_cash_sale(self, bike, editor_actor):
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "Cash", 100, trade_in=dict(TRADE_IN), actor=editor_actor)


class TestTradeInSale:

    def test_trade_in_creates_linked_bike(self, db_session, bike, editor_actor):
        result = sale_service.sell_bike(bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), actor=editor_actor)

        received = result.trade_in_bike
        assert received.status == "Available"
        assert received.ref_number == "0002"
        assert received.trade_in_for_bike_id == bike.id
        assert result.bike.trade_in_bike_id == received.id

        # cash + trade-in valuation (its purchase price)
        assert result.bike.final_sell_price == 55000
        assert result.settlement.trade_in_value == 15000
        assert result.settlement.trade_in_bike_id == received.id

    def test_trade_in_details_required(self, bike, editor_actor):
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "TradeIn", 40000, actor=editor_actor)

    def test_bad_trade_in_writes_nothing(self, db_session, bike, editor_actor):
        bad = dict(TRADE_IN, type="Unicycle")
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "TradeIn", 40000, trade_in=bad, actor=editor_actor)

        assert db_session.query(Bike).count() == 1
        assert db_session.get(Bike, bike.id).status == "Available"


class TestRejectedSales:

    def test_already_sold(self, db_session, bike, editor_actor):
        sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)

        with pytest.raises(InvalidTransitionError):
            sale_service.sell_bike(bike.id, "TradeIn", 1000, trade_in=dict(TRADE_IN), actor=editor_actor)

        # no trade-in bike was left behind
        assert db_session.query(Bike).count() == 1
        assert db_session.query(Settlement).count() == 1

    def test_unavailable_bike_cannot_be_sold(self, bike, editor_actor):
        inventory_service.change_status(bike.id, "Unavailable", actor=editor_actor)
        with pytest.raises(InvalidTransitionError) as exc_info:
            sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)
        assert exc_info.value.current_status == "Unavailable"

    def test_deleted_bike(self, bike, editor_actor):
        inventory_service.delete_bike(bike.id, actor=editor_actor)
        with pytest.raises(NotFoundError):
            sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)

    def test_viewer_cannot_sell(self, db_session, bike, viewer_actor):
        with pytest.raises(PermissionDeniedError):
            sale_service.sell_bike(bike.id, "Cash", 62000, actor=viewer_actor)
        assert db_session.get(Bike, bike.id).status == "Available"


class TestIdempotency:

    def test_replay_returns_stored_sale(self, db_session, bike, editor_actor):
        first = sale_service.sell_bike(
            bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), idempotency_key="sale-1", actor=editor_actor
        )
        again = sale_service.sell_bike(
            bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), idempotency_key="sale-1", actor=editor_actor
        )

        assert again.replayed is True
        assert again.settlement.id == first.settlement.id
        assert again.trade_in_bike.id == first.trade_in_bike.id
        assert db_session.query(Bike).count() == 2
        assert db_session.query(Settlement).count() == 1

    def test_key_reused_for_other_bike(self, db_session, bike, editor_actor):
        other = inventory_service.create_bike(bike_payload(ref_number="0002"), actor=editor_actor)
        sale_service.sell_bike(bike.id, "Cash", 62000, idempotency_key="sale-1", actor=editor_actor)

        with pytest.raises(ConflictError):
            sale_service.sell_bike(other.id, "Cash", 62000, idempotency_key="sale-1", actor=editor_actor)
        assert db_session.get(Bike, other.id).status == "Available"

    def test_key_reused_with_different_amount(self, bike, editor_actor):
        sale_service.sell_bike(bike.id, "Cash", 62000, idempotency_key="sale-1", actor=editor_actor)
        with pytest.raises(ConflictError):
            sale_service.sell_bike(bike.id, "Cash", 10000, idempotency_key="sale-1", actor=editor_actor)

    def test_replay_surfaces_broken_trade_in_link(self, db_session, bike, editor_actor):
        first = sale_service.sell_bike(
            bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), idempotency_key="sale-1", actor=editor_actor
        )
        orphan_id = first.trade_in_bike.id

        sold = db_session.get(Bike, bike.id)
        sold.trade_in_bike_id = None
        db.session.commit()

        with pytest.raises(PartialFailureError) as exc_info:
            sale_service.sell_bike(
                bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), idempotency_key="sale-1", actor=editor_actor
            )
        assert exc_info.value.orphan_bike_id == orphan_id
        assert exc_info.value.settlement_id == first.settlement.id

    def test_key_too_long(self, bike, editor_actor):
        with pytest.raises(ValidationError):
            sale_service.sell_bike(bike.id, "Cash", 62000, idempotency_key="k" * 65, actor=editor_actor)


class TestTradeInAudit:

    def test_audit_and_repair(self, db_session, bike, editor_actor):
        result = sale_service.sell_bike(bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), actor=editor_actor)
        received_id = result.trade_in_bike.id

        sold = db_session.get(Bike, bike.id)
        sold.trade_in_bike_id = None
        db.session.commit()

        broken = inventory_service.find_broken_trade_in_links()
        assert [row["trade_in_bike_id"] for row in broken] == [received_id]

        repaired = inventory_service.link_trade_in(received_id, actor=editor_actor)
        assert repaired.trade_in_bike_id == received_id
        assert inventory_service.find_broken_trade_in_links() == []


class TestWorkedScenarios:

    def test_cash_sale_profit_and_margin(self, db_session, editor_actor):
        bike = inventory_service.create_bike(
            bike_payload(ref_number="0001", purchase_price=50000, sell_price=80000), actor=editor_actor
        )

        sale_service.sell_bike(bike.id, "Cash", 75000, actor=editor_actor)
        breakdown = reporting_service.bike_financials(bike.id, actor=editor_actor)

        assert breakdown["profit"] == 25000
        assert breakdown["profit_margin"] == pytest.approx(33.33)
        assert breakdown["days_in_stock"] == 0

    def test_trade_in_takes_next_ref(self, db_session, editor_actor):
        inventory_service.create_bike(bike_payload(ref_number="0001"), actor=editor_actor)
        bike = inventory_service.create_bike(bike_payload(ref_number="0002"), actor=editor_actor)

        result = sale_service.sell_bike(
            bike.id, "TradeIn", 30000, trade_in=dict(TRADE_IN, purchase_price=20000), actor=editor_actor
        )

        assert result.bike.final_sell_price == 50000
        assert result.trade_in_bike.ref_number == "0003"
        assert result.trade_in_bike.trade_in_for_bike_id == bike.id
        assert result.bike.trade_in_bike_id == result.trade_in_bike.id


class TestSaleAtomicity:

    def _fail_bump(self, monkeypatch):
        def boom(name):
            raise OperationalError("UPDATE collection_versions", {}, Exception("disk I/O error"))
        monkeypatch.setattr(collection_service, "bump", boom)

    def test_failure_after_trade_in_insert_leaves_nothing(self, db_session, bike, editor_actor, monkeypatch):
        self._fail_bump(monkeypatch)

        with pytest.raises(StoreUnavailableError):
            sale_service.sell_bike(bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), actor=editor_actor)

        assert db_session.query(Bike).count() == 1
        assert db_session.query(Settlement).count() == 0
        assert db_session.query(BikeEvent).filter_by(event_type="bike.trade_in_received").count() == 0
        row = db_session.get(Bike, bike.id)
        assert row.status == "Available"
        assert row.trade_in_bike_id is None
        assert row.final_sell_price is None

    def test_keyed_sale_can_be_retried_after_failure(self, db_session, bike, editor_actor, monkeypatch):
        self._fail_bump(monkeypatch)
        with pytest.raises(StoreUnavailableError):
            sale_service.sell_bike(bike.id, "Cash", 62000, idempotency_key="sale-1", actor=editor_actor)
        monkeypatch.undo()

        result = sale_service.sell_bike(bike.id, "Cash", 62000, idempotency_key="sale-1", actor=editor_actor)

        assert result.replayed is False
        assert result.bike.status == "Sold"

    def test_deleting_sold_bike_keeps_trade_in_links(self, db_session, bike, editor_actor):
        result = sale_service.sell_bike(bike.id, "TradeIn", 40000, trade_in=dict(TRADE_IN), actor=editor_actor)
        received_id = result.trade_in_bike.id

        inventory_service.delete_bike(bike.id, actor=editor_actor)

        sold = db_session.get(Bike, bike.id)
        assert sold.trade_in_bike_id == received_id
        assert db_session.get(Bike, received_id).trade_in_for_bike_id == bike.id
        assert db_session.query(Settlement).one().final_sell_price == 55000
        assert inventory_service.find_broken_trade_in_links() == []


class TestSqliteWriteLock:

    def test_sell_after_reads_in_same_session(self, db_session, bike, editor_actor):
        # autobegun read transaction is still open here
        assert db_session.query(Bike).count() == 1

        result = sale_service.sell_bike(bike.id, "Cash", 62000, actor=editor_actor)

        assert result.bike.status == "Sold"
        assert db_session.query(Settlement).count() == 1

    def test_unflushed_changes_are_not_committed(self, db_session, bike):
        row = db_session.get(Bike, bike.id)
        row.observations = "should not be saved"

        with pytest.raises(RuntimeError):
            begin_immediate_if_sqlite()
        db_session.rollback()

        assert db_session.get(Bike, bike.id).observations == ""

    def test_flushed_changes_are_not_committed(self, db_session, bike):
        row = db_session.get(Bike, bike.id)
        row.observations = "should not be saved"
        db_session.flush()

        with pytest.raises(RuntimeError):
            begin_immediate_if_sqlite()
        db_session.rollback()

        assert db_session.get(Bike, bike.id).observations == ""
