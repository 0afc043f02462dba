"""
Loaner bike lifecycle.

Verifies:
- Loan -> Prestada, Rental -> Alquilada, with server-assigned start_date
- loan_details present exactly while the bike is out
- Lending a bike that is out is rejected; returning one that is in is a no-op
- Hard delete
"""

import pytest

from bikeshop.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from bikeshop.models import LoanerBike
from bikeshop.services import collection_service, loaner_service

from conftest import loaner_payload


@pytest.fixture
def loaner(db_session, editor_actor):
    return loaner_service.create_loaner(loaner_payload(), actor=editor_actor)


class TestCreateLoaner:

    def test_new_loaner_is_available(self, loaner):
        assert loaner.status == "Available"
        assert loaner.loan_details is None
        assert loaner.observations == ""

    def test_ref_needs_loaner_prefix(self, db_session, editor_actor):
        with pytest.raises(ValidationError):
            loaner_service.create_loaner(loaner_payload(ref_number="0001"), actor=editor_actor)

    def test_duplicate_ref(self, loaner, editor_actor):
        with pytest.raises(ConflictError):
            loaner_service.create_loaner(loaner_payload(), actor=editor_actor)

    def test_next_ref(self, loaner, editor_actor):
        assert loaner_service.get_next_loaner_ref_number(actor=editor_actor) == "P-002"

    def test_image_url_must_be_dereferenceable(self, loaner, editor_actor):
        with pytest.raises(ValidationError):
            loaner_service.update_loaner(loaner.id, {"image_url": "foto.jpg"}, actor=editor_actor)

        updated = loaner_service.update_loaner(
            loaner.id, {"image_url": "https://cdn.example.com/carpe.jpg"}, actor=editor_actor
        )
        assert updated.image_url == "https://cdn.example.com/carpe.jpg"

    def test_status_not_writable(self, db_session, editor_actor):
        with pytest.raises(ValidationError):
            loaner_service.create_loaner(loaner_payload(status="Prestada"), actor=editor_actor)


class TestLoanAndReturn:

    def test_loan(self, loaner, editor_actor):
        out = loaner_service.loan_or_rent(
            loaner.id,
            {"loan_type": "Loan", "loanee_name": "Ana", "loan_reason": "Taller"},
            actor=editor_actor,
        )

        assert out.status == "Prestada"
        assert out.loan_details["loan_type"] == "Loan"
        assert out.loan_details["loanee_name"] == "Ana"
        assert out.loan_details["loan_reason"] == "Taller"
        assert out.loan_details["start_date"].endswith("Z")

    def test_rental(self, loaner, editor_actor):
        out = loaner_service.loan_or_rent(
            loaner.id,
            {"loan_type": "Rental", "loanee_name": "Luis", "rental_duration": "3 días"},
            actor=editor_actor,
        )
        assert out.status == "Alquilada"
        assert out.loan_details["rental_duration"] == "3 días"

    @pytest.mark.parametrize(
        "details",
        [
            {"loan_type": "Gift"},
            {"loan_type": "Loan", "rental_duration": "2 días"},
            {"loan_type": "Rental", "loan_reason": "Garantía"},
            {"loan_type": "Loan", "start_date": "2026-01-01T00:00:00Z"},
            {"loan_type": "Loan", "deposit": 50},
        ],
    )
    def test_invalid_details(self, loaner, editor_actor, details):
        with pytest.raises(ValidationError):
            loaner_service.loan_or_rent(loaner.id, details, actor=editor_actor)

    def test_cannot_lend_twice(self, db_session, loaner, editor_actor):
        loaner_service.loan_or_rent(loaner.id, {"loan_type": "Loan"}, actor=editor_actor)

        with pytest.raises(InvalidTransitionError) as exc_info:
            loaner_service.loan_or_rent(loaner.id, {"loan_type": "Rental"}, actor=editor_actor)

        assert exc_info.value.current_status == "Prestada"
        assert db_session.get(LoanerBike, loaner.id).status == "Prestada"

    def test_return_clears_details(self, loaner, editor_actor):
        loaner_service.loan_or_rent(loaner.id, {"loan_type": "Rental"}, actor=editor_actor)

        back = loaner_service.return_loaner(loaner.id, actor=editor_actor)

        assert back.status == "Available"
        assert back.loan_details is None

    def test_return_when_available_is_noop(self, loaner, editor_actor):
        version = collection_service.current_version(collection_service.LOANER_BIKES)

        back = loaner_service.return_loaner(loaner.id, actor=editor_actor)

        assert back.status == "Available"
        assert collection_service.current_version(collection_service.LOANER_BIKES) == version


class TestDeleteLoaner:

    def test_hard_delete(self, db_session, loaner, editor_actor):
        loaner_service.delete_loaner(loaner.id, actor=editor_actor)

        assert db_session.get(LoanerBike, loaner.id) is None
        with pytest.raises(NotFoundError):
            loaner_service.get_loaner(loaner.id, actor=editor_actor)

    def test_list_after_delete(self, db_session, loaner, editor_actor):
        loaner_service.create_loaner(loaner_payload(ref_number="P-002"), actor=editor_actor)
        loaner_service.delete_loaner(loaner.id, actor=editor_actor)

        listing = loaner_service.list_loaners(actor=editor_actor)
        assert [lb["ref_number"] for lb in listing["items"]] == ["P-002"]
