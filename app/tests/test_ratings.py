"""
Tests for consultant ratings and the rating aggregate.
"""
import pytest

from app.db.models import Rating, TicketStatus
from app.services import ratings
from app.services.ratings import DuplicateRatingError, RatingError, RatingNotAllowedError


@pytest.fixture
def owner(make_user):
    return make_user()


@pytest.fixture
def consultant(make_consultant):
    return make_consultant(level="senior")


@pytest.fixture
def completed_ticket(make_ticket, owner, consultant):
    return make_ticket(owner, consultant=consultant, status=TicketStatus.COMPLETED.value)


class TestCreateRating:

    def test_aggregate_is_recomputed(self, db, owner, consultant, make_user):
        ratings.create_rating(db, owner.id, consultant, 5)
        ratings.create_rating(db, make_user().id, consultant, 4)

        assert consultant.rating_average == 4.5
        assert consultant.total_ratings == 2

    def test_average_rounded_to_two_places(self, db, owner, consultant, make_user):
        for value in (5, 4, 4):
            ratings.create_rating(db, make_user().id, consultant, value)

        assert consultant.rating_average == 4.33

    def test_ticket_rating(self, db, owner, consultant, completed_ticket):
        record = ratings.create_rating(
            db, owner.id, consultant, 5, ticket=completed_ticket,
            review="Sangat membantu", communication_rating=5, helpfulness_rating=4,
        )

        assert record.ticket_id == completed_ticket.id
        assert record.average_detail_rating == 4.5

    def test_one_rating_per_ticket(self, db, owner, consultant, completed_ticket):
        ratings.create_rating(db, owner.id, consultant, 5, ticket=completed_ticket)

        with pytest.raises(DuplicateRatingError):
            ratings.create_rating(db, owner.id, consultant, 3, ticket=completed_ticket)

    def test_ticket_must_be_completed(self, db, owner, consultant, make_ticket):
        ticket = make_ticket(owner, consultant=consultant, status=TicketStatus.IN_PROGRESS.value)

        with pytest.raises(RatingNotAllowedError):
            ratings.create_rating(db, owner.id, consultant, 5, ticket=ticket)

    def test_only_ticket_owner(self, db, consultant, completed_ticket, make_user):
        with pytest.raises(RatingNotAllowedError):
            ratings.create_rating(db, make_user().id, consultant, 5, ticket=completed_ticket)

    def test_only_ticket_consultant(self, db, owner, completed_ticket, make_consultant):
        other = make_consultant()

        with pytest.raises(RatingNotAllowedError):
            ratings.create_rating(db, owner.id, other, 5, ticket=completed_ticket)

    @pytest.mark.parametrize("values", [{"rating": 0}, {"rating": 6}, {"rating": 4, "knowledge_rating": 9}])
    def test_scale(self, db, owner, consultant, values):
        with pytest.raises(RatingError):
            ratings.create_rating(db, owner.id, consultant, **values)
        assert db.query(Rating).count() == 0


class TestChangeRating:

    def test_author_updates(self, db, owner, consultant):
        record = ratings.create_rating(db, owner.id, consultant, 2)

        ratings.update_rating(db, record, owner.id, {"rating": 4, "review": "Setelah sesi kedua lebih baik"})

        assert record.rating == 4
        assert consultant.rating_average == 4.0

    def test_non_author_cannot_update(self, db, owner, consultant, make_user):
        record = ratings.create_rating(db, owner.id, consultant, 2)

        with pytest.raises(RatingNotAllowedError):
            ratings.update_rating(db, record, make_user().id, {"rating": 5})

    def test_admin_deletes(self, db, owner, consultant, make_user):
        record = ratings.create_rating(db, owner.id, consultant, 3)

        ratings.delete_rating(db, record, make_user().id, is_admin=True)

        assert consultant.rating_average == 0
        assert consultant.total_ratings == 0

    def test_non_author_cannot_delete(self, db, owner, consultant, make_user):
        record = ratings.create_rating(db, owner.id, consultant, 3)

        with pytest.raises(RatingNotAllowedError):
            ratings.delete_rating(db, record, make_user().id)
