"""
Tests for the booking transaction.

Covers:
- Service aggregation and price/duration snapshots
- Manual blocks (sentinels, authorization, duration marker)
- Conflicts and rollback
- Reschedule / update
"""

import json
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from redis import Redis
from sqlalchemy.exc import OperationalError

from conftest import (
    CLIENT_ID,
    CONSULTATION_ID,
    GROOMING_ID,
    OTHER_CLIENT_ID,
    PROVIDER_ID,
    SURGERY_ID,
    VACCINATION_ID,
    at,
)
from vetfinder.errors import (
    AuthorizationError,
    InternalError,
    InvalidTransition,
    NotFound,
    SlotConflict,
    ValidationError,
)
from vetfinder.models import CompanyServices, ProviderBookingLocks, Reservations, ReservationServices
from vetfinder.services.booking import (
    CatalogSelection,
    InlineSnapshot,
    ProviderManualBlock,
    RawDuration,
    RealAccount,
    ServiceId,
    create_reservation,
    parse_duration_marker,
    resolve_booking_request,
    resolve_selection,
    update_reservation,
)
from vetfinder.services.slots import calculate_service_availability


def book(db, caller, instant, **payload):
    request = resolve_booking_request(caller, PROVIDER_ID, instant, **payload)
    return create_reservation(db, request, caller)


class TestResolveBookingRequest:

    def test_single_service(self, client_caller, monday):
        request = resolve_booking_request(client_caller, PROVIDER_ID, at(monday, "09:00"),
                                          service_id=CONSULTATION_ID)
        assert request.requester == RealAccount(CLIENT_ID)
        assert request.selection == CatalogSelection((ServiceId(CONSULTATION_ID),))

    def test_service_id_is_not_repeated(self, client_caller, monday):
        request = resolve_booking_request(
            client_caller, PROVIDER_ID, at(monday, "09:00"),
            service_id=CONSULTATION_ID, services=[CONSULTATION_ID, {"id": VACCINATION_ID}],
        )
        assert request.selection.refs == (ServiceId(CONSULTATION_ID), ServiceId(VACCINATION_ID))

    def test_repeated_service_counts_once(self, client_caller, monday):
        request = resolve_booking_request(client_caller, PROVIDER_ID, at(monday, "09:00"),
                                          services=[CONSULTATION_ID, CONSULTATION_ID])
        assert request.selection.refs == (ServiceId(CONSULTATION_ID),)

    def test_inline_snapshot(self, operator_caller, monday):
        request = resolve_booking_request(
            operator_caller, PROVIDER_ID, at(monday, "09:00"), requester_id=CLIENT_ID,
            services=[{"name": "Nail trim", "duration_minutes": 15, "price_min": 5}],
        )
        assert request.selection.refs == (InlineSnapshot("Nail trim", 15, 5, None),)

    def test_sentinels_make_manual_block(self, operator_caller, monday):
        request = resolve_booking_request(
            operator_caller, PROVIDER_ID, at(monday, "14:00"),
            requester_id=-1, service_id=-1, notes="Staff meeting DURATION_MINUTES=90",
        )
        assert request.requester == ProviderManualBlock()
        assert request.selection == RawDuration(90)

    def test_explicit_duration_wins_over_marker(self, operator_caller, monday):
        request = resolve_booking_request(
            operator_caller, PROVIDER_ID, at(monday, "14:00"), manual_block=True,
            duration_minutes=20, notes="DURATION_MINUTES=90",
        )
        assert request.selection == RawDuration(20)

    @pytest.mark.parametrize("payload", [
        {"requester_id": -1, "service_id": CONSULTATION_ID},
        {"requester_id": CLIENT_ID, "service_id": -1},
    ])
    def test_single_sentinel_is_invalid(self, operator_caller, monday, payload):
        with pytest.raises(ValidationError):
            resolve_booking_request(operator_caller, PROVIDER_ID, at(monday, "09:00"), **payload)

    def test_manual_block_with_real_requester_is_invalid(self, operator_caller, monday):
        with pytest.raises(ValidationError):
            resolve_booking_request(operator_caller, PROVIDER_ID, at(monday, "14:00"),
                                    manual_block=True, requester_id=CLIENT_ID)

    def test_no_service(self, client_caller, monday):
        with pytest.raises(ValidationError):
            resolve_booking_request(client_caller, PROVIDER_ID, at(monday, "09:00"))

    def test_inline_requires_duration(self, operator_caller, monday):
        with pytest.raises(ValidationError):
            resolve_booking_request(operator_caller, PROVIDER_ID, at(monday, "09:00"),
                                    services=[{"name": "Nail trim"}])

    def test_inline_price_range(self, operator_caller, monday):
        with pytest.raises(ValidationError):
            resolve_booking_request(
                operator_caller, PROVIDER_ID, at(monday, "09:00"),
                services=[{"name": "X", "duration_minutes": 15, "price_min": 10, "price_max": 5}],
            )


class TestDurationMarker:

    def test_absent_marker_uses_default(self):
        assert parse_duration_marker("Lunch", 30) == 30
        assert parse_duration_marker(None, 30) == 30

    def test_reads_marker(self):
        assert parse_duration_marker("Vacation DURATION_MINUTES = 480", 30) == 480

    def test_non_positive_marker(self):
        with pytest.raises(ValidationError):
            parse_duration_marker("DURATION_MINUTES=0", 30)


class TestCreateReservation:

    def test_multi_service_totals(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"),
                           services=[CONSULTATION_ID, VACCINATION_ID])

        assert reservation.status == "pending"
        assert reservation.total_duration_minutes == 75
        assert reservation.total_price_min == 35
        assert reservation.total_price_max == 55
        assert reservation.primary_service_id == CONSULTATION_ID
        assert [s.service_name for s in reservation.services] == ["Consultation", "Vaccination"]
        assert [s.duration_minutes for s in reservation.services] == [30, 45]

    def test_repeated_service_is_snapshotted_once(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"),
                           services=[CONSULTATION_ID, CONSULTATION_ID])

        assert reservation.total_duration_minutes == 30
        assert reservation.total_price_min == 20
        assert db.query(ReservationServices).count() == 1

    def test_combined_services_occupy_their_whole_span(self, db, client_caller, other_client_caller, monday):
        book(db, client_caller, at(monday, "09:00"), services=[CONSULTATION_ID, VACCINATION_ID])  # 09:00–10:15

        with pytest.raises(SlotConflict):
            book(db, other_client_caller, at(monday, "10:00"), service_id=CONSULTATION_ID)

        result = calculate_service_availability(db, PROVIDER_ID, CONSULTATION_ID, monday, monday)
        slots = {s.time: s.available for s in result.days[0].slots}
        assert [t for t, ok in slots.items() if not ok] == ["09:00", "09:30", "10:00"]
        assert slots["10:30"] is True

    def test_snapshot_survives_catalog_change(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)

        service = db.get(CompanyServices, CONSULTATION_ID)
        service.price_min = 999
        service.service_name = "Renamed"
        db.commit()

        snapshot = db.query(ReservationServices).filter_by(reservation_id=reservation.id).one()
        assert snapshot.price_min == 20
        assert snapshot.service_name == "Consultation"

    def test_service_without_price(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=SURGERY_ID)
        assert reservation.total_duration_minutes == 120
        assert reservation.total_price_min is None
        assert reservation.total_price_max is None

    def test_overlap_is_rejected(self, db, client_caller, other_client_caller, monday):
        book(db, client_caller, at(monday, "10:00"), service_id=VACCINATION_ID)  # 10:00–10:45

        with pytest.raises(SlotConflict):
            book(db, other_client_caller, at(monday, "10:30"), service_id=CONSULTATION_ID)
        assert db.query(Reservations).count() == 1

    def test_adjacent_booking_is_accepted(self, db, client_caller, other_client_caller, monday):
        book(db, client_caller, at(monday, "10:00"), service_id=CONSULTATION_ID)
        second = book(db, other_client_caller, at(monday, "10:30"), service_id=CONSULTATION_ID)
        assert second.id is not None

    def test_cancelled_slot_can_be_rebooked(self, db, client_caller, monday, add_reservation):
        add_reservation(at(monday, "10:00"), status="cancelled")
        assert book(db, client_caller, at(monday, "10:00"), service_id=CONSULTATION_ID).id

    def test_past_instant(self, db, client_caller, monday):
        with pytest.raises(ValidationError):
            book(db, client_caller, at(monday - timedelta(days=14), "10:00"), service_id=CONSULTATION_ID)

    def test_outside_opening_hours(self, db, client_caller, monday):
        with pytest.raises(ValidationError):
            book(db, client_caller, at(monday, "11:45"), service_id=CONSULTATION_ID)

    def test_closed_day(self, db, client_caller, sunday):
        with pytest.raises(ValidationError):
            book(db, client_caller, at(sunday, "10:00"), service_id=CONSULTATION_ID)

    def test_service_of_another_provider(self, db, client_caller, monday):
        with pytest.raises(ValidationError):
            book(db, client_caller, at(monday, "10:00"), service_id=GROOMING_ID)

    def test_unknown_service(self, db, client_caller, monday):
        with pytest.raises(NotFound):
            book(db, client_caller, at(monday, "10:00"), service_id=999)

    def test_unknown_provider(self, db, client_caller, monday):
        request = resolve_booking_request(client_caller, 999, at(monday, "10:00"), service_id=CONSULTATION_ID)
        with pytest.raises(NotFound):
            create_reservation(db, request, client_caller)

    def test_client_cannot_book_for_someone_else(self, db, client_caller, monday):
        with pytest.raises(AuthorizationError):
            book(db, client_caller, at(monday, "10:00"), service_id=CONSULTATION_ID,
                 requester_id=OTHER_CLIENT_ID)

    def test_operator_books_for_client(self, db, operator_caller, monday):
        reservation = book(db, operator_caller, at(monday, "10:00"), service_id=CONSULTATION_ID,
                           requester_id=CLIENT_ID)
        assert reservation.requester_id == CLIENT_ID

    def test_operator_books_for_unknown_user(self, db, operator_caller, monday):
        with pytest.raises(NotFound):
            book(db, operator_caller, at(monday, "10:00"), service_id=CONSULTATION_ID, requester_id=555)

    def test_inline_snapshot_from_operator(self, db, operator_caller, monday):
        reservation = book(
            db, operator_caller, at(monday, "10:00"), requester_id=CLIENT_ID,
            services=[CONSULTATION_ID, {"name": "Nail trim", "duration_minutes": 15, "price_min": 5, "price_max": 5}],
        )
        assert reservation.total_duration_minutes == 45
        assert reservation.total_price_min == 25
        assert reservation.services[1].service_id is None

    def test_inline_snapshot_from_client(self, db, client_caller, monday):
        with pytest.raises(AuthorizationError):
            book(db, client_caller, at(monday, "10:00"),
                 services=[{"name": "Nail trim", "duration_minutes": 15}])

    def test_event_emitted_after_commit(self, db, client_caller, monday):
        redis = Mock(spec=Redis)
        request = resolve_booking_request(client_caller, PROVIDER_ID, at(monday, "09:00"),
                                          service_id=CONSULTATION_ID)
        reservation = create_reservation(db, request, client_caller, redis=redis)

        queue, body = redis.rpush.call_args.args
        assert queue == "events:p2p"
        event = json.loads(body)
        assert event["type"] == "booking_created"
        assert event["booking_id"] == reservation.id

    def test_event_failure_does_not_undo_booking(self, db, client_caller, monday):
        redis = Mock(spec=Redis)
        redis.rpush.side_effect = ConnectionError("down")
        request = resolve_booking_request(client_caller, PROVIDER_ID, at(monday, "09:00"),
                                          service_id=CONSULTATION_ID)
        create_reservation(db, request, client_caller, redis=redis)
        assert db.query(Reservations).count() == 1

    def test_lock_row_is_bumped(self, db, client_caller, other_client_caller, monday):
        book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        book(db, other_client_caller, at(monday, "09:30"), service_id=CONSULTATION_ID)

        lock = db.get(ProviderBookingLocks, PROVIDER_ID)
        db.refresh(lock)
        assert lock.version == 2

    def test_storage_failure_rolls_back(self, db, client_caller, monday):
        with patch("vetfinder.services.booking._apply_snapshots",
                   side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(InternalError):
                book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)

        assert db.query(Reservations).count() == 0
        assert db.query(ReservationServices).count() == 0


class TestManualBlock:

    def test_operator_blocks_time(self, db, operator_caller, monday):
        block = book(db, operator_caller, at(monday, "14:00"), requester_id=-1, service_id=-1,
                     notes="Vaccination drive DURATION_MINUTES=120")

        assert block.is_manual_block is True
        assert block.requester_id is None
        assert block.primary_service_id is None
        assert block.status == "confirmed"
        assert block.total_duration_minutes == 120
        assert block.total_price_min is None
        assert block.services == []

    def test_default_duration(self, db, operator_caller, monday):
        block = book(db, operator_caller, at(monday, "09:00"), manual_block=True)
        assert block.total_duration_minutes == 30

    def test_block_occupies_slots(self, db, operator_caller, client_caller, monday):
        book(db, operator_caller, at(monday, "09:00"), manual_block=True, duration_minutes=60)

        with pytest.raises(SlotConflict):
            book(db, client_caller, at(monday, "09:30"), service_id=CONSULTATION_ID)

    def test_client_cannot_block(self, db, client_caller, monday):
        with pytest.raises(AuthorizationError):
            book(db, client_caller, at(monday, "09:00"), requester_id=-1, service_id=-1)

    def test_operator_of_other_provider_cannot_block(self, db, other_operator_caller, monday):
        with pytest.raises(AuthorizationError):
            book(db, other_operator_caller, at(monday, "09:00"), manual_block=True)

    def test_block_overlapping_booking(self, db, operator_caller, client_caller, monday):
        book(db, client_caller, at(monday, "10:00"), service_id=CONSULTATION_ID)
        with pytest.raises(SlotConflict):
            book(db, operator_caller, at(monday, "09:30"), manual_block=True, duration_minutes=60)


class TestUpdateReservation:

    def test_reschedule(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)

        updated = update_reservation(db, reservation.id, client_caller, instant=at(monday, "11:00"))
        assert updated.instant == at(monday, "11:00")

    def test_reschedule_over_own_slot(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=VACCINATION_ID)

        updated = update_reservation(db, reservation.id, client_caller, instant=at(monday, "09:15"))
        assert updated.instant == at(monday, "09:15")

    def test_reschedule_conflict(self, db, client_caller, other_client_caller, monday):
        book(db, other_client_caller, at(monday, "11:00"), service_id=CONSULTATION_ID)
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)

        with pytest.raises(SlotConflict):
            update_reservation(db, reservation.id, client_caller, instant=at(monday, "11:00"))
        db.refresh(reservation)
        assert reservation.instant == at(monday, "09:00")

    def test_change_services_resnapshots(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)

        updated = update_reservation(
            db, reservation.id, client_caller,
            selection=resolve_selection(services=[VACCINATION_ID, CONSULTATION_ID]),
        )
        assert updated.total_duration_minutes == 75
        assert updated.primary_service_id == VACCINATION_ID
        assert [s.service_name for s in updated.services] == ["Vaccination", "Consultation"]
        assert db.query(ReservationServices).count() == 2

    def test_notes_only(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        updated = update_reservation(db, reservation.id, client_caller, notes="Bring vaccination card")
        assert updated.notes == "Bring vaccination card"

    def test_operator_confirms(self, db, client_caller, operator_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        updated = update_reservation(db, reservation.id, operator_caller, status="confirmed")
        assert updated.status == "confirmed"

    def test_client_cannot_confirm(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        with pytest.raises(AuthorizationError):
            update_reservation(db, reservation.id, client_caller, status="confirmed")

    def test_stranger_cannot_update(self, db, client_caller, other_client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        with pytest.raises(AuthorizationError):
            update_reservation(db, reservation.id, other_client_caller, notes="hi")

    def test_terminal_is_read_only(self, db, client_caller, monday, add_reservation):
        reservation = add_reservation(at(monday, "09:00"), status="cancelled")
        with pytest.raises(ValidationError):
            update_reservation(db, reservation.id, client_caller, instant=at(monday, "10:00"))

    def test_cancel_through_update_emits_event(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        redis = Mock(spec=Redis)

        updated = update_reservation(db, reservation.id, client_caller, status="cancelled", redis=redis)

        assert updated.status == "cancelled"
        event = json.loads(redis.rpush.call_args.args[1])
        assert event["type"] == "booking_cancelled"
        assert event["booking_id"] == reservation.id

    def test_reschedule_emits_nothing(self, db, client_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        redis = Mock(spec=Redis)
        update_reservation(db, reservation.id, client_caller, instant=at(monday, "11:00"), redis=redis)
        redis.rpush.assert_not_called()

    def test_disallowed_transition(self, db, client_caller, operator_caller, monday):
        reservation = book(db, client_caller, at(monday, "09:00"), service_id=CONSULTATION_ID)
        with pytest.raises(InvalidTransition):
            update_reservation(db, reservation.id, operator_caller, status="completed")

    def test_manual_block_takes_duration(self, db, operator_caller, monday):
        block = book(db, operator_caller, at(monday, "09:00"), manual_block=True)

        updated = update_reservation(db, block.id, operator_caller, selection=resolve_selection(duration_minutes=90))
        assert updated.total_duration_minutes == 90

        with pytest.raises(ValidationError):
            update_reservation(db, block.id, operator_caller,
                               selection=resolve_selection(service_id=CONSULTATION_ID))
