from datetime import date
import logging
import os
from functools import wraps
from flask import Flask, request, g, jsonify, current_app
from advising_booking.booking import database, availability, error_utils
from advising_booking.booking import booking_utils as util
from advising_booking.booking.config import load_policy
from advising_booking.booking.error_utils import FailureReason
from advising_booking.booking.memory_store import InMemoryReservationStore
from advising_booking.booking.models import ReservationStatus
logger = logging.getLogger(__name__)

# HTTP status for each commit failure so the booking form can branch without parsing messages
FAILURE_STATUS_CODES = {
    FailureReason.INVALID_DRAFT: 400,
    FailureReason.SLOT_NO_LONGER_AVAILABLE: 409,
    FailureReason.STORE_UNAVAILABLE: 503,
}


def default_store_factory(environ=None):
    """
    BOOKING_STORE=memory serves every request from one process-local store, for running without Postgres.
    BOOKING_STORE=postgres (the default) opens DatabasePersistence per request. Other values raise ValueError.
    """
    environ = os.environ if environ is None else environ
    backend = environ.get("BOOKING_STORE", "postgres").strip().lower()
    if backend == "memory":
        logger.warning("BOOKING_STORE=memory: reservations are kept in process and lost on restart")
        store = InMemoryReservationStore()
        return lambda: store
    if backend != "postgres":
        raise ValueError(f"BOOKING_STORE must be 'postgres' or 'memory', got {backend!r}")
    return database.DatabasePersistence


def create_app(store_factory=None, policy=None, clock=None):
    """
    Args: store_factory builds a reservation store per request (defaults to BOOKING_STORE, see
    default_store_factory), policy defaults to the BOOKING_* environment policy, clock returns the current
    local date (defaults to date.today).
    """
    app = Flask(__name__)
    app.config['STORE_FACTORY'] = store_factory or default_store_factory()
    app.config['BOOKING_POLICY'] = policy or load_policy()
    app.config['CLOCK'] = clock or date.today
    app.json.sort_keys = False
    register_routes(app)
    return app


# Use decorator to create g.db instance within request context window for functions that require it
def instantiate_database(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.db = current_app.config['STORE_FACTORY']()
        return f(*args, **kwargs)
    return decorated_function


def _policy():
    return current_app.config['BOOKING_POLICY']


def _today() -> date:
    return current_app.config['CLOCK']()


def register_routes(app):

    # Dates a student can pick for this advisor, for the date picker
    @app.route("/advisors/<advisor_id>/bookable-dates", methods=["GET"])
    @instantiate_database
    def get_bookable_dates(advisor_id):
        reservations = g.db.retrieve_live_reservations(advisor_id)
        blocked_ranges = g.db.retrieve_blocked_ranges(advisor_id)
        dates = availability.compute_bookable_dates(advisor_id, _policy(), reservations, _today(), blocked_ranges)
        return jsonify({"advisor_id": advisor_id, "dates": [d.isoformat() for d in dates]})

    # Time slots still open on one date. This is a snapshot, the commit re-checks.
    @app.route("/advisors/<advisor_id>/bookable-slots", methods=["GET"])
    @instantiate_database
    def get_bookable_slots(advisor_id):
        try:
            booking_date = util.parse_booking_date(request.args.get("date"))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        reservations = g.db.retrieve_live_reservations(advisor_id, booking_date)
        blocked_ranges = g.db.retrieve_blocked_ranges(advisor_id, booking_date)
        slots = availability.compute_bookable_slots(advisor_id, booking_date, _policy(), reservations, blocked_ranges,
                                                    today=_today())
        return jsonify({"advisor_id": advisor_id, "date": booking_date.isoformat(), "slots": [s.label for s in slots]})

    @app.route("/advisors/<advisor_id>/bookings", methods=["POST"])
    @instantiate_database
    def book_session(advisor_id):
        payload = request.get_json(silent=True)
        try:
            booking_date = util.parse_booking_date((payload or {}).get("date") if isinstance(payload, dict) else None)
            draft = util.draft_from_payload(payload)
        except ValueError as e:
            return jsonify({"failure": FailureReason.INVALID_DRAFT.value, "error": str(e), "errors": {"date": str(e)}}), 400
        except error_utils.InvalidDraftError as e:
            return jsonify({"failure": FailureReason.INVALID_DRAFT.value, "error": e.message, "errors": e.errors}), 400

        result = availability.attempt_commit_booking(advisor_id, booking_date, str(payload.get("slot") or ""), draft,
                                                     g.db, policy=_policy(), today=_today())
        if result.ok:
            return jsonify({"id": result.reservation_id, "reference_code": result.reference_code,
                            "message": result.message}), 201
        return jsonify({"failure": result.failure.value, "error": result.message, "errors": result.errors}), \
            FAILURE_STATUS_CODES[result.failure]

    # Advisor availability editor
    @app.route("/advisors/<advisor_id>/blocked-ranges", methods=["GET"])
    @instantiate_database
    def get_blocked_ranges(advisor_id):
        blocked_ranges = g.db.retrieve_blocked_ranges(advisor_id)
        return jsonify({"advisor_id": advisor_id, "blocked_ranges": [b.to_dict() for b in blocked_ranges]})

    @app.route("/advisors/<advisor_id>/blocked-ranges", methods=["POST"])
    @instantiate_database
    def add_blocked_range(advisor_id):
        try:
            blocked_range = util.blocked_range_from_payload(advisor_id, request.get_json(silent=True))
        except error_utils.BlockedRangeValidationError as e:
            return jsonify({"error": e.message}), 400
        blocked_range.id = g.db.insert_blocked_range(blocked_range)
        logger.info("Advisor %s blocked %s %s-%s", advisor_id, blocked_range.blocked_date,
                    blocked_range.start_time, blocked_range.end_time)
        return jsonify(blocked_range.to_dict()), 201

    @app.route("/advisors/<advisor_id>/blocked-ranges/<range_id>", methods=["DELETE"])
    @instantiate_database
    def remove_blocked_range(advisor_id, range_id):
        if not g.db.delete_blocked_range(advisor_id, range_id):
            return jsonify({"error": "Blocked range not found"}), 404
        return jsonify({"status": "deleted", "id": range_id}), 200

    # Track an appointment by its reference code
    @app.route("/bookings/<reference_code>", methods=["GET"])
    @instantiate_database
    def track_booking(reference_code):
        reservation = g.db.find_reservation(reference_code)
        if reservation is None:
            return jsonify({"error": f"No booking found for {reference_code}"}), 404
        return jsonify(reservation.to_dict())

    @app.route("/bookings/<reference_code>/cancel", methods=["POST"])
    @instantiate_database
    def cancel_booking(reference_code):
        body = request.get_json(silent=True)
        reason = body.get("reason") if isinstance(body, dict) else None
        if not isinstance(reason, str) or not reason.strip():
            return jsonify({"error": "A cancellation reason is required"}), 400
        reason = reason.strip()
        reservation = g.db.find_reservation(reference_code)
        if reservation is None:
            return jsonify({"error": f"No booking found for {reference_code}"}), 404
        if not reservation.is_live:
            return jsonify({"error": f"Booking {reference_code} is already {reservation.status.value}"}), 409
        # Lost a race with another status change
        if not g.db.update_reservation_status(reservation.id, ReservationStatus.CANCELLED, reason):
            return jsonify({"error": f"Booking {reference_code} could not be cancelled. Please refresh and try again."}), 409
        logger.info("Booking %s cancelled: %s", reference_code, reason)
        return jsonify({"reference_code": reference_code, "status": ReservationStatus.CANCELLED.value})

    # Store failures outside the commit path (reads, editor writes)
    @app.errorhandler(error_utils.StoreUnavailable)
    def handle_store_unavailable(error):
        logger.error("Reservation store unavailable: %s", error.message)
        return jsonify({"failure": FailureReason.STORE_UNAVAILABLE.value,
                        "error": "The booking service is temporarily unavailable. Please try again."}), 503

    @app.errorhandler(404)
    def error_handler(error):
        return jsonify({"error": "Not found"}), 404


if __name__ == '__main__':
    app = create_app()
    # production
    if os.environ.get('FLASK_ENV') == 'production':
        app.run(debug=False)
    else:
        app.run(debug=True, port=5003)
