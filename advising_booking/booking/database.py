from datetime import date
import psycopg2
from psycopg2.extras import DictCursor, Json
from contextlib import contextmanager
import logging
import os
from typing import List, Optional

from .error_utils import StoreUnavailable
from .models import BlockedRange, Reservation, ReservationStatus

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

RESERVATION_COLUMNS = """id::text AS id, advisor_id, session_date, slot_label, status, reference_code, student_id,
                         details, created_at, cancellation_reason"""


class DatabasePersistence:
    # Schema is checked once per process rather than on every request
    _schema_ready = False

    def __init__(self, dsn: Optional[str] = None, setup_schema: bool = True):
        self._dsn = dsn
        if setup_schema and not DatabasePersistence._schema_ready:
            self._setup_schema()
            DatabasePersistence._schema_ready = True

    @contextmanager
    def _database_connect(self):
        """
        Internal function to manage the Postgres database connections.
        Must include environment variable for database url path when deploying to production.
        Connection and query failures surface as StoreUnavailable so callers never see raw psycopg2 errors.
        """
        try:
            if self._dsn:
                connection = psycopg2.connect(self._dsn)
            elif os.environ.get('FLASK_ENV') == 'production':
                connection = psycopg2.connect(os.environ['DATABASE_URL'])
            else:
                connection = psycopg2.connect(dbname='advising_booking')
        except psycopg2.Error as e:
            logger.error("Database connection failed: %s", e.args)
            raise StoreUnavailable("Reservation store connection failed", e) from e
        try:
            with connection:
                yield connection
        except (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.DatabaseError) as e:
            logger.error("Database query failed: %s", e.args)
            raise StoreUnavailable("Reservation store query failed", e) from e
        finally:
            connection.close()

    @staticmethod
    def _row_to_reservation(row) -> Reservation:
        return Reservation(
            id=row['id'],
            advisor_id=row['advisor_id'],
            session_date=row['session_date'],
            slot_label=row['slot_label'],
            status=ReservationStatus(row['status']),
            reference_code=row['reference_code'],
            student_id=row['student_id'],
            details=row['details'] or {},
            created_at=row['created_at'],
            cancellation_reason=row['cancellation_reason'],
        )

    @staticmethod
    def _row_to_blocked_range(row) -> BlockedRange:
        return BlockedRange(
            id=row['id'],
            advisor_id=row['advisor_id'],
            blocked_date=row['blocked_date'],
            start_time=row['start_time'],
            end_time=row['end_time'],
            reason=row['reason'],
            reason_details=row['reason_details'],
        )

    def retrieve_live_reservations(self, advisor_id: str, booking_date: Optional[date] = None) -> List[Reservation]:
        """
        Gets the Pending/Confirmed reservations for an advisor, optionally limited to one date.
        """
        query = f"SELECT {RESERVATION_COLUMNS} FROM reservations WHERE advisor_id = %s AND status IN ('Pending', 'Confirmed')"
        params = [advisor_id]
        if booking_date is not None:
            query += " AND session_date = %s"
            params.append(booking_date)
        query += " ORDER BY session_date, slot_label"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
        return [self._row_to_reservation(row) for row in rows]

    def retrieve_blocked_ranges(self, advisor_id: str, booking_date: Optional[date] = None) -> List[BlockedRange]:
        query = """SELECT id::text AS id, advisor_id, blocked_date, start_time, end_time, reason, reason_details
                   FROM blocked_ranges WHERE advisor_id = %s"""
        params = [advisor_id]
        if booking_date is not None:
            query += " AND blocked_date = %s"
            params.append(booking_date)
        query += " ORDER BY blocked_date, start_time"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
        return [self._row_to_blocked_range(row) for row in rows]

    def insert_reservation(self, reservation: Reservation) -> bool:
        """
        Inserts a reservation unless a live one already holds the same advisor, date and slot.
        The partial unique index makes this atomic, so of two racing inserts only one gets a row back.

        Returns True if inserted, False on conflict.
        """
        query = """INSERT INTO reservations (id, advisor_id, session_date, slot_label, status, reference_code, student_id, details)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (advisor_id, session_date, slot_label) WHERE status IN ('Pending', 'Confirmed') DO NOTHING
                   RETURNING id;"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (reservation.id, reservation.advisor_id, reservation.session_date,
                                       reservation.slot_label, ReservationStatus(reservation.status).value,
                                       reservation.reference_code, reservation.student_id, Json(reservation.details)))
                inserted = cursor.fetchone()
        if inserted is None:
            logger.info("Reservation insert skipped, slot %s on %s already held", reservation.slot_label, reservation.session_date)
            return False
        return True

    def find_reservation(self, reference_code: str) -> Optional[Reservation]:
        query = f"SELECT {RESERVATION_COLUMNS} FROM reservations WHERE reference_code = %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, (reference_code,))
                row = cursor.fetchone()
        return self._row_to_reservation(row) if row else None

    def update_reservation_status(self, reservation_id: str, status: ReservationStatus, reason: Optional[str] = None) -> bool:
        """
        Status transitions belong to the cancellation and evaluation flows. Moving a reservation back to a live
        status fails (returns False) if someone else holds the slot by then.
        """
        query = """UPDATE reservations SET status = %s, cancellation_reason = COALESCE(%s, cancellation_reason),
                   updated_at = CURRENT_TIMESTAMP WHERE id = %s"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(query, (ReservationStatus(status).value, reason, reservation_id))
                except psycopg2.IntegrityError as e:
                    logger.error(f"Status update rejected: {e.args}")
                    return False
                updated = cursor.rowcount
        return updated == 1

    def insert_blocked_range(self, blocked_range: BlockedRange) -> str:
        query = """INSERT INTO blocked_ranges (advisor_id, blocked_date, start_time, end_time, reason, reason_details)
                   VALUES (%s, %s, %s, %s, %s, %s) RETURNING id::text;"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (blocked_range.advisor_id, blocked_range.blocked_date, blocked_range.start_time,
                                       blocked_range.end_time, blocked_range.reason, blocked_range.reason_details))
                range_id = cursor.fetchone()[0]
        return range_id

    def delete_blocked_range(self, advisor_id: str, range_id: str) -> bool:
        query = "DELETE FROM blocked_ranges WHERE id = %s AND advisor_id = %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(query, (range_id, advisor_id))
                except psycopg2.DataError:
                    # Not a uuid, so it can't exist
                    return False
                deleted = cursor.rowcount
        return deleted == 1

    @staticmethod
    def _table_exists(cursor, table_name: str) -> bool:
        cursor.execute("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = %s;
        """, (table_name,))
        return cursor.fetchone()[0] != 0

    def _setup_schema(self):
        """
        Internal function to set-up the database schema if the tables do not exist. Primarily used when being deployed in production.
        """
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                if not self._table_exists(cursor, 'reservations'):
                    logger.info("Setting up the reservations schema.")
                    cursor.execute("""
                        CREATE TABLE reservations (
                            id UUID PRIMARY KEY NOT NULL,
                            advisor_id text NOT NULL,
                            session_date date NOT NULL,
                            slot_label text NOT NULL,
                            status text NOT NULL DEFAULT 'Pending'
                                CHECK (status IN ('Pending', 'Confirmed', 'Completed', 'ToComplete', 'Cancelled', 'NoShow')),
                            reference_code text UNIQUE NOT NULL,
                            student_id text,
                            details JSONB NOT NULL DEFAULT '{}'::jsonb,
                            cancellation_reason text,
                            created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                            updated_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL
                        );""")
                    # At most one live reservation per advisor, date and slot
                    cursor.execute("""
                        CREATE UNIQUE INDEX live_reservation_slot
                        ON reservations (advisor_id, session_date, slot_label)
                        WHERE status IN ('Pending', 'Confirmed');""")
                if not self._table_exists(cursor, 'blocked_ranges'):
                    logger.info("Setting up the blocked_ranges schema.")
                    cursor.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
                    cursor.execute("""
                        CREATE TABLE blocked_ranges (
                            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                            advisor_id text NOT NULL,
                            blocked_date date NOT NULL,
                            start_time time NOT NULL,
                            end_time time NOT NULL,
                            reason text NOT NULL,
                            reason_details text,
                            created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                            CHECK (start_time < end_time)
                        );""")
                    cursor.execute("CREATE INDEX blocked_ranges_advisor_date ON blocked_ranges (advisor_id, blocked_date);")
