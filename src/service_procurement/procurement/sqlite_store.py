"""
SQLite Workflow Store - durable WorkflowStore adapter

Requests, offers and evaluations are stored as JSON documents next to the
columns the atomic primitives filter on. Every write runs inside a
BEGIN IMMEDIATE transaction, so the status check and the write happen under
SQLite's reserved lock and compare-and-set holds across connections and
processes. Lock contention is retried with exponential backoff; a write that
still cannot get the lock surfaces as Conflict.
"""

import sqlite3
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, TypeVar

from service_procurement.kernel.errors import (
    Conflict,
    RequestNotFound,
    StatusConflict,
)
from service_procurement.kernel.logging import get_logger
from service_procurement.kernel.retry import retry_on_sqlite_lock
from service_procurement.procurement.models import (
    Evaluation,
    Offer,
    RequestStatus,
    Role,
    ServiceRequest,
)
from service_procurement.procurement.store import (
    AppliedCommand,
    CommandStamp,
    OfferInsertion,
    apply_patch,
    check_offer_admissible,
    close_on_full_quota,
)

logger = get_logger(__name__)

T = TypeVar("T")


class SQLiteWorkflowStore:
    """
    SQLite-based implementation of WorkflowStore

    Schema:
    - requests: one row per request, status/revision columns + doc_json
    - offers: append-only, seq preserves submission order
    - evaluations: one row per (request_id, evaluator_role)
    - commands: applied command ids with their action and caller, for
      idempotent retries
    """

    def __init__(self, db_path: str | Path, busy_timeout_ms: int = 5000) -> None:
        """
        Initialize store with SQLite database

        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long one attempt waits on a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS requests (
                    request_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    revision INTEGER NOT NULL,
                    doc_json TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS offers (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    offer_id TEXT NOT NULL UNIQUE,
                    request_id TEXT NOT NULL,
                    bidding_round INTEGER NOT NULL,
                    provider_username TEXT NOT NULL,
                    doc_json TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS evaluations (
                    request_id TEXT NOT NULL,
                    evaluator_role TEXT NOT NULL,
                    doc_json TEXT NOT NULL,
                    PRIMARY KEY (request_id, evaluator_role)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS commands (
                    command_id TEXT PRIMARY KEY,
                    request_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    actor_username TEXT NOT NULL,
                    actor_role TEXT NOT NULL
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_offers_request "
                "ON offers(request_id, bidding_round)"
            )
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection in autocommit mode; transactions are opened explicitly"""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolled back on any exception"""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _write(self, request_id: str, operation: Callable[[], T]) -> T:
        """Run a retried write, turning exhausted lock retries into Conflict"""
        try:
            return operation()
        except sqlite3.OperationalError as e:
            logger.error(
                "SQLite write failed after retries",
                request_id=request_id,
                error=str(e),
            )
            raise Conflict(request_id, f"Database busy, write not applied: {e}") from e

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load_request_row(conn: sqlite3.Connection, request_id: str) -> ServiceRequest | None:
        row = conn.execute(
            "SELECT doc_json FROM requests WHERE request_id = ?", (request_id,)
        ).fetchone()
        return ServiceRequest.model_validate_json(row["doc_json"]) if row else None

    @staticmethod
    def _save_request_row(conn: sqlite3.Connection, request: ServiceRequest) -> None:
        conn.execute(
            """
            UPDATE requests SET status = ?, revision = ?, doc_json = ?
            WHERE request_id = ?
            """,
            (
                request.status.value,
                request.revision,
                request.model_dump_json(),
                request.request_id,
            ),
        )

    @staticmethod
    def _record_command(
        conn: sqlite3.Connection, command: CommandStamp | None, request_id: str
    ) -> None:
        if command is not None:
            conn.execute(
                """
                INSERT OR IGNORE INTO commands (
                    command_id, request_id, action, actor_username, actor_role
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    command.command_id,
                    request_id,
                    command.action,
                    command.actor_username,
                    command.actor_role,
                ),
            )

    @staticmethod
    def _round_offers(
        conn: sqlite3.Connection, request_id: str, bidding_round: int | None
    ) -> list[Offer]:
        if bidding_round is None:
            rows = conn.execute(
                "SELECT doc_json FROM offers WHERE request_id = ? ORDER BY seq",
                (request_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT doc_json FROM offers WHERE request_id = ? AND bidding_round = ? "
                "ORDER BY seq",
                (request_id, bidding_round),
            ).fetchall()
        return [Offer.model_validate_json(row["doc_json"]) for row in rows]

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def insert_request(
        self, request: ServiceRequest, command: CommandStamp | None = None
    ) -> ServiceRequest:
        @retry_on_sqlite_lock()
        def _insert() -> ServiceRequest:
            with self._transaction() as conn:
                try:
                    conn.execute(
                        """
                        INSERT INTO requests (
                            request_id, status, created_by, created_at, revision, doc_json
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            request.request_id,
                            request.status.value,
                            request.created_by,
                            request.created_at.isoformat(),
                            request.revision,
                            request.model_dump_json(),
                        ),
                    )
                except sqlite3.IntegrityError as e:
                    raise Conflict(
                        request.request_id, f"Request {request.request_id} already exists"
                    ) from e
                self._record_command(conn, command, request.request_id)
            return request

        return self._write(request.request_id, _insert)

    def load_request(self, request_id: str) -> ServiceRequest | None:
        with self._connect() as conn:
            return self._load_request_row(conn, request_id)

    def compare_and_set_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        patch: dict[str, Any],
        command: CommandStamp | None = None,
    ) -> ServiceRequest:
        expected = RequestStatus(expected_status)

        @retry_on_sqlite_lock()
        def _cas() -> ServiceRequest:
            with self._transaction() as conn:
                current = self._load_request_row(conn, request_id)
                if current is None:
                    raise RequestNotFound(request_id)
                if current.status != expected:
                    raise StatusConflict(request_id, expected.value, current.status.value)
                updated = apply_patch(current, patch)
                self._save_request_row(conn, updated)
                self._record_command(conn, command, request_id)
            return updated

        return self._write(request_id, _cas)

    def delete_request(
        self,
        request_id: str,
        expected_status: RequestStatus,
        command: CommandStamp | None = None,
    ) -> None:
        expected = RequestStatus(expected_status)

        @retry_on_sqlite_lock()
        def _delete() -> None:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT status FROM requests WHERE request_id = ?", (request_id,)
                ).fetchone()
                if row is None:
                    raise RequestNotFound(request_id)
                if row["status"] != expected.value:
                    raise StatusConflict(request_id, expected.value, row["status"])
                conn.execute("DELETE FROM offers WHERE request_id = ?", (request_id,))
                conn.execute("DELETE FROM evaluations WHERE request_id = ?", (request_id,))
                conn.execute("DELETE FROM requests WHERE request_id = ?", (request_id,))
                self._record_command(conn, command, request_id)

        self._write(request_id, _delete)

    def list_requests(self, status: RequestStatus | None = None) -> list[ServiceRequest]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT doc_json FROM requests ORDER BY created_at, request_id"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT doc_json FROM requests WHERE status = ? "
                    "ORDER BY created_at, request_id",
                    (RequestStatus(status).value,),
                ).fetchall()
        return [ServiceRequest.model_validate_json(row["doc_json"]) for row in rows]

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def list_offers(
        self, request_id: str, bidding_round: int | None = None
    ) -> list[Offer]:
        with self._connect() as conn:
            return self._round_offers(conn, request_id, bidding_round)

    def get_offer(self, offer_id: str) -> Offer | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM offers WHERE offer_id = ?", (offer_id,)
            ).fetchone()
        return Offer.model_validate_json(row["doc_json"]) if row else None

    def insert_offer_if_under_quota(
        self,
        offer: Offer,
        max_offers: int,
        max_per_provider: int | None = None,
        command: CommandStamp | None = None,
        close_patch: dict[str, Any] | None = None,
    ) -> OfferInsertion:
        @retry_on_sqlite_lock()
        def _insert() -> OfferInsertion:
            with self._transaction() as conn:
                request = self._load_request_row(conn, offer.request_id)
                if request is None:
                    raise RequestNotFound(offer.request_id)
                round_offers = self._round_offers(conn, offer.request_id, offer.bidding_round)
                check_offer_admissible(
                    request, offer, round_offers, max_offers, max_per_provider
                )
                count = len(round_offers) + 1
                closed = close_on_full_quota(request, count, max_offers, close_patch)
                conn.execute(
                    """
                    INSERT INTO offers (
                        offer_id, request_id, bidding_round, provider_username, doc_json
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        offer.offer_id,
                        offer.request_id,
                        offer.bidding_round,
                        offer.provider_username,
                        offer.model_dump_json(),
                    ),
                )
                if closed is not None:
                    self._save_request_row(conn, closed)
                self._record_command(conn, command, offer.request_id)
            return OfferInsertion(count, closed or request, closed is not None)

        return self._write(offer.request_id, _insert)

    # ------------------------------------------------------------------
    # Evaluations
    # ------------------------------------------------------------------

    def upsert_evaluation(
        self,
        request_id: str,
        role: Role,
        evaluation: Evaluation,
        command: CommandStamp | None = None,
    ) -> Evaluation:
        @retry_on_sqlite_lock()
        def _upsert() -> Evaluation:
            with self._transaction() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM requests WHERE request_id = ?", (request_id,)
                ).fetchone()
                if exists is None:
                    raise RequestNotFound(request_id)
                conn.execute(
                    """
                    INSERT INTO evaluations (request_id, evaluator_role, doc_json)
                    VALUES (?, ?, ?)
                    ON CONFLICT(request_id, evaluator_role)
                    DO UPDATE SET doc_json = excluded.doc_json
                    """,
                    (request_id, Role(role).value, evaluation.model_dump_json()),
                )
                self._record_command(conn, command, request_id)
            return evaluation

        return self._write(request_id, _upsert)

    def load_evaluation(self, request_id: str, role: Role) -> Evaluation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM evaluations WHERE request_id = ? AND evaluator_role = ?",
                (request_id, Role(role).value),
            ).fetchone()
        return Evaluation.model_validate_json(row["doc_json"]) if row else None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def was_command_applied(self, command_id: str) -> bool:
        return self.load_command(command_id) is not None

    def load_command(self, command_id: str) -> AppliedCommand | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT request_id, action, actor_username, actor_role "
                "FROM commands WHERE command_id = ?",
                (command_id,),
            ).fetchone()
        if row is None:
            return None
        return AppliedCommand(
            row["request_id"], row["action"], row["actor_username"], row["actor_role"]
        )

    def stats(self) -> dict[str, Any]:
        """Row counts per table"""
        with self._connect() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("requests", "offers", "evaluations", "commands")
            }
