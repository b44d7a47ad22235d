"""
Pie persistence in PostgreSQL.

Pies are written once and read back by id through the /pies endpoint.
Superseded pies are pruned per patient after each successful refresh so
repeated cycles don't accumulate copies.
"""

from typing import Iterable

from psycopg.types.json import Jsonb

from multifactor_risk.core.models import Pie
from multifactor_risk.observability import metrics
from multifactor_risk.observability.logger import get_logger
from multifactor_risk.utils.validation import ValidationError, validate_pie_id

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

PIE_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS pie (
        pie_id      TEXT PRIMARY KEY,
        patient_url TEXT NOT NULL,
        created     TIMESTAMP NOT NULL,
        slices      JSONB NOT NULL
    );
    CREATE INDEX IF NOT EXISTS pie_patient_url_idx ON pie (patient_url);
"""


class PieStore:
    """
    Stores pies keyed by their id.

    All writes go through INSERT ... ON CONFLICT so a retried insert of
    the same pie is harmless.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_schema(self) -> None:
        """Create the pie table if it doesn't exist yet."""
        self.pool.execute_command(PIE_TABLE_DDL)

    def save_pies(self, pies: Iterable[Pie]) -> int:
        """
        Insert a batch of pies in one transaction.

        Returns:
            Number of pies written
        """
        rows = [
            (
                pie.id,
                pie.patient,
                pie.created,
                Jsonb([pie_slice.model_dump(mode="json", by_alias=True) for pie_slice in pie.slices]),
            )
            for pie in pies
        ]
        if not rows:
            return 0

        query = """
            INSERT INTO pie (pie_id, patient_url, created, slices)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (pie_id) DO UPDATE SET
                patient_url = EXCLUDED.patient_url,
                created = EXCLUDED.created,
                slices = EXCLUDED.slices
        """

        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(query, rows)
            conn.commit()

        metrics.pies_stored_total.inc(len(rows))
        return len(rows)

    def get_pie(self, pie_id: str) -> Pie | None:
        """
        Look up a pie.

        Returns:
            The pie, or None if the id is malformed or unknown
        """
        try:
            pie_id = validate_pie_id(pie_id)
        except ValidationError:
            return None

        rows = self.pool.execute_query(
            "SELECT pie_id, patient_url, created, slices FROM pie WHERE pie_id = %s",
            (pie_id,),
        )
        if not rows:
            return None

        row = rows[0]
        return Pie(
            id=row["pie_id"],
            patient=row["patient_url"],
            created=row["created"],
            slices=row["slices"],
        )

    def delete_pies_except(self, patient_url: str, keep_ids: Iterable[str]) -> int:
        """
        Delete a patient's pies other than keep_ids.

        Returns:
            Number of pies deleted
        """
        deleted = self.pool.execute_command(
            "DELETE FROM pie WHERE patient_url = %s AND NOT (pie_id = ANY(%s::text[]))",
            (patient_url, list(keep_ids)),
        )
        if deleted:
            metrics.pies_pruned_total.inc(deleted)
            logger.debug(f"Pruned {deleted} superseded pies for {patient_url}")
        return deleted

    def count_pies(self, patient_url: str | None = None) -> int:
        if patient_url is None:
            rows = self.pool.execute_query("SELECT COUNT(*) AS total FROM pie")
        else:
            rows = self.pool.execute_query(
                "SELECT COUNT(*) AS total FROM pie WHERE patient_url = %s", (patient_url,)
            )
        return rows[0]["total"]
