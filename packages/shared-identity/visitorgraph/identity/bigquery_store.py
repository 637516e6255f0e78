"""Observation and identity link storage in BigQuery.

Observations and links live in two tables of one dataset. Link writes go
through a MERGE keyed on the unordered pair so that concurrent writers in
different processes keep at most one active link per pair.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from visitorgraph.identity.config import BigQueryStoreConfig
from visitorgraph.identity.exceptions import PersistenceError
from visitorgraph.identity.models import IdentityLink, LinkStatus, pair_key
from visitorgraph.identity.observation import (
    NameParts,
    Observation,
    ObservationSource,
    parse_timestamp,
)
from visitorgraph.identity.store import ObservationStore

if TYPE_CHECKING:
    from google.cloud import bigquery

logger = logging.getLogger(__name__)

CREATE_OBSERVATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{table_id}` (
    id STRING NOT NULL,
    source STRING NOT NULL,
    email STRING,
    email_hash STRING,
    email_domain STRING,
    phone STRING,
    full_name STRING,
    first_name STRING,
    middle_name STRING,
    last_name STRING,
    device_fingerprint STRING,
    device_type STRING,
    ip_address STRING,
    ip_bucket STRING,
    user_agent STRING,
    session_id STRING,
    additional_data JSON,
    collected_at TIMESTAMP NOT NULL
)
PARTITION BY DATE(collected_at)
CLUSTER BY email_hash, ip_address
"""

CREATE_LINKS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{table_id}` (
    id STRING NOT NULL,
    observation_id_1 STRING NOT NULL,
    observation_id_2 STRING NOT NULL,
    pair_key STRING NOT NULL,
    link_type STRING NOT NULL,
    confidence_level STRING NOT NULL,
    link_strength FLOAT64 NOT NULL,
    match_data JSON,
    status STRING DEFAULT 'active',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP(),
    updated_at TIMESTAMP
)
CLUSTER BY pair_key, status
"""

OBSERVATION_COLUMNS = [
    ("id", "STRING"),
    ("source", "STRING"),
    ("email", "STRING"),
    ("email_hash", "STRING"),
    ("email_domain", "STRING"),
    ("phone", "STRING"),
    ("full_name", "STRING"),
    ("first_name", "STRING"),
    ("middle_name", "STRING"),
    ("last_name", "STRING"),
    ("device_fingerprint", "STRING"),
    ("device_type", "STRING"),
    ("ip_address", "STRING"),
    ("ip_bucket", "STRING"),
    ("user_agent", "STRING"),
    ("session_id", "STRING"),
    ("additional_data", "STRING"),
    ("collected_at", "TIMESTAMP"),
]


def _timestamp(value: datetime) -> str:
    """Render a TIMESTAMP parameter as an ISO 8601 string in UTC."""
    return value.astimezone(UTC).isoformat()


class BigQueryObservationStore(ObservationStore):
    """ObservationStore backed by BigQuery.

    All client and query failures are raised as PersistenceError.

    Example:
        >>> store = BigQueryObservationStore(project_id="my-project")
        >>> store.ensure_tables_exist()
        >>> store.save_observation(observation)
        >>> store.find_by_email("jane@example.com")
        [Observation(...)]
    """

    def __init__(
        self,
        project_id: str | None = None,
        dataset: str | None = None,
        client: bigquery.Client | None = None,
        config: BigQueryStoreConfig | None = None,
    ):
        """Initialize the store.

        Args:
            project_id: GCP project ID. Defaults to the configured project.
            dataset: Dataset holding both tables. Defaults to the configured dataset.
            client: Optional BigQuery client. Will be created if not provided.
            config: Store configuration. Loaded from the environment if omitted.
        """
        self.config = config or BigQueryStoreConfig.from_env()
        self.project_id = project_id or self.config.project_id
        self.dataset = dataset or self.config.dataset
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        """Lazy-initialize BigQuery client."""
        if self._client is None:
            from google.cloud import bigquery

            self._client = bigquery.Client(
                project=self.project_id,
                location=self.config.location,
            )
        return self._client

    @property
    def observations_table(self) -> str:
        """Full table ID for the observations table."""
        return f"{self.project_id}.{self.dataset}.observations"

    @property
    def links_table(self) -> str:
        """Full table ID for the identity links table."""
        return f"{self.project_id}.{self.dataset}.identity_links"

    def ensure_tables_exist(self) -> None:
        """Create the observations and identity links tables if missing."""
        self._run(CREATE_OBSERVATIONS_TABLE_SQL.format(table_id=self.observations_table))
        self._run(CREATE_LINKS_TABLE_SQL.format(table_id=self.links_table))
        logger.info(f"Ensured identity tables exist in {self.project_id}.{self.dataset}")

    # Query plumbing

    def _run(
        self,
        sql: str,
        params: list[tuple[str, str, Any]] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Execute a parameterized query and wait for its result.

        Args:
            sql: SQL text using @name parameters.
            params: (name, type, value) triples.
            timeout: Seconds to wait for the result. Defaults to config.timeout.

        Raises:
            PersistenceError: If the query cannot be run or times out.
        """
        from google.cloud import bigquery

        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter(name, type_, value)
                for name, type_, value in params or []
            ]
        )
        try:
            job = self.client.query(sql, job_config=job_config)
            return job.result(timeout=timeout if timeout is not None else self.config.timeout)
        except Exception as e:
            raise PersistenceError(f"BigQuery query failed: {e}") from e

    def _select_observations(
        self,
        where: str,
        params: list[tuple[str, str, Any]],
        suffix: str = "",
        timeout: float | None = None,
    ) -> list[Observation]:
        sql = f"""
        SELECT *
        FROM `{self.observations_table}`
        WHERE {where}
        {suffix}
        """
        result = self._run(sql, params, timeout=timeout)
        return [self._row_to_observation(row) for row in result]

    # Observations

    def save_observation(self, observation: Observation) -> None:
        row = self._observation_to_row(observation)
        sql = f"""
        MERGE `{self.observations_table}` AS target
        USING (SELECT @id AS id) AS source
        ON target.id = source.id
        WHEN NOT MATCHED THEN
            INSERT ({", ".join(name for name, _ in OBSERVATION_COLUMNS)})
            VALUES ({", ".join(
                "PARSE_JSON(@additional_data)" if name == "additional_data" else f"@{name}"
                for name, _ in OBSERVATION_COLUMNS
            )})
        """
        result = self._run(
            sql, [(name, type_, row[name]) for name, type_ in OBSERVATION_COLUMNS]
        )
        if not (result.num_dml_affected_rows or 0):
            raise PersistenceError(f"Observation already stored: {observation.id}")
        logger.debug(f"Stored observation {observation.id} ({observation.source.value})")

    def get_observation(self, observation_id: str) -> Observation | None:
        rows = self._select_observations(
            "id = @id", [("id", "STRING", observation_id)], suffix="LIMIT 1"
        )
        return rows[0] if rows else None

    def find_by_email(self, email: str) -> list[Observation]:
        return self._select_observations("email = @email", [("email", "STRING", email)])

    def find_by_email_hash(self, email_hash: str) -> list[Observation]:
        return self._select_observations(
            "email_hash = @email_hash", [("email_hash", "STRING", email_hash)]
        )

    def find_by_phone(self, phone: str) -> list[Observation]:
        return self._select_observations("phone = @phone", [("phone", "STRING", phone)])

    def find_by_device_fingerprint(self, fingerprint: str) -> list[Observation]:
        return self._select_observations(
            "device_fingerprint = @fingerprint", [("fingerprint", "STRING", fingerprint)]
        )

    def find_by_name_and_domain(
        self, first_name: str, last_name: str, email_domain: str
    ) -> list[Observation]:
        return self._select_observations(
            "LOWER(first_name) = LOWER(@first_name) "
            "AND LOWER(last_name) = LOWER(@last_name) "
            "AND email_domain = @email_domain",
            [
                ("first_name", "STRING", first_name),
                ("last_name", "STRING", last_name),
                ("email_domain", "STRING", email_domain),
            ],
        )

    def find_by_ip_bucket(self, bucket: str) -> list[Observation]:
        return self._select_observations("ip_bucket = @bucket", [("bucket", "STRING", bucket)])

    def find_by_ip(self, ip_address: str, since: datetime | None = None) -> list[Observation]:
        where = "ip_address = @ip_address"
        params: list[tuple[str, str, Any]] = [("ip_address", "STRING", ip_address)]
        if since is not None:
            where += " AND collected_at >= @since"
            params.append(("since", "TIMESTAMP", _timestamp(since)))
        return self._select_observations(where, params)

    def find_behavioral_candidates(
        self,
        observation: Observation,
        since: datetime,
        hour_range: tuple[int, int],
        limit: int,
        timeout: float | None = None,
    ) -> list[Observation]:
        low_hour, high_hour = hour_range
        where = """
            id != @id
            AND collected_at >= @since
            AND (@session_id IS NULL OR session_id IS NULL OR session_id != @session_id)
            AND (
                (@ip_address IS NOT NULL AND ip_address = @ip_address)
                OR device_type = @device_type
                OR EXTRACT(HOUR FROM collected_at) BETWEEN @low_hour AND @high_hour
            )
        """
        params: list[tuple[str, str, Any]] = [
            ("id", "STRING", observation.id),
            ("since", "TIMESTAMP", _timestamp(since)),
            ("session_id", "STRING", observation.session_id),
            ("ip_address", "STRING", observation.ip_address),
            ("device_type", "STRING", observation.device_type),
            ("low_hour", "INT64", low_hour),
            ("high_hour", "INT64", high_hour),
            ("limit", "INT64", limit),
        ]
        return self._select_observations(
            where,
            params,
            suffix="ORDER BY collected_at DESC LIMIT @limit",
            timeout=timeout,
        )

    # Links

    def get_active_link(self, observation_id_1: str, observation_id_2: str) -> IdentityLink | None:
        sql = f"""
        SELECT *
        FROM `{self.links_table}`
        WHERE pair_key = @pair_key AND status = 'active'
        ORDER BY created_at
        LIMIT 1
        """
        key = "|".join(pair_key(observation_id_1, observation_id_2))
        rows = list(self._run(sql, [("pair_key", "STRING", key)]))
        return self._row_to_link(rows[0]) if rows else None

    def save_link(self, link: IdentityLink) -> IdentityLink:
        row = link.to_dict()
        sql = f"""
        MERGE `{self.links_table}` AS target
        USING (SELECT @pair_key AS pair_key, @id AS id) AS source
        ON target.id = source.id
            OR (target.pair_key = source.pair_key
                AND target.status = 'active'
                AND @status = 'active')
        WHEN MATCHED THEN
            UPDATE SET
                link_type = @link_type,
                confidence_level = @confidence_level,
                link_strength = @link_strength,
                match_data = PARSE_JSON(@match_data),
                status = @status,
                updated_at = @updated_at
        WHEN NOT MATCHED THEN
            INSERT (
                id, observation_id_1, observation_id_2, pair_key, link_type,
                confidence_level, link_strength, match_data, status,
                created_at, updated_at
            )
            VALUES (
                @id, @observation_id_1, @observation_id_2, @pair_key, @link_type,
                @confidence_level, @link_strength, PARSE_JSON(@match_data), @status,
                @created_at, @updated_at
            )
        """
        self._run(
            sql,
            [
                ("id", "STRING", row["id"]),
                ("observation_id_1", "STRING", row["observation_id_1"]),
                ("observation_id_2", "STRING", row["observation_id_2"]),
                ("pair_key", "STRING", row["pair_key"]),
                ("link_type", "STRING", row["link_type"]),
                ("confidence_level", "STRING", row["confidence_level"]),
                ("link_strength", "FLOAT64", row["link_strength"]),
                ("match_data", "STRING", row["match_data"]),
                ("status", "STRING", row["status"]),
                ("created_at", "TIMESTAMP", _timestamp(link.created_at)),
                (
                    "updated_at",
                    "TIMESTAMP",
                    _timestamp(link.updated_at) if link.updated_at else None,
                ),
            ],
        )
        logger.debug(f"Saved link {link.id} ({row['pair_key']})")

        if link.is_active:
            stored = self.get_active_link(link.observation_id_1, link.observation_id_2)
            if stored is not None:
                return stored
        return link

    def links_for(self, observation_id: str, active_only: bool = True) -> list[IdentityLink]:
        sql = f"""
        SELECT *
        FROM `{self.links_table}`
        WHERE (observation_id_1 = @observation_id OR observation_id_2 = @observation_id)
        """
        if active_only:
            sql += " AND status = 'active'"
        sql += " ORDER BY created_at"

        result = self._run(sql, [("observation_id", "STRING", observation_id)])
        return [self._row_to_link(row) for row in result]

    def revoke_link(self, link_id: str) -> bool:
        sql = f"""
        UPDATE `{self.links_table}`
        SET status = @status, updated_at = @updated_at
        WHERE id = @id AND status = 'active'
        """
        result = self._run(
            sql,
            [
                ("id", "STRING", link_id),
                ("status", "STRING", LinkStatus.REVOKED.value),
                ("updated_at", "TIMESTAMP", _timestamp(datetime.now(UTC))),
            ],
        )
        revoked = (result.num_dml_affected_rows or 0) > 0
        if revoked:
            logger.info(f"Revoked identity link: {link_id}")
        return revoked

    # Row conversion

    def _observation_to_row(self, observation: Observation) -> dict[str, Any]:
        return {
            "id": observation.id,
            "source": observation.source.value,
            "email": observation.email,
            "email_hash": observation.email_hash,
            "email_domain": observation.email_domain,
            "phone": observation.phone,
            "full_name": observation.full_name,
            "first_name": observation.name_parts.first or None,
            "middle_name": observation.name_parts.middle or None,
            "last_name": observation.name_parts.last or None,
            "device_fingerprint": observation.device_fingerprint,
            "device_type": observation.device_type,
            "ip_address": observation.ip_address,
            "ip_bucket": observation.ip_bucket,
            "user_agent": observation.user_agent,
            "session_id": observation.session_id,
            "additional_data": json.dumps(observation.additional_data, default=str),
            "collected_at": _timestamp(observation.collected_at),
        }

    def _row_to_observation(self, row: Any) -> Observation:
        """Convert a BigQuery row to an Observation.

        Raises:
            TypeError: If additional_data has an unexpected type.
        """
        additional_data = row.get("additional_data")
        if isinstance(additional_data, str):
            additional_data = json.loads(additional_data)
        elif isinstance(additional_data, dict):
            pass  # Already parsed
        elif additional_data is None:
            additional_data = {}
        else:
            raise TypeError(
                f"Unexpected type for additional_data: {type(additional_data).__name__}. "
                f"Expected str, dict, or None."
            )

        return Observation(
            id=row["id"],
            source=ObservationSource(row["source"]),
            email=row.get("email"),
            email_hash=row.get("email_hash"),
            phone=row.get("phone"),
            full_name=row.get("full_name"),
            name_parts=NameParts(
                first=row.get("first_name") or "",
                middle=row.get("middle_name") or "",
                last=row.get("last_name") or "",
            ),
            device_fingerprint=row.get("device_fingerprint"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            session_id=row.get("session_id"),
            additional_data=additional_data,
            collected_at=parse_timestamp(row.get("collected_at")),
        )

    def _row_to_link(self, row: Any) -> IdentityLink:
        return IdentityLink.from_dict(dict(row.items()))
