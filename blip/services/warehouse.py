"""
Warehouse Client - Executes parameterized SQL against Amazon Athena

One client is created at startup, stored on ``app.state.warehouse`` and
passed to the services that query the warehouse; it is closed at shutdown.
boto3 calls are blocking, so each one runs in the default executor.
"""

import asyncio
import time
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser as date_parser
import structlog

from blip.config.settings import Settings, get_settings
from blip.utils.aws_session import create_aws_client, get_default_retry_config

logger = structlog.get_logger(__name__)

INTEGER_TYPES = {"tinyint", "smallint", "integer", "int", "bigint"}
FLOAT_TYPES = {"double", "float", "real", "decimal"}


class WarehouseQueryError(Exception):
    """A warehouse query failed, was cancelled or timed out"""

    def __init__(self, message: str, query_execution_id: Optional[str] = None):
        self.query_execution_id = query_execution_id
        super().__init__(message)


def _convert(value: Optional[str], column_type: str) -> Any:
    """Convert an Athena VarCharValue using the column's declared type."""
    if value is None:
        return None
    try:
        if column_type in INTEGER_TYPES:
            return int(value)
        if column_type in FLOAT_TYPES:
            return float(value)
    except ValueError:
        return value
    if column_type == "boolean":
        return value.lower() == "true"
    if column_type == "date":
        try:
            return date_parser.parse(value).date().isoformat()
        except (ValueError, OverflowError):
            return value
    if column_type.startswith("timestamp"):
        try:
            return date_parser.parse(value).isoformat()
        except (ValueError, OverflowError):
            return value
    return value


def quote_parameter(value: Any) -> str:
    """
    Render a value as an Athena execution parameter.

    Athena substitutes parameters literally, so strings must carry their
    own quotes; embedded quotes are doubled.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


class WarehouseClient:
    """Athena query executor with polling and paginated result parsing"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        athena_client: Any = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.athena_client = athena_client or create_aws_client(
            "athena",
            region_name=self.settings.aws_region,
            config=get_default_retry_config(region_name=self.settings.aws_region),
        )
        self.database = self.settings.athena_database
        self.operations_table = self.settings.athena_operations_table
        self.contract_events_table = self.settings.athena_contract_events_table
        self._sleep = sleep
        self._closed = False

        logger.info(
            "warehouse_client_initialized",
            database=self.database,
            operations_table=self.operations_table,
            contract_events_table=self.contract_events_table,
            workgroup=self.settings.athena_workgroup,
        )

    async def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(getattr(self.athena_client, method), **kwargs))

    async def run_query(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a query and return its rows as dicts keyed by column name.

        Args:
            sql: SQL text with ``?`` placeholders
            parameters: Values bound to the placeholders, in order

        Raises:
            WarehouseQueryError: On Athena failure, cancellation or timeout
        """
        if self._closed:
            raise WarehouseQueryError("Warehouse client is closed")

        kwargs: Dict[str, Any] = {
            "QueryString": sql,
            "QueryExecutionContext": {"Database": self.database},
        }
        if parameters:
            kwargs["ExecutionParameters"] = [quote_parameter(p) for p in parameters]
        if self.settings.athena_output_location:
            kwargs["ResultConfiguration"] = {"OutputLocation": self.settings.athena_output_location}
        if self.settings.athena_workgroup:
            kwargs["WorkGroup"] = self.settings.athena_workgroup

        started = time.monotonic()
        try:
            response = await self._call("start_query_execution", **kwargs)
            query_execution_id = response["QueryExecutionId"]
            await self._wait_for_completion(query_execution_id, started)
            rows = await self._fetch_results(query_execution_id)
        except (ClientError, BotoCoreError) as e:
            logger.error("warehouse_query_client_error", error=str(e))
            raise WarehouseQueryError(f"Athena request failed: {e}") from e

        logger.debug(
            "warehouse_query_completed",
            query_execution_id=query_execution_id,
            rows=len(rows),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return rows

    async def _wait_for_completion(self, query_execution_id: str, started: float) -> None:
        timeout = self.settings.athena_query_timeout_seconds
        while True:
            status_response = await self._call("get_query_execution", QueryExecutionId=query_execution_id)
            status = status_response["QueryExecution"]["Status"]
            state = status["State"]

            if state == "SUCCEEDED":
                return
            if state in ("FAILED", "CANCELLED"):
                reason = status.get("StateChangeReason", "Unknown")
                logger.error(
                    "warehouse_query_failed",
                    query_execution_id=query_execution_id,
                    state=state,
                    reason=reason,
                )
                raise WarehouseQueryError(f"Query {state}: {reason}", query_execution_id)

            if time.monotonic() - started > timeout:
                await self._call("stop_query_execution", QueryExecutionId=query_execution_id)
                logger.error(
                    "warehouse_query_timeout",
                    query_execution_id=query_execution_id,
                    timeout_seconds=timeout,
                )
                raise WarehouseQueryError(f"Query timed out after {timeout} seconds", query_execution_id)

            await self._sleep(self.settings.athena_poll_interval_seconds)

    async def _fetch_results(self, query_execution_id: str) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        next_token = None
        columns = None

        while True:
            kwargs = {"QueryExecutionId": query_execution_id}
            if next_token:
                kwargs["NextToken"] = next_token
            result_response = await self._call("get_query_results", **kwargs)
            result_set = result_response["ResultSet"]
            rows = result_set.get("Rows", [])

            if columns is None:
                columns = [
                    (info["Name"], info.get("Type", "varchar").lower())
                    for info in result_set["ResultSetMetadata"]["ColumnInfo"]
                ]
                # first page starts with the header row
                rows = rows[1:]

            for row in rows:
                data = row.get("Data", [])
                results.append({
                    name: _convert(data[i].get("VarCharValue") if i < len(data) else None, column_type)
                    for i, (name, column_type) in enumerate(columns)
                })

            next_token = result_response.get("NextToken")
            if not next_token:
                return results

    async def test_connection(self) -> bool:
        """Run a trivial count against the operations table."""
        try:
            await self.run_query(f"SELECT COUNT(*) AS row_count FROM {self.operations_table} LIMIT 1")
            logger.info("warehouse_connection_ok", database=self.database)
            return True
        except WarehouseQueryError as e:
            logger.error("warehouse_connection_failed", error=str(e))
            return False

    async def close(self) -> None:
        self._closed = True
        close = getattr(self.athena_client, "close", None)
        if close is not None:
            close()
        logger.info("warehouse_client_closed")
