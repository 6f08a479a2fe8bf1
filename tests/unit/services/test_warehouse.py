"""
Tests for the Athena warehouse client.

The boto3 Athena client is replaced by a Mock; polling sleeps are AsyncMocks.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from botocore.exceptions import ClientError

from blip.services.warehouse import WarehouseClient, WarehouseQueryError, _convert, quote_parameter


def _column(name, type_):
    return {"Name": name, "Type": type_}


def _row(*values):
    return {"Data": [{"VarCharValue": v} if v is not None else {} for v in values]}


@pytest.fixture
def athena():
    client = Mock()
    client.start_query_execution.return_value = {"QueryExecutionId": "qe-1"}
    client.get_query_execution.return_value = {
        "QueryExecution": {"Status": {"State": "SUCCEEDED"}}
    }
    client.get_query_results.return_value = {
        "ResultSet": {
            "ResultSetMetadata": {"ColumnInfo": [
                _column("contract_id", "varchar"),
                _column("transaction_count", "bigint"),
                _column("avg_fee", "double"),
                _column("successful", "boolean"),
                _column("date", "timestamp"),
            ]},
            "Rows": [
                _row("contract_id", "transaction_count", "avg_fee", "successful", "date"),
                _row("CABC", "12", "101.5", "true", "2026-01-20 13:00:00.000"),
                _row("CDEF", None, None, "false", None),
            ],
        }
    }
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def client(settings, athena, sleep):
    return WarehouseClient(settings, athena_client=athena, sleep=sleep)


class TestRunQuery:
    """Test WarehouseClient.run_query()"""

    @pytest.mark.asyncio
    async def test_rows_are_typed_dicts(self, client):
        rows = await client.run_query("SELECT 1")

        assert rows == [
            {
                "contract_id": "CABC",
                "transaction_count": 12,
                "avg_fee": 101.5,
                "successful": True,
                "date": "2026-01-20T13:00:00",
            },
            {
                "contract_id": "CDEF",
                "transaction_count": None,
                "avg_fee": None,
                "successful": False,
                "date": None,
            },
        ]

    @pytest.mark.asyncio
    async def test_request_shape(self, client, athena, settings):
        await client.run_query("SELECT * FROM t WHERE contract_id = ?", ["C'X", 5])

        kwargs = athena.start_query_execution.call_args.kwargs
        assert kwargs["QueryString"] == "SELECT * FROM t WHERE contract_id = ?"
        assert kwargs["QueryExecutionContext"] == {"Database": settings.athena_database}
        assert kwargs["ExecutionParameters"] == ["'C''X'", "5"]
        assert kwargs["ResultConfiguration"] == {"OutputLocation": "s3://blip-test-results/"}
        assert "WorkGroup" not in kwargs

    @pytest.mark.asyncio
    async def test_no_parameters_omits_execution_parameters(self, client, athena):
        await client.run_query("SELECT 1")
        assert "ExecutionParameters" not in athena.start_query_execution.call_args.kwargs

    @pytest.mark.asyncio
    async def test_polls_until_succeeded(self, client, athena, sleep):
        athena.get_query_execution.side_effect = [
            {"QueryExecution": {"Status": {"State": "QUEUED"}}},
            {"QueryExecution": {"Status": {"State": "RUNNING"}}},
            {"QueryExecution": {"Status": {"State": "SUCCEEDED"}}},
        ]

        await client.run_query("SELECT 1")

        assert athena.get_query_execution.call_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_query_raises(self, client, athena):
        athena.get_query_execution.return_value = {
            "QueryExecution": {"Status": {"State": "FAILED", "StateChangeReason": "SYNTAX_ERROR"}}
        }

        with pytest.raises(WarehouseQueryError) as exc_info:
            await client.run_query("SELEC 1")

        assert exc_info.value.query_execution_id == "qe-1"
        assert "SYNTAX_ERROR" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_stops_query(self, settings, athena, sleep):
        settings.athena_query_timeout_seconds = 0.0
        athena.get_query_execution.return_value = {
            "QueryExecution": {"Status": {"State": "RUNNING"}}
        }
        client = WarehouseClient(settings, athena_client=athena, sleep=sleep)

        with pytest.raises(WarehouseQueryError, match="timed out"):
            await client.run_query("SELECT 1")

        athena.stop_query_execution.assert_called_once_with(QueryExecutionId="qe-1")

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self, client, athena):
        athena.start_query_execution.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "StartQueryExecution"
        )

        with pytest.raises(WarehouseQueryError):
            await client.run_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_pagination_follows_next_token(self, client, athena):
        metadata = {"ColumnInfo": [_column("n", "integer")]}
        athena.get_query_results.side_effect = [
            {"ResultSet": {"ResultSetMetadata": metadata, "Rows": [_row("n"), _row("1")]}, "NextToken": "t2"},
            {"ResultSet": {"ResultSetMetadata": metadata, "Rows": [_row("2")]}},
        ]

        rows = await client.run_query("SELECT n")

        assert rows == [{"n": 1}, {"n": 2}]
        assert athena.get_query_results.call_args.kwargs == {"QueryExecutionId": "qe-1", "NextToken": "t2"}

    @pytest.mark.asyncio
    async def test_closed_client_refuses_queries(self, client, athena):
        await client.close()

        with pytest.raises(WarehouseQueryError):
            await client.run_query("SELECT 1")
        athena.close.assert_called_once()


class TestConnection:
    @pytest.mark.asyncio
    async def test_success(self, client):
        assert await client.test_connection() is True

    @pytest.mark.asyncio
    async def test_failure(self, client, athena):
        athena.get_query_execution.return_value = {
            "QueryExecution": {"Status": {"State": "FAILED"}}
        }
        assert await client.test_connection() is False


class TestConversions:
    @pytest.mark.parametrize("value,column_type,expected", [
        ("7", "bigint", 7),
        ("1.25", "double", 1.25),
        ("3.10", "decimal", 3.1),
        ("TRUE", "boolean", True),
        ("2026-01-20", "date", "2026-01-20"),
        ("2026-01-20 13:00:00.000", "timestamp", "2026-01-20T13:00:00"),
        ("not a number", "integer", "not a number"),
        ("{\"a\": 1}", "varchar", "{\"a\": 1}"),
        (None, "bigint", None),
    ])
    def test_convert(self, value, column_type, expected):
        assert _convert(value, column_type) == expected

    @pytest.mark.parametrize("value,expected", [
        ("abc", "'abc'"),
        ("it's", "'it''s'"),
        (10, "10"),
        (True, "true"),
    ])
    def test_quote_parameter(self, value, expected):
        assert quote_parameter(value) == expected
