"""Tests for time log creation and reading."""
import logging

import pytest

from ado_mcp import azure_devops_config as config
from ado_mcp.errors import AzureDevOpsError, AzureDevOpsValidationError
from ado_mcp.tools.time_logs import create_time_log, get_iso_week, read_time_logs
from tests.conftest import IDENTITIES_PATH, TIME_LOGS_PATH, request_json


def entry(entry_id, date, user_id="user-1", work_item_id=10, date_week=None):
    return {
        "id": entry_id,
        "minutes": 30,
        "user": "Ana Dev",
        "userId": user_id,
        "date": date,
        "dateWeek": date_week or get_iso_week(date),
        "workItemId": work_item_id,
        "type": "Development - Project",
        "comment": "work",
    }


class TestIsoWeek:

    def test_mid_year(self):
        assert get_iso_week("2024-06-12") == "2024-W24"

    def test_single_digit_weeks_are_padded(self):
        assert get_iso_week("2024-01-03") == "2024-W01"

    def test_early_january_can_belong_to_previous_iso_year(self):
        assert get_iso_week("2021-01-01") == "2020-W53"

    def test_late_december_can_belong_to_next_iso_year(self):
        assert get_iso_week("2024-12-30") == "2025-W01"

    def test_invalid_date(self):
        with pytest.raises(AzureDevOpsValidationError):
            get_iso_week("12/06/2024")


class TestCreateTimeLog:

    async def test_posts_entry_for_current_user(self, fake_ado, ado_client):
        fake_ado.add_identity()
        fake_ado.add("POST", TIME_LOGS_PATH, status_code=201, json_body={"id": "doc-1"})

        result = await create_time_log(ado_client, 90, "2024-06-12", 42, "Testing", "Regression suite")

        assert result == {
            "id": "doc-1",
            "minutes": 90,
            "user": "Ana Dev",
            "userId": "user-1",
            "date": "2024-06-12",
            "dateWeek": "2024-W24",
            "workItemId": 42,
            "type": "Testing",
            "comment": "Regression suite",
        }
        request = fake_ado.sent("POST", TIME_LOGS_PATH)[0]
        assert request.headers["Accept"] == "application/json;api-version=3.1-preview.1;excludeUrls=true"
        assert request_json(request) == {k: v for k, v in result.items() if k != "id"}

    async def test_user_fallbacks(self, fake_ado, ado_client, monkeypatch):
        fake_ado.add_identity({"id": ""})
        fake_ado.add("POST", TIME_LOGS_PATH, json_body={})

        result = await create_time_log(ado_client, 15, "2024-06-12", 42, "Meeting", "Standup")
        assert result["user"] == "ana@contoso.com"
        assert result["userId"] == "Unknown User ID"
        assert result["id"] == "unknown"

        monkeypatch.setattr(config, "AZURE_DEVOPS_USERNAME", None)
        result = await create_time_log(ado_client, 15, "2024-06-12", 42, "Meeting", "Standup")
        assert result["user"] == "Unknown User"

    @pytest.mark.parametrize("kwargs, message", [
        ({"minutes": 0}, "Minutes must be a positive number"),
        ({"date": ""}, "Date is required"),
        ({"date": "2024/06/12"}, "YYYY-MM-DD"),
        ({"date": "2024-6-1"}, "YYYY-MM-DD"),
        ({"date": "2024-02-30"}, "YYYY-MM-DD"),
        ({"work_item_id": 0}, "Work item ID is required"),
        ({"type": ""}, "Type is required"),
        ({"type": "Coffee"}, "Unknown time log type"),
        ({"comment": ""}, "Comment is required"),
    ])
    async def test_validation(self, fake_ado, ado_client, kwargs, message):
        args = {
            "minutes": 30,
            "date": "2024-06-12",
            "work_item_id": 42,
            "type": "Testing",
            "comment": "ok",
            **kwargs,
        }
        with pytest.raises(AzureDevOpsValidationError, match=message):
            await create_time_log(ado_client, **args)
        assert fake_ado.sent("POST", TIME_LOGS_PATH) == []

    async def test_validation_errors_are_logged_without_traceback(self, fake_ado, ado_client, caplog):
        with caplog.at_level(logging.DEBUG, logger="ado_mcp.tools.time_logs"):
            with pytest.raises(AzureDevOpsValidationError):
                await create_time_log(ado_client, 30, "2024-6-1", 42, "Testing", "ok")

        records = [r for r in caplog.records if r.name == "ado_mcp.tools.time_logs"]
        assert [r.levelno for r in records] == [logging.WARNING]
        assert records[0].exc_info is None

    async def test_http_failure(self, fake_ado, ado_client):
        fake_ado.add_identity()
        fake_ado.add("POST", TIME_LOGS_PATH, status_code=500, json_body={"message": "extension error"})

        with pytest.raises(AzureDevOpsError, match="Failed to create time log entry"):
            await create_time_log(ado_client, 30, "2024-06-12", 42, "Testing", "ok")


class TestReadTimeLogs:

    ENTRIES = [
        entry("a", "2024-06-10", work_item_id=10),
        entry("b", "2024-06-14", work_item_id=11),
        entry("c", "2024-06-03", work_item_id=10),
        entry("d", "2024-06-12", user_id="someone-else"),
        entry("e", "2024-06-20", work_item_id=12),
    ]

    @pytest.fixture
    def time_log_api(self, fake_ado):
        fake_ado.add_identity()
        fake_ado.add("GET", TIME_LOGS_PATH, json_body={"count": len(self.ENTRIES), "value": self.ENTRIES})
        return fake_ado

    async def test_current_user_sorted_most_recent_first(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client)

        assert [e["id"] for e in result] == ["e", "b", "a", "c"]

    async def test_date_range_is_inclusive(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client, date_from="2024-06-10", date_to="2024-06-14")

        assert [e["id"] for e in result] == ["b", "a"]

    async def test_open_ended_range(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client, date_from="2024-06-14")

        assert [e["id"] for e in result] == ["e", "b"]

    async def test_date_to_only(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client, date_to="2024-06-10")

        assert [e["id"] for e in result] == ["a", "c"]

    async def test_date_week(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client, date_week="2024-W24")

        assert [e["id"] for e in result] == ["b", "a"]

    async def test_work_item_ids(self, time_log_api, ado_client):
        result = await read_time_logs(ado_client, work_item_ids=[10, 12])

        assert [e["id"] for e in result] == ["e", "a", "c"]

    async def test_unknown_user_keeps_all_entries(self, fake_ado, ado_client):
        fake_ado.add_identity({"id": ""})
        fake_ado.add("GET", TIME_LOGS_PATH, json_body={"count": len(self.ENTRIES), "value": self.ENTRIES})

        result = await read_time_logs(ado_client)

        assert len(result) == 5

    async def test_http_failure(self, fake_ado, ado_client):
        fake_ado.add("GET", TIME_LOGS_PATH, status_code=503, json_body={})

        with pytest.raises(AzureDevOpsError, match="Failed to read time log entries"):
            await read_time_logs(ado_client)

    async def test_identity_failure_propagates(self, fake_ado, ado_client):
        fake_ado.add("GET", TIME_LOGS_PATH, json_body={"count": 0, "value": []})
        fake_ado.add("GET", IDENTITIES_PATH, json_body={"count": 0, "value": []})

        with pytest.raises(AzureDevOpsError, match="No user data found"):
            await read_time_logs(ado_client)
