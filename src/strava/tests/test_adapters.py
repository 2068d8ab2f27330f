"""Tests for the Supabase client and the Supabase-backed sync/detail sources."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from src.services.supabase import SupabaseClient
from src.strava.adapters.supabase import SupabaseActivitySource, SupabaseSyncSource
from src.strava.base import ActivityEnrichment
from src.strava.errors import (
    AuthError,
    EntityNotFound,
    RateLimitExceeded,
    TransientError,
    classify_error,
)
from src.strava.tests.conftest import make_detail

BASE_URL = "https://stride.supabase.test"

ACTIVITY_ROW = {
    "id": 42,
    "name": "Long Run",
    "type": "Run",
    "distance": 21097.5,
    "moving_time": 6900,
    "elapsed_time": 7010,
    "start_date": "2026-03-08T08:00:00Z",
    "average_heartrate": 152.3,
    "map_summary_polyline": "abc",
}


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> SupabaseClient:
    return SupabaseClient(
        url=BASE_URL,
        api_key="anon-key",
        access_token="user-jwt",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class TestClassifyError:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Rate limit exceeded", RateLimitExceeded),
            ("HTTP 429", RateLimitExceeded),
            ("Too Many Requests", RateLimitExceeded),
            ("Invalid token", AuthError),
            ("401 Unauthorized", AuthError),
            ("connection reset", TransientError),
        ],
    )
    def test_message_patterns(self, message: str, expected: type) -> None:
        classified = classify_error(RuntimeError(message))
        assert isinstance(classified, expected)
        assert classified.__cause__ is not None

    def test_existing_taxonomy_passes_through(self) -> None:
        original = AuthError()
        assert classify_error(original) is original

    def test_http_status_codes(self) -> None:
        request = httpx.Request("POST", BASE_URL)
        for status, expected in ((429, RateLimitExceeded), (403, AuthError), (503, TransientError)):
            exc = httpx.HTTPStatusError(
                "boom", request=request, response=httpx.Response(status, request=request)
            )
            assert isinstance(classify_error(exc), expected)

    def test_user_messages(self) -> None:
        assert RateLimitExceeded("HTTP 429 from Strava").user_message == "Strava API limit reached"
        assert AuthError("token revoked").user_message == "Strava authentication problem"
        assert TransientError().user_message == "Error during synchronization"


# ---------------------------------------------------------------------------
# SupabaseClient
# ---------------------------------------------------------------------------


class TestSupabaseClient:
    @pytest.mark.asyncio
    async def test_invoke_sends_auth_headers_and_body(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True})

        client = _client(handler)
        assert await client.invoke("get-activity-details", {"activityId": 42}) == {"ok": True}

        request = captured[0]
        assert request.url.path == "/functions/v1/get-activity-details"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer user-jwt"
        assert json.loads(request.content) == {"activityId": 42}

    @pytest.mark.asyncio
    async def test_error_body_is_classified(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"error": "Rate limit exceeded"}))
        with pytest.raises(RateLimitExceeded):
            await client.invoke("sync-strava-activities")

    @pytest.mark.asyncio
    async def test_http_401_is_auth_error(self) -> None:
        client = _client(lambda request: httpx.Response(401, json={"message": "JWT expired"}))
        with pytest.raises(AuthError):
            await client.invoke("sync-strava-activities")

    @pytest.mark.asyncio
    async def test_transport_failure_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientError):
            await _client(handler).invoke("sync-strava-activities")

    @pytest.mark.asyncio
    async def test_select_builds_postgrest_filters(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=[])

        await _client(handler).select(
            "strava_best_efforts", {"activity_id": 42}, order="distance.asc"
        )
        params = captured[0].url.params
        assert captured[0].url.path == "/rest/v1/strava_best_efforts"
        assert params["activity_id"] == "eq.42"
        assert params["order"] == "distance.asc"
        assert params["select"] == "*"

    @pytest.mark.asyncio
    async def test_select_one_raises_when_empty(self) -> None:
        client = _client(lambda request: httpx.Response(200, json=[]))
        with pytest.raises(EntityNotFound):
            await client.select_one("strava_activities", {"id": 1})


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class TestSupabaseSyncSource:
    @pytest.mark.asyncio
    async def test_parses_sync_response(self) -> None:
        body = {
            "activities_synced": 3,
            "stats": {
                "monthly": {"distance": 42000, "activitiesCount": 4, "duration": 12600},
                "yearly": {"distance": 310000, "activityCount": 31},
                "latest": {"name": "Easy", "distance": 6000, "date": "2026-03-13T07:00:00Z"},
            },
        }
        source = SupabaseSyncSource(_client(lambda request: httpx.Response(200, json=body)))
        result = await source.sync_activities()
        assert result.activities_synced == 3
        assert result.stats.monthly.activity_count == 4
        assert result.stats.yearly.activity_count == 31
        assert result.stats.latest.name == "Easy"

    @pytest.mark.asyncio
    async def test_missing_stats(self) -> None:
        source = SupabaseSyncSource(
            _client(lambda request: httpx.Response(200, json={"activities_synced": 0}))
        )
        result = await source.sync_activities()
        assert result.activities_synced == 0
        assert result.stats is None


class TestSupabaseActivitySource:
    @pytest.mark.asyncio
    async def test_fetch_primary_combines_row_and_best_efforts(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/strava_activities"):
                assert request.url.params["id"] == "eq.42"
                assert request.url.params["user_id"] == "user-1"
                return httpx.Response(200, json=[ACTIVITY_ROW])
            return httpx.Response(200, json=[{"name": "5k", "elapsed_time": 1400}])

        source = SupabaseActivitySource(_client(handler), user_id="user-1")
        detail = await source.fetch_primary(42)
        assert detail.id == 42
        assert detail.distance == 21097.5
        assert detail.best_efforts == [{"name": "5k", "elapsed_time": 1400}]
        assert detail.enriched is False

    @pytest.mark.asyncio
    async def test_best_effort_failure_degrades_to_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/strava_activities"):
                return httpx.Response(200, json=[ACTIVITY_ROW])
            return httpx.Response(500, json={"message": "boom"})

        detail = await SupabaseActivitySource(_client(handler)).fetch_primary(42)
        assert detail.best_efforts == []

    @pytest.mark.asyncio
    async def test_fetch_primary_missing_row(self) -> None:
        source = SupabaseActivitySource(_client(lambda request: httpx.Response(200, json=[])))
        with pytest.raises(EntityNotFound):
            await source.fetch_primary(404)

    @pytest.mark.asyncio
    async def test_fetch_enrichment(self) -> None:
        body = {
            "success": True,
            "heart_rate_stream": [{"time": 0, "heartrate": 120}],
            "splits": [{"split": 1}],
        }
        source = SupabaseActivitySource(_client(lambda request: httpx.Response(200, json=body)))
        enrichment = await source.fetch_enrichment(42)
        assert enrichment == ActivityEnrichment(
            heart_rate_stream=[{"time": 0, "heartrate": 120}], splits=[{"split": 1}]
        )

    @pytest.mark.asyncio
    async def test_fetch_enrichment_without_heart_rate(self) -> None:
        source = SupabaseActivitySource(
            _client(lambda request: httpx.Response(200, json={"success": True}))
        )
        assert await source.fetch_enrichment(42) is None

    def test_merge_marks_enriched(self) -> None:
        source = SupabaseActivitySource(_client(lambda request: httpx.Response(200)))
        merged = source.merge(make_detail(1), ActivityEnrichment(heart_rate_stream=[{"hr": 1}]))
        assert source.is_enriched(merged) is True
        assert merged.heart_rate_stream == [{"hr": 1}]
