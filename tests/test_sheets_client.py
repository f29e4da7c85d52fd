"""Tests for the Google Sheets client."""

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from rental_tax.clients.google_identity import GoogleIdentityProvider, _expires_in
from rental_tax.clients.sheets import SheetsClient, extract_spreadsheet_id
from rental_tax.exceptions import (
    AuthExpiredError,
    AuthFailedError,
    ConfigurationError,
    RemoteUnavailableError,
)


class TestExtractSpreadsheetId:
    def test_from_url(self):
        url = "https://docs.google.com/spreadsheets/d/1AbC-d_9xYz/edit#gid=0"
        assert extract_spreadsheet_id(url) == "1AbC-d_9xYz"

    def test_bare_id(self):
        assert extract_spreadsheet_id("  1AbC-d_9xYz ") == "1AbC-d_9xYz"

    def test_garbage(self):
        assert extract_spreadsheet_id("https://example.com/not a sheet") is None
        assert extract_spreadsheet_id("") is None


def run_with(handler, action):
    """Run *action(client)* against a SheetsClient backed by *handler*."""

    async def scenario():
        async with SheetsClient(
            "tok", "sheet-1", transport=httpx.MockTransport(handler)
        ) as client:
            return await action(client)

    return asyncio.run(scenario())


class TestSheetsClient:
    def test_sends_bearer_token_and_reads_unformatted_values(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"values": [["2025-03-01", 3, 1000]]})

        rows = run_with(handler, lambda c: c.read_range("airbnb"))

        assert rows == [["2025-03-01", 3, 1000]]
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.url.path == "/v4/spreadsheets/sheet-1/values/airbnb!A2:Z"
        assert request.url.params["valueRenderOption"] == "UNFORMATTED_VALUE"
        assert request.url.params["dateTimeRenderOption"] == "SERIAL_NUMBER"

    def test_read_empty_range(self):
        rows = run_with(
            lambda request: httpx.Response(200, json={"range": "taxes!A2:Z"}),
            lambda c: c.read_range("taxes"),
        )
        assert rows == []

    def test_exists(self):
        def handler(request):
            assert request.url.params["fields"] == "sheets.properties.title"
            return httpx.Response(
                200,
                json={"sheets": [{"properties": {"title": "settings"}}]},
            )

        assert run_with(handler, lambda c: c.exists("settings")) is True
        assert run_with(handler, lambda c: c.exists("taxes")) is False

    def test_create_adds_sheet_and_header(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        run_with(handler, lambda c: c.create("taxes", ["date", "income"]))

        assert seen[0][0] == "POST"
        assert seen[0][1] == "/v4/spreadsheets/sheet-1:batchUpdate"
        assert seen[0][2]["requests"][0]["addSheet"]["properties"]["title"] == "taxes"
        assert seen[1][0] == "PUT"
        assert seen[1][1] == "/v4/spreadsheets/sheet-1/values/taxes!A1"
        assert seen[1][2] == {"values": [["date", "income"]]}

    def test_clear_then_write(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        async def action(client):
            await client.clear_range("airbnb")
            await client.write_range("airbnb", [["2025-03-01", 2, 100.0, 70.0, 30.0]])

        run_with(handler, action)

        assert seen == [
            ("POST", "/v4/spreadsheets/sheet-1/values/airbnb!A2:Z:clear"),
            ("PUT", "/v4/spreadsheets/sheet-1/values/airbnb!A2"),
        ]

    def test_write_nothing_skips_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        run_with(handler, lambda c: c.write_range("airbnb", []))

    def test_unauthorized_maps_to_auth_expired(self):
        with pytest.raises(AuthExpiredError):
            run_with(
                lambda request: httpx.Response(401, json={"error": {"code": 401}}),
                lambda c: c.read_range("airbnb"),
            )

    def test_server_error_maps_to_remote_unavailable(self):
        with pytest.raises(RemoteUnavailableError, match="quota exceeded"):
            run_with(
                lambda request: httpx.Response(
                    429, json={"error": {"message": "quota exceeded"}}
                ),
                lambda c: c.read_range("airbnb"),
            )

    def test_transport_error_maps_to_remote_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(RemoteUnavailableError):
            run_with(handler, lambda c: c.read_range("airbnb"))


class TestGoogleIdentityProvider:
    def test_user_info(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer tok"
            return httpx.Response(200, json={"email": "owner@example.com"})

        provider = GoogleIdentityProvider("client", transport=httpx.MockTransport(handler))
        user = asyncio.run(provider.get_user_info("tok"))
        assert user.email == "owner@example.com"

    def test_user_info_rejected_token(self):
        provider = GoogleIdentityProvider(
            "client", transport=httpx.MockTransport(lambda r: httpx.Response(401))
        )
        with pytest.raises(AuthExpiredError):
            asyncio.run(provider.get_user_info("tok"))

    def test_user_info_server_error(self):
        provider = GoogleIdentityProvider(
            "client", transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        with pytest.raises(AuthFailedError):
            asyncio.run(provider.get_user_info("tok"))

    def test_sign_in_requires_client_id(self):
        with pytest.raises(ConfigurationError):
            asyncio.run(GoogleIdentityProvider(None).sign_in())

    def test_sign_in_failure_is_auth_failed(self, monkeypatch):
        provider = GoogleIdentityProvider("client")

        def fail():
            raise RuntimeError("browser closed")

        monkeypatch.setattr(provider, "_run_flow", fail)
        with pytest.raises(AuthFailedError, match="browser closed"):
            asyncio.run(provider.sign_in())

    def test_sign_in_returns_grant(self, monkeypatch):
        class Creds:
            token = "issued"
            expiry = None

        provider = GoogleIdentityProvider("client")
        monkeypatch.setattr(provider, "_run_flow", lambda: Creds())
        grant = asyncio.run(provider.sign_in())
        assert grant.token == "issued"
        assert grant.expires_in == 3600

    def test_expires_in_never_negative(self):
        assert _expires_in(datetime(2000, 1, 1)) == 0
