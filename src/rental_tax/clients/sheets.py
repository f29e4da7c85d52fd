"""Google Sheets API client used as the remote tabular store."""

import logging
import re
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from ..exceptions import AuthExpiredError, RemoteUnavailableError

logger = logging.getLogger(__name__)

Row = list[Any]

_SPREADSHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_SPREADSHEET_ID_RE = re.compile(r"^[a-zA-Z0-9-_]+$")


def extract_spreadsheet_id(value: str) -> str | None:
    """
    Extract the spreadsheet id from a Sheets URL, or accept a bare id.

    Returns:
        The spreadsheet id, or None if *value* is neither
    """
    value = value.strip()
    match = _SPREADSHEET_URL_RE.search(value)
    if match:
        return match.group(1)
    if _SPREADSHEET_ID_RE.match(value):
        return value
    return None


class RemoteTabularStore(Protocol):
    """Named ranges, each a header row followed by data rows."""

    async def exists(self, name: str) -> bool:
        ...

    async def create(self, name: str, columns: list[str]) -> None:
        """Create the range and write its header row."""
        ...

    async def read_range(self, name: str) -> list[Row]:
        """Data rows below the header. Cells may be numbers, bools or strings."""
        ...

    async def clear_range(self, name: str) -> None:
        """Clear all data rows, keeping the header."""
        ...

    async def write_range(self, name: str, rows: list[Row]) -> None:
        """Write data rows starting right below the header."""
        ...

    async def aclose(self) -> None:
        ...


class SheetsClient:
    """Client for the Google Sheets API v4, scoped to one spreadsheet."""

    BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
    LAST_COLUMN = "Z"

    def __init__(
        self,
        access_token: str,
        spreadsheet_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Sheets client."""
        self.spreadsheet_id = spreadsheet_id
        self.client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def aclose(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    def _values_path(self, a1_range: str) -> str:
        return f"/{self.spreadsheet_id}/values/{quote(a1_range, safe='!:')}"

    def _data_range(self, name: str) -> str:
        return f"{name}!A2:{self.LAST_COLUMN}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """
        Send a request and map failures onto the app's error taxonomy.

        Raises:
            AuthExpiredError: On HTTP 401
            RemoteUnavailableError: On any other HTTP or transport failure
        """
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise AuthExpiredError("Google rejected the access token (HTTP 401)") from e
            message = _error_message(e.response)
            logger.error(f"Sheets API error: HTTP {status} {method} {path}: {message}")
            raise RemoteUnavailableError(
                f"Sheets API request failed (HTTP {status}): {message}"
            ) from e
        except httpx.TransportError as e:
            logger.error(f"Sheets API transport error: {method} {path}: {e}")
            raise RemoteUnavailableError(f"Could not reach Google Sheets: {e}") from e

        if not response.content:
            return {}
        data: dict[str, Any] = response.json()
        return data

    async def exists(self, name: str) -> bool:
        """Check whether a sheet with this title exists."""
        data = await self._request(
            "GET",
            f"/{self.spreadsheet_id}",
            params={"fields": "sheets.properties.title"},
        )
        titles = [s.get("properties", {}).get("title") for s in data.get("sheets", [])]
        return name in titles

    async def create(self, name: str, columns: list[str]) -> None:
        """Add a sheet and write its header row."""
        await self._request(
            "POST",
            f"/{self.spreadsheet_id}:batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": name}}}]},
        )
        await self._request(
            "PUT",
            self._values_path(f"{name}!A1"),
            params={"valueInputOption": "RAW"},
            json={"values": [columns]},
        )
        logger.info(f"Created sheet '{name}' with columns {columns}")

    async def read_range(self, name: str) -> list[Row]:
        """Read data rows as unformatted values (numbers stay numbers)."""
        data = await self._request(
            "GET",
            self._values_path(self._data_range(name)),
            params={
                "valueRenderOption": "UNFORMATTED_VALUE",
                "dateTimeRenderOption": "SERIAL_NUMBER",
            },
        )
        rows: list[Row] = data.get("values", [])
        logger.debug(f"Read {len(rows)} rows from '{name}'")
        return rows

    async def clear_range(self, name: str) -> None:
        """Clear every data row of a sheet."""
        await self._request(
            "POST", self._values_path(self._data_range(name)) + ":clear", json={}
        )

    async def write_range(self, name: str, rows: list[Row]) -> None:
        """Write rows starting at A2 (values are stored as given)."""
        if not rows:
            return
        await self._request(
            "PUT",
            self._values_path(f"{name}!A2"),
            params={"valueInputOption": "RAW"},
            json={"values": rows},
        )
        logger.debug(f"Wrote {len(rows)} rows to '{name}'")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or "unknown error"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or "unknown error"
