"""
Microsoft Graph API integration.
Handles calendar booking, calendar availability reads and the Excel
referrals workbook.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx

from referral_intake.config import Settings
from referral_intake.errors import DownstreamError
from referral_intake.models import CalendarEventData

logger = logging.getLogger(__name__)

# Lazy import for MSAL
msal = None


def get_msal():
    """Lazily import MSAL."""
    global msal
    if msal is None:
        import msal as _msal

        msal = _msal
    return msal


class GraphService:
    """Service for interacting with Microsoft Graph API."""

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
    REQUEST_TIMEOUT = 15.0

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    def is_configured(self) -> bool:
        """Check if Microsoft Graph API is configured."""
        return self.settings.graph_configured()

    def get_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary."""
        if not self.is_configured():
            raise DownstreamError("Microsoft Graph API not configured")

        now = datetime.now(timezone.utc)
        if self._access_token and self._token_expires_at and now < self._token_expires_at:
            return self._access_token

        # App-only token using client credentials flow
        msal_lib = get_msal()
        app = msal_lib.ConfidentialClientApplication(
            self.settings.graph_client_id,
            authority=f"https://login.microsoftonline.com/{self.settings.graph_tenant_id}",
            client_credential=self.settings.graph_client_secret,
        )

        result = app.acquire_token_for_client(
            scopes=["https://graph.microsoft.com/.default"]
        )

        if "access_token" not in result:
            raise DownstreamError(
                f"Failed to acquire Graph token: {result.get('error_description')}"
            )

        self._access_token = result["access_token"]
        # Refresh five minutes before the token actually expires
        expires_in = int(result.get("expires_in", 3600))
        self._token_expires_at = now + timedelta(seconds=max(expires_in - 300, 0))

        return self._access_token

    def _get_headers(self, extra: Optional[dict] = None) -> dict:
        """Get headers for Graph API requests."""
        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _client(self) -> httpx.Client:
        return httpx.Client(transport=self._transport, timeout=self.REQUEST_TIMEOUT)

    def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        **kwargs: Any,
    ) -> dict:
        """Send a request and return the decoded JSON body."""
        if not url.startswith("http"):
            url = f"{self.GRAPH_BASE_URL}{url}"

        try:
            with self._client() as client:
                response = client.request(
                    method, url, headers=self._get_headers(headers), **kwargs
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DownstreamError(
                f"Graph {method} {url} failed: {e.response.status_code} {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise DownstreamError(f"Graph {method} {url} failed: {e}") from e

        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # CALENDAR
    # =========================================================================

    def _calendar_path(self) -> str:
        if not self.settings.calendar_user_email:
            raise DownstreamError("CALENDAR_USER_EMAIL not configured")
        return f"/users/{self.settings.calendar_user_email}"

    def create_calendar_event(self, event: CalendarEventData) -> str:
        """
        Create an event on the practice calendar.

        Args:
            event: Appointment details; start/end are practice-local times

        Returns:
            The Graph event ID
        """
        zone = self.settings.practice_timezone
        payload: dict[str, Any] = {
            "subject": event.subject,
            "body": {"contentType": "HTML", "content": event.body_html},
            "start": {"dateTime": event.start.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": zone},
            "end": {"dateTime": event.end.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": zone},
            "attendees": [
                {
                    "emailAddress": {"address": event.attendee_email},
                    "type": "required",
                }
            ],
            "isOnlineMeeting": True,
            "onlineMeetingProvider": "teamsForBusiness",
        }
        if event.location:
            payload["location"] = {"displayName": event.location}

        data = self._request("POST", f"{self._calendar_path()}/events", json=payload)
        return data.get("id", "")

    def get_calendar_view(self, start: datetime, end: datetime) -> list[dict]:
        """
        List calendar events overlapping [start, end).

        Event times are returned in UTC.
        """
        url = f"{self._calendar_path()}/calendarView"
        params: Optional[dict] = {
            "startDateTime": start.astimezone(timezone.utc).isoformat(),
            "endDateTime": end.astimezone(timezone.utc).isoformat(),
            "$select": "start,end,subject,showAs,isCancelled",
            "$orderby": "start/dateTime",
            "$top": 100,
        }
        headers = {"Prefer": 'outlook.timezone="UTC"'}

        events: list[dict] = []
        while url:
            data = self._request("GET", url, headers=headers, params=params)
            events.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            params = None  # nextLink already carries the query

        return events

    # =========================================================================
    # EXCEL WORKBOOK
    # =========================================================================

    def _worksheet_path(self) -> str:
        """Workbook worksheet base path using the pre-configured drive/item IDs."""
        drive_id = self.settings.sharepoint_drive_id
        item_id = self.settings.excel_file_id
        if not drive_id or not item_id:
            raise DownstreamError("Missing SHAREPOINT_DRIVE_ID or EXCEL_FILE_ID")
        worksheet = quote(self.settings.excel_worksheet_name)
        return f"/drives/{drive_id}/items/{item_id}/workbook/worksheets/{worksheet}"

    def append_table_row(self, values: list[str]) -> None:
        """Append one row to the referrals table."""
        table = quote(self.settings.excel_table_name)
        url = f"{self._worksheet_path()}/tables/{table}/rows"
        self._request("POST", url, json={"values": [values]})

    def get_used_range(self) -> dict:
        """
        Read every populated cell of the worksheet, header row included.

        Returns:
            dict with 'address' (e.g. "Referrals!A1:L42") and 'values' (rows of cells)
        """
        url = f"{self._worksheet_path()}/usedRange(valuesOnly=true)"
        data = self._request("GET", url, params={"$select": "address,values"})
        return {"address": data.get("address", ""), "values": data.get("values", [])}

    def patch_range(self, address: str, values: list[list[str]]) -> None:
        """Overwrite the cells at a range address such as 'J5' or 'J5:L5'."""
        url = f"{self._worksheet_path()}/range(address='{address}')"
        self._request("PATCH", url, json={"values": values})

    # =========================================================================
    # WORKBOOK DIAGNOSTICS
    # =========================================================================

    def get_site(self, host: str, site_name: str) -> dict:
        return self._request("GET", f"/sites/{host}:/sites/{site_name}")

    def list_drives(self, site_id: str) -> list[dict]:
        return self._request("GET", f"/sites/{site_id}/drives").get("value", [])

    def get_drive_item_by_path(self, drive_id: str, path: str) -> dict:
        encoded = "/".join(quote(segment) for segment in path.strip("/").split("/"))
        return self._request("GET", f"/drives/{drive_id}/root:/{encoded}")

    def list_worksheets(self, drive_id: str, item_id: str) -> list[dict]:
        url = f"/drives/{drive_id}/items/{item_id}/workbook/worksheets"
        return self._request("GET", url).get("value", [])

    def list_tables(self, drive_id: str, item_id: str, worksheet: str) -> list[dict]:
        url = f"/drives/{drive_id}/items/{item_id}/workbook/worksheets/{quote(worksheet)}/tables"
        return self._request("GET", url).get("value", [])

    def diagnose_workbook(self) -> list[dict]:
        """
        Walk site -> drives -> library -> file -> worksheets -> tables.

        Stops at the first failing step.

        Returns:
            One dict per step attempted, with 'step', 'success' and 'detail'
        """
        s = self.settings
        steps: list[dict] = []

        def record(step: str, success: bool, detail: str) -> bool:
            steps.append({"step": step, "success": success, "detail": detail})
            return success

        missing = [
            name
            for name, value in (
                ("SHAREPOINT_HOST", s.sharepoint_host),
                ("SHAREPOINT_SITE_NAME", s.sharepoint_site_name),
                ("SHAREPOINT_LIBRARY_NAME", s.sharepoint_library_name),
                ("EXCEL_FILE_PATH", s.excel_file_path),
            )
            if not value
        ]
        if missing:
            record("config", False, f"Not set: {', '.join(missing)}")
            return steps

        try:
            site = self.get_site(s.sharepoint_host, s.sharepoint_site_name)
        except DownstreamError as e:
            record("site", False, str(e))
            return steps
        record("site", True, f"{site.get('displayName')} ({site.get('id')})")

        try:
            drives = self.list_drives(site.get("id", ""))
        except DownstreamError as e:
            record("drives", False, str(e))
            return steps
        record("drives", True, ", ".join(d.get("name", "?") for d in drives) or "none")

        drive = next(
            (d for d in drives if _matches_library(d, s.sharepoint_library_name)), None
        )
        if drive is None:
            record("library", False, f'No drive matches "{s.sharepoint_library_name}"')
            return steps
        record("library", True, f"{drive.get('name')} ({drive.get('id')})")

        try:
            item = self.get_drive_item_by_path(drive["id"], s.excel_file_path)
        except DownstreamError as e:
            record("file", False, str(e))
            return steps
        record("file", True, f"{item.get('name')} ({item.get('id')})")

        try:
            worksheets = [w.get("name") for w in self.list_worksheets(drive["id"], item["id"])]
        except DownstreamError as e:
            record("worksheets", False, str(e))
            return steps
        if not record(
            "worksheets",
            s.excel_worksheet_name in worksheets,
            f"{', '.join(worksheets) or 'none'} (want {s.excel_worksheet_name})",
        ):
            return steps

        try:
            tables = [
                t.get("name")
                for t in self.list_tables(drive["id"], item["id"], s.excel_worksheet_name)
            ]
        except DownstreamError as e:
            record("tables", False, str(e))
            return steps
        record(
            "tables",
            s.excel_table_name in tables,
            f"{', '.join(tables) or 'none'} (want {s.excel_table_name})",
        )
        return steps


def _matches_library(drive: dict, library_name: str) -> bool:
    name = drive.get("name") or ""
    web_url = drive.get("webUrl") or ""
    return (
        name.lower() == library_name.lower()
        or f"/{library_name}/" in web_url
        or web_url.endswith(f"/{library_name}")
    )
