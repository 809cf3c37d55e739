"""
Notion Client

Record-keeping side of the sync: lists destination databases, fetches the
existing task rows used for reconciliation, and writes accepted proposals.

Task database property names:
- Tasks (title), Status (status), Jobs (linked reference, rich_text),
  Owner (rich_text), Priority Level (select), Source (select),
  Notes (rich_text), Focus This Week (checkbox), Start Date / Due Date (date)
"""

import re
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .schemas import Destination, ExistingRecord, Focus, Proposal

logger = logging.getLogger("meetsync.common.notion_client")

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_PAGE_URL = "https://www.notion.so/{}"
RICH_TEXT_LIMIT = 2000
SOURCE_LABEL = "Virtual Meeting"
UPDATE_MARKER = "\n[Updated via Slack]"

_RECORD_ID_RE = re.compile(r"([a-f0-9]{32})")


class RecordKeepingError(Exception):
    """Error reading from or writing to the record store."""
    pass


def canonical_url(record_id: str) -> str:
    """Canonical page url for a record id (dashes removed)."""
    return NOTION_PAGE_URL.format(record_id.replace("-", ""))


def record_id_from_url(url: str) -> Optional[str]:
    """Extract the 32-hex record id from a canonical url, or None."""
    if not url:
        return None
    match = _RECORD_ID_RE.search(url.replace("-", ""))
    return match.group(1) if match else None


class RecordStore(ABC):
    """Interface to the destination store used by the pipeline and the state machine."""

    @abstractmethod
    async def list_destinations(self) -> List[Destination]:
        pass

    @abstractmethod
    async def fetch_records(self, destination_id: str) -> List[ExistingRecord]:
        pass

    @abstractmethod
    async def create_record(self, destination_id: str, proposal: Proposal) -> str:
        """Persist a CREATE proposal. Returns the new record id."""
        pass

    @abstractmethod
    async def update_record(self, record_id: str, proposal: Proposal) -> None:
        """Apply an UPDATE proposal to an existing record."""
        pass


def _plain_text(parts: List[Dict[str, Any]]) -> str:
    return "".join(t.get("plain_text", "") for t in parts or [])


def _rich_text(content: str) -> Dict[str, Any]:
    return {"rich_text": [{"text": {"content": (content or "")[:RICH_TEXT_LIMIT]}}]}


def build_properties(proposal: Proposal, notes: Optional[str] = None) -> Dict[str, Any]:
    """Map a proposal onto task database properties (project excluded)."""
    properties: Dict[str, Any] = {
        "Tasks": {"title": [{"text": {"content": proposal.title}}]},
        "Status": {"status": {"name": proposal.status or "To do"}},
        "Jobs": _rich_text(proposal.linked_reference),
        "Owner": _rich_text(proposal.owner),
        "Priority Level": {"select": {"name": proposal.priority.value}},
        "Source": {"select": {"name": SOURCE_LABEL}},
        "Notes": _rich_text(proposal.notes if notes is None else notes),
        "Focus This Week": {"checkbox": proposal.focus_this_week == Focus.YES},
    }
    if proposal.start_date:
        properties["Start Date"] = {"date": {"start": proposal.start_date.isoformat()}}
    if proposal.due_date:
        properties["Due Date"] = {"date": {"start": proposal.due_date.isoformat()}}
    return properties


def simplify_page(page: Dict[str, Any]) -> ExistingRecord:
    """Reduce a task page to the fields reconciliation needs."""
    props = page.get("properties", {})
    page_id = page.get("id", "")
    return ExistingRecord(
        id=page_id,
        title=_plain_text(props.get("Tasks", {}).get("title", [])),
        status=(props.get("Status", {}).get("status") or {}).get("name", ""),
        notes=_plain_text(props.get("Notes", {}).get("rich_text", [])),
        canonical_url=canonical_url(page_id),
    )


class NotionClient(RecordStore):
    """
    Notion REST client over httpx.

    Usage:
        client = NotionClient(api_key="secret_...")
        records = await client.fetch_records(database_id)
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        api_version: str = "2022-06-28",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._api_version = api_version
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self._api_key:
            raise RecordKeepingError("Notion API key not configured")
        try:
            response = await self._http.request(
                method,
                f"{NOTION_API_BASE}{path}",
                json=body,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Notion-Version": self._api_version,
                },
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RecordKeepingError(
                f"Notion {method} {path} failed: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise RecordKeepingError(f"Notion {method} {path} failed: {e}") from e
        except ValueError as e:
            raise RecordKeepingError(f"Notion {method} {path} returned invalid JSON: {e}") from e

    async def _paginate(self, path: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        cursor = None
        while True:
            page_body = dict(body, page_size=100)
            if cursor:
                page_body["start_cursor"] = cursor
            data = await self._request("POST", path, page_body)
            results.extend(data.get("results", []))
            if not data.get("has_more"):
                return results
            cursor = data.get("next_cursor")

    async def list_destinations(self) -> List[Destination]:
        items = await self._paginate(
            "/search", {"filter": {"property": "object", "value": "database"}}
        )
        destinations = [
            Destination(id=item["id"], title=_plain_text(item.get("title", [])) or "(No title)")
            for item in items
            if item.get("object") == "database"
        ]
        logger.info("Found %d databases", len(destinations))
        return destinations

    async def fetch_records(self, destination_id: str) -> List[ExistingRecord]:
        pages = await self._paginate(f"/databases/{destination_id}/query", {})
        return [simplify_page(page) for page in pages]

    async def create_record(self, destination_id: str, proposal: Proposal) -> str:
        data = await self._request(
            "POST",
            "/pages",
            {
                "parent": {"database_id": destination_id},
                "properties": build_properties(proposal),
            },
        )
        return data.get("id", "")

    async def update_record(self, record_id: str, proposal: Proposal) -> None:
        await self._request(
            "PATCH",
            f"/pages/{record_id}",
            {"properties": build_properties(proposal, notes=(proposal.notes or "") + UPDATE_MARKER)},
        )

    async def close(self) -> None:
        await self._http.aclose()
