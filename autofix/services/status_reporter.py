"""
Status Reporter
===============
Reports run status transitions to the system of record.

    update_status(incident, status, pr_url=..., issue_url=..., confidence=..., error_message=...)

Endpoints (PUT, bearer ACCESS_TOKEN):
    errors          → {CORE_API_URL}/api/performance-monitoring/errors/{record_id}/status
    vulnerabilities → {CORE_API_URL}/api/organization-security/alerts/{record_id}/status

Reporting never fails a run: without ACCESS_TOKEN it is skipped, and HTTP
failures are logged and swallowed.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from autofix.core.config import ACCESS_TOKEN, CORE_API_URL
from autofix.models.incident import IncidentRecord

logger = logging.getLogger(__name__)

_STATUS_PATHS = {
    "error": "/api/performance-monitoring/errors/{record_id}/status",
    "vulnerability": "/api/organization-security/alerts/{record_id}/status",
}


class StatusReporter:
    """
    Pushes status payloads to the system of record.

    Every payload sent is also kept in `history` (most recent last), which
    the orchestrator tests and the run tracker read back.
    """

    def __init__(
        self,
        base_url: str = CORE_API_URL,
        access_token: Optional[str] = ACCESS_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._transport = transport
        self.history: List[Dict[str, Any]] = []

    async def update_status(
        self,
        incident: IncidentRecord,
        status: str,
        pr_url: Optional[str] = None,
        issue_url: Optional[str] = None,
        confidence: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"status": status}
        if pr_url:
            payload["pr_url"] = pr_url
        if issue_url:
            payload["issue_url"] = issue_url
        if confidence:
            payload["confidence"] = confidence
        if error_message:
            payload["error_message"] = error_message
        self.history.append({"identifier": incident.identifier, **payload})

        if not self.access_token or not self.base_url:
            logger.debug("No system-of-record configured, skipping status update (%s → %s)", incident.identifier, status)
            return

        path = _STATUS_PATHS[incident.kind].format(record_id=incident.record_id)
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.put(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                response.raise_for_status()
            logger.info("Status for %s updated to %s", incident.identifier, status)
        except httpx.HTTPError as e:
            logger.warning("Failed to update status for %s to %s: %s", incident.identifier, status, e)
