"""
Incident Record Model
=====================
Pydantic models describing the event a remediation run is started for.

Fields:
    identifier   — stable dedup key (error hash, or CVE/GHSA id)
    kind         — "error" | "vulnerability"
    severity     — low / medium / high / critical
    message      — error message (errors) or advisory summary
    title        — advisory title (vulnerabilities)
    error_type   — e.g. TypeError, ReferenceError
    record_id    — system-of-record id used for status updates (defaults to identifier)
    page_url     — page on which the error was captured
    location     — source file / line / column / function
    context      — stack trace, breadcrumbs, console history, pending requests, environment
    advisory     — package and version details (vulnerabilities only)

IncidentRecords are created outside the core and are frozen: nothing in a
run may mutate one.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator

IncidentKind = Literal["error", "vulnerability"]


class SourceLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str = ""
    line: int = 0
    column: int = 0
    function: str = ""


class IncidentContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    stack_trace: str = ""
    breadcrumbs: List[Dict[str, Any]] = []
    console_history: List[Dict[str, Any]] = []
    pending_requests: List[Dict[str, Any]] = []
    environment: Dict[str, Any] = {}


class AdvisoryDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_name: str
    installed_version: str = ""
    patched_version: str = ""
    description: str = ""
    cve_id: str = ""
    ghsa_id: str = ""


class IncidentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    kind: IncidentKind
    severity: str = "medium"
    message: str = ""
    title: str = ""
    error_type: str = "Error"
    record_id: str = ""
    page_url: str = ""
    location: SourceLocation = SourceLocation()
    context: IncidentContext = IncidentContext()
    advisory: Optional[AdvisoryDetails] = None

    @model_validator(mode="before")
    @classmethod
    def _default_record_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("record_id"):
            data = {**data, "record_id": data.get("identifier", "")}
        return data

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "IncidentRecord":
        if not self.identifier.strip():
            raise ValueError("identifier must not be empty")
        if self.kind == "vulnerability" and self.advisory is None:
            raise ValueError("vulnerability incidents require advisory details")
        return self

    @property
    def display_title(self) -> str:
        """Short human-readable summary used in titles and logs."""
        if self.kind == "vulnerability":
            return self.title or (self.advisory.package_name if self.advisory else self.identifier)
        return self.message or self.error_type
