"""
Remediation Trigger API
=======================
POST /remediations                 — start a run for {identifier, kind, incident_payload, repository | organization_id}
POST /fix-error                    — same, kind fixed to "error"
POST /fix-security-vulnerability   — same, kind fixed to "vulnerability"
GET  /remediations/{identifier}    — tracked state of the latest run for identifier

Triggers are accepted with 202 and executed in the background by the
WorkflowRunner; a malformed payload is rejected with 400 before anything is
scheduled. Camel-case keys (incidentPayload, organizationId) are accepted
for callers that post the system-of-record's JSON as is.
"""
import asyncio
import logging
from typing import Any, Dict, Literal, Optional, Set

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from autofix.agents.orchestrator import Orchestrator
from autofix.core.errors import ConfigurationError
from autofix.llm.client import LLMClient
from autofix.models.incident import IncidentRecord
from autofix.models.repository import RepositoryHandle
from autofix.services.normalizer import build_normalizer
from autofix.services.repository_config import RepositoryConfigService
from autofix.services.run_tracker import RunTracker
from autofix.services.status_reporter import StatusReporter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Remediation"])


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------
class RemediationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    kind: Literal["error", "vulnerability"]
    incident_payload: Dict[str, Any] = Field(default_factory=dict, alias="incidentPayload")
    repository: Optional[RepositoryHandle] = None
    organization_id: Optional[str] = Field(default=None, alias="organizationId")

    def to_incident(self) -> IncidentRecord:
        return IncidentRecord.model_validate(
            {**self.incident_payload, "identifier": self.identifier, "kind": self.kind}
        )


# ---------------------------------------------------------------------------
# Background execution
# ---------------------------------------------------------------------------
class WorkflowRunner:
    """
    Schedules orchestrator runs as asyncio tasks.

    References to in-flight tasks are held until they finish so that they
    are not garbage-collected mid-run.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        repository_config: Optional[RepositoryConfigService] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.repository_config = repository_config or RepositoryConfigService()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        incident: IncidentRecord,
        repository: Optional[RepositoryHandle] = None,
        organization_id: Optional[str] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(self._execute(incident, repository, organization_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(
        self,
        incident: IncidentRecord,
        repository: Optional[RepositoryHandle],
        organization_id: Optional[str],
    ) -> None:
        try:
            if repository is None:
                repository = await self.repository_config.fetch(organization_id or "")
        except ConfigurationError as e:
            logger.error("Cannot resolve repository for %s: %s", incident.identifier, e)
            await self.orchestrator.record_failure(incident, str(e))
            return

        try:
            await self.orchestrator.run(incident, repository)
        except Exception as e:
            logger.exception("Remediation workflow crashed for %s: %s", incident.identifier, e)
            await self.orchestrator.record_failure(incident, str(e))


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
_tracker = RunTracker()
_runner: Optional[WorkflowRunner] = None


def get_tracker() -> RunTracker:
    return _tracker


def get_runner() -> WorkflowRunner:
    global _runner
    if _runner is None:
        orchestrator = Orchestrator(
            completion=LLMClient(),
            normalizer=build_normalizer(),
            status_reporter=StatusReporter(),
            run_tracker=_tracker,
        )
        _runner = WorkflowRunner(orchestrator)
    return _runner


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
def _accept(payload: Dict[str, Any], runner: WorkflowRunner, kind: Optional[str] = None) -> Dict[str, Any]:
    if kind is not None:
        payload = {**payload, "kind": kind}
    try:
        request = RemediationRequest.model_validate(payload)
        incident = request.to_incident()
    except ValidationError as e:
        logger.warning("Rejected remediation trigger: %s", e.errors(include_url=False))
        raise HTTPException(status_code=400, detail=f"Invalid remediation request: {e.error_count()} error(s)")

    if request.repository is None and not request.organization_id:
        raise HTTPException(status_code=400, detail="Either repository or organization_id is required")

    runner.submit(incident, request.repository, request.organization_id)
    logger.info("Accepted %s remediation for %s", incident.kind, incident.identifier)
    return {"accepted": True, "identifier": incident.identifier}


@router.post("/remediations", status_code=202)
async def trigger_remediation(
    payload: Dict[str, Any] = Body(...),
    runner: WorkflowRunner = Depends(get_runner),
):
    return _accept(payload, runner)


@router.post("/fix-error", status_code=202)
async def fix_error(
    payload: Dict[str, Any] = Body(...),
    runner: WorkflowRunner = Depends(get_runner),
):
    return _accept(payload, runner, kind="error")


@router.post("/fix-security-vulnerability", status_code=202)
async def fix_security_vulnerability(
    payload: Dict[str, Any] = Body(...),
    runner: WorkflowRunner = Depends(get_runner),
):
    return _accept(payload, runner, kind="vulnerability")


@router.get("/remediations/{identifier}")
async def get_remediation(identifier: str, tracker: RunTracker = Depends(get_tracker)):
    record = tracker.get(identifier)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No tracked remediation for {identifier}")
    return record.to_dict()
