"""
Incidents Router.
Thin HTTP surface over IncidentEngine; workflow errors are translated to
status codes by the handlers registered in api_gateway.service.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..auth import UserIdentity, require_staff
from ..dependencies import get_engine
from ...incidents.engine import IncidentEngine
from ...schemas.incident import (
    CancellationRequest,
    CompletionReport,
    EmergencyFlag,
    Incident,
    IncidentCreate,
    IncidentRevision,
    SupervisorAssignment,
)

router = APIRouter()
logger = logging.getLogger("infirmary.incidents-router")


@router.post("/", response_model=Incident, status_code=status.HTTP_201_CREATED)
async def create_incident(attrs: IncidentCreate,
                          identity: UserIdentity = Depends(require_staff),
                          engine: IncidentEngine = Depends(get_engine)):
    return await engine.classify_and_create(attrs, identity)


@router.get("/{incident_id}", response_model=Incident)
async def get_incident(incident_id: UUID,
                       identity: UserIdentity = Depends(require_staff),
                       engine: IncidentEngine = Depends(get_engine)):
    return await engine.get(incident_id)


@router.post("/{incident_id}/self-assign", response_model=Incident)
async def self_assign(incident_id: UUID,
                      identity: UserIdentity = Depends(require_staff),
                      engine: IncidentEngine = Depends(get_engine)):
    return await engine.self_assign(incident_id, identity)


@router.post("/{incident_id}/assign", response_model=Incident)
async def supervisor_assign(incident_id: UUID, body: SupervisorAssignment,
                            identity: UserIdentity = Depends(require_staff),
                            engine: IncidentEngine = Depends(get_engine)):
    return await engine.supervisor_assign(incident_id, body.staff_id, identity)


@router.post("/{incident_id}/complete", response_model=Incident)
async def complete(incident_id: UUID, report: CompletionReport,
                   identity: UserIdentity = Depends(require_staff),
                   engine: IncidentEngine = Depends(get_engine)):
    return await engine.complete(incident_id, report, identity)


@router.patch("/{incident_id}", response_model=Incident)
async def revise(incident_id: UUID, revision: IncidentRevision,
                 identity: UserIdentity = Depends(require_staff),
                 engine: IncidentEngine = Depends(get_engine)):
    return await engine.revise(incident_id, revision, identity)


@router.post("/{incident_id}/emergency", response_model=Incident)
async def revise_emergency_flag(incident_id: UUID, body: EmergencyFlag,
                                identity: UserIdentity = Depends(require_staff),
                                engine: IncidentEngine = Depends(get_engine)):
    return await engine.revise_emergency_flag(incident_id, body.is_emergency, identity)


@router.post("/{incident_id}/cancel", response_model=Incident)
async def cancel(incident_id: UUID, body: CancellationRequest,
                 identity: UserIdentity = Depends(require_staff),
                 engine: IncidentEngine = Depends(get_engine)):
    return await engine.cancel(incident_id, body.reason, identity)


@router.delete("/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_incident(incident_id: UUID,
                          identity: UserIdentity = Depends(require_staff),
                          engine: IncidentEngine = Depends(get_engine)):
    await engine.delete(incident_id, identity)
