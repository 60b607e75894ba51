from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, model_validator

from virt_lifecycle.deps import get_registry

from .common import call_registry_operation, execute_lifecycle_task, logger

router = APIRouter(prefix="/hypervisors", tags=["Domains"])


class DomainCreateRequest(BaseModel):
    name: str
    xml_definition: str
    start_after_create: bool = False

    @model_validator(mode="after")
    def _check_request(self) -> "DomainCreateRequest":
        if not self.name or not self.name.strip():
            raise ValueError("name is required")
        if not self.xml_definition.strip():
            raise ValueError("xml_definition is required")
        self.name = self.name.strip()
        return self


class DomainUpdateRequest(BaseModel):
    xml_definition: str
    restart: bool = False


class DomainStartRequest(BaseModel):
    wait_for_running: bool = False
    time_to_wait: Optional[float] = Field(default=None, gt=0)


class DomainStopRequest(BaseModel):
    force: bool = False
    wait_for_stopped: bool = False
    time_to_wait: Optional[float] = Field(default=None, gt=0)


class DomainCreateResponse(BaseModel):
    hypervisor: str
    name: str
    identity: str
    state: str


class DomainUpdateResponse(BaseModel):
    hypervisor: str
    name: str
    was_restarted: bool
    state: str


class DomainStateResponse(BaseModel):
    hypervisor: str
    name: str
    state: str
    identity: Optional[str] = None


class DomainDeleteResponse(BaseModel):
    hypervisor: str
    name: str
    success: bool
    deleted_volumes: List[str] = Field(default_factory=list)


class DomainListResponse(BaseModel):
    hypervisor: str
    vms: List[DomainStateResponse]


@router.get("")
def list_hypervisors():
    registry = get_registry()
    return {"hypervisors": registry.summary()}


@router.get("/{hypervisor}/domains", response_model=DomainListResponse)
async def list_domains(hypervisor: str, state: Optional[str] = None):
    registry = get_registry()
    try:
        entries = await execute_lifecycle_task(registry, hypervisor, "list_vms", state)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Listed %d domains for %s", len(entries), hypervisor)
    return {
        "hypervisor": hypervisor,
        "vms": [{"hypervisor": hypervisor, **entry.as_dict()} for entry in entries],
    }


@router.get("/{hypervisor}/domains/{name}", response_model=DomainStateResponse)
def get_domain_state(hypervisor: str, name: str):
    registry = get_registry()
    entry = call_registry_operation(
        lambda: registry.lifecycle(hypervisor).get_vm_state(name),
        hypervisor=hypervisor,
    )
    return {"hypervisor": hypervisor, **entry.as_dict()}


@router.post("/{hypervisor}/domains", response_model=DomainCreateResponse)
async def create_domain(hypervisor: str, request: DomainCreateRequest):
    registry = get_registry()
    result = await execute_lifecycle_task(
        registry,
        hypervisor,
        "create_vm",
        request.name,
        request.xml_definition,
        start_after_create=request.start_after_create,
    )
    return {"hypervisor": hypervisor, **result.as_dict()}


@router.put("/{hypervisor}/domains/{name}", response_model=DomainUpdateResponse)
async def update_domain(hypervisor: str, name: str, request: DomainUpdateRequest):
    registry = get_registry()
    result = await execute_lifecycle_task(
        registry,
        hypervisor,
        "update_vm",
        name,
        request.xml_definition,
        restart=request.restart,
    )
    return {"hypervisor": hypervisor, **result.as_dict()}


@router.post("/{hypervisor}/domains/{name}/start", response_model=DomainStateResponse)
async def start_domain(hypervisor: str, name: str, request: Optional[DomainStartRequest] = None):
    request = request or DomainStartRequest()
    registry = get_registry()
    result = await execute_lifecycle_task(
        registry,
        hypervisor,
        "start_vm",
        name,
        wait_for_running=request.wait_for_running,
        time_to_wait=request.time_to_wait,
    )
    return {"hypervisor": hypervisor, **result.as_dict()}


@router.post("/{hypervisor}/domains/{name}/stop", response_model=DomainStateResponse)
async def stop_domain(hypervisor: str, name: str, request: Optional[DomainStopRequest] = None):
    request = request or DomainStopRequest()
    registry = get_registry()
    result = await execute_lifecycle_task(
        registry,
        hypervisor,
        "stop_vm",
        name,
        force=request.force,
        wait_for_stopped=request.wait_for_stopped,
        time_to_wait=request.time_to_wait,
    )
    return {"hypervisor": hypervisor, **result.as_dict()}


@router.delete("/{hypervisor}/domains/{name}", response_model=DomainDeleteResponse)
async def delete_domain(
    hypervisor: str,
    name: str,
    delete_storage: bool = False,
    fail_if_not_found: bool = True,
):
    registry = get_registry()
    result = await execute_lifecycle_task(
        registry,
        hypervisor,
        "delete_vm",
        name,
        delete_storage=delete_storage,
        fail_if_not_found=fail_if_not_found,
    )
    return {"hypervisor": hypervisor, "name": name, **result.as_dict()}


__all__ = [
    "router",
    "DomainCreateRequest",
    "DomainUpdateRequest",
    "DomainStartRequest",
    "DomainStopRequest",
]
