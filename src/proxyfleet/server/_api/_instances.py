"""Instance control routes.

Unknown ids, lifecycle conflicts and spawn failures are raised as
proxyfleet exceptions and mapped to status codes by the application's
exception handlers.
"""

from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query

from proxyfleet.server._deps import SupervisorDep
from proxyfleet.server._schemas import (
    ErrorResponse,
    InstanceUpdateRequest,
    LogEntryResponse,
    StartedResponse,
    SuccessResponse,
)

router = APIRouter(
    prefix="/instances",
    tags=["instances"],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)


@router.get("")
async def list_instances(supervisor: SupervisorDep) -> list[dict[str, Any]]:
    return supervisor.snapshot()


@router.get("/{instance_id}")
async def get_instance(instance_id: str, supervisor: SupervisorDep) -> dict[str, Any]:
    instance = supervisor.get_instance(instance_id)
    return {**instance.to_json_dict(), "running": supervisor.is_running(instance_id)}


@router.put("/{instance_id}")
async def update_instance(
    instance_id: str,
    body: InstanceUpdateRequest,
    supervisor: SupervisorDep,
) -> SuccessResponse:
    try:
        _ = supervisor.update_instance(
            instance_id, name=body.name, auto_restart=body.auto_restart
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return SuccessResponse()


@router.delete("/{instance_id}")
async def delete_instance(instance_id: str, supervisor: SupervisorDep) -> SuccessResponse:
    await supervisor.remove_instance(instance_id)
    return SuccessResponse()


@router.post("/{instance_id}/start")
async def start_instance(instance_id: str, supervisor: SupervisorDep) -> StartedResponse:
    pid = await supervisor.start_instance(instance_id)
    return StartedResponse(pid=pid)


@router.post("/{instance_id}/stop")
async def stop_instance(
    instance_id: str,
    supervisor: SupervisorDep,
    force: bool = False,  # noqa: FBT001, FBT002
) -> SuccessResponse:
    supervisor.stop_instance(instance_id, force=force)
    return SuccessResponse()


@router.post("/{instance_id}/restart")
async def restart_instance(instance_id: str, supervisor: SupervisorDep) -> StartedResponse:
    pid = await supervisor.restart_instance(instance_id)
    return StartedResponse(pid=pid)


@router.get("/{instance_id}/logs")
async def get_logs(
    instance_id: str,
    supervisor: SupervisorDep,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[LogEntryResponse]:
    return [
        LogEntryResponse.model_validate(entry.to_dict())
        for entry in supervisor.get_logs(instance_id, limit)
    ]


@router.delete("/{instance_id}/logs")
async def clear_logs(instance_id: str, supervisor: SupervisorDep) -> SuccessResponse:
    _ = supervisor.get_instance(instance_id)
    supervisor.clear_logs(instance_id)
    return SuccessResponse()


@router.get("/{instance_id}/config")
async def get_config(instance_id: str, supervisor: SupervisorDep) -> dict[str, Any]:
    try:
        return supervisor.read_config(instance_id)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/{instance_id}/player-ips")
async def get_player_ips(instance_id: str, supervisor: SupervisorDep) -> Any:
    try:
        return supervisor.read_player_ips(instance_id)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
