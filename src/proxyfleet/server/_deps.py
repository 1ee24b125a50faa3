"""Dependency providers for the control API routes."""

from typing import Annotated, cast

from fastapi import Depends
from starlette.requests import HTTPConnection

from proxyfleet.supervisor import EventBroadcaster, InstanceSupervisor


def get_supervisor(connection: HTTPConnection) -> InstanceSupervisor:
    """Return the supervisor created by the application lifespan."""
    return cast("InstanceSupervisor", connection.app.state.supervisor)


def get_broadcaster(connection: HTTPConnection) -> EventBroadcaster:
    """Return the broadcaster created by the application lifespan."""
    return cast("EventBroadcaster", connection.app.state.broadcaster)


SupervisorDep = Annotated[InstanceSupervisor, Depends(get_supervisor)]
BroadcasterDep = Annotated[EventBroadcaster, Depends(get_broadcaster)]
