"""Gateway service control and lifecycle coordination."""

from pairgate.service.lifecycle import CoordinationResult, LifecycleCoordinator, ServiceState
from pairgate.service.manager import (
    DockerComposeService,
    ServiceManager,
    ServiceStatus,
    SystemdService,
    build_service_manager,
)

__all__ = [
    "CoordinationResult",
    "LifecycleCoordinator",
    "ServiceState",
    "ServiceManager",
    "ServiceStatus",
    "DockerComposeService",
    "SystemdService",
    "build_service_manager",
]
