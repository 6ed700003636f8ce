"""Stop -> mutate -> start sequencing against the gateway service.

Service quiescence is the only mutual exclusion with the gateway: it is
stopped before the store is touched, so it never reads a half-written file
and reloads approvals when it starts again.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Literal, TypeVar

from loguru import logger

from pairgate.config.schema import ServiceConfig
from pairgate.errors import RequestNotFoundError, ServiceStartError, ServiceStopError
from pairgate.service.manager import ServiceManager

T = TypeVar("T")

FailedPhase = Literal["stop", "mutate", "start"]


class ServiceState(str, Enum):
    UNKNOWN = "unknown"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    MUTATING = "mutating"
    STARTING = "starting"


@dataclass
class CoordinationResult(Generic[T]):
    """Outcome of a coordinated mutation.

    ``mutated`` and ``service_running`` are reported separately so an
    operator can tell "data saved, gateway down" from "nothing saved".
    """
    success: bool
    failed_phase: FailedPhase | None = None
    mutated: bool = False
    noop: bool = False
    service_running: bool | None = None  # None = not checked
    value: T | None = None
    error: Exception | None = None
    remediation: str | None = None

    @property
    def message(self) -> str:
        if self.success:
            return "no changes needed" if self.noop else "ok"
        return f"{self.failed_phase} phase failed: {self.error}"


class LifecycleCoordinator:
    """Runs a store mutation while the gateway is stopped."""

    def __init__(
        self,
        manager: ServiceManager,
        config: ServiceConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.manager = manager
        self.config = config
        self.state = ServiceState.UNKNOWN
        self._clock = clock
        self._sleep = sleep

    # ── phases ─────────────────────────────────────────────────────

    def stop(self) -> None:
        """Stop the service and wait until it reports stopped.

        Raises:
            ServiceStopError: stop command failed or the timeout elapsed.
        """
        self.state = ServiceState.STOPPING
        logger.info(f"Stopping {self.manager.label}")
        remediation = f"The gateway may be stopped. Start it with: {self.manager.manual_command('start')}"

        result = self.manager.stop()
        if not result.success:
            raise ServiceStopError(f"Failed to stop {self.manager.label}: {result.message}", remediation)

        deadline = self._clock() + self.config.stop_timeout_seconds
        while True:
            status = self.manager.status()
            if status.stopped:
                break
            if self._clock() >= deadline:
                raise ServiceStopError(
                    f"{self.manager.label} still '{status.state}' after "
                    f"{self.config.stop_timeout_seconds:g}s",
                    remediation,
                )
            self._sleep(self.config.poll_interval_seconds)

        self.state = ServiceState.STOPPED
        logger.info(f"{self.manager.label} stopped")

    def start(self) -> None:
        """Start the service and poll readiness a fixed number of times.

        Raises:
            ServiceStartError: start command failed or readiness never came.
        """
        self.state = ServiceState.STARTING
        logger.info(f"Starting {self.manager.label}")
        remediation = (
            f"Start it manually: {self.manager.manual_command('start')}\n"
            f"Check logs: {self.manager.manual_command('logs')}"
        )

        result = self.manager.start()
        if not result.success:
            self.state = ServiceState.STOPPED
            raise ServiceStartError(f"Failed to start {self.manager.label}: {result.message}", remediation)

        if not self.wait_ready():
            raise ServiceStartError(
                f"{self.manager.label} did not become ready after {self.config.ready_retries} checks",
                remediation,
            )
        self.state = ServiceState.RUNNING

    def restart(self) -> None:
        """Restart through the process manager, then wait for readiness."""
        self.state = ServiceState.STOPPING
        logger.info(f"Restarting {self.manager.label}")
        remediation = (
            f"Start it manually: {self.manager.manual_command('start')}\n"
            f"Check logs: {self.manager.manual_command('logs')}"
        )

        result = self.manager.restart()
        if not result.success:
            self.state = ServiceState.UNKNOWN
            raise ServiceStartError(f"Failed to restart {self.manager.label}: {result.message}", remediation)

        self.state = ServiceState.STARTING
        if not self.wait_ready():
            raise ServiceStartError(
                f"{self.manager.label} did not become ready after {self.config.ready_retries} checks",
                remediation,
            )
        self.state = ServiceState.RUNNING

    def wait_ready(self) -> bool:
        """Process status first, then the HTTP liveness probe."""
        for attempt in range(1, self.config.ready_retries + 1):
            status = self.manager.status()
            if status.running and self.manager.probe():
                logger.info(f"{self.manager.label} is ready")
                return True
            logger.debug(
                f"Waiting for {self.manager.label} (attempt {attempt}/{self.config.ready_retries}, "
                f"state {status.state})"
            )
            if attempt < self.config.ready_retries:
                self._sleep(self.config.ready_delay_seconds)
        logger.warning(f"{self.manager.label} did not become ready")
        return False

    # ── orchestration ──────────────────────────────────────────────

    def run(self, mutation: Callable[[], T]) -> CoordinationResult[T]:
        """
        Stop the service, apply ``mutation``, start the service.

        A stop failure aborts before anything is mutated. A mutation failure
        still restarts the service unless restart_after_failed_mutation is
        off. A start failure never rolls back a committed mutation.
        """
        try:
            self.stop()
        except ServiceStopError as e:
            logger.error(str(e))
            return CoordinationResult(success=False, failed_phase="stop", error=e, remediation=e.remediation)
        except Exception as e:
            error = ServiceStopError(
                f"Stopping {self.manager.label} failed: {e}",
                f"The gateway may be stopped. Start it with: {self.manager.manual_command('start')}",
            )
            logger.exception(str(error))
            return CoordinationResult(
                success=False, failed_phase="stop", error=error, remediation=error.remediation
            )

        self.state = ServiceState.MUTATING
        value: T | None = None
        mutation_error: Exception | None = None
        noop = False
        try:
            value = mutation()
        except RequestNotFoundError as e:
            logger.info(f"Nothing to change: {e}")
            noop = True
        except Exception as e:
            logger.error(f"Mutation failed with {self.manager.label} stopped: {e}")
            mutation_error = e
        mutated = mutation_error is None and not noop

        if mutation_error is not None and not self.config.restart_after_failed_mutation:
            self.state = ServiceState.STOPPED
            return CoordinationResult(
                success=False,
                failed_phase="mutate",
                service_running=False,
                error=mutation_error,
                remediation=(
                    f"The gateway was left STOPPED. Start it with: {self.manager.manual_command('start')}"
                ),
            )

        start_error: ServiceStartError | None = None
        try:
            self.start()
        except ServiceStartError as e:
            logger.error(str(e))
            start_error = e

        running = start_error is None
        if mutation_error is not None:
            remediation = getattr(mutation_error, "remediation", None)
            if start_error is not None:
                remediation = "\n".join(filter(None, [remediation, start_error.remediation]))
            return CoordinationResult(
                success=False,
                failed_phase="mutate",
                service_running=running,
                error=mutation_error,
                remediation=remediation,
            )
        if start_error is not None:
            return CoordinationResult(
                success=False,
                failed_phase="start",
                mutated=mutated,
                service_running=False,
                noop=noop,
                value=value,
                error=start_error,
                remediation=start_error.remediation,
            )
        return CoordinationResult(success=True, mutated=mutated, noop=noop, service_running=True, value=value)
