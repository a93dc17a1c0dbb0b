"""Apply a plan operation by operation, recording state as each one succeeds."""

import logging
import time
from collections.abc import Callable
from enum import Enum, unique
from typing import Any

from pydantic import BaseModel, Field

from msglog_infrastructure.engine.errors import (
    ProviderError,
    ResourceReferenceError,
    ThrottlingError,
)
from msglog_infrastructure.engine.models import resolve
from msglog_infrastructure.engine.planner import Action, Operation, Plan
from msglog_infrastructure.engine.provider import Provider
from msglog_infrastructure.engine.settings import EngineSettings
from msglog_infrastructure.engine.state import ResourceState, StateSnapshot, StateStore

logger = logging.getLogger(__name__)


@unique
class OperationStatus(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"


class OperationResult(BaseModel):
    action: Action
    name: str
    replacement: bool = False
    status: OperationStatus
    attempts: int = 0
    error: str | None = None


class ApplyReport(BaseModel):
    results: list[OperationResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(
            result.status == OperationStatus.succeeded for result in self.results
        )

    def by_status(self, status: OperationStatus) -> list[OperationResult]:
        return [result for result in self.results if result.status == status]


class Executor:
    """Runs plan operations against a provider.

    A provider error fails only the operation it came from; any later operation
    that requires the failed resource is skipped, while independent branches of
    the graph still run. State is persisted after every successful operation so
    an interrupted apply leaves state consistent up to the last completed step.
    """

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        settings: EngineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.store = store
        self.settings = settings or EngineSettings()
        self._sleep = sleep

    def apply(self, plan: Plan) -> ApplyReport:
        snapshot = self.store.load()
        identifiers = snapshot.identifier_table()
        blocked: set[str] = set()
        report = ApplyReport()

        for operation in plan.operations:
            waiting_on = blocked.intersection(operation.requires)
            if waiting_on:
                logger.warning(
                    "Skipping %s of %s because %s did not complete",
                    operation.action.value,
                    operation.name,
                    ", ".join(sorted(waiting_on)),
                )
                blocked.add(operation.name)
                report.results.append(
                    OperationResult(
                        action=operation.action,
                        name=operation.name,
                        replacement=operation.replacement,
                        status=OperationStatus.skipped,
                        error=f"blocked by {', '.join(sorted(waiting_on))}",
                    )
                )
                continue
            report.results.append(
                self._run(operation, snapshot, identifiers, blocked)
            )
        return report

    def _run(
        self,
        operation: Operation,
        snapshot: StateSnapshot,
        identifiers: dict[str, dict[str, Any]],
        blocked: set[str],
    ) -> OperationResult:
        attempts = 0
        while True:
            attempts += 1
            try:
                self._dispatch(operation, snapshot, identifiers)
            except ThrottlingError as exc:
                if attempts >= self.settings.max_attempts:
                    return self._failed(operation, exc, attempts, blocked)
                delay = self.settings.backoff_delay(attempts)
                logger.info(
                    "Throttled on %s of %s, retrying in %.2fs (attempt %d/%d)",
                    operation.action.value,
                    operation.name,
                    delay,
                    attempts,
                    self.settings.max_attempts,
                )
                self._sleep(delay)
            except (ProviderError, ResourceReferenceError) as exc:
                return self._failed(operation, exc, attempts, blocked)
            else:
                logger.info("%s %s: done", operation.action.value, operation.name)
                return OperationResult(
                    action=operation.action,
                    name=operation.name,
                    replacement=operation.replacement,
                    status=OperationStatus.succeeded,
                    attempts=attempts,
                )

    def _failed(
        self,
        operation: Operation,
        error: Exception,
        attempts: int,
        blocked: set[str],
    ) -> OperationResult:
        logger.error(
            "%s %s failed: %s", operation.action.value, operation.name, error
        )
        blocked.add(operation.name)
        return OperationResult(
            action=operation.action,
            name=operation.name,
            replacement=operation.replacement,
            status=OperationStatus.failed,
            attempts=attempts,
            error=str(error),
        )

    def _dispatch(
        self,
        operation: Operation,
        snapshot: StateSnapshot,
        identifiers: dict[str, dict[str, Any]],
    ) -> None:
        if operation.action == Action.delete:
            prior = operation.prior
            self.provider.delete(prior.type, operation.name, prior.remote_id)
            snapshot.resources.pop(operation.name, None)
            identifiers.pop(operation.name, None)
            self.store.save(snapshot)
            return

        declaration = operation.declaration
        observed = resolve(declaration.attributes, identifiers, declaration.name)
        if operation.action == Action.create:
            outputs = self.provider.create(declaration.type, declaration.name, observed)
        else:
            outputs = self.provider.update(
                declaration.type,
                declaration.name,
                operation.prior.remote_id,
                observed,
            )
        identifiers[declaration.name] = outputs
        snapshot.resources[declaration.name] = ResourceState(
            type=declaration.type,
            name=declaration.name,
            attributes=declaration.canonical_attributes(),
            observed=observed,
            outputs=outputs,
            dependencies=sorted(declaration.dependency_names()),
        )
        self.store.save(snapshot)
