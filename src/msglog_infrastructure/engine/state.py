"""Persisted snapshot of what was last applied.

The snapshot is the engine's record of intent: it is the only place a removed
declaration can still be found, so it is compared against the desired declarations
to compute a plan rather than being rebuilt by querying the provider.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from msglog_infrastructure.engine.models import ResourceType

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class ResourceState(BaseModel):
    """One recorded resource.

    `attributes` is the canonical declared form with references kept symbolic.
    `observed` is the resolved form that was last sent to the provider and is
    what drift detection compares against.
    """

    type: ResourceType
    name: str
    attributes: dict[str, Any]
    observed: dict[str, Any]
    outputs: dict[str, Any]
    dependencies: list[str] = Field(default_factory=list)

    @property
    def remote_id(self) -> str:
        return self.outputs["id"]


class StateSnapshot(BaseModel):
    version: int = STATE_FORMAT_VERSION
    serial: int = 0
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    def identifier_table(self) -> dict[str, dict[str, Any]]:
        return {name: dict(state.outputs) for name, state in self.resources.items()}


class StateStore:
    """JSON file backed storage for a :class:`StateSnapshot`."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> StateSnapshot:
        if not self.path.exists():
            logger.info("No state found at %s, starting from an empty snapshot", self.path)
            return StateSnapshot()
        snapshot = StateSnapshot.model_validate_json(self.path.read_text())
        if snapshot.version != STATE_FORMAT_VERSION:
            msg = f"Unsupported state format version {snapshot.version} in {self.path}"
            raise ValueError(msg)
        return snapshot

    def save(self, snapshot: StateSnapshot) -> StateSnapshot:
        """Write the snapshot atomically, bumping its serial number."""
        snapshot.serial += 1
        self.path.parent.mkdir(parents=True, exist_ok=True)
        file_descriptor, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        with os.fdopen(file_descriptor, "w") as temp_file:
            temp_file.write(snapshot.model_dump_json(indent=2))
        Path(temp_path).replace(self.path)
        logger.debug("Saved state serial %d to %s", snapshot.serial, self.path)
        return snapshot
