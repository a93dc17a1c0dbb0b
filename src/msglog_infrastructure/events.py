"""Local model of how EventBridge turns a custom event into an ECS task launch.

Used to check the rule pattern and input transformer that the deployment declares.
It does not attempt to reproduce EventBridge's full pattern language; only exact
matches on `source` and `detail-type` are modelled.
"""

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from msglog_infrastructure.lib.magic_numbers import SINGLE_TASK

logger = logging.getLogger(__name__)

DEFAULT_EVENT_SOURCE = "custom.my-application"
DEFAULT_DETAIL_TYPE = "myDetailType"

_PLACEHOLDER = re.compile(r"<([A-Za-z0-9_.-]+)>")


class EventPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = DEFAULT_EVENT_SOURCE
    detail_type: str = DEFAULT_DETAIL_TYPE

    def matches(self, event: Mapping[str, Any]) -> bool:
        return (
            event.get("source") == self.source
            and event.get("detail-type") == self.detail_type
        )

    def to_pattern(self) -> dict[str, list[str]]:
        """The EventBridge event pattern document for this rule."""
        return {"source": [self.source], "detail-type": [self.detail_type]}

    def to_json(self) -> str:
        return json.dumps(self.to_pattern())


def _extract(event: Mapping[str, Any], path: str) -> Any:
    """Look up a `$.a.b` JSON path in an event. Missing keys yield None."""
    if path == "$":
        return event
    if not path.startswith("$."):
        msg = f"Unsupported input path {path!r}"
        raise ValueError(msg)
    value: Any = event
    for key in path[2:].split("."):
        if not isinstance(value, Mapping) or key not in value:
            return None
        value = value[key]
    return value


class InputTransformer(BaseModel):
    """Extract values from an event and substitute them into a JSON template.

    Placeholders are written `<name>` in the template and are replaced with the JSON
    encoding of the extracted value, so objects are forwarded unchanged.
    """

    input_paths: dict[str, str] = Field(default_factory=lambda: {"detail": "$.detail"})
    input_template: str = '{"detail": <detail>}'

    def render(self, event: Mapping[str, Any]) -> Any:
        values = {
            name: _extract(event, path) for name, path in self.input_paths.items()
        }

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name not in values:
                msg = f"Template placeholder <{name}> has no input path"
                raise ValueError(msg)
            return json.dumps(values[name])

        return json.loads(_PLACEHOLDER.sub(substitute, self.input_template))


class TaskLaunch(BaseModel):
    """A single RunTask call as EventBridge would issue it."""

    cluster_arn: str
    task_definition_arn: str
    launch_type: str = "FARGATE"
    task_count: PositiveInt = SINGLE_TASK
    subnets: list[str] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)
    assign_public_ip: bool = True
    input: Any = None


class EcsTaskTarget(BaseModel):
    cluster_arn: str
    task_definition_arn: str
    subnets: list[str] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)
    assign_public_ip: bool = True
    task_count: PositiveInt = SINGLE_TASK
    input_transformer: InputTransformer = Field(default_factory=InputTransformer)

    def launch(self, event: Mapping[str, Any]) -> TaskLaunch:
        return TaskLaunch(
            cluster_arn=self.cluster_arn,
            task_definition_arn=self.task_definition_arn,
            task_count=self.task_count,
            subnets=self.subnets,
            security_groups=self.security_groups,
            assign_public_ip=self.assign_public_ip,
            input=self.input_transformer.render(event),
        )


class EventRule(BaseModel):
    name: str
    pattern: EventPattern = Field(default_factory=EventPattern)
    targets: list[EcsTaskTarget] = Field(default_factory=list)


class EventRouter:
    """Dispatches events to every matching rule.

    Every matching event produces launches: bursts are neither deduplicated nor
    throttled.
    """

    def __init__(self, rules: Iterable[EventRule] = ()):
        self.rules = list(rules)

    def add_rule(self, rule: EventRule) -> None:
        self.rules.append(rule)

    def dispatch(self, event: Mapping[str, Any]) -> list[TaskLaunch]:
        launches = []
        for rule in self.rules:
            if not rule.pattern.matches(event):
                continue
            logger.debug("Event matched rule %s", rule.name)
            launches.extend(target.launch(event) for target in rule.targets)
        return launches
