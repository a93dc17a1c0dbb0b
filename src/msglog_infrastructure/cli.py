"""Command line interface for planning and applying the message logger graph.

Applies run against the simulated control plane, whose contents are kept in the
file named by `MSGLOG_REMOTE_PATH` between runs.
"""

import json
import logging
import sys
from pathlib import Path

import cyclopts
import yaml
from botocore.exceptions import BotoCoreError, ClientError

from msglog_infrastructure.config import MessageLoggerConfig, load_config
from msglog_infrastructure.declarations import build_declarations
from msglog_infrastructure.engine.errors import GraphError
from msglog_infrastructure.engine.executor import Executor
from msglog_infrastructure.engine.graph import ResourceGraph
from msglog_infrastructure.engine.planner import Plan, Planner
from msglog_infrastructure.engine.provider import SimulatedProvider
from msglog_infrastructure.engine.render import render_plan, render_report
from msglog_infrastructure.engine.settings import EngineSettings
from msglog_infrastructure.engine.state import StateStore
from msglog_infrastructure.lib.aws.events_helper import (
    EventPublishError,
    publish_event,
)
from msglog_infrastructure.policy.iam import audit_policy_scoping, audit_role_trust

logger = logging.getLogger(__name__)

app = cyclopts.App(
    name="msglog-infra",
    help="Plan, apply and audit the message logger deployment.",
)


def _load(config_path: Path | None) -> MessageLoggerConfig:
    try:
        return load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError, BotoCoreError, ClientError) as exc:
        logger.error("Unable to load configuration: %s", exc)  # noqa: TRY400
        sys.exit(1)


def _provider(
    settings: EngineSettings, deployment: MessageLoggerConfig
) -> SimulatedProvider:
    return SimulatedProvider.from_file(
        settings.remote_path, region=deployment.region, account_id=settings.account_id
    )


def _plan(
    deployment: MessageLoggerConfig,
    store: StateStore,
    provider: SimulatedProvider,
) -> Plan:
    try:
        return Planner().plan(build_declarations(deployment), store.load(), provider)
    except GraphError as exc:
        logger.error("Planning failed: %s", exc)  # noqa: TRY400
        sys.exit(1)


@app.command
def graph(*, config: Path | None = None) -> None:
    """Print the resource graph as batches of independent resources.

    Args:
        config: YAML file of deployment settings.
    """
    deployment = _load(config)
    try:
        resource_graph = ResourceGraph(build_declarations(deployment))
    except GraphError as exc:
        logger.error("Invalid resource graph: %s", exc)  # noqa: TRY400
        sys.exit(1)
    for index, generation in enumerate(resource_graph.generations(), start=1):
        print(f"{index}:")
        for name in generation:
            print(f"  {name} ({resource_graph[name].type.value})")


@app.command
def plan(*, config: Path | None = None) -> None:
    """Show the changes an apply would make.

    Args:
        config: YAML file of deployment settings.
    """
    settings = EngineSettings()
    deployment = _load(config)
    store = StateStore(settings.state_path)
    print(render_plan(_plan(deployment, store, _provider(settings, deployment))))


@app.command
def apply(*, config: Path | None = None, auto_approve: bool = False) -> None:
    """Plan and then apply the changes.

    Args:
        config: YAML file of deployment settings.
        auto_approve: Skip the confirmation prompt.
    """
    settings = EngineSettings()
    deployment = _load(config)
    store = StateStore(settings.state_path)
    provider = _provider(settings, deployment)
    planned = _plan(deployment, store, provider)
    print(render_plan(planned))
    if planned.is_empty:
        return
    if not auto_approve:
        answer = input("\nApply these changes? Only 'yes' will be accepted: ")
        if answer.strip().lower() != "yes":
            print("Apply cancelled.")
            return
    report = Executor(provider, store, settings).apply(planned)
    provider.save(settings.remote_path)
    print(render_report(report))
    if not report.succeeded:
        sys.exit(1)


@app.command
def audit(*, config: Path | None = None) -> None:
    """Check role trust and that inline policies only name declared resources.

    Args:
        config: YAML file of deployment settings.
    """
    settings = EngineSettings()
    deployment = _load(config)
    declarations = build_declarations(deployment)
    identifiers = StateStore(settings.state_path).load().identifier_table()
    findings = audit_role_trust(declarations)
    if identifiers:
        findings.extend(audit_policy_scoping(declarations, identifiers))
    else:
        logger.warning("No applied state found, only role trust was audited")
    for finding in findings:
        print(f"{finding.policy}: {finding.issue} ({finding.resource})")
    if findings:
        sys.exit(1)
    print("No findings.")


@app.command(name="publish-event")
def publish_event_command(
    detail: str,
    *,
    config: Path | None = None,
) -> None:
    """Send a custom event that triggers the message logger task.

    Args:
        detail: The event detail as a JSON object.
        config: YAML file of deployment settings.
    """
    deployment = _load(config)
    try:
        event_detail = json.loads(detail)
    except json.JSONDecodeError as exc:
        logger.error("Event detail is not valid JSON: %s", exc)  # noqa: TRY400
        sys.exit(1)
    try:
        event_id = publish_event(
            event_detail,
            source=deployment.event_source,
            detail_type=deployment.event_detail_type,
            region=deployment.region,
        )
    except EventPublishError as exc:
        logger.error("%s", exc)  # noqa: TRY400
        sys.exit(1)
    print(event_id)


def main() -> None:
    settings = EngineSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    app()


if __name__ == "__main__":
    main()
