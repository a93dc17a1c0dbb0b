import json
import re
from typing import Any

from parliament import analyze_policy_string
from parliament.finding import Finding

IAM_POLICY_VERSION = "2012-10-17"

ECS_TASKS_SERVICE_PRINCIPAL = "ecs-tasks.amazonaws.com"
EVENTS_SERVICE_PRINCIPAL = "events.amazonaws.com"
ECS_TASK_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)


def _is_ignored(finding: Finding, parliament_config: dict[str, Any]) -> bool:
    """Whether a finding is silenced by the `ignore_locations` of its issue."""
    issue_config = parliament_config.get(finding.issue)
    if issue_config is None:
        return False
    patterns = [
        action
        for location in issue_config.get("ignore_locations", [])
        for action in location.get("actions", [])
    ]
    if not patterns:
        return True
    finding_actions = finding.location.get("actions", [])
    return any(
        re.search(pattern, action, re.IGNORECASE)
        for pattern in patterns
        for action in finding_actions
    )


def lint_iam_policy(
    policy_document: str | dict[str, Any],
    stringify: bool = False,  # noqa: FBT001, FBT002
    parliament_config: dict[str, Any] | None = None,
) -> str | dict[str, Any]:
    """Run parliament over a policy document and refuse to continue on findings.

    Community auditors are enabled. Findings named in `parliament_config` are
    dropped before the check, either entirely or for the listed actions only.

    :param policy_document: The policy as a dictionary or a JSON string.
    :param stringify: Return a dictionary document JSON encoded.
    :param parliament_config: Parliament configuration, also used to filter findings.

    :raises ValueError: With the remaining findings, if there are any.

    :returns: The policy document, JSON encoded when `stringify` is set.
    """
    encoded = (
        policy_document
        if isinstance(policy_document, str)
        else json.dumps(policy_document)
    )
    parliament_config = parliament_config or {}
    findings = [
        finding
        for finding in analyze_policy_string(
            encoded,
            include_community_auditors=True,
            config=parliament_config or None,
        ).findings
        if not _is_ignored(finding, parliament_config)
    ]
    if findings:
        msg = "Potential issues found with IAM policy document"
        raise ValueError(msg, findings)
    return encoded if stringify else policy_document


def service_trust_policy(service_principal: str) -> dict[str, Any]:
    """Trust policy allowing exactly one AWS service to assume a role.

    :param service_principal: The service principal, e.g. `ecs-tasks.amazonaws.com`
    :type service_principal: str

    :returns: A dictionary object representing an assume role policy document.
    """
    return {
        "Version": IAM_POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": service_principal},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def run_task_policy_document(
    task_definition_arn: Any, execution_role_arn: Any
) -> dict[str, Any]:
    """Policy definition allowing EventBridge to launch one specific ECS task.

    `ecs:RunTask` is scoped to the task definition ARN and `iam:PassRole` to the
    execution role ARN that the task definition names. Neither statement uses a
    wildcard resource.

    :param task_definition_arn: The full ARN (including revision) of the task
        definition to be launched.
    :param execution_role_arn: The ARN of the task execution role to be passed to ECS.

    :returns: A dictionary object representing an inline policy document.
    """
    return {
        "Version": IAM_POLICY_VERSION,
        "Statement": [
            {
                "Sid": "RunMessageLoggerTask",
                "Effect": "Allow",
                "Action": "ecs:RunTask",
                "Resource": task_definition_arn,
            },
            {
                "Sid": "PassTaskExecutionRole",
                "Effect": "Allow",
                "Action": "iam:PassRole",
                "Resource": execution_role_arn,
            },
        ],
    }
