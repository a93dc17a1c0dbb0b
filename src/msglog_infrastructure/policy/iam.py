"""Local evaluation of the IAM documents generated for the message logger.

This is a deliberately small model of IAM: it understands Allow and Deny statements
with `Action`/`NotAction` and `Resource`/`NotResource` using `*` and `?` wildcards.
It ignores conditions and principals, which is enough to check that generated
policies grant what they should and nothing more.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from enum import Enum, unique
from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel

from msglog_infrastructure.engine.models import (
    ResourceDeclaration,
    ResourceType,
    resolve,
)

logger = logging.getLogger(__name__)


@unique
class PolicyDecision(str, Enum):
    allowed = "allowed"
    explicit_deny = "explicit_deny"
    implicit_deny = "implicit_deny"


class ScopingFinding(BaseModel):
    policy: str
    statement: str | None = None
    resource: str
    issue: str


def _as_document(document: str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(document, str):
        return json.loads(document)
    return dict(document)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return list(value)
    return [value]


def _statements(document: Mapping[str, Any]) -> list[dict[str, Any]]:
    return _as_list(document.get("Statement"))


def _matches_any(patterns: Iterable[str], value: str, *, ignore_case: bool) -> bool:
    if ignore_case:
        return any(fnmatchcase(value.lower(), str(pattern).lower()) for pattern in patterns)
    return any(fnmatchcase(value, str(pattern)) for pattern in patterns)


def _statement_applies(statement: Mapping[str, Any], action: str, resource: str) -> bool:
    if "Action" in statement:
        action_match = _matches_any(
            _as_list(statement["Action"]), action, ignore_case=True
        )
    else:
        action_match = not _matches_any(
            _as_list(statement.get("NotAction")), action, ignore_case=True
        )
    if "Resource" in statement:
        resource_match = _matches_any(
            _as_list(statement["Resource"]), resource, ignore_case=False
        )
    elif "NotResource" in statement:
        resource_match = not _matches_any(
            _as_list(statement["NotResource"]), resource, ignore_case=False
        )
    else:
        # Trust policies have no Resource element
        resource_match = True
    return action_match and resource_match


def simulate_policy(
    document: str | Mapping[str, Any], action: str, resource: str
) -> PolicyDecision:
    """Decide whether a policy document grants `action` on `resource`.

    An explicit Deny always wins, otherwise any matching Allow grants access and
    anything not allowed is implicitly denied.
    """
    decision = PolicyDecision.implicit_deny
    for statement in _statements(_as_document(document)):
        if not _statement_applies(statement, action, resource):
            continue
        if statement.get("Effect") == "Deny":
            return PolicyDecision.explicit_deny
        if statement.get("Effect") == "Allow":
            decision = PolicyDecision.allowed
    return decision


def trusted_services(trust_policy: str | Mapping[str, Any]) -> set[str]:
    """Service principals that may assume a role with this trust policy."""
    services: set[str] = set()
    for statement in _statements(_as_document(trust_policy)):
        if statement.get("Effect") != "Allow":
            continue
        if not _matches_any(
            _as_list(statement.get("Action")), "sts:AssumeRole", ignore_case=True
        ):
            continue
        principal = statement.get("Principal", {})
        if principal == "*":
            services.add("*")
            continue
        services.update(_as_list(principal.get("Service")))
        # Any non service principal is reported verbatim
        for kind in set(principal) - {"Service"}:
            services.update(f"{kind}:{value}" for value in _as_list(principal[kind]))
    return services


def policy_resources(document: str | Mapping[str, Any]) -> list[tuple[str | None, str]]:
    """(Sid, resource) pairs for every `Resource` entry of every statement."""
    return [
        (statement.get("Sid"), resource)
        for statement in _statements(_as_document(document))
        for resource in _as_list(statement.get("Resource"))
    ]


def undeclared_resources(
    document: str | Mapping[str, Any],
    declared_arns: Iterable[str],
    policy_name: str = "<inline>",
) -> list[ScopingFinding]:
    declared = set(declared_arns)
    findings = []
    for sid, resource in policy_resources(document):
        if "*" in resource or "?" in resource:
            issue = "wildcard resource"
        elif resource not in declared:
            issue = "resource is not declared in this deployment"
        else:
            continue
        findings.append(
            ScopingFinding(policy=policy_name, statement=sid, resource=resource, issue=issue)
        )
    return findings


def audit_policy_scoping(
    declarations: Iterable[ResourceDeclaration],
    identifier_table: Mapping[str, Mapping[str, Any]],
) -> list[ScopingFinding]:
    """Check every inline policy only names ARNs of resources declared alongside it.

    :param declarations: The declaration set, with policies still holding references.
    :param identifier_table: Outputs recorded for each applied resource, used both to
        resolve the policies and as the set of known ARNs.

    :returns: One finding per offending `Resource` entry. Empty when every inline
        policy is scoped to declared resources.
    """
    declarations = list(declarations)
    declared_names = {declaration.name for declaration in declarations}
    declared_arns = {
        outputs["arn"]
        for name, outputs in identifier_table.items()
        if name in declared_names and outputs.get("arn")
    }
    findings = []
    for declaration in declarations:
        if declaration.type != ResourceType.iam_role_policy:
            continue
        policy = resolve(
            declaration.attributes["policy"], identifier_table, declaration.name
        )
        policy_findings = undeclared_resources(policy, declared_arns, declaration.name)
        for finding in policy_findings:
            logger.warning(
                "Policy %s statement %s: %s (%s)",
                finding.policy,
                finding.statement,
                finding.issue,
                finding.resource,
            )
        findings.extend(policy_findings)
    return findings


def audit_role_trust(
    declarations: Iterable[ResourceDeclaration],
) -> list[ScopingFinding]:
    """Every role must be assumable by exactly one service principal."""
    findings = []
    for declaration in declarations:
        if declaration.type != ResourceType.iam_role:
            continue
        services = trusted_services(declaration.attributes["assume_role_policy"])
        if len(services) != 1 or "*" in services:
            findings.append(
                ScopingFinding(
                    policy=declaration.name,
                    resource=", ".join(sorted(services)) or "(none)",
                    issue="role must trust exactly one service principal",
                )
            )
    return findings
