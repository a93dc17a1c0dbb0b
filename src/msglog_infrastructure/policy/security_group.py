"""Inbound traffic policy for the message logger security group.

Security groups themselves only have allow rules. A :class:`TrafficPolicy` keeps
allow and deny intents side by side so that a preset can be reasoned about and
checked before it is turned into security group rules, and refuses to render a deny
that AWS would have no way to enforce.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, unique
from ipaddress import IPv4Address, IPv4Network
from typing import Any, Literal

import pulumi_aws as aws

from msglog_infrastructure.lib.magic_numbers import (
    ALL_PORTS_FROM,
    ALL_PORTS_TO,
    DEFAULT_HTTP_PORT,
    MAXIMUM_PORT_NUMBER,
)

ANY_IPV4 = "0.0.0.0/0"
ALL_PROTOCOLS = "-1"

Protocol = Literal["tcp", "udp", "icmp", "-1"]


@unique
class RuleIntent(str, Enum):
    allow = "allow"
    deny = "deny"


@unique
class IngressMode(str, Enum):
    """The mutually exclusive inbound presets a deployment can choose from."""

    deny_all = "deny_all"
    allow_http = "allow_http"


@dataclass(frozen=True)
class IngressRule:
    protocol: Protocol
    from_port: int
    to_port: int
    cidr_blocks: tuple[str, ...] = (ANY_IPV4,)
    description: str = ""

    def __post_init__(self):
        if self.protocol != ALL_PROTOCOLS and not (
            0 <= self.from_port <= self.to_port <= MAXIMUM_PORT_NUMBER
        ):
            msg = f"Invalid port range {self.from_port}-{self.to_port}"
            raise ValueError(msg)
        for cidr in self.cidr_blocks:
            IPv4Network(cidr)

    def covers(self, protocol: str, port: int, source_ip: str) -> bool:
        if self.protocol not in {ALL_PROTOCOLS, protocol}:
            return False
        if self.protocol != ALL_PROTOCOLS and not (
            self.from_port <= port <= self.to_port
        ):
            return False
        address = IPv4Address(source_ip)
        return any(address in IPv4Network(cidr) for cidr in self.cidr_blocks)

    def overlaps(self, other: "IngressRule") -> bool:
        protocols_overlap = ALL_PROTOCOLS in {self.protocol, other.protocol} or (
            self.protocol == other.protocol
        )
        if not protocols_overlap:
            return False
        if ALL_PROTOCOLS not in {self.protocol, other.protocol} and (
            self.to_port < other.from_port or other.to_port < self.from_port
        ):
            return False
        return any(
            IPv4Network(mine).overlaps(IPv4Network(theirs))
            for mine in self.cidr_blocks
            for theirs in other.cidr_blocks
        )

    def to_attributes(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "from_port": self.from_port,
            "to_port": self.to_port,
            "cidr_blocks": list(self.cidr_blocks),
            "description": self.description,
        }

    def to_ingress_args(self) -> aws.ec2.SecurityGroupIngressArgs:
        return aws.ec2.SecurityGroupIngressArgs(
            protocol=self.protocol,
            from_port=self.from_port,
            to_port=self.to_port,
            cidr_blocks=list(self.cidr_blocks),
            description=self.description or None,
        )

    def to_egress_args(self) -> aws.ec2.SecurityGroupEgressArgs:
        return aws.ec2.SecurityGroupEgressArgs(
            protocol=self.protocol,
            from_port=self.from_port,
            to_port=self.to_port,
            cidr_blocks=list(self.cidr_blocks),
            description=self.description or None,
        )


ALL_EGRESS = IngressRule(
    protocol=ALL_PROTOCOLS,
    from_port=ALL_PORTS_FROM,
    to_port=ALL_PORTS_TO,
    cidr_blocks=(ANY_IPV4,),
    description="Allow all outbound traffic",
)


@dataclass(frozen=True)
class TrafficPolicy:
    """Inbound rules keyed by their intent.

    Traffic is denied unless an allow rule covers it and no deny rule does.
    """

    rules: Mapping[IngressRule, RuleIntent] = field(default_factory=dict)

    def rules_with(self, intent: RuleIntent) -> list[IngressRule]:
        return [rule for rule, rule_intent in self.rules.items() if rule_intent == intent]

    def permits(self, protocol: str, port: int, source_ip: str) -> bool:
        if any(
            rule.covers(protocol, port, source_ip)
            for rule in self.rules_with(RuleIntent.deny)
        ):
            return False
        return any(
            rule.covers(protocol, port, source_ip)
            for rule in self.rules_with(RuleIntent.allow)
        )

    def _check_expressible(self) -> None:
        for deny in self.rules_with(RuleIntent.deny):
            for allow in self.rules_with(RuleIntent.allow):
                if deny.overlaps(allow):
                    msg = (
                        f"Deny rule {deny} overlaps allow rule {allow}; security "
                        "groups cannot express an explicit deny"
                    )
                    raise ValueError(msg)

    def ingress_attributes(self) -> list[dict[str, Any]]:
        """Allow rules rendered as security group ingress attributes."""
        self._check_expressible()
        return [rule.to_attributes() for rule in self.rules_with(RuleIntent.allow)]

    def ingress_args(self) -> list[aws.ec2.SecurityGroupIngressArgs]:
        self._check_expressible()
        return [rule.to_ingress_args() for rule in self.rules_with(RuleIntent.allow)]


def deny_all_ingress() -> TrafficPolicy:
    return TrafficPolicy()


def allow_http_ingress() -> TrafficPolicy:
    return TrafficPolicy(
        rules={
            IngressRule(
                protocol="tcp",
                from_port=DEFAULT_HTTP_PORT,
                to_port=DEFAULT_HTTP_PORT,
                cidr_blocks=(ANY_IPV4,),
                description="Allow inbound HTTP",
            ): RuleIntent.allow
        }
    )


INGRESS_PRESETS = {
    IngressMode.deny_all: deny_all_ingress,
    IngressMode.allow_http: allow_http_ingress,
}


def ingress_policy(mode: IngressMode) -> TrafficPolicy:
    return INGRESS_PRESETS[IngressMode(mode)]()


def egress_attributes() -> list[dict[str, Any]]:
    return [ALL_EGRESS.to_attributes()]


def egress_args() -> list[aws.ec2.SecurityGroupEgressArgs]:
    return [ALL_EGRESS.to_egress_args()]
