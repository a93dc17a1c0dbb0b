"""This module defines a Pulumi component resource for a VPC with only public subnets.

This includes:

- Create the named VPC with appropriate tags
- Create one subnet per configured CIDR block and availability zone
- Create an internet gateway
- Create a route table with a default route through the gateway and associate the
  subnets with it
- Create the security group for tasks launched into the subnets

There is no NAT gateway, so anything launched into these subnets needs a public IP
address to reach the internet.
"""

from ipaddress import IPv4Network

from pulumi import ComponentResource, ResourceOptions, log
from pulumi_aws import ec2
from pydantic import PositiveInt, field_validator, model_validator

from msglog_infrastructure.config import PublicSubnetConfig
from msglog_infrastructure.lib.aws.ec2_helper import zone_in_region
from msglog_infrastructure.lib.msglog_types import AWSBase
from msglog_infrastructure.policy.security_group import (
    ANY_IPV4,
    IngressMode,
    egress_args,
    ingress_policy,
)

MIN_SUBNETS = PositiveInt(1)


class PublicVPCConfig(AWSBase):
    """Schema definition for VPC configuration values."""

    vpc_name: str
    cidr_block: IPv4Network
    public_subnets: list[PublicSubnetConfig]
    ingress_mode: IngressMode = IngressMode.deny_all

    @field_validator("cidr_block")
    @classmethod
    def is_private_net(cls, network: IPv4Network) -> IPv4Network:
        """Only RFC1918 ranges may be used for the VPC."""
        if not network.is_private:
            msg = "Specified CIDR block for VPC is not an RFC1918 private network"
            raise ValueError(msg)
        return network

    @model_validator(mode="after")
    def check_subnets(self):
        if len(self.public_subnets) < MIN_SUBNETS:
            msg = "At least one public subnet must be defined"
            raise ValueError(msg)
        for subnet in self.public_subnets:
            if not subnet.cidr_block.subnet_of(self.cidr_block):
                msg = f"{subnet.cidr_block} is not a subnet of {self.cidr_block}"
                raise ValueError(msg)
            if not zone_in_region(subnet.availability_zone, self.region):
                msg = f"{subnet.availability_zone} is not a zone in {self.region}"
                raise ValueError(msg)
        return self


class PublicVPC(ComponentResource):
    """Pulumi component for a VPC whose subnets all route through an internet gateway."""

    def __init__(
        self, vpc_config: PublicVPCConfig, opts: ResourceOptions | None = None
    ):
        """Build an AWS VPC with public subnets, internet gateway, and routing table.

        :param vpc_config: Configuration object for customizing the created VPC and
            associated resources.
        :type vpc_config: PublicVPCConfig

        :param opts: Optional resource options to be merged into the defaults.  Useful
            for handling things like AWS provider overrides.
        :type opts: Optional[ResourceOptions]
        """
        super().__init__(
            "msglog:infrastructure:aws:PublicVPC", vpc_config.vpc_name, None, opts
        )
        resource_options = ResourceOptions(parent=self).merge(opts)
        self.vpc_config = vpc_config

        self.vpc = ec2.Vpc(
            vpc_config.vpc_name,
            cidr_block=str(vpc_config.cidr_block),
            enable_dns_support=True,
            enable_dns_hostnames=True,
            tags=vpc_config.merged_tags({"Name": vpc_config.vpc_name}),
            opts=resource_options,
        )

        self.gateway = ec2.InternetGateway(
            f"{vpc_config.vpc_name}-internet-gateway",
            vpc_id=self.vpc.id,
            tags=vpc_config.merged_tags({"Name": f"{vpc_config.vpc_name}-igw"}),
            opts=resource_options,
        )

        self.route_table = ec2.RouteTable(
            f"{vpc_config.vpc_name}-route-table",
            vpc_id=self.vpc.id,
            routes=[
                ec2.RouteTableRouteArgs(
                    cidr_block=ANY_IPV4,
                    gateway_id=self.gateway.id,
                )
            ],
            tags=vpc_config.merged_tags({"Name": f"{vpc_config.vpc_name}-public"}),
            opts=resource_options,
        )

        self.subnets: list[ec2.Subnet] = []
        for index, subnet_config in enumerate(vpc_config.public_subnets, start=1):
            subnet_name = f"{vpc_config.vpc_name}-public-subnet-{index}"
            log.debug(
                f"creating subnet {subnet_name} for {subnet_config.cidr_block} in "
                f"{subnet_config.availability_zone}"
            )
            subnet = ec2.Subnet(
                subnet_name,
                vpc_id=self.vpc.id,
                cidr_block=str(subnet_config.cidr_block),
                availability_zone=subnet_config.availability_zone,
                map_public_ip_on_launch=True,
                tags=vpc_config.merged_tags({"Name": subnet_name}),
                opts=resource_options,
            )
            ec2.RouteTableAssociation(
                f"{subnet_name}-route-table-association",
                subnet_id=subnet.id,
                route_table_id=self.route_table.id,
                opts=resource_options,
            )
            self.subnets.append(subnet)

        log.debug(f"security group ingress preset is {vpc_config.ingress_mode.value}")
        self.security_group = ec2.SecurityGroup(
            f"{vpc_config.vpc_name}-security-group",
            name=f"{vpc_config.vpc_name}-sg",
            description=f"Network access for tasks in {vpc_config.vpc_name}",
            vpc_id=self.vpc.id,
            ingress=ingress_policy(vpc_config.ingress_mode).ingress_args(),
            egress=egress_args(),
            tags=vpc_config.merged_tags({"Name": f"{vpc_config.vpc_name}-sg"}),
            opts=resource_options,
        )

        self.register_outputs(
            {
                "vpc_id": self.vpc.id,
                "subnet_ids": [subnet.id for subnet in self.subnets],
                "security_group_id": self.security_group.id,
                "route_table_id": self.route_table.id,
            }
        )
