import pytest

from msglog_infrastructure.engine.errors import ProviderError
from msglog_infrastructure.engine.models import ResourceType
from msglog_infrastructure.engine.provider import SimulatedProvider


@pytest.fixture
def vpc(provider):
    return provider.create(ResourceType.vpc, "vpc", {"cidr_block": "10.0.0.0/16"})


def subnet_attributes(vpc_id, cidr="10.0.1.0/24", zone="eu-north-1a"):
    return {"vpc_id": vpc_id, "cidr_block": cidr, "availability_zone": zone}


def test_identifiers_follow_aws_formats(provider, vpc):
    role = provider.create(
        ResourceType.iam_role,
        "role",
        {
            "name": "message-logger-role",
            "assume_role_policy": {
                "Version": "2012-10-17",
                "Statement": [{"Effect": "Allow", "Action": "sts:AssumeRole"}],
            },
        },
    )

    assert vpc["id"].startswith("vpc-")
    assert vpc["arn"] == f"arn:aws:ec2:eu-north-1:123456789012:vpc/{vpc['id']}"
    # IAM is global, so role ARNs carry no region
    assert role["arn"] == "arn:aws:iam::123456789012:role/message-logger-role"


def test_task_definition_revisions_increment(provider):
    role = provider.create(
        ResourceType.iam_role,
        "role",
        {"name": "r", "assume_role_policy": {"Statement": [{"Effect": "Allow", "Action": "sts:AssumeRole"}]}},  # noqa: E501
    )
    attributes = {
        "family": "message-logger",
        "cpu": "256",
        "memory": "512",
        "execution_role_arn": role["arn"],
        "container_definitions": [{"name": "app", "image": "app:latest"}],
    }

    first = provider.create(ResourceType.ecs_task_definition, "a", attributes)
    second = provider.create(ResourceType.ecs_task_definition, "b", attributes)

    assert first["arn"].endswith("task-definition/message-logger:1")
    assert second["revision"] == 2


@pytest.mark.parametrize(
    ("cidr", "zone", "error"),
    [
        ("10.1.0.0/24", "eu-north-1a", "InvalidSubnet.Range"),
        ("10.0.1.0/24", "us-east-1a", "InvalidParameterValue"),
        ("not-a-cidr", "eu-north-1a", "InvalidParameterValue"),
    ],
)
def test_invalid_subnets_are_rejected(provider, vpc, cidr, zone, error):
    with pytest.raises(ProviderError, match=error):
        provider.create(
            ResourceType.subnet, "subnet", subnet_attributes(vpc["id"], cidr, zone)
        )


def test_overlapping_subnets_are_rejected(provider, vpc):
    provider.create(ResourceType.subnet, "one", subnet_attributes(vpc["id"]))
    with pytest.raises(ProviderError, match="InvalidSubnet.Conflict"):
        provider.create(
            ResourceType.subnet, "two", subnet_attributes(vpc["id"], "10.0.1.128/25")
        )


def test_public_vpc_range_is_rejected(provider):
    with pytest.raises(ProviderError, match="InvalidVpc.Range"):
        provider.create(ResourceType.vpc, "vpc", {"cidr_block": "8.8.0.0/16"})


def test_unknown_reference_is_rejected(provider):
    with pytest.raises(ProviderError, match="does not exist"):
        provider.create(
            ResourceType.subnet, "subnet", subnet_attributes("vpc-doesnotexist")
        )


def test_invalid_retention_is_rejected(provider):
    with pytest.raises(ProviderError, match="retention"):
        provider.create(
            ResourceType.log_group, "logs", {"name": "/ecs/x", "retention_in_days": 13}
        )


def test_malformed_policy_is_rejected(provider):
    with pytest.raises(ProviderError, match="MalformedPolicyDocument"):
        provider.create(
            ResourceType.iam_role,
            "role",
            {"name": "role", "assume_role_policy": "{not json"},
        )


def test_duplicate_names_are_rejected(provider):
    attributes = {"name": "/ecs/x", "retention_in_days": 14}
    provider.create(ResourceType.log_group, "one", attributes)
    with pytest.raises(ProviderError, match="ResourceAlreadyExists"):
        provider.create(ResourceType.log_group, "two", attributes)


def test_delete_with_dependents_is_rejected(provider, vpc):
    provider.create(ResourceType.subnet, "subnet", subnet_attributes(vpc["id"]))
    with pytest.raises(ProviderError, match="DependencyViolation"):
        provider.delete(ResourceType.vpc, "vpc", vpc["id"])


def test_injected_faults_are_consumed(provider):
    provider.inject_fault("vpc", ProviderError("boom"), times=1)
    with pytest.raises(ProviderError, match="boom"):
        provider.create(ResourceType.vpc, "vpc", {"cidr_block": "10.0.0.0/16"})
    assert provider.create(ResourceType.vpc, "vpc", {"cidr_block": "10.0.0.0/16"})


def test_control_plane_survives_a_save_and_load(tmp_path, provider, vpc):
    path = tmp_path / "remote.json"
    provider.save(path)

    restored = SimulatedProvider.from_file(path)
    next_vpc = restored.create(ResourceType.vpc, "other", {"cidr_block": "10.1.0.0/16"})

    assert restored.read(ResourceType.vpc, vpc["id"]) == {"cidr_block": "10.0.0.0/16"}
    assert next_vpc["id"] != vpc["id"]
    assert SimulatedProvider.from_file(tmp_path / "missing.json").resources() == []
