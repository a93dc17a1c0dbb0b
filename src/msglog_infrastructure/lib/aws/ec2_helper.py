"""Helper functions for working with EC2 resources."""

from functools import lru_cache

import boto3

DEFAULT_REGION = "eu-north-1"


@lru_cache
def aws_regions() -> list[str]:
    """Generate the list of regions available in AWS.

    :returns: List of AWS regions

    :rtype: List[str]
    """
    ec2_client = boto3.client("ec2", region_name=DEFAULT_REGION)
    return [region["RegionName"] for region in ec2_client.describe_regions()["Regions"]]


def zone_in_region(zone: str, region: str) -> bool:
    """Check that an availability zone name belongs to a region.

    Zone names are the region name followed by a single letter suffix, so this
    does not need to query AWS.
    """
    return zone.startswith(region) and len(zone) == len(region) + 1 and zone[-1].isalpha()
