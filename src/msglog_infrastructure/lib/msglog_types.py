from enum import Enum, unique

from pydantic import BaseModel, field_validator

from msglog_infrastructure.lib.aws.ec2_helper import DEFAULT_REGION, aws_regions

REQUIRED_TAGS = {"Application", "Environment"}


@unique
class Application(str, Enum):
    """Canonical source of truth for defining valid Application tags.

    Resources are tagged with the application that owns them so that costs and
    ownership can be traced back from the AWS console.
    """

    message_logger = "message-logger"


@unique
class Environment(str, Enum):
    """Canonical reference for valid environment names."""

    ci = "ci"
    qa = "qa"
    production = "production"


class AWSBase(BaseModel):
    """Base class for configuration objects to pass to AWS component resources."""

    tags: dict[str, str]
    region: str = DEFAULT_REGION

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.tags.update({"pulumi_managed": "true"})

    @field_validator("tags")
    @classmethod
    def enforce_tags(cls, tags: dict[str, str]) -> dict[str, str]:
        missing = REQUIRED_TAGS.difference(tags)
        if missing:
            msg = f"Not all required tags have been specified. Missing tags: {missing}"
            raise ValueError(msg)
        for tag, allowed in (("Application", Application), ("Environment", Environment)):
            try:
                allowed(tags[tag])
            except ValueError as exc:
                msg = f"The {tag} tag {tags[tag]!r} is not a known {tag.lower()}"
                raise ValueError(msg) from exc
        return tags

    @field_validator("region")
    @classmethod
    def check_region(cls, region: str) -> str:
        if region not in aws_regions():
            msg = f"The region {region} does not exist"
            raise ValueError(msg)
        return region

    def merged_tags(self, *new_tags: dict[str, str]) -> dict[str, str]:
        """Copy the base tags and layer resource specific tags over them.

        Later dictionaries win, so a child resource can override e.g. `Name` without
        touching the tags shared by the rest of the component.

        :param new_tags: Tags for a single child resource.
        :type new_tags: dict[str, str]

        :rtype: dict[str, str]
        """
        merged = dict(self.tags)
        for tags in new_tags:
            merged |= tags
        return merged
