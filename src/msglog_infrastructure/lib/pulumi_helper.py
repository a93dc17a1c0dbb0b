from dataclasses import dataclass

from pulumi import get_stack


@dataclass
class StackInfo:
    """Container class for enapsulating standard information about a stack."""

    name: str
    namespace: str
    env_suffix: str
    env_prefix: str
    full_name: str

    @property
    def environment(self) -> str:
        """Environment label used for tagging, e.g. `message_logger-production`."""
        return f"{self.env_prefix}-{self.env_suffix}"


def parse_stack(stack: str | None = None) -> StackInfo:
    """Standardized method for extracting stack information.

    Stack names follow the `<namespace>.<Name>` convention, e.g.
    `infrastructure.aws.message_logger.Production`.

    :param stack: The fully qualified stack name. Defaults to the currently
        selected Pulumi stack.
    :type stack: str

    :returns: Parsed stack information for use in business logic.

    :rtype: StackInfo
    """
    stack = stack or get_stack()
    stack_name = stack.split(".")[-1]
    namespace = stack.rsplit(".", 1)[0]
    return StackInfo(
        name=stack_name,
        namespace=namespace,
        env_suffix=stack_name.lower(),
        env_prefix=namespace.rsplit(".", 1)[-1],
        full_name=stack,
    )
