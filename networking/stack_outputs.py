import os
from typing import Any, Optional

import boto3
from attrs import define, field
from attrs.validators import instance_of, optional
from aws_lambda_powertools.logging.logger import Logger
from botocore.exceptions import ClientError

from common import constants

logger: Logger = Logger(
    service=constants.LOGGER_SERVICE, level=os.getenv("LOG_LEVEL", "INFO").upper()
)


class StackOutputsError(Exception):
    """Raised when a deployed stack or one of its network outputs is missing."""


@define(slots=True, kw_only=True, frozen=True)
class NetworkOutputs:
    vpc_id: str = field(validator=instance_of(str))
    vpc_cidr: str = field(validator=instance_of(str))
    public_subnet_id: str = field(validator=instance_of(str))
    internet_gateway_id: str = field(validator=instance_of(str))
    public_route_table_id: Optional[str] = field(
        default=None, validator=optional(instance_of(str))
    )


REQUIRED_OUTPUTS = {
    constants.OUTPUT_VPC_ID: "vpc_id",
    constants.OUTPUT_VPC_CIDR: "vpc_cidr",
    constants.OUTPUT_PUBLIC_SUBNET_ID: "public_subnet_id",
    constants.OUTPUT_INTERNET_GATEWAY_ID: "internet_gateway_id",
}
OPTIONAL_OUTPUTS = {
    constants.OUTPUT_PUBLIC_ROUTE_TABLE_ID: "public_route_table_id",
}


def _cloudformation_client(region: Optional[str] = None):
    """Build a boto3 CloudFormation client for the target region."""
    return boto3.client(
        "cloudformation",
        region_name=region or os.getenv("CDK_DEFAULT_REGION", constants.DEFAULT_REGION),
    )


def _is_missing_stack(e: ClientError) -> bool:
    error_info = e.response.get("Error", {})
    return error_info.get("Code") == "ValidationError" and "does not exist" in error_info.get(
        "Message", ""
    )


def _outputs_by_key(stack: dict[str, Any]) -> dict[str, str]:
    return {output["OutputKey"]: output["OutputValue"] for output in stack.get("Outputs", [])}


def fetch_network_outputs(
    stack_name: str = constants.STACK_ID, client=None
) -> NetworkOutputs:
    """Read the resolved outputs of a deployed network stack.

    Only DescribeStacks is called; remote state is never modified.
    """
    client = client or _cloudformation_client()
    logger.info("Fetching stack outputs", stack=stack_name)
    try:
        response = client.describe_stacks(StackName=stack_name)
    except ClientError as e:
        if _is_missing_stack(e):
            logger.error("Stack does not exist", stack=stack_name)
            raise StackOutputsError(f"Stack {stack_name} does not exist") from e
        logger.exception("DescribeStacks failed", stack=stack_name)
        raise

    stacks = response.get("Stacks", [])
    if not stacks:
        raise StackOutputsError(f"Stack {stack_name} does not exist")
    outputs = _outputs_by_key(stacks[0])

    missing = sorted(key for key in REQUIRED_OUTPUTS if key not in outputs)
    if missing:
        logger.error("Stack is missing network outputs", stack=stack_name, missing=missing)
        raise StackOutputsError(
            f"Stack {stack_name} is missing outputs: {', '.join(missing)}"
        )

    values = {attribute: outputs[key] for key, attribute in REQUIRED_OUTPUTS.items()}
    values.update(
        {attribute: outputs[key] for key, attribute in OPTIONAL_OUTPUTS.items() if key in outputs}
    )
    return NetworkOutputs(**values)
