from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from networking.stack_outputs import (
    NetworkOutputs,
    StackOutputsError,
    fetch_network_outputs,
)

STACK_NAME = "PublicNetworkStack"

NETWORK_OUTPUTS = [
    {"OutputKey": "VpcId", "OutputValue": "vpc-0a1b2c3d4e5f60718"},
    {"OutputKey": "VpcCidr", "OutputValue": "10.0.0.0/16"},
    {"OutputKey": "PublicSubnetId", "OutputValue": "subnet-0a1b2c3d4e5f60718"},
    {"OutputKey": "InternetGatewayId", "OutputValue": "igw-0a1b2c3d4e5f60718"},
]


def describe_stacks_response(outputs):
    return {
        "Stacks": [
            {
                "StackName": STACK_NAME,
                "CreationTime": datetime(2026, 1, 1, tzinfo=timezone.utc),
                "StackStatus": "CREATE_COMPLETE",
                "Outputs": outputs,
            }
        ]
    }


@pytest.fixture
def cloudformation():
    client = boto3.client(
        "cloudformation",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def test_fetch_network_outputs(cloudformation):
    client, stubber = cloudformation
    outputs = NETWORK_OUTPUTS + [
        {"OutputKey": "PublicRouteTableId", "OutputValue": "rtb-0a1b2c3d4e5f60718"}
    ]
    stubber.add_response(
        "describe_stacks", describe_stacks_response(outputs), {"StackName": STACK_NAME}
    )

    result = fetch_network_outputs(STACK_NAME, client=client)

    assert result == NetworkOutputs(
        vpc_id="vpc-0a1b2c3d4e5f60718",
        vpc_cidr="10.0.0.0/16",
        public_subnet_id="subnet-0a1b2c3d4e5f60718",
        internet_gateway_id="igw-0a1b2c3d4e5f60718",
        public_route_table_id="rtb-0a1b2c3d4e5f60718",
    )


def test_route_table_output_is_optional(cloudformation):
    client, stubber = cloudformation
    stubber.add_response(
        "describe_stacks", describe_stacks_response(NETWORK_OUTPUTS), {"StackName": STACK_NAME}
    )

    result = fetch_network_outputs(STACK_NAME, client=client)

    assert result.public_route_table_id is None
    assert result.vpc_cidr == "10.0.0.0/16"


def test_missing_required_output(cloudformation):
    client, stubber = cloudformation
    stubber.add_response(
        "describe_stacks",
        describe_stacks_response(NETWORK_OUTPUTS[:2]),
        {"StackName": STACK_NAME},
    )

    with pytest.raises(StackOutputsError, match="InternetGatewayId, PublicSubnetId"):
        fetch_network_outputs(STACK_NAME, client=client)


def test_missing_stack(cloudformation):
    client, stubber = cloudformation
    stubber.add_client_error(
        "describe_stacks",
        service_error_code="ValidationError",
        service_message=f"Stack with id {STACK_NAME} does not exist",
        http_status_code=400,
        expected_params={"StackName": STACK_NAME},
    )

    with pytest.raises(StackOutputsError, match="does not exist"):
        fetch_network_outputs(STACK_NAME, client=client)


def test_other_client_errors_propagate(cloudformation):
    client, stubber = cloudformation
    stubber.add_client_error(
        "describe_stacks",
        service_error_code="AccessDenied",
        service_message="User is not authorized to perform cloudformation:DescribeStacks",
        http_status_code=403,
    )

    with pytest.raises(ClientError) as excinfo:
        fetch_network_outputs(STACK_NAME, client=client)
    assert excinfo.value.response["Error"]["Code"] == "AccessDenied"
