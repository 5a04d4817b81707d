import os

from aws_cdk import (
    CfnOutput,
    Stack,
    Token,
    aws_ec2 as ec2,
)
from aws_lambda_powertools.logging.logger import Logger
from constructs import Construct

from common import constants
from common.network_config import NetworkConfig
from common.stack_context import StackContext

logger: Logger = Logger(
    service=constants.LOGGER_SERVICE, level=os.getenv("LOG_LEVEL", "INFO").upper()
)


class PublicNetworkStack(Stack):
    """VPC with a single public subnet routed to an internet gateway.

    Every edge between resources is a Ref/GetAtt, so CloudFormation derives
    the creation order; the only explicit dependency is the default route
    waiting for the gateway attachment.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: NetworkConfig | None = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config or NetworkConfig.from_context(self)
        self.context = StackContext(scope=self, config=self.config)
        if not Token.is_unresolved(self.context.aws_region):
            self.config.check_region(self.context.aws_region)

        self.vpc = self.create_vpc()
        self.public_subnet = self.create_public_subnet(self.vpc)
        self.internet_gateway = self.create_internet_gateway()
        self.gateway_attachment = self.attach_internet_gateway(
            self.vpc, self.internet_gateway
        )
        self.public_route_table = self.create_public_route_table(self.vpc)
        self.default_route = self.add_route_to_internet_gateway(
            self.public_route_table, self.internet_gateway, self.gateway_attachment
        )
        self.public_subnet_association = self.associate_public_subnet(
            self.public_subnet, self.public_route_table
        )
        self.create_outputs()

        logger.info(
            "Declared public network",
            stack=construct_id,
            vpc_name=self.config.vpc_name,
            availability_zone=self.config.availability_zone,
        )

    def create_vpc(self) -> ec2.CfnVPC:
        return ec2.CfnVPC(
            self,
            self.context.build_resource_id("Vpc"),
            cidr_block=self.config.vpc_cidr,
            tags=self.context.build_tags(self.config.vpc_name),
        )

    def create_public_subnet(self, vpc: ec2.CfnVPC) -> ec2.CfnSubnet:
        return ec2.CfnSubnet(
            self,
            self.context.build_resource_id("Subnet", action=constants.ACTION_PUBLIC),
            vpc_id=vpc.ref,
            cidr_block=self.config.public_subnet_cidr,
            availability_zone=self.config.availability_zone,
            map_public_ip_on_launch=True,
            tags=self.context.build_tags(
                self.context.build_resource_name("subnet", action=constants.ACTION_PUBLIC)
            ),
        )

    def create_internet_gateway(self) -> ec2.CfnInternetGateway:
        return ec2.CfnInternetGateway(
            self,
            self.context.build_resource_id("InternetGateway"),
            tags=self.context.build_tags(self.context.build_resource_name("igw")),
        )

    def attach_internet_gateway(
        self, vpc: ec2.CfnVPC, internet_gateway: ec2.CfnInternetGateway
    ) -> ec2.CfnVPCGatewayAttachment:
        """Bind the gateway to the VPC (one gateway per VPC)."""
        return ec2.CfnVPCGatewayAttachment(
            self,
            self.context.build_resource_id(
                "Attachment", action=constants.ACTION_GATEWAY
            ),
            vpc_id=vpc.ref,
            internet_gateway_id=internet_gateway.ref,
        )

    def create_public_route_table(self, vpc: ec2.CfnVPC) -> ec2.CfnRouteTable:
        return ec2.CfnRouteTable(
            self,
            self.context.build_resource_id("RouteTable", action=constants.ACTION_PUBLIC),
            vpc_id=vpc.ref,
            tags=self.context.build_tags(
                self.context.build_resource_name("rt", action=constants.ACTION_PUBLIC)
            ),
        )

    def add_route_to_internet_gateway(
        self,
        route_table: ec2.CfnRouteTable,
        internet_gateway: ec2.CfnInternetGateway,
        gateway_attachment: ec2.CfnVPCGatewayAttachment,
    ) -> ec2.CfnRoute:
        route = ec2.CfnRoute(
            self,
            self.context.build_resource_id("Route", action=constants.ACTION_DEFAULT),
            route_table_id=route_table.ref,
            destination_cidr_block=constants.ANY_IPV4_CIDR,
            gateway_id=internet_gateway.ref,
        )
        # A route to a detached gateway is rejected by EC2.
        route.add_dependency(gateway_attachment)
        return route

    def associate_public_subnet(
        self, subnet: ec2.CfnSubnet, route_table: ec2.CfnRouteTable
    ) -> ec2.CfnSubnetRouteTableAssociation:
        return ec2.CfnSubnetRouteTableAssociation(
            self,
            self.context.build_resource_id(
                "RouteTableAssociation", action=constants.ACTION_PUBLIC
            ),
            subnet_id=subnet.ref,
            route_table_id=route_table.ref,
        )

    def create_outputs(self) -> None:
        outputs = (
            (constants.OUTPUT_VPC_ID, self.vpc.ref, "VPC ID"),
            (constants.OUTPUT_VPC_CIDR, self.vpc.attr_cidr_block, "VPC CIDR block"),
            (
                constants.OUTPUT_PUBLIC_SUBNET_ID,
                self.public_subnet.ref,
                "Public subnet ID",
            ),
            (
                constants.OUTPUT_INTERNET_GATEWAY_ID,
                self.internet_gateway.ref,
                "Internet gateway ID",
            ),
            (
                constants.OUTPUT_PUBLIC_ROUTE_TABLE_ID,
                self.public_route_table.ref,
                "Public route table ID",
            ),
        )
        for output_id, value, description in outputs:
            CfnOutput(
                self,
                output_id,
                value=value,
                description=description,
                export_name=f"{self.stack_name}-{output_id}",
            )
