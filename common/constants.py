DEFAULT_ENV = "dev"
DEFAULT_REGION = "us-east-1"

# Naming convention components
SERVICE_NAME = "foundation"  # The platform name
COMPONENT = "network"  # The functional component/subsystem

# Resource roles (used in naming)
ACTION_PUBLIC = "public"
ACTION_GATEWAY = "gateway"
ACTION_DEFAULT = "default"

VPC_NAME = "foundation-vpc"
VPC_CIDR = "10.0.0.0/16"
PUBLIC_SUBNET_CIDR = "10.0.1.0/24"
AVAILABILITY_ZONE = "us-east-1a"
ANY_IPV4_CIDR = "0.0.0.0/0"

# CDK context keys (cdk.json "context" block or `cdk synth -c key=value`)
CONTEXT_VPC_NAME = "vpc_name"
CONTEXT_VPC_CIDR = "vpc_cidr"
CONTEXT_PUBLIC_SUBNET_CIDR = "public_subnet_cidr"
CONTEXT_AVAILABILITY_ZONE = "availability_zone"
CONTEXT_ENV = "env"
CONTEXT_OWNER = "owner"
CONTEXT_TAGS = "tags"

# Stack outputs
OUTPUT_VPC_ID = "VpcId"
OUTPUT_VPC_CIDR = "VpcCidr"
OUTPUT_PUBLIC_SUBNET_ID = "PublicSubnetId"
OUTPUT_INTERNET_GATEWAY_ID = "InternetGatewayId"
OUTPUT_PUBLIC_ROUTE_TABLE_ID = "PublicRouteTableId"

STACK_ID = "PublicNetworkStack"
LOGGER_SERVICE = "public-network"
