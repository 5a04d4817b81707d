#!/usr/bin/env python3
"""AWS CDK entrypoint for provisioning the public network foundation.

This module builds the network config from CDK context, declares the
networking stack in the deployment environment sourced from the CDK CLI
defaults, and verifies the synthesized template before CloudFormation ever
sees it. Override context values (``-c vpc_cidr=...``) or the environment
variables to target a different network, account or region.
"""
import os

import aws_cdk as cdk
from aws_cdk import Environment

from common import constants
from common.network_config import NetworkConfig
from networking.networking_stack import PublicNetworkStack
from networking.topology import validate_template

app = cdk.App()

env = Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

# Invalid inputs fail here, before any construct is declared.
config = NetworkConfig.from_context(app)

stack = PublicNetworkStack(app, constants.STACK_ID, config=config, env=env)

assembly = app.synth()
validate_template(assembly.get_stack_by_name(stack.stack_name).template)
