from attrs import define, field
from aws_cdk import CfnTag, Stack
from typing import Optional

import common.constants as constants
from common.network_config import NetworkConfig


def _pascal(part: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in part.replace("_", "-").split("-"))


@define(slots=True, frozen=True)
class StackContext:
    scope: Stack
    config: NetworkConfig
    service: str = field(default=constants.SERVICE_NAME, init=False)
    component: str = field(default=constants.COMPONENT)

    @property
    def aws_region(self) -> str:
        return Stack.of(self.scope).region

    # ---------- naming ----------
    def build_resource_name(
        self, resource_type: str, action: Optional[str] = None
    ) -> str:
        """Build the Name tag of a resource from the VPC name.

        Examples:
            - Without action: foundation-vpc-igw
            - With action: foundation-vpc-public-subnet
        """
        if action:
            return f"{self.config.vpc_name}-{action}-{resource_type}".lower()
        return f"{self.config.vpc_name}-{resource_type}".lower()

    def build_resource_id(self, resource_type: str, action: Optional[str] = None) -> str:
        """Build construct ID with optional action.

        Examples:
            - Without action: FoundationNetworkVpc
            - With action: FoundationNetworkPublicSubnet
        """
        if action:
            return (
                f"{_pascal(self.service)}"
                f"{_pascal(self.component)}"
                f"{_pascal(action)}"
                f"{_pascal(resource_type)}"
            )
        return (
            f"{_pascal(self.service)}"
            f"{_pascal(self.component)}"
            f"{_pascal(resource_type)}"
        )

    # ---------- tagging ----------
    def build_tags(self, name: str) -> list[CfnTag]:
        tags = {**self.config.common_tags(), "Name": name}
        return [CfnTag(key=key, value=value) for key, value in tags.items()]
