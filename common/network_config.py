import ipaddress
import json
import os
import re
from typing import Any, Mapping, Optional

from attrs import define, field
from attrs.validators import optional
from aws_lambda_powertools.logging.logger import Logger
from constructs import Construct

import common.constants as constants

logger: Logger = Logger(
    service=constants.LOGGER_SERVICE, level=os.getenv("LOG_LEVEL", "INFO").upper()
)

# us-east-1a, eu-central-2b, us-gov-west-1a, Local Zones such as us-west-2-lax-1a
AVAILABILITY_ZONE_PATTERN = re.compile(
    r"^(?P<region>[a-z]{2}(-[a-z]+)+-\d+)(?P<location>-[a-z]+-\d+)?[a-z]$"
)


class NetworkConfigError(ValueError):
    """Raised when the declared network inputs cannot produce a valid network."""


def _string(instance, attribute, value: Any) -> None:
    if not isinstance(value, str):
        raise NetworkConfigError(
            f"{attribute.name} must be a string, got {type(value).__name__}"
        )


def _string_pairs(instance, attribute, value: Mapping[Any, Any]) -> None:
    for key, tag in value.items():
        if not isinstance(key, str) or not isinstance(tag, str):
            raise NetworkConfigError(
                f"{attribute.name} must map strings to strings, got {key!r}: {tag!r}"
            )


def _tags_mapping(value: Any) -> dict[Any, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise NetworkConfigError(
            f"tags must be a mapping of strings, got {type(value).__name__}"
        )
    return dict(value)


def _parse_ipv4_network(attribute: str, value: str) -> ipaddress.IPv4Network:
    try:
        network = ipaddress.ip_network(value, strict=True)
    except ValueError as e:
        raise NetworkConfigError(
            f"{attribute} must be a valid IPv4 CIDR block, got {value!r}: {e}"
        ) from e
    if not isinstance(network, ipaddress.IPv4Network):
        raise NetworkConfigError(f"{attribute} must be an IPv4 CIDR block, got {value!r}")
    return network


def _not_blank(instance, attribute, value: str) -> None:
    if not value.strip():
        raise NetworkConfigError(f"{attribute.name} must not be empty")


def _valid_cidr(instance, attribute, value: str) -> None:
    _parse_ipv4_network(attribute.name, value)


def _within_vpc_cidr(instance: "NetworkConfig", attribute, value: str) -> None:
    vpc_network = _parse_ipv4_network("vpc_cidr", instance.vpc_cidr)
    subnet_network = _parse_ipv4_network(attribute.name, value)
    if subnet_network == vpc_network or not subnet_network.subnet_of(vpc_network):
        raise NetworkConfigError(
            f"{attribute.name} {value} must be a strict subset of vpc_cidr {instance.vpc_cidr}"
        )


def _valid_availability_zone(instance, attribute, value: str) -> None:
    if not AVAILABILITY_ZONE_PATTERN.match(value):
        raise NetworkConfigError(
            f"{attribute.name} must look like <region><zone letter> (e.g. us-east-1a), got {value!r}"
        )


def _tags_from_context(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise NetworkConfigError(f"tags context value is not valid JSON: {e}") from e
    if not isinstance(value, Mapping):
        raise NetworkConfigError("tags context value must be an object of string pairs")
    return {str(key): str(tag) for key, tag in value.items()}


@define(slots=True, frozen=True, kw_only=True)
class NetworkConfig:
    """Declared inputs of the public network.

    Every rule is checked at construction, so an invalid combination never
    reaches a construct, let alone CloudFormation.
    """

    vpc_name: str = field(validator=[_string, _not_blank])
    vpc_cidr: str = field(validator=[_string, _valid_cidr])
    # Validated after vpc_cidr: attrs runs validators in field order.
    public_subnet_cidr: str = field(validator=[_string, _within_vpc_cidr])
    availability_zone: str = field(validator=[_string, _valid_availability_zone])
    env: str = field(
        default=constants.DEFAULT_ENV,
        validator=[_string, _not_blank],
        metadata={"description": "Deployment environment (dev, staging, prod)"},
    )
    owner: Optional[str] = field(default=None, validator=optional(_string))
    tags: Mapping[str, str] = field(
        factory=dict,
        converter=_tags_mapping,
        validator=_string_pairs,
    )

    @classmethod
    def from_context(cls, scope: Construct) -> "NetworkConfig":
        """Load config from CDK context with defaults.

        Allows overriding defaults via `cdk synth -c vpc_cidr=10.1.0.0/16`.
        """
        node = scope.node

        def context(key: str, default: Optional[str]) -> Optional[str]:
            value = node.try_get_context(key)
            return default if value is None else str(value)

        config = cls(
            vpc_name=context(constants.CONTEXT_VPC_NAME, constants.VPC_NAME),
            vpc_cidr=context(constants.CONTEXT_VPC_CIDR, constants.VPC_CIDR),
            public_subnet_cidr=context(
                constants.CONTEXT_PUBLIC_SUBNET_CIDR, constants.PUBLIC_SUBNET_CIDR
            ),
            availability_zone=context(
                constants.CONTEXT_AVAILABILITY_ZONE, constants.AVAILABILITY_ZONE
            ),
            env=context(constants.CONTEXT_ENV, constants.DEFAULT_ENV),
            owner=context(constants.CONTEXT_OWNER, None),
            tags=_tags_from_context(node.try_get_context(constants.CONTEXT_TAGS)),
        )
        logger.info(
            "Loaded network config",
            vpc_name=config.vpc_name,
            vpc_cidr=config.vpc_cidr,
            public_subnet_cidr=config.public_subnet_cidr,
            availability_zone=config.availability_zone,
        )
        return config

    @property
    def region(self) -> str:
        """Region the availability zone belongs to."""
        match = AVAILABILITY_ZONE_PATTERN.match(self.availability_zone)
        if match is None:
            raise NetworkConfigError(
                f"availability_zone {self.availability_zone!r} does not name a region"
            )
        return match.group("region")

    def check_region(self, region: str) -> None:
        if self.region != region:
            logger.error(
                "Availability zone does not belong to the target region",
                availability_zone=self.availability_zone,
                region=region,
            )
            raise NetworkConfigError(
                f"availability_zone {self.availability_zone} is not in region {region}"
            )

    def common_tags(self) -> dict[str, str]:
        tags = {
            "Environment": self.env,
            "Service": constants.SERVICE_NAME,
        }
        if self.owner:
            tags["Owner"] = self.owner
        tags.update(self.tags)
        return tags
