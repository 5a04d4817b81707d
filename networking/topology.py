"""
Dependency graph and wiring checks for a synthesized CloudFormation template.

CloudFormation orders creation from the Ref/GetAtt edges of a template and
never checks what those edges mean. This module rebuilds the same graph from
the template so the network's invariants can be verified before deployment:

- every reference points at something declared in the template
- the graph is acyclic, giving a deterministic creation order
- default routes and subnet associations are wired to resources of the
  right type in the same template
- a subnet that maps public IPs on launch is actually public: associated
  with a route table on its own VPC that sends 0.0.0.0/0 to an internet
  gateway attached to that same VPC

The template is a plain mapping (``Template.to_json()`` or the
``cdk.out/<stack>.template.json`` file), so nothing here depends on CDK.
"""

import os
import re
from typing import Any, Iterable, Mapping, Optional

from attrs import define, field
from aws_lambda_powertools.logging.logger import Logger

from common import constants

logger: Logger = Logger(
    service=constants.LOGGER_SERVICE, level=os.getenv("LOG_LEVEL", "INFO").upper()
)

VPC = "AWS::EC2::VPC"
SUBNET = "AWS::EC2::Subnet"
INTERNET_GATEWAY = "AWS::EC2::InternetGateway"
GATEWAY_ATTACHMENT = "AWS::EC2::VPCGatewayAttachment"
ROUTE_TABLE = "AWS::EC2::RouteTable"
ROUTE = "AWS::EC2::Route"
SUBNET_ASSOCIATION = "AWS::EC2::SubnetRouteTableAssociation"

PSEUDO_PARAMETER_PREFIX = "AWS::"
# ${Name} or ${Name.Attr}; ${!Literal} is an escaped literal
SUB_PLACEHOLDER = re.compile(r"\$\{(?!!)([^}.]+)(?:\.[^}]+)?\}")


class TopologyError(Exception):
    """Base error for an invalid resource graph."""

    def __init__(self, violations: Iterable[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class DanglingReferenceError(TopologyError):
    """A reference points at a logical id the template does not declare."""


class CircularDependencyError(TopologyError):
    """The resources cannot be ordered because their references form a cycle."""


class InvariantViolationError(TopologyError):
    """Resources are declared but wired in a way that breaks the network contract."""


@define(slots=True, frozen=True)
class ResourceNode:
    logical_id: str
    resource_type: str
    properties: Mapping[str, Any] = field(factory=dict)
    references: frozenset[str] = field(factory=frozenset)
    depends_on: frozenset[str] = field(factory=frozenset)

    @property
    def dependencies(self) -> frozenset[str]:
        return self.references | self.depends_on


def _sub_references(argument: Any) -> set[str]:
    if isinstance(argument, str):
        return set(SUB_PLACEHOLDER.findall(argument))
    if isinstance(argument, list) and argument:
        variables = argument[1] if len(argument) > 1 and isinstance(argument[1], Mapping) else {}
        names = set()
        if isinstance(argument[0], str):
            names = set(SUB_PLACEHOLDER.findall(argument[0])) - set(variables)
        return names | collect_references(variables)
    return set()


def collect_references(value: Any) -> set[str]:
    """Return every name referenced by Ref, Fn::GetAtt or Fn::Sub inside ``value``."""
    if isinstance(value, Mapping):
        if len(value) == 1:
            ((key, argument),) = value.items()
            if key == "Ref" and isinstance(argument, str):
                return {argument}
            if key == "Fn::GetAtt":
                if isinstance(argument, str):
                    return {argument.split(".", 1)[0]}
                if isinstance(argument, list) and argument and isinstance(argument[0], str):
                    return {argument[0]}
                return set()
            if key == "Fn::Sub":
                return _sub_references(argument)
        references: set[str] = set()
        for item in value.values():
            references |= collect_references(item)
        return references
    if isinstance(value, list):
        references = set()
        for item in value:
            references |= collect_references(item)
        return references
    return set()


def reference_target(value: Any) -> Optional[str]:
    """Logical id behind a bare Ref or Fn::GetAtt, None for literals."""
    if isinstance(value, Mapping) and len(value) == 1:
        references = collect_references(value)
        if len(references) == 1 and ("Ref" in value or "Fn::GetAtt" in value):
            return next(iter(references))
    return None


def _depends_on(resource: Mapping[str, Any]) -> frozenset[str]:
    depends_on = resource.get("DependsOn", [])
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    return frozenset(depends_on)


def _is_external(name: str, parameters: Mapping[str, Any]) -> bool:
    return name.startswith(PSEUDO_PARAMETER_PREFIX) or name in parameters


def build_dependency_graph(template: Mapping[str, Any]) -> dict[str, ResourceNode]:
    """Build one node per resource with its Ref/GetAtt/Sub and DependsOn edges.

    Raises:
        DanglingReferenceError: a resource or output references a logical id
            that is neither a resource, a parameter nor a pseudo parameter.
    """
    resources = template.get("Resources", {})
    parameters = template.get("Parameters", {})
    graph: dict[str, ResourceNode] = {}
    dangling: list[str] = []

    for logical_id, resource in resources.items():
        properties = resource.get("Properties", {})
        references = {
            name
            for name in collect_references(properties)
            if not _is_external(name, parameters)
        }
        depends_on = _depends_on(resource)
        for name in sorted(references | depends_on):
            if name not in resources:
                dangling.append(f"{logical_id} references undeclared resource {name}")
        graph[logical_id] = ResourceNode(
            logical_id=logical_id,
            resource_type=resource.get("Type", ""),
            properties=properties,
            references=frozenset(references),
            depends_on=depends_on,
        )

    for output_id, output in template.get("Outputs", {}).items():
        for name in sorted(collect_references(output.get("Value"))):
            if not _is_external(name, parameters) and name not in resources:
                dangling.append(f"Output {output_id} references undeclared resource {name}")

    if dangling:
        logger.error("Template has dangling references", violations=dangling)
        raise DanglingReferenceError(dangling)
    return graph


def creation_order(graph: Mapping[str, ResourceNode]) -> list[str]:
    """Return logical ids so that every resource follows its dependencies.

    Each wave holds the resources whose dependencies are all realized; ids
    within a wave are sorted, so the order is stable across runs.
    """
    order: list[str] = []
    realized: set[str] = set()
    remaining = set(graph)

    while remaining:
        ready = sorted(
            logical_id
            for logical_id in remaining
            if graph[logical_id].dependencies <= realized
        )
        if not ready:
            blocked = [
                f"{logical_id} waits on {', '.join(sorted(graph[logical_id].dependencies - realized))}"
                for logical_id in sorted(remaining)
            ]
            logger.error("Circular dependency between resources", violations=blocked)
            raise CircularDependencyError(blocked)
        order.extend(ready)
        realized.update(ready)
        remaining.difference_update(ready)

    return order


def _resources_of_type(
    graph: Mapping[str, ResourceNode], resource_type: str
) -> list[ResourceNode]:
    return [node for _, node in sorted(graph.items()) if node.resource_type == resource_type]


def _target_of_type(
    graph: Mapping[str, ResourceNode], value: Any, resource_type: str
) -> Optional[str]:
    target = reference_target(value)
    if target is not None and target in graph and graph[target].resource_type == resource_type:
        return target
    return None


def _is_default_route(node: ResourceNode) -> bool:
    return node.properties.get("DestinationCidrBlock") == constants.ANY_IPV4_CIDR


def _is_enabled(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


def find_wiring_violations(graph: Mapping[str, ResourceNode]) -> list[str]:
    """Check that routes and associations only point at resources of this template."""
    violations: list[str] = []

    for route in _resources_of_type(graph, ROUTE):
        if _target_of_type(graph, route.properties.get("RouteTableId"), ROUTE_TABLE) is None:
            violations.append(
                f"Route {route.logical_id} does not reference a route table declared in this template"
            )
        if "GatewayId" in route.properties and _is_default_route(route):
            gateway = route.properties["GatewayId"]
            if _target_of_type(graph, gateway, INTERNET_GATEWAY) is None:
                violations.append(
                    f"Route {route.logical_id} sends {constants.ANY_IPV4_CIDR} to a gateway "
                    "not declared in this template"
                )

    for association in _resources_of_type(graph, SUBNET_ASSOCIATION):
        if _target_of_type(graph, association.properties.get("SubnetId"), SUBNET) is None:
            violations.append(
                f"Association {association.logical_id} does not reference a subnet "
                "declared in this template"
            )
        if _target_of_type(graph, association.properties.get("RouteTableId"), ROUTE_TABLE) is None:
            violations.append(
                f"Association {association.logical_id} does not reference a route table "
                "declared in this template"
            )

    return violations


def _attached_gateways(graph: Mapping[str, ResourceNode], vpc_id: str) -> set[str]:
    gateways = set()
    for attachment in _resources_of_type(graph, GATEWAY_ATTACHMENT):
        if _target_of_type(graph, attachment.properties.get("VpcId"), VPC) != vpc_id:
            continue
        gateway = _target_of_type(
            graph, attachment.properties.get("InternetGatewayId"), INTERNET_GATEWAY
        )
        if gateway is not None:
            gateways.add(gateway)
    return gateways


def _route_table_problem(
    graph: Mapping[str, ResourceNode], route_table_id: str, vpc_id: str
) -> Optional[str]:
    """Why ``route_table_id`` does not make a subnet of ``vpc_id`` public, or None."""
    route_table = graph[route_table_id]
    if _target_of_type(graph, route_table.properties.get("VpcId"), VPC) != vpc_id:
        return f"route table {route_table_id} belongs to a different VPC"

    default_gateways = {
        _target_of_type(graph, route.properties.get("GatewayId"), INTERNET_GATEWAY)
        for route in _resources_of_type(graph, ROUTE)
        if _is_default_route(route)
        and _target_of_type(graph, route.properties.get("RouteTableId"), ROUTE_TABLE)
        == route_table_id
    }
    default_gateways.discard(None)
    if not default_gateways:
        return (
            f"route table {route_table_id} has no {constants.ANY_IPV4_CIDR} route "
            "to an internet gateway"
        )
    if not default_gateways & _attached_gateways(graph, vpc_id):
        return (
            f"the default route of {route_table_id} targets a gateway "
            f"not attached to {vpc_id}"
        )
    return None


def find_public_subnet_violations(graph: Mapping[str, ResourceNode]) -> list[str]:
    """Report subnets that hand out public IPs without a route to the internet.

    A subnet is public only when it maps public IPs on launch AND is
    associated with a route table of the same VPC holding a default route to
    an internet gateway attached to that VPC. Neither half alone is enough.
    """
    violations: list[str] = []

    for subnet in _resources_of_type(graph, SUBNET):
        if not _is_enabled(subnet.properties.get("MapPublicIpOnLaunch")):
            continue
        vpc_id = _target_of_type(graph, subnet.properties.get("VpcId"), VPC)
        if vpc_id is None:
            violations.append(
                f"Subnet {subnet.logical_id} maps public IPs on launch but its VPC "
                "is not declared in this template"
            )
            continue

        route_tables = [
            _target_of_type(graph, association.properties.get("RouteTableId"), ROUTE_TABLE)
            for association in _resources_of_type(graph, SUBNET_ASSOCIATION)
            if _target_of_type(graph, association.properties.get("SubnetId"), SUBNET)
            == subnet.logical_id
        ]
        route_tables = [route_table for route_table in route_tables if route_table]
        if not route_tables:
            violations.append(
                f"Subnet {subnet.logical_id} maps public IPs on launch but is not "
                "associated with any route table"
            )
            continue

        problems = [_route_table_problem(graph, route_table, vpc_id) for route_table in route_tables]
        if all(problems):
            violations.append(
                f"Subnet {subnet.logical_id} maps public IPs on launch but {problems[0]}"
            )

    return violations


def validate_template(template: Mapping[str, Any]) -> list[str]:
    """Verify the template's graph and network invariants.

    Returns:
        The creation order of the template's resources.

    Raises:
        DanglingReferenceError, CircularDependencyError: the graph itself is broken.
        InvariantViolationError: routes, associations or public subnets are miswired.
    """
    graph = build_dependency_graph(template)
    order = creation_order(graph)

    violations = find_wiring_violations(graph) + find_public_subnet_violations(graph)
    if violations:
        logger.error("Template breaks network invariants", violations=violations)
        raise InvariantViolationError(violations)

    logger.info("Template validated", resources=len(order), creation_order=order)
    return order
