"""
Resource descriptors and the dependency graph they form.

A descriptor is plain data: a logical id, a pulumi_aws type path such as
``ec2.Subnet``, a property map and the ids it depends on. Properties point at
other descriptors with ``ref:`` strings, the same notation the builder
resolves when it materializes the graph::

    ref:alb                       -> alb.id
    ref:alb.dns_name              -> alb.dns_name
    ref:cert.domain_validation_options[0].resource_record_name

``env:NAME`` and ``secret:key`` mark values that are only read when the graph
is built, so neither ever ends up in the serialized document.
"""

import copy
import heapq
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from errors import CycleError, GraphError

REF_PREFIX = "ref:"
ENV_PREFIX = "env:"
SECRET_PREFIX = "secret:"

RESOURCE = "resource"
DATA = "data"
PROVIDER = "provider"
KINDS = (RESOURCE, DATA, PROVIDER)

_STEP = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)|\[(\d+)\]")


def parse_ref(text: str) -> Tuple[str, List[Tuple[str, Any]]]:
    """Split ``ref:<id>[.<path>]`` into the logical id and its access steps.

    Steps are ``("attr", name)`` or ``("index", n)``. A bare id refers to
    the ``id`` attribute.
    """
    ref_text = text[len(REF_PREFIX):] if text.startswith(REF_PREFIX) else text
    if "." in ref_text:
        ref_res, ref_path = ref_text.split(".", 1)
    else:
        ref_res, ref_path = ref_text, "id"
    if not ref_res:
        raise GraphError(f"Reference '{text}' has no resource id")
    steps = []
    for part in ref_path.split("."):
        pos = 0
        while pos < len(part):
            match = _STEP.match(part, pos)
            if not match:
                raise GraphError(f"Malformed reference path '{ref_path}' in '{text}'")
            if match.group(1):
                steps.append(("attr", match.group(1)))
            else:
                steps.append(("index", int(match.group(2))))
            pos = match.end()
        if not part:
            raise GraphError(f"Malformed reference path '{ref_path}' in '{text}'")
    return ref_res, steps


def format_path(steps: List[Tuple[str, Any]]) -> str:
    out = ""
    for kind, value in steps:
        if kind == "attr":
            out += f".{value}" if out else value
        else:
            out += f"[{value}]"
    return out


def references(value: Any) -> FrozenSet[str]:
    """Every logical id referenced anywhere inside a property value."""
    found = set()
    if isinstance(value, Mapping):
        for item in value.values():
            found |= references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= references(item)
    elif isinstance(value, str) and value.startswith(REF_PREFIX):
        found.add(parse_ref(value)[0])
    return frozenset(found)


def render_value(value: Any) -> Any:
    """Render markers as ``${...}`` interpolations for the serialized document."""
    if isinstance(value, Mapping):
        return {k: render_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(item) for item in value]
    if isinstance(value, str):
        if value.startswith(REF_PREFIX):
            ref_res, steps = parse_ref(value)
            return "${" + f"{ref_res}.{format_path(steps)}" + "}"
        if value.startswith(ENV_PREFIX):
            return "${env." + value[len(ENV_PREFIX):] + "}"
        if value.startswith(SECRET_PREFIX):
            return "${secret." + value[len(SECRET_PREFIX):] + "}"
    return value


@dataclass(frozen=True)
class ResourceDescriptor:
    logical_id: str
    type: str
    props: Mapping[str, Any] = field(default_factory=dict)
    depends_on: FrozenSet[str] = frozenset()
    kind: str = RESOURCE
    provider: Optional[str] = None

    def __post_init__(self):
        # own copy of the props, read-only at the top level
        object.__setattr__(self, "props", MappingProxyType(copy.deepcopy(dict(self.props))))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    @property
    def references(self) -> FrozenSet[str]:
        refs = references(self.props)
        if self.provider:
            refs |= {self.provider}
        return refs


@dataclass(frozen=True)
class Backend:
    """Remote state location, keyed by environment."""

    type: str
    config: Dict[str, str]


class StackGraph:
    def __init__(self, name: str):
        self.name = name
        self._descriptors: Dict[str, ResourceDescriptor] = {}

    @classmethod
    def from_descriptors(cls, name: str, descriptors: Iterable[ResourceDescriptor]) -> "StackGraph":
        """Build a graph without construction-order checks; call validate()."""
        graph = cls(name)
        for descriptor in descriptors:
            graph._insert(descriptor)
        return graph

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self._descriptors.values())

    def __contains__(self, logical_id: str) -> bool:
        return logical_id in self._descriptors

    def __getitem__(self, logical_id: str) -> ResourceDescriptor:
        return self._descriptors[logical_id]

    @property
    def ids(self) -> List[str]:
        return list(self._descriptors)

    def _insert(self, descriptor: ResourceDescriptor):
        if descriptor.kind not in KINDS:
            raise GraphError(f"Unknown kind '{descriptor.kind}' for '{descriptor.logical_id}'")
        if descriptor.logical_id in self._descriptors:
            raise GraphError(f"Duplicate logical id '{descriptor.logical_id}'")
        self._descriptors[descriptor.logical_id] = descriptor

    def add(
        self,
        logical_id: str,
        type: str,
        props: Optional[Dict[str, Any]] = None,
        after: Iterable[str] = (),
        kind: str = RESOURCE,
        provider: Optional[str] = None,
    ) -> str:
        """Declare a descriptor and return its logical id.

        Its dependency set is every id its props reference, its provider, and
        the extra ordering ids passed in ``after``. All of them must already be
        declared, so a graph built through add() cannot contain a cycle.
        """
        props = dict(props or {})
        depends_on = references(props) | frozenset(after)
        if provider:
            depends_on |= {provider}
        unknown = sorted(dep for dep in depends_on if dep not in self._descriptors)
        if unknown:
            raise GraphError(f"'{logical_id}' depends on undeclared resources: {', '.join(unknown)}")
        self._insert(ResourceDescriptor(logical_id, type, props, frozenset(depends_on), kind, provider))
        return logical_id

    def validate(self):
        for descriptor in self:
            unknown = sorted(dep for dep in descriptor.depends_on if dep not in self._descriptors)
            if unknown:
                raise GraphError(f"'{descriptor.logical_id}' depends on unknown resources: {', '.join(unknown)}")
            unmirrored = sorted(descriptor.references - descriptor.depends_on)
            if unmirrored:
                raise GraphError(
                    f"'{descriptor.logical_id}' references {', '.join(unmirrored)} without a dependency edge"
                )
        self.topological_order()

    def topological_order(self) -> List[ResourceDescriptor]:
        """Dependencies first; ties keep declaration order."""
        position = {logical_id: i for i, logical_id in enumerate(self._descriptors)}
        remaining = {d.logical_id: set(d.depends_on) & set(position) for d in self}
        dependents: Dict[str, List[str]] = {logical_id: [] for logical_id in position}
        for logical_id, deps in remaining.items():
            for dep in deps:
                dependents[dep].append(logical_id)

        ready = [position[i] for i, deps in remaining.items() if not deps]
        heapq.heapify(ready)
        ids = list(self._descriptors)
        order = []
        while ready:
            logical_id = ids[heapq.heappop(ready)]
            order.append(self._descriptors[logical_id])
            for dependent in dependents[logical_id]:
                remaining[dependent].discard(logical_id)
                if not remaining[dependent]:
                    heapq.heappush(ready, position[dependent])

        if len(order) != len(self._descriptors):
            placed = {d.logical_id for d in order}
            raise CycleError(i for i in ids if i not in placed)
        return order

    def edges(self) -> List[Tuple[str, str]]:
        return sorted((d.logical_id, dep) for d in self for dep in d.depends_on)

    def to_document(self, backend: Optional[Backend] = None) -> Dict[str, Any]:
        """Terraform-JSON shaped document of the whole graph."""
        document: Dict[str, Any] = {"provider": {}, "data": {}, "resource": {}}
        for descriptor in self.topological_order():
            body = render_value(descriptor.props)
            if descriptor.kind == PROVIDER:
                body["type"] = descriptor.type
                document["provider"][descriptor.logical_id] = body
                continue
            if descriptor.provider:
                body["provider"] = descriptor.provider
            depends_on = sorted(descriptor.depends_on - {descriptor.provider})
            if depends_on:
                body["depends_on"] = depends_on
            document[descriptor.kind].setdefault(descriptor.type, {})[descriptor.logical_id] = body
        document["terraform"] = {"stack": self.name}
        if backend is not None:
            document["terraform"]["backend"] = {backend.type: dict(backend.config)}
        return document
