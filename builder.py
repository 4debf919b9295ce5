import inspect
import os
import re
from typing import Any, Dict, List, Optional

import pulumi
import pulumi_aws as aws

from errors import BuildError
from graph import DATA, ENV_PREFIX, PROVIDER, REF_PREFIX, SECRET_PREFIX, ResourceDescriptor, StackGraph, parse_ref


def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def follow_path(obj: Any, steps: list, ref_text: str) -> Any:
    """Walk attribute and index steps; Outputs lift both."""
    for kind, value in steps:
        if kind == "attr":
            obj = getattr(obj, value, None)
            if obj is None:
                raise BuildError(f"Attribute '{value}' not found for reference '{ref_text}'")
        else:
            obj = obj[value]
    return obj


def resolve_value(value: Any, resources: Dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: resolve_value(v, resources) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_value(item, resources) for item in value]
    elif isinstance(value, str):
        if value.startswith(SECRET_PREFIX):
            # Fetch secret from Pulumi config
            secret_key = value[len(SECRET_PREFIX):]
            config = pulumi.Config()
            return config.require_secret(secret_key)
        elif value.startswith(ENV_PREFIX):
            return os.environ.get(value[len(ENV_PREFIX):])
        elif value.startswith(REF_PREFIX):
            ref_res, steps = parse_ref(value)
            if ref_res not in resources:
                raise BuildError(f"Referenced resource '{ref_res}' not found.")
            return follow_path(resources[ref_res], steps, value)
        else:
            return value
    else:
        return value


def get_lookup_params(func_sig: inspect.Signature, resolved_args: dict, name: str) -> dict:
    accepted = {k for k in func_sig.parameters if k != "opts"}
    unknown = set(resolved_args) - accepted
    if unknown:
        raise BuildError(f"Unsupported lookup params {sorted(unknown)} for '{name}'")
    return {k: v for k, v in resolved_args.items() if v is not None}


def init_signature(resource_class: type) -> inspect.Signature:
    # generated resources take **kwargs in __init__ and spell the args out in _internal_init
    return inspect.signature(getattr(resource_class, "_internal_init", resource_class.__init__))


class AWSResourceBuilder:
    def __init__(self, graph: StackGraph, region: str, tags: Optional[Dict[str, str]] = None):
        self.graph = graph
        self.region = region
        self.tags = dict(tags or {})
        self.resources: Dict[str, Any] = {}

    def resolve_args(self, args: dict) -> dict:
        return {key: resolve_value(value, self.resources) for key, value in args.items()}

    def _apply_common_parameters(self, resolved_args: dict, init_sig: inspect.Signature) -> dict:
        if "tags" in init_sig.parameters:
            if self.tags:
                resolved_args.setdefault("tags", self.tags)
        else:
            resolved_args.pop("tags", None)
        if "region" in init_sig.parameters:
            resolved_args.setdefault("region", self.region)
        else:
            resolved_args.pop("region", None)
        return resolved_args

    def _lookup_module(self, descriptor: ResourceDescriptor):
        if "." not in descriptor.type:
            raise BuildError(f"Type '{descriptor.type}' of '{descriptor.logical_id}' is not '<module>.<Class>'")
        module_name, class_name = descriptor.type.rsplit(".", 1)
        module = getattr(aws, module_name, None)
        if not module:
            raise BuildError(f"AWS module '{module_name}' not found for '{descriptor.logical_id}'")
        return module, class_name

    def _depends_on(self, descriptor: ResourceDescriptor) -> List[pulumi.Resource]:
        deps = []
        for dep in sorted(descriptor.depends_on - {descriptor.provider}):
            # lookups are invoke results, ordering against them is implicit
            if isinstance(self.resources[dep], pulumi.Resource):
                deps.append(self.resources[dep])
        return deps

    def build_provider(self, descriptor: ResourceDescriptor) -> aws.Provider:
        resolved_args = self.resolve_args(descriptor.props)
        resolved_args = {k: v for k, v in resolved_args.items() if v is not None}
        resolved_args.setdefault("region", self.region)
        pulumi.log.info(f"Configured provider '{descriptor.logical_id}' for region {resolved_args['region']}")
        return aws.Provider(descriptor.logical_id, **resolved_args)

    def build_lookup(self, descriptor: ResourceDescriptor) -> Any:
        module, class_name = self._lookup_module(descriptor)
        get_func_name = f"get_{to_snake_case(class_name)}"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            raise BuildError(f"Function '{get_func_name}' not found for '{descriptor.type}'")
        resolved_args = self.resolve_args(descriptor.props)
        get_params = get_lookup_params(inspect.signature(get_func), resolved_args, descriptor.logical_id)
        opts = None
        if descriptor.provider:
            opts = pulumi.InvokeOptions(provider=self.resources[descriptor.provider])
        result = get_func(**get_params, opts=opts)
        pulumi.log.info(f"Fetched existing resource '{descriptor.logical_id}' via '{get_func_name}' with {get_params}")
        return result

    def build_resource(self, descriptor: ResourceDescriptor) -> pulumi.Resource:
        module, class_name = self._lookup_module(descriptor)
        try:
            ResourceClass = getattr(module, class_name)
        except AttributeError:
            raise BuildError(
                f"Resource class '{class_name}' not found in module '{module.__name__}' for '{descriptor.logical_id}'"
            ) from None
        init_sig = init_signature(ResourceClass)
        resolved_args = self._apply_common_parameters(self.resolve_args(descriptor.props), init_sig)
        opts = pulumi.ResourceOptions(
            provider=self.resources[descriptor.provider] if descriptor.provider else None,
            depends_on=self._depends_on(descriptor),
        )
        pulumi.log.debug(f"Resolved args for '{descriptor.logical_id}': {sorted(resolved_args)}")
        resource_instance = ResourceClass(descriptor.logical_id, **resolved_args, opts=opts)
        pulumi.log.info(f"Created resource: {descriptor.logical_id} ({descriptor.type})")
        return resource_instance

    def build(self):
        for descriptor in self.graph.topological_order():
            if descriptor.kind == PROVIDER:
                built = self.build_provider(descriptor)
            elif descriptor.kind == DATA:
                built = self.build_lookup(descriptor)
            else:
                built = self.build_resource(descriptor)
            self.resources[descriptor.logical_id] = built
        return self.resources
