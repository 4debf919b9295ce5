import pulumi
from builder import AWSResourceBuilder
from config import StackOptions, load_config
from synth import synthesize
from website import assemble, backend

EXPORTS = {
    "load_balancer_dns_name": ("application-load-balancer", "dns_name"),
    "website_fqdn": ("website-route-record", "fqdn"),
    "cluster_arn": ("website-ecs-cluster", "arn"),
    "service_name": ("website-ecs-service", "name"),
}


def main():
    # Project settings from YAML, stack options from the deploy environment
    config = load_config("config.yaml")
    options = StackOptions.from_env()

    # State is kept per environment, so the stack should carry its name
    stack_name = pulumi.get_stack()
    if stack_name != options.environment:
        pulumi.log.warn(f"Stack '{stack_name}' does not match STAGE '{options.environment}'")

    try:
        graph = assemble(options, config)
        graph.validate()
    except Exception as e:
        pulumi.log.error(f"Failed to assemble the {config.variant.value} website graph: {e}")
        raise

    synthesize(graph, backend(options, config), config.output_dir, stack_name)

    builder = AWSResourceBuilder(graph, options.region, config.tags)
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, (logical_id, attr) in EXPORTS.items():
        try:
            pulumi.export(name, getattr(builder.resources[logical_id], attr))
        except Exception as e:
            pulumi.log.warn(f"Failed to export '{name}': {e}")

    return builder.resources


if __name__ == "__main__":
    main()
