"""
The website stack: VPC networking, an application load balancer, DNS and an
ECS Fargate service, declared as a StackGraph.

Logical ids never embed the stack options, so every environment gets the same
graph and only the names, domains and image inside the properties differ.
"""

import json
from typing import List

from config import ProjectConfig, StackOptions, Variant
from graph import DATA, PROVIDER, Backend, StackGraph

PROVIDER_ID = "website-account-provider"

VPC_CIDR = "172.31.0.0/16"
ANYWHERE = "0.0.0.0/0"
CONTAINER_PORT = 80
DESIRED_COUNT = 2
PLATFORM_VERSION = "1.4.0"
EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"

ALLOW_ALL_EGRESS = [{
    "cidr_blocks": [ANYWHERE],
    "from_port": 0,
    "to_port": 0,
    # any protocol
    "protocol": "-1",
}]


def site_domain(options: StackOptions, config: ProjectConfig) -> str:
    return f"{options.environment}.{config.domain}"


def backend(options: StackOptions, config: ProjectConfig) -> Backend:
    """S3 state location, one key per environment."""
    return Backend("s3", {
        "bucket": config.state_bucket,
        "key": f"webapp/{options.environment}",
        "region": config.state_region,
    })


def assemble(options: StackOptions, config: ProjectConfig) -> StackGraph:
    graph = StackGraph(f"website-{options.environment}")
    variant = config.variant
    domain = site_domain(options, config)

    graph.add(PROVIDER_ID, "Provider", {
        "region": options.region,
        "access_key": "env:AWS_ACCESS_KEY_ID",
        "secret_key": "env:AWS_SECRET_ACCESS_KEY",
    }, kind=PROVIDER)

    def add(logical_id, type, props=None, after=(), kind="resource"):
        return graph.add(logical_id, type, props, after=after, kind=kind, provider=PROVIDER_ID)

    # Route 53 hosted zone and the certificate for the HTTPS listener
    zone = add("data-zone", "route53.Zone", {"name": f"{domain}."}, kind=DATA)
    certificate_arn = None
    if variant == Variant.REDIRECT:
        cert = add("data-ssl-cert", "acm.Certificate", {
            "domain": f"{domain}.",
            "statuses": ["ISSUED"],
        }, kind=DATA)
        certificate_arn = f"ref:{cert}.arn"
    elif variant == Variant.VALIDATED:
        certificate_arn = _validated_certificate(add, zone, domain)

    # VPC
    vpc = add("vpc-website", "ec2.Vpc", {"default": True, "cidr_block": VPC_CIDR}, kind=DATA)
    subnets = [
        add("subnet-2a", "ec2.Subnet", {
            "cidr_block": "172.31.0.0/17",
            "vpc_id": f"ref:{vpc}",
            "availability_zone": f"{options.region}a",
            "map_public_ip_on_launch": True,
        }),
        add("subnet-2b", "ec2.Subnet", {
            "cidr_block": "172.31.128.0/17",
            "vpc_id": f"ref:{vpc}",
            "availability_zone": f"{options.region}b",
            "map_public_ip_on_launch": True,
        }),
    ]
    gateway = add("internet-gateway", "ec2.InternetGateway", {"vpc_id": f"ref:{vpc}"}, after=subnets)
    route_table = add("subnet-route-table", "ec2.RouteTable", {
        "vpc_id": f"ref:{vpc}",
        "routes": [{"cidr_block": ANYWHERE, "gateway_id": f"ref:{gateway}"}],
    })
    associations = [
        add(f"subnet-rt-{subnet.split('-')[-1]}", "ec2.RouteTableAssociation", {
            "subnet_id": f"ref:{subnet}",
            "route_table_id": f"ref:{route_table}",
        })
        for subnet in subnets
    ]

    # Security groups
    lb_sg = add("load-balancer-sg", "ec2.SecurityGroup", {
        "name": "website-load-balancer-sg",
        "description": "load balancer security group to allow public traffic",
        "ingress": [
            {"cidr_blocks": [ANYWHERE], "from_port": port, "to_port": port, "protocol": "tcp"}
            for port in (80, 443)
        ],
        "egress": ALLOW_ALL_EGRESS,
        "vpc_id": f"ref:{vpc}",
    })
    service_sg = add("website-vpc-sg", "ec2.SecurityGroup", {
        "name": "website-vpc-sg",
        "description": "security group to allow traffic only from load balancer",
        "ingress": [{
            "security_groups": [f"ref:{lb_sg}"],
            "from_port": 1,
            "to_port": 65535,
            "protocol": "tcp",
        }],
        "egress": ALLOW_ALL_EGRESS,
        "vpc_id": f"ref:{vpc}",
    })

    # Application load balancer
    target_group = add("load-balancer-target-group", "lb.TargetGroup", {
        "vpc_id": f"ref:{vpc}",
        "target_type": "ip",
        "protocol": "HTTP",
        "port": CONTAINER_PORT,
    }, after=associations)
    alb = add("application-load-balancer", "lb.LoadBalancer", {
        "name": "website-alb",
        "load_balancer_type": "application",
        "internal": False,
        "security_groups": [f"ref:{lb_sg}"],
        "subnets": [f"ref:{subnet}" for subnet in subnets],
    }, after=associations)
    listeners = _listeners(add, variant, alb, target_group, certificate_arn)

    # alias record to the load balancer
    add("website-route-record", "route53.Record", {
        "name": domain,
        "type": "A",
        "zone_id": f"ref:{zone}.zone_id",
        "aliases": [{
            "zone_id": f"ref:{alb}.zone_id",
            "name": f"ref:{alb}.dns_name",
            "evaluate_target_health": False,
        }],
    })

    # ECS task execution role
    role = add("ecs-task-execution-role", "iam.Role", {
        "name": "ecs-task-execution-role",
        "assume_role_policy": json.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Principal": {"Service": ["ecs-tasks.amazonaws.com"]},
                "Action": "sts:AssumeRole",
            }],
        }),
        "managed_policy_arns": [EXECUTION_POLICY_ARN],
    })

    # ECS fargate cluster, task and service
    cluster = add("website-ecs-cluster", "ecs.Cluster", {
        "name": f"{options.environment}-website-ecs-cluster",
    }, after=listeners)
    task = add("website-ecs-task", "ecs.TaskDefinition", {
        "family": options.container_name,
        "container_definitions": json.dumps([{
            "name": options.container_name,
            "image": options.image_uri,
            "cpu": 512,
            "memory": 256,
            "essential": True,
            "portMappings": [{
                "protocol": "tcp",
                "containerPort": CONTAINER_PORT,
                "hostPort": CONTAINER_PORT,
            }],
        }]),
        "runtime_platform": {"operating_system_family": "LINUX"},
        "cpu": "2048",
        "memory": "4096",
        "execution_role_arn": f"ref:{role}.arn",
        "task_role_arn": f"ref:{role}.arn",
        "requires_compatibilities": ["FARGATE"],
        "network_mode": "awsvpc",
    }, after=[cluster])

    load_balancers = [{
        "target_group_arn": f"ref:{target_group}.arn",
        "container_name": options.container_name,
        "container_port": CONTAINER_PORT,
    }]
    network_configuration = {
        "security_groups": [f"ref:{service_sg}"],
        "assign_public_ip": True,
        "subnets": [f"ref:{subnets[0]}"],
    }
    if variant == Variant.FORWARD:
        # the service only holds the desired count, the task-set runs the tasks
        service = add("website-ecs-service", "ecs.Service", {
            "name": "website-ecs-service",
            "cluster": f"ref:{cluster}.arn",
            "desired_count": DESIRED_COUNT,
            "deployment_controller": {"type": "EXTERNAL"},
        }, after=[task])
        add("website-ecs-task-set", "ecs.TaskSet", {
            "service": f"ref:{service}.name",
            "cluster": f"ref:{cluster}.arn",
            "task_definition": f"ref:{task}.arn",
            "launch_type": "FARGATE",
            "platform_version": PLATFORM_VERSION,
            "load_balancers": load_balancers,
            "network_configuration": network_configuration,
            "scale": {"unit": "PERCENT", "value": 100},
        })
    else:
        add("website-ecs-service", "ecs.Service", {
            "name": "website-ecs-service",
            "desired_count": DESIRED_COUNT,
            "task_definition": f"ref:{task}.arn",
            "load_balancers": load_balancers,
            "network_configuration": network_configuration,
            "platform_version": PLATFORM_VERSION,
            "launch_type": "FARGATE",
            "cluster": f"ref:{cluster}.arn",
            "force_new_deployment": True,
        })

    return graph


def _validated_certificate(add, zone: str, domain: str) -> str:
    """Request a certificate and complete its DNS challenge in the zone."""
    cert = add("ssl-cert", "acm.Certificate", {
        "domain_name": domain,
        "validation_method": "DNS",
    })
    option = f"ref:{cert}.domain_validation_options[0]"
    record = add("ssl-cert-validation-record", "route53.Record", {
        "name": f"{option}.resource_record_name",
        "type": f"{option}.resource_record_type",
        "records": [f"{option}.resource_record_value"],
        "zone_id": f"ref:{zone}.zone_id",
        "ttl": 60,
        "allow_overwrite": True,
    })
    validation = add("ssl-cert-validation", "acm.CertificateValidation", {
        "certificate_arn": f"ref:{cert}.arn",
        "validation_record_fqdns": [f"ref:{record}.fqdn"],
    })
    return f"ref:{validation}.certificate_arn"


def _listeners(add, variant: Variant, alb: str, target_group: str, certificate_arn) -> List[str]:
    forward = [{"type": "forward", "target_group_arn": f"ref:{target_group}.arn"}]
    if variant == Variant.FORWARD:
        return [add("load-balancer-listener-http", "lb.Listener", {
            "load_balancer_arn": f"ref:{alb}.arn",
            "default_actions": forward,
            "port": 80,
            "protocol": "HTTP",
        })]
    http = add("load-balancer-listener-http", "lb.Listener", {
        "load_balancer_arn": f"ref:{alb}.arn",
        "default_actions": [{
            "type": "redirect",
            "redirect": {"port": "443", "protocol": "HTTPS", "status_code": "HTTP_301"},
        }],
        "port": 80,
        "protocol": "HTTP",
    }, after=[target_group])
    https = add("load-balancer-listener-https", "lb.Listener", {
        "load_balancer_arn": f"ref:{alb}.arn",
        "default_actions": forward,
        "port": 443,
        "protocol": "HTTPS",
        "certificate_arn": certificate_arn,
    }, after=[http])
    return [http, https]
