from types import SimpleNamespace

import pulumi
import pulumi_aws as aws
import pytest

from pulumi_mocks import WebsiteMocks

from builder import AWSResourceBuilder, resolve_value, to_snake_case
from config import ProjectConfig, StackOptions, Variant
from errors import BuildError
from graph import DATA, StackGraph
from website import assemble

OPTIONS = StackOptions(
    environment="dev",
    container_name="website",
    region="us-west-2",
    image_uri="123456789012.dkr.ecr.us-west-2.amazonaws.com/website:1.0.0",
)
TAGS = {"project": "website"}


@pytest.fixture(autouse=True)
def mocks():
    pulumi.runtime.set_mocks(WebsiteMocks(), preview=False)


def build(variant):
    config = ProjectConfig(domain="example.com", variant=variant, state_bucket="webapp-state", tags=TAGS)
    graph = assemble(OPTIONS, config)
    builder = AWSResourceBuilder(graph, OPTIONS.region, config.tags)
    return graph, builder.build()


def test_to_snake_case():
    assert to_snake_case("Vpc") == "vpc"
    assert to_snake_case("CertificateValidation") == "certificate_validation"


def test_resolve_value_follows_attributes_and_indexes():
    resources = {
        "cert": SimpleNamespace(
            arn="arn:cert",
            domain_validation_options=[SimpleNamespace(resource_record_name="_abc.example.com.")],
        ),
        "vpc": SimpleNamespace(id="vpc-1"),
    }
    resolved = resolve_value({
        "vpc_id": "ref:vpc",
        "names": ["ref:cert.domain_validation_options[0].resource_record_name"],
        "arn": "ref:cert.arn",
        "port": 80,
        "plain": "text",
    }, resources)
    assert resolved == {
        "vpc_id": "vpc-1",
        "names": ["_abc.example.com."],
        "arn": "arn:cert",
        "port": 80,
        "plain": "text",
    }


def test_resolve_value_reads_environment(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIAEXAMPLE")
    monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)
    assert resolve_value("env:AWS_ACCESS_KEY_ID", {}) == "AKIAEXAMPLE"
    assert resolve_value("env:AWS_SECRET_ACCESS_KEY", {}) is None


def test_resolve_value_unknown_reference():
    with pytest.raises(BuildError, match="Referenced resource 'alb' not found"):
        resolve_value("ref:alb.arn", {})


def test_resolve_value_unknown_attribute():
    with pytest.raises(BuildError, match="Attribute 'dns_name' not found"):
        resolve_value("ref:alb.dns_name", {"alb": SimpleNamespace(arn="arn:alb")})


def test_unknown_resource_class():
    graph = StackGraph("test")
    graph.add("thing", "ec2.NoSuchThing", {})
    with pytest.raises(BuildError, match="Resource class 'NoSuchThing' not found"):
        AWSResourceBuilder(graph, "us-west-2").build()


def test_unknown_module():
    graph = StackGraph("test")
    graph.add("thing", "nosuchmodule.Thing", {})
    with pytest.raises(BuildError, match="AWS module 'nosuchmodule' not found"):
        AWSResourceBuilder(graph, "us-west-2").build()


def test_unsupported_lookup_params():
    graph = StackGraph("test")
    graph.add("zone", "route53.Zone", {"name": "example.com.", "colour": "blue"}, kind=DATA)
    with pytest.raises(BuildError, match="Unsupported lookup params"):
        AWSResourceBuilder(graph, "us-west-2").build()


@pulumi.runtime.test
def test_builds_every_descriptor():
    graph, resources = build(Variant.REDIRECT)
    assert set(resources) == set(graph.ids)
    assert isinstance(resources["website-account-provider"], aws.Provider)
    assert isinstance(resources["application-load-balancer"], aws.lb.LoadBalancer)
    assert isinstance(resources["website-ecs-service"], aws.ecs.Service)
    assert not isinstance(resources["data-zone"], pulumi.Resource)

    def check(args):
        vpc_id, tags = args
        assert vpc_id == "vpc-0123456789"
        assert tags == TAGS

    subnet = resources["subnet-2a"]
    return pulumi.Output.all(subnet.vpc_id, subnet.tags).apply(check)


@pulumi.runtime.test
def test_https_listener_uses_looked_up_certificate():
    _, resources = build(Variant.REDIRECT)

    def check(arn):
        assert arn == "arn:aws:acm:us-west-2:123456789012:certificate/lookup"

    return resources["load-balancer-listener-https"].certificate_arn.apply(check)


@pulumi.runtime.test
def test_alias_record_points_at_load_balancer():
    _, resources = build(Variant.REDIRECT)
    record = resources["website-route-record"]

    def check(args):
        zone_id, aliases = args
        assert zone_id == "Z0123456789"
        assert aliases[0]["name"] == "application-load-balancer.elb.amazonaws.com"
        assert aliases[0]["zone_id"] == "Z1H1FL5HABSF5"

    return pulumi.Output.all(record.zone_id, record.aliases).apply(check)


@pulumi.runtime.test
def test_validated_certificate_chain():
    _, resources = build(Variant.VALIDATED)
    record = resources["ssl-cert-validation-record"]

    def check(args):
        name, records, fqdns = args
        assert name == "_abc.dev.example.com."
        assert records == ["_def.acm-validations.aws."]
        assert fqdns == ["_abc.dev.example.com."]

    return pulumi.Output.all(
        record.name,
        record.records,
        resources["ssl-cert-validation"].validation_record_fqdns,
    ).apply(check)


@pulumi.runtime.test
def test_task_set_targets_service():
    _, resources = build(Variant.FORWARD)
    task_set = resources["website-ecs-task-set"]
    assert isinstance(task_set, aws.ecs.TaskSet)

    def check(args):
        service, desired_count = args
        assert service == "website-ecs-service"
        assert desired_count == 2

    return pulumi.Output.all(task_set.service, resources["website-ecs-service"].desired_count).apply(check)
