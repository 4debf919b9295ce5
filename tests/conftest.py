import pytest

from config import ProjectConfig, StackOptions, Variant


@pytest.fixture
def options():
    return StackOptions(
        environment="dev",
        container_name="website",
        region="us-west-2",
        image_uri="123456789012.dkr.ecr.us-west-2.amazonaws.com/website:1.0.0",
    )


@pytest.fixture
def other_options():
    return StackOptions(
        environment="prod",
        container_name="storefront",
        region="eu-west-1",
        image_uri="ghcr.io/acme/storefront:2.3.1",
    )


@pytest.fixture
def project_config():
    def make(variant=Variant.REDIRECT, **overrides):
        values = {"domain": "example.com", "variant": variant, "state_bucket": "webapp-state"}
        values.update(overrides)
        return ProjectConfig(**values)

    return make
