import os

from config import Variant
from synth import document_path, load_document, synthesize
from website import assemble, backend


def test_synthesize_writes_document(tmp_path, options, project_config):
    config = project_config(Variant.REDIRECT)
    graph = assemble(options, config)

    path = synthesize(graph, backend(options, config), str(tmp_path), "dev")

    assert path == os.path.join(str(tmp_path), "stacks", "dev", "stack.json")
    document = load_document(path)
    assert document["terraform"]["backend"] == {
        "s3": {"bucket": "webapp-state", "key": "webapp/dev", "region": "us-east-1"},
    }
    assert set(document["data"]) == {"route53.Zone", "acm.Certificate", "ec2.Vpc"}
    listener = document["resource"]["lb.Listener"]["load-balancer-listener-https"]
    assert listener["certificate_arn"] == "${data-ssl-cert.arn}"
    assert listener["depends_on"] == [
        "application-load-balancer",
        "data-ssl-cert",
        "load-balancer-listener-http",
        "load-balancer-target-group",
    ]


def test_synthesized_document_never_contains_credentials(tmp_path, monkeypatch, options, project_config):
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "super-secret-value")
    config = project_config()
    path = synthesize(assemble(options, config), None, str(tmp_path), "dev")
    with open(path) as file:
        text = file.read()
    assert "super-secret-value" not in text
    assert "${env.AWS_SECRET_ACCESS_KEY}" in text


def test_synthesis_is_deterministic(tmp_path, options, project_config):
    config = project_config(Variant.VALIDATED)
    first = synthesize(assemble(options, config), backend(options, config), str(tmp_path / "a"), "dev")
    second = synthesize(assemble(options, config), backend(options, config), str(tmp_path / "b"), "dev")
    with open(first) as a, open(second) as b:
        assert a.read() == b.read()


def test_document_path():
    assert document_path("out", "prod") == os.path.join("out", "stacks", "prod", "stack.json")
