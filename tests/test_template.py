import pytest

from ciless.buildspec import BuildSpec, BuildStep
from ciless.template import (
    NAME_PATTERN,
    MAX_NAME_LENGTH,
    build,
    template_name,
)


def make_spec(*steps):
    return BuildSpec(steps=tuple(steps))


GO_BUILD = BuildStep(name="build", image="golang:1.20", args=("go", "build"))


def test_example_template():
    bt = build("octo/app", "feature-1", make_spec(GO_BUILD))

    assert bt.name == "knative-ci-octo-app-ref-feature-1"

    manifest = bt.to_manifest()
    assert manifest["apiVersion"] == "build.knative.dev/v1alpha1"
    assert manifest["kind"] == "BuildTemplate"
    assert manifest["metadata"]["name"] == "knative-ci-octo-app-ref-feature-1"
    assert "resourceVersion" not in manifest["metadata"]
    assert manifest["spec"]["steps"] == [
        {"name": "build", "image": "golang:1.20", "args": ["go", "build"]}
    ]


def test_identity_is_deterministic():
    spec = make_spec(GO_BUILD)
    assert build("octo/app", "main", spec).name == build("octo/app", "main", spec).name
    assert template_name("Octo/App", "feature/x") == template_name("Octo/App", "feature/x")


@pytest.mark.parametrize(
    "a, b",
    [
        (("octo/app", "main"), ("octo/app", "dev")),
        (("octo/app", "main"), ("octo/api", "main")),
        (("octo/app", "feature/x"), ("octo/app", "feature-x")),
        (("octo/app", "Main"), ("octo/app", "main")),
        (("Octo/app", "main"), ("octo/app", "main")),
        (("octo/app", "release-" + "x" * 80), ("octo/app", "release-" + "y" * 80)),
    ],
)
def test_identity_differs_for_different_inputs(a, b):
    assert template_name(*a) != template_name(*b)


@pytest.mark.parametrize(
    "slug, ref",
    [
        ("octo/app", "feature/new-thing"),
        ("Octo-Org/My.App", "v1.2.3"),
        ("octo/app", "fix_underscores"),
        ("octo/app", "-leading-and-trailing-"),
        ("octo/app", "a" * 200),
        ("some-very-long-organisation-name/an-equally-long-repository-name", "main"),
        ("octo/app", "émoji-✨"),
    ],
)
def test_identity_is_a_valid_resource_name(slug, ref):
    name = template_name(slug, ref)
    assert NAME_PATTERN.match(name), name
    assert len(name) <= MAX_NAME_LENGTH


def test_identity_respects_prefix():
    assert template_name("octo/app", "main", prefix="ci-") == "ci-octo-app-ref-main"


def test_only_first_separator_is_replaced_verbatim():
    # owner/repo slugs carry exactly one separator, a second one is illegal
    name = template_name("octo/app/extra", "main")
    assert name.startswith("knative-ci-octo-app-extra-ref-main-")
    assert NAME_PATTERN.match(name)


def test_fixed_parameters():
    bt = build("octo/app", "main", make_spec(GO_BUILD))
    params = bt.to_manifest()["spec"]["parameters"]

    assert [p["name"] for p in params] == ["REPO_DIR", "USER_REPO_SLUG", "COMMIT_REF"]
    assert params[1]["description"] == "<username>/<repository_name>"
    assert all(p["description"] for p in params)


def test_fixed_parameters_on_empty_spec():
    bt = build("octo/app", "main", make_spec())
    manifest = bt.to_manifest()

    assert [p["name"] for p in manifest["spec"]["parameters"]] == [
        "REPO_DIR",
        "USER_REPO_SLUG",
        "COMMIT_REF",
    ]
    assert manifest["spec"]["steps"] == []


def test_steps_map_one_to_one_in_order():
    steps = [
        BuildStep(name="fetch", image="alpine/git", args=("clone", "$(REPO_DIR)")),
        BuildStep(name="build", image="golang:1.20", args=("go", "build")),
        BuildStep(name="publish", image="gcr.io/kaniko-project/executor", args=()),
    ]
    manifest = build("octo/app", "main", make_spec(*steps)).to_manifest()

    assert manifest["spec"]["steps"] == [
        {"name": s.name, "image": s.image, "args": list(s.args)} for s in steps
    ]


def test_manifest_records_raw_coordinates():
    manifest = build("Octo/App", "feature/x", make_spec(GO_BUILD)).to_manifest()
    annotations = manifest["metadata"]["annotations"]

    assert annotations["ciless.dev/repo-slug"] == "Octo/App"
    assert annotations["ciless.dev/ref"] == "feature/x"
    assert manifest["metadata"]["labels"] == {
        "app.kubernetes.io/managed-by": "ciless-bridge"
    }


def test_resource_version_is_carried_into_manifest():
    bt = build("octo/app", "main", make_spec(GO_BUILD)).with_resource_version("17")
    assert bt.to_manifest()["metadata"]["resourceVersion"] == "17"
