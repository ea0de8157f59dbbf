import pytest

from shipci import build, job, matrix, on_pull_request, on_push, pipeline, sh, uses
from shipci.model import Matrix


def test_sh_and_uses_steps():
    step = sh("tag", "echo hi", id="get_tag", if_="always()")
    assert step.kind == "shell"
    assert step.id == "get_tag"
    assert step.condition == "always()"

    action = uses("actions/checkout@v4", fetch_depth="0", set_safe_directory=True)
    assert action.kind == "action"
    assert action.name == "actions/checkout@v4"
    assert action.with_ == {"fetch-depth": "0", "set-safe-directory": "True"}


def test_job_collects_steps_and_applies_default_cwd():
    j = job(
        "test",
        sh("b", "make", cwd="other"),
        uses("actions/checkout@v4"),
        steps_list=[sh("a", "ls")],
        needs=["build"],
        cwd="src",
        env={"N": 1},
    )
    assert [s.name for s in j.steps] == ["a", "b", "actions/checkout@v4"]
    assert [s.cwd for s in j.steps] == ["src", "other", None]
    assert j.needs == ["build"]
    assert j.env == {"N": "1"}


def test_job_requires_steps():
    with pytest.raises(ValueError):
        job("empty")


def test_builder():
    j = (
        build("release")
        .depends_on("build", "pre-commit")
        .runs_on("ubuntu-latest")
        .when("trigger.is_tag_push")
        .define_step("Get the tag", "echo ::set-output name=git_tag::v1", id="get_tag")
        .use_action("ncipollo/release-action@v1", id="create_release", prerelease="false")
        .with_outputs(tag_name="${{ steps.get_tag.outputs.git_tag }}")
        .with_env(RUST_LOG="info")
        .timeout_after(600)
        .build()
    )
    assert j.needs == ["build", "pre-commit"]
    assert j.runs_on == "ubuntu-latest"
    assert j.condition == "trigger.is_tag_push"
    assert [s.id for s in j.steps] == ["get_tag", "create_release"]
    assert j.outputs == {"tag_name": "${{ steps.get_tag.outputs.git_tag }}"}
    assert j.timeout == 600

    with pytest.raises(ValueError):
        build("nothing").build()


def test_matrix_helper():
    m = matrix({"os": ("linux", "mac")}, py=["3.12"], exclude=[{"os": "mac"}])
    assert m == Matrix(axes={"os": ["linux", "mac"], "py": ["3.12"]}, exclude=[{"os": "mac"}])


def test_pipeline_triggers():
    p = pipeline(
        "main",
        job("a", sh("x", "true")),
        on=[on_push(branches=["main"], tags=["v*"]), on_pull_request(branches=["main"])],
    )
    assert p.triggers.events["push"].tags == ["v*"]
    assert p.triggers.events["pull_request"].branches == ["main"]
    assert pipeline("bare", job("a", sh("x", "true"))).triggers is None
