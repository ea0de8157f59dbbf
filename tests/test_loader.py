from pathlib import Path

import pytest

from shipci.errors import DefinitionError
from shipci.loader import load_workflow, load_yaml, parse_triggers, pipeline_from_dict
from shipci.model import Event, JobStatus
from shipci.runner import plan, run_pipeline
from shipci.secret_store import Secrets

from conftest import UPLOAD_URL, RecordingActions

ROOT = Path(__file__).resolve().parents[1]


def test_release_yaml_is_parsed(release_pipeline):
    assert release_pipeline.name == "main"
    assert [j.name for j in release_pipeline.jobs] == ["pre-commit", "build", "release", "creates"]

    release = next(j for j in release_pipeline.jobs if j.name == "release")
    assert release.needs == ["build", "pre-commit"]
    assert release.condition.startswith("github.event_name == 'push'")
    assert release.outputs["tag_name"] == "${{ steps.get_tag.outputs.git_tag }}"
    assert [s.id for s in release.steps] == ["get_tag", "create_release"]
    assert release.steps[1].uses == "ncipollo/release-action@v1.13.0"

    build = next(j for j in release_pipeline.jobs if j.name == "build")
    assert build.runs_on == "${{ matrix.os }}"
    assert build.matrix.axes == {}
    assert len(build.matrix.include) == 3


def test_on_key_is_read_even_when_yaml_turns_it_into_true(release_pipeline):
    # PyYAML reads the bare `on:` key as the boolean True.
    events = release_pipeline.triggers.events
    assert set(events) == {"push", "pull_request"}
    assert events["push"].branches == ["main"]
    assert events["push"].tags == ["*"]


def test_parse_triggers_shapes():
    assert set(parse_triggers("push").events) == {"push"}
    assert set(parse_triggers(["push", "pull_request"]).events) == {"push", "pull_request"}
    assert set(parse_triggers(None).events) == {"push", "pull_request"}
    cfg = parse_triggers({"push": {"tags-ignore": ["nightly*"], "branches": "main"}})
    assert cfg.events["push"].tags_ignore == ["nightly*"]
    assert cfg.events["push"].branches == ["main"]


def test_job_fields():
    data = {
        "name": "ci",
        "env": {"RUST_BACKTRACE": 1},
        "jobs": {
            "msrv": {
                "name": "ubuntu / ${{ matrix.msrv }}",
                "timeout-minutes": 2,
                "strategy": {"matrix": {"msrv": ["1.56.1"]}},
                "steps": [
                    {"run": "cargo check\ncargo test", "working-directory": "crate"},
                    {"uses": "dtolnay/rust-toolchain@master", "with": {"toolchain": "1.56.1", "force": True}},
                ],
            }
        },
    }
    p = pipeline_from_dict(data)
    (msrv,) = p.jobs
    assert p.env == {"RUST_BACKTRACE": "1"}
    assert msrv.timeout == 120
    assert msrv.display_name == "ubuntu / ${{ matrix.msrv }}"
    assert msrv.runs_on == "local"
    assert msrv.matrix.axes == {"msrv": ["1.56.1"]}
    assert msrv.steps[0].name == "Run cargo check"
    assert msrv.steps[0].cwd == "crate"
    assert msrv.steps[1].name == "dtolnay/rust-toolchain@master"
    assert msrv.steps[1].with_ == {"toolchain": "1.56.1", "force": "true"}


@pytest.mark.parametrize(
    "data",
    [
        {"jobs": {}},
        {"jobs": {"a": {"steps": [{"name": "nothing"}]}}},
        {"jobs": {"a": {"steps": [{"run": "x", "uses": "y"}]}}},
        {"jobs": {"a": {"steps": "echo"}}},
        {"jobs": {"a": {"needs": 3, "steps": [{"run": "x"}]}}},
        {"jobs": {"a": {"strategy": {"matrix": {"include": "x"}}, "steps": [{"run": "x"}]}}},
    ],
)
def test_invalid_definitions(data):
    with pytest.raises(DefinitionError):
        pipeline_from_dict(data)


def test_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yml"
    path.write_text("jobs: [unclosed\n", encoding="utf-8")
    with pytest.raises(DefinitionError):
        load_yaml(path)


def test_python_workflow_styles(tmp_path):
    (tmp_path / "jobs_workflow.py").write_text(
        "from shipci import job, sh\n"
        "JOBS = [job('a', sh('x', 'true')), job('b', sh('y', 'true'), needs=['a'])]\n",
        encoding="utf-8",
    )
    (tmp_path / "fn_workflow.py").write_text(
        "from shipci import job, sh, wf\n"
        "def workflow():\n"
        "    return wf(job('only', sh('x', 'true')))\n",
        encoding="utf-8",
    )
    jobs_pipeline = load_workflow(tmp_path / "jobs_workflow.py")
    assert jobs_pipeline.name == "jobs_workflow"
    assert [j.name for j in jobs_pipeline.jobs] == ["a", "b"]
    assert [j.name for j in load_workflow(tmp_path / "fn_workflow.py").jobs] == ["only"]


def test_python_workflow_without_definition(tmp_path):
    path = tmp_path / "empty_workflow.py"
    path.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_workflow(path)


def test_unsupported_suffix_and_missing_file(tmp_path):
    path = tmp_path / "workflow.toml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_workflow(path)
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "nope.yml")


def test_repository_workflow_is_valid():
    pipeline = load_workflow(ROOT / "shipci_workflow.py")
    assert plan(pipeline) == [
        [
            "build (macos-latest, x86_64-apple-darwin, )",
            "build (ubuntu-latest, x86_64-unknown-linux-gnu, )",
            "build (windows-latest, x86_64-pc-windows-msvc, .exe)",
            "hack",
            "msrv (1.56.1)",
            "pre-commit",
        ],
        ["release"],
        ["creates"],
    ]


def test_repository_workflow_releases_on_tag_push(tmp_path):
    changelog = tmp_path / "CHANGELOG.md"
    changelog.write_text("## v1.2.3\n", encoding="utf-8")
    actions = RecordingActions({
        "orhun/git-cliff-action": lambda inputs, env: {"changelog": str(changelog)},
        "ncipollo/release-action": lambda inputs, env: {"upload_url": UPLOAD_URL},
    })
    result = run_pipeline(
        load_workflow(ROOT / "shipci_workflow.py"),
        Event("push", "refs/tags/v1.2.3", "abc"),
        actions=actions,
        secrets=Secrets({"CRATES_TOKEN": "t"}),
        repo_root=tmp_path,
    )

    release = next(i for i in result.instances if i.name == "release")
    assert release.status is JobStatus.SUCCEEDED
    assert release.step_results["Print the changelog"] == "success"
    assert result.outputs["release"]["tag_name"] == "v1.2.3"
    assert result.outputs["release"]["upload_url"] == UPLOAD_URL
    assert actions.inputs_of("actions-rs/cargo@v1") == [{"command": "build", "args": "--release"}] * 3
