import threading

import pytest

from shipci.actions import ActionRegistry, ActionResult
from shipci.dsl import job, sh, uses
from shipci.errors import CancellationError, ExpressionError, StepFailure, StepTimeout
from shipci.executor import JobContext, parse_output_file, parse_set_output, run_job
from shipci.matrix import expand_job


def _context(tmp_path, actions=None, **kwargs):
    expressions = {
        "github": {"event_name": "push", "ref": "refs/tags/v1.2.3", "sha": "abc"},
        "trigger": {"is_tag_push": True},
        "secrets": {"TOKEN": "s3cr3t"},
        "needs": {},
        "env": {},
        "matrix": {},
    }
    return JobContext(
        expressions=expressions,
        actions=actions or ActionRegistry(),
        repo_root=tmp_path,
        base_env={"GITHUB_REF": "refs/tags/v1.2.3"},
        **kwargs,
    )


def _instance(j):
    return expand_job(j)[0]


def test_parse_output_file():
    text = "a=1\nb=x=y\nnotes<<EOF\nline one\nline two\nEOF\nc=\n"
    assert parse_output_file(text) == {"a": "1", "b": "x=y", "notes": "line one\nline two", "c": ""}


def test_parse_set_output():
    out = "building\n::set-output name=git_tag::v1.2.3\n  ::set-output name=empty::\n"
    assert parse_set_output(out) == {"git_tag": "v1.2.3", "empty": ""}


def test_steps_run_in_order_and_share_outputs(tmp_path):
    j = job(
        "release",
        sh("tag", "echo ::set-output name=git_tag::${GITHUB_REF#refs/tags/}", id="get_tag"),
        sh("notes", 'echo "title=Release ${{ steps.get_tag.outputs.git_tag }}" >> "$GITHUB_OUTPUT"', id="notes"),
        outputs={"tag_name": "${{ steps.get_tag.outputs.git_tag }}"},
    )
    inst = _instance(j)
    outputs = run_job(inst, _context(tmp_path))

    assert outputs["git_tag"] == "v1.2.3"
    assert outputs["title"] == "Release v1.2.3"
    assert outputs["tag_name"] == "v1.2.3"
    assert list(inst.step_results.values()) == ["success", "success"]


def test_action_failure_stops_remaining_steps(tmp_path):
    calls = []

    def record(name, status):
        def action(inputs, env):
            calls.append(name)
            return ActionResult(exit_status=status)
        return action

    registry = ActionRegistry({"first": record("first", 0), "boom": record("boom", 1), "last": record("last", 0)})
    j = job("j", uses("first"), uses("boom"), uses("last"))
    inst = _instance(j)

    with pytest.raises(StepFailure) as exc:
        run_job(inst, _context(tmp_path, actions=registry))

    assert exc.value.exit_code == 1
    assert calls == ["first", "boom"]
    assert inst.step_results == {"first": "success", "boom": "failure"}


def test_shell_failure_carries_output(tmp_path):
    j = job("j", sh("bad", "echo oops >&2; exit 3"), sh("never", "touch never"))
    with pytest.raises(StepFailure) as exc:
        run_job(_instance(j), _context(tmp_path))
    assert exc.value.exit_code == 3
    assert "oops" in exc.value.stderr
    assert not (tmp_path / "never").exists()


def test_action_receives_interpolated_inputs_and_env(tmp_path):
    seen = {}

    def publish(inputs, env):
        seen.update(inputs=inputs, env=env)
        return {"published": "yes"}

    j = job(
        "creates",
        uses("crates/publish@v1", id="pub", token="${{ secrets.TOKEN }}", target="${{ matrix.target }}"),
        env={"RUST_LOG": "info"},
    )
    inst = _instance(j)
    inst.matrix = {"target": "x86_64-unknown-linux-gnu"}
    outputs = run_job(inst, _context(tmp_path, actions=ActionRegistry({"crates/publish": publish})))

    assert seen["inputs"] == {"token": "s3cr3t", "target": "x86_64-unknown-linux-gnu"}
    assert seen["env"]["RUST_LOG"] == "info"
    assert outputs == {"published": "yes"}


def test_step_condition_can_skip_a_step(tmp_path):
    j = job(
        "j",
        sh("only on branches", "touch branch", if_="github.ref_type == 'branch'"),
        sh("always", "touch always"),
    )
    ctx = _context(tmp_path)
    ctx.expressions["github"]["ref_type"] = "tag"
    inst = _instance(j)
    run_job(inst, ctx)
    assert not (tmp_path / "branch").exists()
    assert (tmp_path / "always").exists()
    assert inst.step_results["only on branches"] == "skipped"


def test_unresolvable_reference_is_a_configuration_error(tmp_path):
    j = job("j", sh("uses secret", "echo ${{ secrets.MISSING }}"))
    with pytest.raises(ExpressionError):
        run_job(_instance(j), _context(tmp_path))


def test_unknown_action_fails_unless_stubbed(tmp_path):
    j = job("j", uses("someone/unknown@v1"))
    with pytest.raises(Exception) as exc:
        run_job(_instance(j), _context(tmp_path))
    assert "someone/unknown@v1" in str(exc.value)

    stubbed = ActionRegistry(stub_unknown=True)
    assert run_job(_instance(j), _context(tmp_path, actions=stubbed)) == {}


def test_timeout_kills_running_step(tmp_path):
    j = job("slow", sh("sleep", "sleep 5"))
    with pytest.raises(StepTimeout):
        run_job(_instance(j), _context(tmp_path, timeout=0.3))


def test_cancellation_interrupts_running_step(tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        with pytest.raises(CancellationError):
            run_job(_instance(job("slow", sh("sleep", "sleep 5"))), _context(tmp_path, cancel=cancel))
    finally:
        timer.cancel()


def test_cancelled_before_first_step(tmp_path):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(CancellationError):
        run_job(_instance(job("j", sh("touch", "touch ran"))), _context(tmp_path, cancel=cancel))
    assert not (tmp_path / "ran").exists()
