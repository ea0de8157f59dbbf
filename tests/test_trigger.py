from shipci.model import Event
from shipci.trigger import TriggerConfig, TriggerFilter, evaluate, glob_match, parse_event


def _config(**events):
    return TriggerConfig(events=events)


def test_parse_event_tag_push():
    ctx = parse_event(Event(kind="push", ref="refs/tags/v1.2.3", sha="abc"))
    assert ctx.is_push is True
    assert ctx.is_tag_push is True
    assert ctx.tag_name == "v1.2.3"
    assert ctx.branch is None
    assert ctx.as_github()["ref_type"] == "tag"
    assert ctx.as_github()["ref_name"] == "v1.2.3"


def test_parse_event_branch_push():
    ctx = parse_event(Event(kind="push", ref="refs/heads/main"))
    assert ctx.is_tag_push is False
    assert ctx.tag_name is None
    assert ctx.branch == "main"


def test_pull_request_is_never_a_tag_push():
    ctx = parse_event(Event(kind="pull_request", ref="refs/tags/v1"))
    assert ctx.is_push is False
    assert ctx.is_tag_push is False


def test_push_to_main_and_any_tag():
    config = _config(push=TriggerFilter(branches=["main"], tags=["*"]))
    assert evaluate(config, Event("push", "refs/heads/main")).run
    assert evaluate(config, Event("push", "refs/tags/v1.2.3")).run
    assert not evaluate(config, Event("push", "refs/heads/feature")).run


def test_tags_only_filter_ignores_branch_pushes():
    config = _config(push=TriggerFilter(tags=["v*"]))
    decision = evaluate(config, Event("push", "refs/heads/main"))
    assert not decision.run
    assert "branch pushes" in decision.reason
    assert evaluate(config, Event("push", "refs/tags/v2")).run
    assert not evaluate(config, Event("push", "refs/tags/nightly")).run


def test_no_filters_means_every_push():
    config = _config(push=TriggerFilter())
    assert evaluate(config, Event("push", "refs/heads/anything")).run
    assert evaluate(config, Event("push", "refs/tags/x")).run


def test_unconfigured_event_kind_does_not_run():
    config = _config(push=TriggerFilter())
    decision = evaluate(config, Event("pull_request", "refs/heads/main"))
    assert not decision.run
    # the context is still parsed
    assert decision.context.event_name == "pull_request"


def test_pull_request_matches_base_branch():
    config = _config(pull_request=TriggerFilter(branches=["main"]))
    assert evaluate(config, Event("pull_request", "refs/pull/7/merge", base_ref="refs/heads/main")).run
    assert not evaluate(config, Event("pull_request", "refs/pull/7/merge", base_ref="refs/heads/dev")).run


def test_branches_ignore():
    config = _config(push=TriggerFilter(branches_ignore=["wip/**"]))
    assert evaluate(config, Event("push", "refs/heads/main")).run
    assert not evaluate(config, Event("push", "refs/heads/wip/a/b")).run


def test_glob_star_does_not_cross_slash():
    assert glob_match("v1.2.3", ["*"])
    assert not glob_match("release/v1", ["*"])
    assert glob_match("release/v1", ["**"])
    assert glob_match("release/v1", ["release/*"])


def test_glob_negation_is_ordered():
    patterns = ["releases/**", "!releases/**-alpha"]
    assert glob_match("releases/v1", patterns)
    assert not glob_match("releases/v1-alpha", patterns)
    assert glob_match("releases/v1-alpha", patterns + ["releases/v1-alpha"])
