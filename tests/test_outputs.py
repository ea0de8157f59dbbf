import pytest

from shipci.outputs import OutputContext, StalePublish


def test_publish_and_snapshot():
    ctx = OutputContext()
    version = ctx.publish("release", {"tag_name": "v1.2.3", "upload_url": "u"})
    assert version == 1
    snap = ctx.snapshot()
    assert snap["release"]["tag_name"] == "v1.2.3"
    assert ctx.get("release", "upload_url") == "u"
    assert ctx.get("release", "missing") is None


def test_snapshot_is_immutable_and_not_affected_by_later_writes():
    ctx = OutputContext()
    ctx.publish("build", {"artifact": "a"})
    before = ctx.snapshot()
    ctx.publish("build", {"artifact": "b"})

    assert before["build"]["artifact"] == "a"
    assert ctx.snapshot()["build"]["artifact"] == "b"
    with pytest.raises(TypeError):
        before["build"]["artifact"] = "c"


def test_compare_and_set_publish():
    ctx = OutputContext()
    seen = ctx.version
    ctx.publish("a", {"x": "1"})
    with pytest.raises(StalePublish):
        ctx.publish("b", {"y": "2"}, expected_version=seen)
    assert ctx.get("b", "y") is None
    assert ctx.publish("b", {"y": "2"}, expected_version=ctx.version) == 2


def test_values_are_strings():
    ctx = OutputContext()
    ctx.publish("j", {"n": 3, "none": None})
    assert ctx.get("j", "n") == "3"
    assert ctx.get("j", "none") == ""
