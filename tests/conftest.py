from __future__ import annotations

import threading
from pathlib import Path

import pytest

from shipci.actions import ActionRegistry
from shipci.loader import load_yaml
from shipci.model import Event

RELEASE_YAML = """\
name: main
on:
  push:
    branches: [main]
    tags: ["*"]
  pull_request:
jobs:
  pre-commit:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3.0.2
      - uses: pre-commit/action@v2.0.0
  build:
    runs-on: ${{ matrix.os }}
    strategy:
      matrix:
        include:
          - os: macos-latest
            target: x86_64-apple-darwin
            suffix: ''
          - os: ubuntu-latest
            target: x86_64-unknown-linux-gnu
            suffix: ''
          - os: windows-latest
            target: x86_64-pc-windows-msvc
            suffix: .exe
    steps:
      - uses: actions/checkout@v3.0.2
      - uses: actions-rs/cargo@v1
        with:
          command: build
          args: --release --target ${{ matrix.target }}
  release:
    needs: [build, pre-commit]
    runs-on: ubuntu-latest
    if: github.event_name == 'push' && startsWith(github.ref, 'refs/tags/')
    outputs:
      upload_url: ${{ steps.create_release.outputs.upload_url }}
      tag_name: ${{ steps.get_tag.outputs.git_tag }}
    steps:
      - name: Get the tag
        id: get_tag
        run: echo ::set-output name=git_tag::${GITHUB_REF#refs/tags/}
      - name: Create Release
        id: create_release
        uses: ncipollo/release-action@v1.13.0
        with:
          prerelease: ${{ startsWith(steps.get_tag.outputs.git_tag, 'nightly') }}
  creates:
    needs: [release]
    runs-on: ubuntu-latest
    if: github.event_name == 'push' && startsWith(github.ref, 'refs/tags/')
    steps:
      - uses: crates/publish@v1
        with:
          tag: ${{ needs.release.outputs.tag_name }}
          upload_url: ${{ needs.release.outputs.upload_url }}
          token: ${{ secrets.CRATES_TOKEN }}
"""

UPLOAD_URL = "https://uploads.example.test/releases/1/assets"


class RecordingActions(ActionRegistry):
    """Registry that records every invocation; unregistered refs succeed."""

    def __init__(self, actions=None):
        super().__init__(actions, stub_unknown=True)
        self.calls = []
        self._lock = threading.Lock()

    def invoke(self, ref, inputs, env=None):
        with self._lock:
            self.calls.append((ref, dict(inputs)))
        return super().invoke(ref, inputs, env)

    def refs(self):
        return [ref for ref, _ in self.calls]

    def inputs_of(self, ref):
        return [inputs for r, inputs in self.calls if r == ref]


@pytest.fixture
def release_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "release.yml"
    path.write_text(RELEASE_YAML, encoding="utf-8")
    return path


@pytest.fixture
def release_pipeline(release_yaml: Path):
    return load_yaml(release_yaml)


@pytest.fixture
def actions() -> RecordingActions:
    registry = RecordingActions()
    registry.register("ncipollo/release-action", lambda inputs, env: {"upload_url": UPLOAD_URL, "id": "1"})
    return registry


@pytest.fixture
def tag_push() -> Event:
    return Event(kind="push", ref="refs/tags/v1.2.3", sha="abc123")


@pytest.fixture
def branch_push() -> Event:
    return Event(kind="push", ref="refs/heads/main", sha="abc123")
