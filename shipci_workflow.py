# shipci_workflow.py
# Release pipeline: feature checks, MSRV check, pre-commit, a three-platform
# build matrix, then (tag pushes only) a GitHub-style release and a crate publish.
from __future__ import annotations

from shipci.dsl import job, matrix, on_pull_request, on_push, pipeline, sh, uses

TAG_PUSH = "github.event_name == 'push' && startsWith(github.ref, 'refs/tags/')"

PIPELINE = pipeline(
    "main",
    job(
        "hack",
        uses("actions/checkout@v4", submodules="true"),
        uses("dtolnay/rust-toolchain@stable", name="Install stable"),
        uses("taiki-e/install-action@cargo-hack", name="cargo install cargo-hack"),
        sh("cargo hack", "cargo hack --feature-powerset check"),
        runs_on="ubuntu-latest",
        display_name="ubuntu / stable / features",
    ),
    job(
        "msrv",
        uses("actions/checkout@v4", submodules="true"),
        uses("dtolnay/rust-toolchain@master", name="Install ${{ matrix.msrv }}", toolchain="${{ matrix.msrv }}"),
        sh("cargo +${{ matrix.msrv }} check", "cargo check"),
        runs_on="ubuntu-latest",
        matrix=matrix(msrv=["1.56.1"]),
        display_name="ubuntu / ${{ matrix.msrv }}",
    ),
    job(
        "pre-commit",
        uses("actions/checkout@v3.0.2", set_safe_directory="true"),
        uses("actions/setup-python@v2"),
        uses("actions-rs/toolchain@v1", toolchain="stable"),
        uses("pre-commit/action@v2.0.0"),
        runs_on="ubuntu-latest",
    ),
    job(
        "build",
        uses("actions/checkout@v3.0.2"),
        uses("actions-rs/toolchain@v1", toolchain="stable"),
        uses("actions-rs/cargo@v1", command="build", args="--release"),
        runs_on="${{ matrix.os }}",
        matrix=matrix(include=[
            {"os": "macos-latest", "target": "x86_64-apple-darwin", "suffix": ""},
            {"os": "ubuntu-latest", "target": "x86_64-unknown-linux-gnu", "suffix": ""},
            {"os": "windows-latest", "target": "x86_64-pc-windows-msvc", "suffix": ".exe"},
        ]),
    ),
    job(
        "release",
        uses("actions/checkout@v3", name="Checkout", fetch_depth="0"),
        uses(
            "orhun/git-cliff-action@v2",
            name="Generate a changelog",
            id="git-cliff",
            env={"OUTPUT": "CHANGELOG.md"},
            config="cliff.toml",
            args="--verbose",
        ),
        sh("Print the changelog", 'cat "${{ steps.git-cliff.outputs.changelog }}"'),
        sh("Get the tag", "echo ::set-output name=git_tag::${GITHUB_REF#refs/tags/}", id="get_tag"),
        uses(
            "ncipollo/release-action@v1.13.0",
            name="Create Release",
            id="create_release",
            bodyFile="./CHANGELOG.md",
            prerelease="${{ startsWith(steps.get_tag.outputs.git_tag, 'nightly') }}",
        ),
        needs=["build", "pre-commit"],
        runs_on="ubuntu-latest",
        if_=TAG_PUSH,
        outputs={
            "upload_url": "${{ steps.create_release.outputs.upload_url }}",
            "tag_name": "${{ steps.get_tag.outputs.git_tag }}",
        },
    ),
    job(
        "creates",
        uses("actions/checkout@v3", name="Checkout", fetch_depth="0"),
        uses("actions-rs/toolchain@v1", name="Install stable toolchain", profile="minimal", toolchain="stable", override="true"),
        sh(
            "Run cargo publish --token ${CRATES_TOKEN}",
            "cargo publish --token ${CRATES_TOKEN}",
            env={"CRATES_TOKEN": "${{ secrets.CRATES_TOKEN }}"},
        ),
        needs=["release"],
        runs_on="ubuntu-latest",
        if_=TAG_PUSH,
    ),
    on=[on_push(branches=["main"], tags=["*"]), on_pull_request()],
)
