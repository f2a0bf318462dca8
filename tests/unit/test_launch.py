from __future__ import annotations

import io
import tarfile

import pytest

from sbx_server.app.workspaces.launch import FileMaterialization, LaunchPlan, LaunchStep, build_archive


@pytest.mark.unit
def test_plan_renders_quoted_steps_with_exec_on_last() -> None:
    plan = LaunchPlan(
        steps=[LaunchStep("apk", "add", "--no-cache", "git"), LaunchStep("echo", "it's here")],
        workdir="/workspace",
    )
    assert plan.render() == "cd /workspace && apk add --no-cache git && exec echo 'it'\"'\"'s here'"
    assert plan.entrypoint() == ["sh", "-c"]
    assert plan.command() == [plan.render()]


@pytest.mark.unit
def test_plan_without_steps_is_rejected() -> None:
    with pytest.raises(ValueError):
        LaunchPlan(steps=[]).render()
    with pytest.raises(ValueError):
        LaunchStep()


@pytest.mark.unit
def test_archive_is_binary_safe_and_creates_parent_dirs() -> None:
    payload = "{\"a\": \"quote ' and \\\"double\\\" and ünïcode\"}\n".encode("utf-8") + b"\x00\xff"
    f = FileMaterialization(path="/home/coder/.local/share/x/settings.json", content=payload, uid=1000, gid=1000)
    buf = build_archive([f], root="/home/coder")

    with tarfile.open(fileobj=io.BytesIO(buf.getvalue()), mode="r") as tar:
        names = tar.getnames()
        assert names == [".local", ".local/share", ".local/share/x", ".local/share/x/settings.json"]
        member = tar.getmember(".local/share/x/settings.json")
        assert member.uid == 1000
        assert tar.extractfile(member).read() == payload
        assert tar.getmember(".local").isdir()


@pytest.mark.unit
def test_archive_rejects_paths_outside_root() -> None:
    f = FileMaterialization.from_text("/etc/passwd", "x")
    with pytest.raises(ValueError):
        build_archive([f], root="/root")


@pytest.mark.unit
@pytest.mark.parametrize("path", ["relative/file", "/root/../etc/passwd", "/root//x"])
def test_file_paths_must_be_absolute_and_normalized(path: str) -> None:
    with pytest.raises(ValueError):
        FileMaterialization.from_text(path, "x")

