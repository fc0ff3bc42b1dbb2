import json
import os
import stat

import pytest


from polis_sync.models import BLESSING_DENIED, BLESSING_GRANTED, StreamEvent
from polis_sync.projections.comment_status import CommentStatusProjector
from polis_sync.site.comments import CommentBuckets, parse_frontmatter
from polis_sync.site.hooks import HookError, HookPayload, run_hook



LOCAL = "alice.test"


def _pending(site, comment_id: str, comment_url: str, published: str = "2026-02-22T10:00:00Z") -> None:  # noqa: ANN001
    d = site / ".polis" / "comments" / "pending"
    d.mkdir(parents=True, exist_ok=True)
    (d / f"{comment_id}.md").write_text(
        "---\n"
        f"comment_url: {comment_url}\n"
        "in_reply_to: https://bob.test/posts/20260220/hello.md\n"
        "comment_version: sha256:v1\n"
        f"published: {published}\n"
        "---\n"
        "great post\n",
        encoding="utf-8",
    )


def _decision(event_id: str, event_type: str, source_url: str, source_domain: str = LOCAL) -> StreamEvent:
    return StreamEvent(
        id=event_id,
        type=event_type,
        actor="bob.test",
        timestamp="2026-02-23T00:00:00Z",
        payload={"source_url": source_url, "source_domain": source_domain, "target_domain": "bob.test"},
    )


def _hook(site, body: str) -> str:  # noqa: ANN001
    d = site / ".polis" / "hooks"
    d.mkdir(parents=True, exist_ok=True)
    path = d / "post-comment.sh"
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_parse_frontmatter_ignores_nested_lines() -> None:
    fm = parse_frontmatter("---\ntitle: Hello: World\ntags:\n  - a\n---\nbody")
    assert fm == {"title": "Hello: World", "tags": ""}
    assert parse_frontmatter("no frontmatter") == {}


def test_grant_moves_comment_and_runs_hook(tmp_path) -> None:  # noqa: ANN001
    site = tmp_path
    url = "https://alice.test/comments/20260222/c1.md"
    _pending(site, "c1", url)
    _hook(site, 'cat > "$POLIS_SITE_DIR/hook-stdin.json"\necho "$POLIS_EVENT $POLIS_PATH" > "$POLIS_SITE_DIR/hook-env.txt"\n')

    projector = CommentStatusProjector(data_dir=str(site), base_url="https://alice.test", local_domain=LOCAL)
    result = projector.process([_decision("1", BLESSING_GRANTED, url)])

    assert result.files_changed is True
    assert result.new_items == 1
    assert (site / "comments" / "20260222" / "c1.md").exists()
    assert not (site / ".polis" / "comments" / "pending" / "c1.md").exists()

    env_line = (site / "hook-env.txt").read_text(encoding="utf-8").strip()
    assert env_line == "post-comment " + os.path.join("comments", "20260222", "c1.md")
    payload = json.loads((site / "hook-stdin.json").read_text(encoding="utf-8"))
    assert payload["event"] == "post-comment"
    assert payload["version"] == "sha256:v1"
    assert payload["commit_message"] == "Comment blessed: https://bob.test/posts/20260220/hello.md"


def test_deny_moves_to_denied_bucket(tmp_path) -> None:  # noqa: ANN001
    url = "https://alice.test/comments/20260222/c2.md"
    _pending(tmp_path, "c2", url)
    projector = CommentStatusProjector(data_dir=str(tmp_path), base_url="https://alice.test", local_domain=LOCAL)
    result = projector.process([_decision("1", BLESSING_DENIED, url)])
    assert result.files_changed is True
    assert (tmp_path / ".polis" / "comments" / "denied" / "c2.md").exists()


def test_unrelated_decisions_move_nothing(tmp_path) -> None:  # noqa: ANN001
    url = "https://alice.test/comments/20260222/c3.md"
    _pending(tmp_path, "c3", url)
    projector = CommentStatusProjector(data_dir=str(tmp_path), base_url="https://alice.test", local_domain=LOCAL)
    result = projector.process(
        [
            _decision("1", BLESSING_GRANTED, url, source_domain="carol.test"),
            _decision("2", BLESSING_GRANTED, "https://alice.test/comments/20260222/other.md"),
        ]
    )
    assert result.files_changed is False
    assert [c.id for c in CommentBuckets(str(tmp_path)).list_pending()] == ["c3"]


def test_hook_failure_does_not_undo_move(tmp_path, caplog) -> None:  # noqa: ANN001
    url = "https://alice.test/comments/20260222/c4.md"
    _pending(tmp_path, "c4", url)
    _hook(tmp_path, "exit 3\n")
    projector = CommentStatusProjector(data_dir=str(tmp_path), base_url="https://alice.test", local_domain=LOCAL)
    result = projector.process([_decision("1", BLESSING_GRANTED, url)])
    assert result.files_changed is True
    assert "post-comment hook failed" in caplog.text


def test_run_hook_without_script_is_not_executed(tmp_path) -> None:  # noqa: ANN001
    payload = HookPayload(event="post-comment", path="p", title="t", version="", timestamp="", commit_message="")
    assert run_hook(str(tmp_path), None, payload).executed is False
    with pytest.raises(HookError):
        run_hook(str(tmp_path), "hooks/missing.sh", payload)


def test_decision_carrying_only_comment_url_moves_comment(tmp_path) -> None:  # noqa: ANN001
    url = "https://alice.test/comments/20260222/c5.md"
    _pending(tmp_path, "c5", url)
    event = StreamEvent(
        id="1",
        type=BLESSING_GRANTED,
        actor="bob.test",
        timestamp="2026-02-23T00:00:00Z",
        payload={"comment_url": url, "source_domain": LOCAL, "target_domain": "bob.test"},
    )
    projector = CommentStatusProjector(data_dir=str(tmp_path), base_url="https://alice.test", local_domain=LOCAL)
    result = projector.process([event])
    assert result.files_changed is True
    assert (tmp_path / "comments" / "20260222" / "c5.md").exists()
    assert CommentBuckets(str(tmp_path)).list_pending() == []
