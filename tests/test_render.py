import stat

import pytest

from polis_sync.models import SyncResult
from polis_sync.notify.formatter import format_counts, format_sync_summary
from polis_sync.notify.render import CommandRenderer, NullRenderer


def _script(tmp_path, body: str) -> str:  # noqa: ANN001
    path = tmp_path / "render.sh"
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_command_renderer_runs_in_site_dir(tmp_path) -> None:  # noqa: ANN001
    CommandRenderer(command=_script(tmp_path, "touch rendered.flag\n"), cwd=str(tmp_path)).render_all()
    assert (tmp_path / "rendered.flag").exists()


def test_command_renderer_raises_on_failure(tmp_path) -> None:  # noqa: ANN001
    renderer = CommandRenderer(command=_script(tmp_path, "echo broken\nexit 2\n"), cwd=str(tmp_path))
    with pytest.raises(RuntimeError, match="exit=2"):
        renderer.render_all()


def test_null_renderer_is_a_no_op() -> None:
    NullRenderer().render_all()


def test_counts_payload_and_summary() -> None:
    result = SyncResult(new_notifications=2, followers_changed=True, cursor_before="4", cursor_after="9")
    assert format_counts(result) == {
        "event": "counts",
        "data": {
            "new_notifications": 2,
            "new_feed_items": 0,
            "followers_changed": True,
            "comments_changed": False,
        },
    }
    assert "cursor=4->9" in format_sync_summary(result)
