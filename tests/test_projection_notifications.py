import json
from datetime import timedelta

from polis_sync.models import (
    BLESSING_GRANTED,
    BLESSING_REQUESTED,
    COMMENT_PUBLISHED,
    FOLLOW_ANNOUNCED,
    POST_PUBLISHED,
    StreamEvent,
    format_timestamp,
    utc_now,
)
from polis_sync.projections.notifications import CONFIG_NAME, NotificationLog, NotificationProjector
from polis_sync.rules.matcher import default_rules
from polis_sync.state.sqlite_store import SqliteStateStore


LOCAL = "alice.test"


def _event(event_id: str, event_type: str, actor: str, timestamp: str | None = None, **payload) -> StreamEvent:  # noqa: ANN003
    return StreamEvent(
        id=event_id,
        type=event_type,
        actor=actor,
        timestamp=timestamp or format_timestamp(utc_now()),
        payload=payload,
    )


def _setup(tmp_path):  # noqa: ANN001, ANN202
    store = SqliteStateStore(str(tmp_path / "state.sqlite3"), namespace="ds.test")
    site = tmp_path / "site"
    (site / "metadata").mkdir(parents=True)
    (site / "metadata" / "following.json").write_text(
        json.dumps({"following": [{"url": "https://bob.test"}]}), encoding="utf-8"
    )
    return store, NotificationProjector(store=store, local_domain=LOCAL, data_dir=str(site))


def test_first_run_seeds_default_rules(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    assert store.load_config(CONFIG_NAME) is None
    projector.process([_event("1", FOLLOW_ANNOUNCED, "carol.test", target_domain=LOCAL)])

    cfg = store.load_config(CONFIG_NAME)
    assert [r["id"] for r in cfg["rules"]] == [r.id for r in default_rules()]
    assert cfg["max_items"] == 500
    assert cfg["max_age_days"] == 90


def test_new_defaults_merge_without_clobbering_user_edits(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    store.save_config(
        CONFIG_NAME,
        {
            "rules": [
                {
                    "id": "new-follower",
                    "event_type": FOLLOW_ANNOUNCED,
                    "enabled": False,
                    "relevance": "target_domain",
                    "message": "custom",
                }
            ],
            "muted_domains": [],
        },
    )
    result = projector.process([_event("1", FOLLOW_ANNOUNCED, "carol.test", target_domain=LOCAL)])
    assert result.new_items == 0

    rules = store.load_config(CONFIG_NAME)["rules"]
    assert rules[0]["enabled"] is False
    assert rules[0]["message"] == "custom"
    assert len(rules) == len(default_rules())


def test_entries_are_rendered_and_deduped(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    events = [
        _event(
            "1",
            BLESSING_REQUESTED,
            "carol.test",
            target_domain=LOCAL,
            source_url="https://carol.test/comments/20261001/c.md",
            in_reply_to="https://alice.test/posts/20260930/my-post.md",
        ),
        _event("2", POST_PUBLISHED, "bob.test", url="https://bob.test/posts/20261001/p.md"),
        _event("3", POST_PUBLISHED, "stranger.test", url="https://stranger.test/posts/x.md"),
    ]
    assert projector.process(events).new_items == 2
    assert projector.process(events).new_items == 0

    log = NotificationLog(store)
    entries = log.list()
    assert [e.rule_id for e in entries] == ["new-post", "blessing-requested"]
    assert entries[1].message == "carol.test requested a blessing on my-post"
    assert entries[1].link == "/_/#blessings"
    assert entries[1].id == "blessing-requested:https://carol.test/comments/20261001/c.md"
    assert entries[1].event_ids == ("1",)


def test_muted_actor_produces_nothing(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    log = NotificationLog(store)
    assert log.mute("carol.test") is True
    assert log.mute("carol.test") is False

    result = projector.process([_event("1", FOLLOW_ANNOUNCED, "carol.test", target_domain=LOCAL)])
    assert result.new_items == 0
    assert log.list() == []

    assert log.unmute("carol.test") is True
    assert projector.process([_event("2", FOLLOW_ANNOUNCED, "carol.test", target_domain=LOCAL)]).new_items == 1


def test_prune_after_append(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    store.save_config(CONFIG_NAME, {"rules": [], "muted_domains": [], "max_items": 2, "max_age_days": 30})

    old = format_timestamp(utc_now() - timedelta(days=45))
    events = [_event("0", FOLLOW_ANNOUNCED, "old.test", old, target_domain=LOCAL)]
    events += [_event(str(n), FOLLOW_ANNOUNCED, f"f{n}.test", target_domain=LOCAL) for n in range(1, 4)]
    assert projector.process(events).new_items == 4

    actors = [e.actor for e in NotificationLog(store).list()]
    assert actors == ["f3.test", "f2.test"]


def test_read_marks(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    projector.process([_event(str(n), FOLLOW_ANNOUNCED, f"f{n}.test", target_domain=LOCAL) for n in range(3)])
    log = NotificationLog(store)
    assert log.unread_count() == 3
    first = log.list()[0]
    assert log.mark_read([first.id]) == 1
    assert log.unread_count() == 2
    assert [e.id for e in log.list(unread_only=True)] == [e.id for e in log.list()[1:]]
    assert log.mark_all_read() == 2
    assert log.unread_count() == 0


def test_malformed_payload_skips_only_that_event(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    bad = _event("1", FOLLOW_ANNOUNCED, "carol.test", target_domain=12345)
    good = _event("2", FOLLOW_ANNOUNCED, "dave.test", target_domain=LOCAL)
    assert projector.process([bad, good]).new_items == 1


def test_two_comments_from_one_actor_are_both_kept(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    post = "https://alice.test/posts/20261001/my-post.md"
    events = [
        _event(
            str(n),
            COMMENT_PUBLISHED,
            "bob.test",
            target_domain=LOCAL,
            target_url=post,
            comment_url=f"https://bob.test/comments/20261002/c{n}.md",
        )
        for n in (1, 2)
    ]
    assert projector.process(events).new_items == 2
    assert [e.id for e in NotificationLog(store).list()] == [
        "new-comment:https://bob.test/comments/20261002/c2.md",
        "new-comment:https://bob.test/comments/20261002/c1.md",
    ]


def test_separate_decisions_on_my_comments_are_both_kept(tmp_path) -> None:  # noqa: ANN001
    store, projector = _setup(tmp_path)
    events = [
        _event(
            str(n),
            BLESSING_GRANTED,
            "bob.test",
            source_domain=LOCAL,
            target_domain="bob.test",
            comment_url=f"https://alice.test/comments/20261002/c{n}.md",
            in_reply_to="https://bob.test/posts/20261001/p.md",
        )
        for n in (1, 2)
    ]
    assert projector.process(events).new_items == 2
