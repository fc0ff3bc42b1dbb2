import os
import sys
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from polis_sync.models import StreamEvent  # noqa: E402
from polis_sync.rules.matcher import (  # noqa: E402
    NotificationRule,
    RuleMatcher,
    dedupe_key,
    default_rules,
    merge_default_rules,
    resolve_template,
    template_vars_from_event,
)


LOCAL = "alice.test"


def _event(event_type: str, actor: str, **payload) -> StreamEvent:  # noqa: ANN003
    return StreamEvent(id="1", type=event_type, actor=actor, timestamp="2026-02-10T00:00:00Z", payload=payload)


class TestRules(unittest.TestCase):
    def setUp(self) -> None:
        self.matcher = RuleMatcher(
            local_domain=LOCAL,
            rules=tuple(default_rules()),
            muted_domains=frozenset({"spam.test"}),
            followed_domains=frozenset({"bob.test"}),
        )

    def test_target_domain_relevance(self) -> None:
        e = _event("polis.comment.published", "carol.test", target_domain=LOCAL, target_url="https://alice.test/posts/20260101/hello.md")
        self.assertEqual([r.id for r in self.matcher.match(e)], ["new-comment"])
        other = _event("polis.comment.published", "carol.test", target_domain="dave.test")
        self.assertEqual(self.matcher.match(other), ())

    def test_source_domain_relevance(self) -> None:
        e = _event("polis.blessing.granted", "carol.test", source_domain=LOCAL, target_domain="carol.test")
        self.assertEqual([r.id for r in self.matcher.match(e)], ["blessing-granted"])

    def test_followed_author_relevance(self) -> None:
        self.assertEqual([r.id for r in self.matcher.match(_event("polis.post.published", "bob.test"))], ["new-post"])
        self.assertEqual(self.matcher.match(_event("polis.post.published", "stranger.test")), ())

    def test_disabled_rules_do_not_match(self) -> None:
        self.assertEqual(self.matcher.match(_event("polis.post.republished", "bob.test")), ())

    def test_self_and_muted_actors_never_match(self) -> None:
        self.assertEqual(self.matcher.match(_event("polis.follow.announced", LOCAL, target_domain=LOCAL)), ())
        self.assertEqual(self.matcher.match(_event("polis.follow.announced", "spam.test", target_domain=LOCAL)), ())

    def test_template_vars_and_resolution(self) -> None:
        e = _event(
            "polis.blessing.requested",
            "carol.test",
            in_reply_to="https://alice.test/posts/20260101/hello-world.md",
            comment_url="https://carol.test/comments/20260102/c1.md",
            metadata={"title": "Hello"},
        )
        variables = template_vars_from_event(e)
        self.assertEqual(variables["post_name"], "hello-world")
        self.assertEqual(variables["title"], "Hello")
        self.assertEqual(
            resolve_template("{{actor}} requested a blessing on {{post_name}}", variables),
            "carol.test requested a blessing on hello-world",
        )
        self.assertEqual(resolve_template("{{unknown}}", variables), "{{unknown}}")

    def test_dedupe_key_priority(self) -> None:
        self.assertEqual(dedupe_key("r", _event("t", "a.test", source_url="s", url="u")), "r:s")
        self.assertEqual(dedupe_key("r", _event("t", "a.test", comment_url="c", url="u", target_domain=LOCAL)), "r:c")
        self.assertEqual(dedupe_key("r", _event("t", "a.test", url="u")), "r:u")
        self.assertEqual(dedupe_key("r", _event("t", "a.test", target_domain=LOCAL)), f"r:a.test@{LOCAL}")
        hashed = dedupe_key("r", _event("t", "a.test", x="1"))
        self.assertTrue(hashed.startswith("r:"))
        self.assertEqual(len(hashed), len("r:") + 16)
        self.assertEqual(hashed, dedupe_key("r", _event("t", "a.test", x="1")))

    def test_merge_default_rules_preserves_user_edits(self) -> None:
        edited = NotificationRule(id="new-follower", event_type="polis.follow.announced", relevance="target_domain", enabled=False)
        merged, added = merge_default_rules([edited])
        self.assertTrue(added)
        self.assertEqual(merged[0], edited)
        self.assertEqual({r.id for r in merged}, {r.id for r in default_rules()})

        _, added_again = merge_default_rules(merged)
        self.assertFalse(added_again)

    def test_rule_json_roundtrip_accepts_nested_form(self) -> None:
        rule = NotificationRule.from_json(
            {
                "id": "x",
                "event_type": "polis.post.published",
                "enabled": True,
                "filter": {"relevance": "followed_author"},
                "template": {"icon": "📝", "message": "{{actor}}", "link": "/_/#feed"},
            }
        )
        self.assertEqual(rule.relevance, "followed_author")
        self.assertEqual(rule.icon, "📝")
        self.assertEqual(NotificationRule.from_json(rule.to_json_dict()), rule)

    def test_enabled_rules_grouped_by_relevance(self) -> None:
        groups = self.matcher.rules_by_relevance()
        self.assertEqual(
            [r.id for r in groups["target_domain"]],
            ["new-follower", "lost-follower", "blessing-requested", "new-comment"],
        )
        self.assertEqual([r.id for r in groups["source_domain"]], ["blessing-granted", "blessing-denied"])
        self.assertEqual([r.id for r in groups["followed_author"]], ["new-post"])

        types = self.matcher.enabled_event_types()
        self.assertNotIn("polis.post.republished", types)
        self.assertNotIn("polis.comment.republished", types)
        self.assertEqual(len(types), 7)
