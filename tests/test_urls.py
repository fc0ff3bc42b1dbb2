from polis_sync.urls import extract_comment_rel_path, extract_domain, extract_post_path, join_domains, normalize_to_md


def test_extract_domain() -> None:
    assert extract_domain("https://alice.polis.pub/posts/a.md") == "alice.polis.pub"
    assert extract_domain("alice.polis.pub") == "alice.polis.pub"
    assert extract_domain("https://alice.test:8443/") == "alice.test"
    assert extract_domain("") == ""


def test_normalize_to_md() -> None:
    assert normalize_to_md("https://bob.test/comments/20260222/x.html") == "https://bob.test/comments/20260222/x.md"
    assert normalize_to_md("https://bob.test/comments/20260222/x.md") == "https://bob.test/comments/20260222/x.md"


def test_extract_post_path() -> None:
    assert extract_post_path("https://alice.test/posts/20260127/hello.md") == "posts/20260127/hello.md"
    assert extract_post_path("https://alice.test/about.md") == "https://alice.test/about.md"


def test_extract_comment_rel_path() -> None:
    assert extract_comment_rel_path("https://bob.test/comments/20260222/id.md") == "comments/20260222/id.md"
    assert extract_comment_rel_path("https://bob.test/comments/20260222/id.html") == "comments/20260222/id.md"
    assert extract_comment_rel_path("https://bob.test/comments/20260222/id") == "comments/20260222/id.md"
    assert extract_comment_rel_path("https://bob.test/posts/a.md") == ""
    assert extract_comment_rel_path("https://bob.test/comments/../../etc/passwd") == ""


def test_join_domains() -> None:
    assert join_domains(["a.test", "", "b.test"]) == "a.test,b.test"
