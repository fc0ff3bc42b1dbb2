from .blessed import add_blessed_comment, is_blessed_comment, load_blessed_comments
from .comments import STATUS_BLESSED, STATUS_DENIED, STATUS_PENDING, CommentBuckets, PendingComment, parse_frontmatter
from .following import load_followed_domains
from .hooks import HookError, HookPayload, HookResult, run_hook

__all__ = [
    "CommentBuckets",
    "HookError",
    "HookPayload",
    "HookResult",
    "PendingComment",
    "STATUS_BLESSED",
    "STATUS_DENIED",
    "STATUS_PENDING",
    "add_blessed_comment",
    "is_blessed_comment",
    "load_blessed_comments",
    "load_followed_domains",
    "parse_frontmatter",
    "run_hook",
]
