from .base import ProjectionHandler, filter_events
from .blessings import BlessingEntry, BlessingProjector, can_transition, record_pending
from .comment_status import CommentStatusProjector
from .feed import FeedCache, FeedConfig, FeedProjector, compute_item_id
from .followers import FollowerProjector, follower_count
from .notifications import NotificationConfig, NotificationLog, NotificationProjector

__all__ = [
    "BlessingEntry",
    "BlessingProjector",
    "CommentStatusProjector",
    "FeedCache",
    "FeedConfig",
    "FeedProjector",
    "FollowerProjector",
    "NotificationConfig",
    "NotificationLog",
    "NotificationProjector",
    "ProjectionHandler",
    "can_transition",
    "compute_item_id",
    "filter_events",
    "follower_count",
    "record_pending",
]
