"""Social module: follows, posts, comments and feeds."""

from .follows import FollowManager
from .posts import (
    PostManager,
    PostNotFoundError,
    CommentNotFoundError,
    POST_TYPES,
    VISIBILITIES,
    MAX_COMMENT_LENGTH,
)
from .feed import FeedManager, FEED_TYPES

__all__ = [
    'FollowManager',
    'PostManager',
    'FeedManager',
    'PostNotFoundError',
    'CommentNotFoundError',
    'POST_TYPES',
    'VISIBILITIES',
    'FEED_TYPES',
    'MAX_COMMENT_LENGTH',
]
