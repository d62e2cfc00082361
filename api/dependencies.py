"""Service instances shared by the API routers.

Routers receive services through these dependencies so tests can swap them
with ``app.dependency_overrides``.
"""
from typing import Optional

from listings import ListingManager
from social import FeedManager, FollowManager, PostManager
from transactions import TransactionManager

_listings: Optional[ListingManager] = None
_transactions: Optional[TransactionManager] = None
_follows: Optional[FollowManager] = None
_posts: Optional[PostManager] = None
_feeds: Optional[FeedManager] = None


def get_listing_manager() -> ListingManager:
    global _listings
    if _listings is None:
        _listings = ListingManager()
    return _listings


def get_transaction_manager() -> TransactionManager:
    global _transactions
    if _transactions is None:
        _transactions = TransactionManager(listings=get_listing_manager())
    return _transactions


def get_follow_manager() -> FollowManager:
    global _follows
    if _follows is None:
        _follows = FollowManager()
    return _follows


def get_post_manager() -> PostManager:
    global _posts
    if _posts is None:
        _posts = PostManager()
    return _posts


def get_feed_manager() -> FeedManager:
    global _feeds
    if _feeds is None:
        _feeds = FeedManager(follows=get_follow_manager())
    return _feeds
