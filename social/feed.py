"""Post feeds and post search."""
import logging
from typing import Any, Dict, List, Optional

from database import get_pool
from errors import ValidationError
from .common import page_bounds, post_from_row, split_page
from .follows import FollowManager
from .posts import POST_TYPES

logger = logging.getLogger(__name__)

FEED_TYPES = ('discover', 'following', 'personal')

_POST_COLUMNS = '''
    p.*,
    EXISTS(SELECT 1 FROM post_likes pl
           WHERE pl.post_id = p.id AND pl.user_id = $1) AS liked_by_viewer
'''


class FeedManager:
    """Builds the discover, following and personal feeds."""

    def __init__(self, pool=None, follows: Optional[FollowManager] = None):
        self.pool = pool
        self.follows = follows

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
        if self.follows is None:
            self.follows = FollowManager(self.pool)

    async def get_feed(
        self,
        user_id: str,
        feed_type: str = 'discover',
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Get a page of posts, newest first.

        Args:
            user_id: Viewer
            feed_type: ``discover`` (public posts), ``following`` (posts by
                followed users visible to followers) or ``personal`` (own posts)
            page: 1-based page number
            limit: Page size

        Returns:
            Dict with ``posts`` and ``has_more``

        Raises:
            ValidationError: If feed_type or paging is invalid
        """
        if feed_type not in FEED_TYPES:
            raise ValidationError(f"Invalid feed type: {feed_type}")
        fetch, offset = page_bounds(page, limit)
        await self.ensure_pool()

        if feed_type == 'following':
            following = await self.follows.get_following_ids(user_id)
            if not following:
                return {'posts': [], 'has_more': False}
            where = "p.user_id = ANY($4::text[]) AND p.visibility IN ('public', 'followers')"
            params = [user_id, fetch, offset, following]
        elif feed_type == 'personal':
            where = 'p.user_id = $1'
            params = [user_id, fetch, offset]
        else:
            where = "p.visibility = 'public'"
            params = [user_id, fetch, offset]

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT {_POST_COLUMNS}
                FROM social_posts p
                WHERE {where}
                ORDER BY p.created_at DESC, p.id
                LIMIT $2 OFFSET $3
                ''',
                *params
            )

        rows, has_more = split_page(rows, limit)
        return {'posts': [post_from_row(row) for row in rows], 'has_more': has_more}

    async def search_posts(
        self,
        query: Optional[str] = None,
        post_type: Optional[str] = None,
        tags: Optional[List[str]] = None,
        page: int = 1,
        limit: int = 20,
        viewer_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Search public posts by description text, type and tags."""
        if post_type is not None and post_type not in POST_TYPES:
            raise ValidationError(f"Invalid post type: {post_type}")
        fetch, offset = page_bounds(page, limit)

        conditions = ["p.visibility = 'public'"]
        params: List[Any] = [viewer_id, fetch, offset]
        if query:
            params.append(f"%{query}%")
            conditions.append(f"p.content->>'description' ILIKE ${len(params)}")
        if post_type:
            params.append(post_type)
            conditions.append(f"p.post_type = ${len(params)}")
        if tags:
            params.append(list(tags))
            conditions.append(f"p.content->'tags' ?| ${len(params)}::text[]")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT {_POST_COLUMNS}
                FROM social_posts p
                WHERE {' AND '.join(conditions)}
                ORDER BY p.created_at DESC, p.id
                LIMIT $2 OFFSET $3
                ''',
                *params
            )

        rows, has_more = split_page(rows, limit)
        return {'posts': [post_from_row(row) for row in rows], 'has_more': has_more}

    async def get_user_social_stats(self, user_id: str) -> Dict[str, int]:
        """Follow counts plus post and like totals for a profile."""
        await self.ensure_pool()
        stats = await self.follows.get_follow_counts(user_id)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT COUNT(*) AS posts_count, COALESCE(SUM(likes_count), 0) AS likes_received
                FROM social_posts
                WHERE user_id = $1
                ''',
                user_id
            )
        stats['posts_count'] = row['posts_count']
        stats['likes_received'] = int(row['likes_received'])
        return stats
