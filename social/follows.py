"""Follow graph between users."""
import logging
from typing import Any, Dict, List

from database import get_pool
from errors import AlreadyFollowingError, SelfFollowError
from .common import page_bounds, split_page

logger = logging.getLogger(__name__)


class FollowManager:
    """Manages follow relationships."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def follow(self, follower_id: str, following_id: str) -> Dict[str, Any]:
        """Follow a user.

        Raises:
            SelfFollowError: If a user tries to follow themselves
            AlreadyFollowingError: If the follow already exists
        """
        if follower_id == following_id:
            raise SelfFollowError("Users cannot follow themselves")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO user_follows (follower_id, following_id)
                VALUES ($1, $2)
                ON CONFLICT DO NOTHING
                RETURNING follower_id, following_id, created_at
                ''',
                follower_id, following_id
            )

        if row is None:
            raise AlreadyFollowingError("Already following this user")

        logger.info(f"{follower_id} now follows {following_id}")
        return {
            'follower_id': row['follower_id'],
            'following_id': row['following_id'],
            'created_at': row['created_at'].isoformat(),
        }

    async def unfollow(self, follower_id: str, following_id: str) -> bool:
        """Remove a follow; returns whether one existed."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                'DELETE FROM user_follows WHERE follower_id = $1 AND following_id = $2',
                follower_id, following_id
            )
        removed = result != 'DELETE 0'
        if removed:
            logger.info(f"{follower_id} unfollowed {following_id}")
        return removed

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return bool(await conn.fetchval(
                '''
                SELECT EXISTS(
                    SELECT 1 FROM user_follows WHERE follower_id = $1 AND following_id = $2
                )
                ''',
                follower_id, following_id
            ))

    async def _page(self, query: str, user_id: str, page: int, limit: int) -> Dict[str, Any]:
        fetch, offset = page_bounds(page, limit)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, user_id, fetch, offset)
        rows, has_more = split_page(rows, limit)
        return {
            'users': [
                {'user_id': row['user_id'], 'followed_at': row['created_at'].isoformat()}
                for row in rows
            ],
            'has_more': has_more,
        }

    async def get_followers(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Users following user_id, most recent first."""
        return await self._page(
            '''
            SELECT follower_id AS user_id, created_at FROM user_follows
            WHERE following_id = $1
            ORDER BY created_at DESC, follower_id
            LIMIT $2 OFFSET $3
            ''',
            user_id, page, limit
        )

    async def get_following(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Users user_id follows, most recent first."""
        return await self._page(
            '''
            SELECT following_id AS user_id, created_at FROM user_follows
            WHERE follower_id = $1
            ORDER BY created_at DESC, following_id
            LIMIT $2 OFFSET $3
            ''',
            user_id, page, limit
        )

    async def get_friends(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Mutual follows."""
        return await self._page(
            '''
            SELECT f.following_id AS user_id, GREATEST(f.created_at, b.created_at) AS created_at
            FROM user_follows f
            JOIN user_follows b ON b.follower_id = f.following_id AND b.following_id = f.follower_id
            WHERE f.follower_id = $1
            ORDER BY created_at DESC, user_id
            LIMIT $2 OFFSET $3
            ''',
            user_id, page, limit
        )

    async def get_follow_counts(self, user_id: str) -> Dict[str, int]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT
                    (SELECT COUNT(*) FROM user_follows WHERE following_id = $1) AS followers_count,
                    (SELECT COUNT(*) FROM user_follows WHERE follower_id = $1) AS following_count,
                    (SELECT COUNT(*) FROM user_follows f
                     JOIN user_follows b
                       ON b.follower_id = f.following_id AND b.following_id = f.follower_id
                     WHERE f.follower_id = $1) AS friends_count
                ''',
                user_id
            )
        return {
            'followers_count': row['followers_count'],
            'following_count': row['following_count'],
            'friends_count': row['friends_count'],
        }

    async def get_following_ids(self, user_id: str) -> List[str]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT following_id FROM user_follows WHERE follower_id = $1',
                user_id
            )
        return [row['following_id'] for row in rows]
