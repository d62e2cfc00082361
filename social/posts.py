"""Social posts, likes and comments."""
import logging
from typing import Any, Dict, List, Optional

from database import get_pool, as_uuid
from errors import ForbiddenError, NotFoundError, ValidationError
from .common import comment_from_row, post_from_row

logger = logging.getLogger(__name__)

POST_TYPES = ('outfit', 'item', 'inspiration')
VISIBILITIES = ('public', 'followers', 'private')
MAX_COMMENT_LENGTH = 500

# Post fields an owner may change
MUTABLE_FIELDS = {'content', 'visibility', 'wardrobe_item_ids'}


class PostNotFoundError(NotFoundError):
    """Raised when a post is not found."""
    pass


class CommentNotFoundError(NotFoundError):
    """Raised when a comment is not found."""
    pass


def validate_content(content: Dict[str, Any]) -> Dict[str, Any]:
    """Check post content: a dict with at least one image URL."""
    if not isinstance(content, dict):
        raise ValidationError("Post content must be an object")
    images = content.get('images') or []
    if not isinstance(images, list) or not any(isinstance(i, str) and i.strip() for i in images):
        raise ValidationError("Post must include at least one image")
    tags = content.get('tags') or []
    if not isinstance(tags, list):
        raise ValidationError("Post tags must be a list")
    return dict(content, images=[i for i in images if isinstance(i, str) and i.strip()], tags=tags)


def validate_comment(content: str) -> str:
    text = (content or '').strip()
    if not 1 <= len(text) <= MAX_COMMENT_LENGTH:
        raise ValidationError(
            f"Comment content must be between 1 and {MAX_COMMENT_LENGTH} characters"
        )
    return text


def check_visible(row, viewer_id: Optional[str]) -> None:
    """Raise ForbiddenError unless the viewer may see the post in ``row``.

    ``row`` needs ``user_id``, ``visibility`` and ``viewer_follows``.
    """
    if row['user_id'] == viewer_id:
        return
    if row['visibility'] == 'private':
        raise ForbiddenError("This post is private")
    if row['visibility'] == 'followers' and not row['viewer_follows']:
        raise ForbiddenError("This post is visible to followers only")


class PostManager:
    """Manages posts, post likes and comments."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_post(
        self,
        user_id: str,
        post_type: str,
        content: Dict[str, Any],
        wardrobe_item_ids: Optional[List[str]] = None,
        visibility: str = 'public'
    ) -> Dict[str, Any]:
        """Publish a post.

        Args:
            user_id: Author
            post_type: outfit, item or inspiration
            content: Dict with ``images`` (at least one), ``description`` and ``tags``
            wardrobe_item_ids: Wardrobe items featured in the post
            visibility: public, followers or private

        Raises:
            ValidationError: If any field is invalid
        """
        if post_type not in POST_TYPES:
            raise ValidationError(f"Invalid post type: {post_type}")
        if visibility not in VISIBILITIES:
            raise ValidationError(f"Invalid visibility: {visibility}")
        content = validate_content(content)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO social_posts (user_id, post_type, content, wardrobe_item_ids, visibility)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                ''',
                user_id, post_type, content, list(wardrobe_item_ids or []), visibility
            )
        logger.info(f"User {user_id} created {post_type} post {row['id']}")
        return post_from_row(row)

    async def get_post(self, post_id: str, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        """Get a post the viewer is allowed to see.

        Raises:
            PostNotFoundError: If the post doesn't exist
            ForbiddenError: If the post's visibility excludes the viewer
        """
        key = as_uuid(post_id)
        if key is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT p.*,
                    EXISTS(SELECT 1 FROM post_likes pl
                           WHERE pl.post_id = p.id AND pl.user_id = $2) AS liked_by_viewer,
                    EXISTS(SELECT 1 FROM user_follows f
                           WHERE f.follower_id = $2 AND f.following_id = p.user_id) AS viewer_follows
                FROM social_posts p
                WHERE p.id = $1
                ''',
                key, viewer_id
            )

        if not row:
            raise PostNotFoundError(f"Post {post_id} not found")
        check_visible(row, viewer_id)
        return post_from_row(row)

    async def _visible_post(self, conn, key, post_id: str, viewer_id: str, for_update: bool = False):
        row = await conn.fetchrow(
            f'''
            SELECT p.id, p.user_id, p.visibility, p.likes_count,
                EXISTS(SELECT 1 FROM user_follows f
                       WHERE f.follower_id = $2 AND f.following_id = p.user_id) AS viewer_follows
            FROM social_posts p
            WHERE p.id = $1
            {'FOR UPDATE OF p' if for_update else ''}
            ''',
            key, viewer_id
        )
        if not row:
            raise PostNotFoundError(f"Post {post_id} not found")
        check_visible(row, viewer_id)
        return row

    async def _owned_post(self, conn, post_id: str, user_id: str):
        key = as_uuid(post_id)
        row = await conn.fetchrow('SELECT * FROM social_posts WHERE id = $1', key) if key else None
        if not row:
            raise PostNotFoundError(f"Post {post_id} not found")
        if row['user_id'] != user_id:
            raise ForbiddenError("Only the author can change this post")
        return row

    async def update_post(self, post_id: str, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Edit a post's content, visibility or featured items (author only)."""
        if not updates:
            raise ValidationError("No fields to update")
        invalid = set(updates) - MUTABLE_FIELDS
        if invalid:
            raise ValidationError(f"Cannot update fields: {sorted(invalid)}")

        values = dict(updates)
        if 'content' in values:
            values['content'] = validate_content(values['content'])
        if 'visibility' in values and values['visibility'] not in VISIBILITIES:
            raise ValidationError(f"Invalid visibility: {values['visibility']}")
        if 'wardrobe_item_ids' in values:
            values['wardrobe_item_ids'] = list(values['wardrobe_item_ids'] or [])

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                post = await self._owned_post(conn, post_id, user_id)
                fields = []
                params = []
                for field, value in values.items():
                    params.append(value)
                    fields.append(f"{field} = ${len(params)}")
                params.append(post['id'])
                row = await conn.fetchrow(
                    f"UPDATE social_posts SET {', '.join(fields)} WHERE id = ${len(params)} RETURNING *",
                    *params
                )
        return post_from_row(row)

    async def delete_post(self, post_id: str, user_id: str) -> None:
        """Delete a post with its likes and comments (author only)."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                post = await self._owned_post(conn, post_id, user_id)
                await conn.execute('DELETE FROM social_posts WHERE id = $1', post['id'])
        logger.info(f"User {user_id} deleted post {post_id}")

    async def _set_like(self, post_id: str, user_id: str, liked: bool) -> Dict[str, Any]:
        key = as_uuid(post_id)
        if key is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                post = await self._visible_post(conn, key, post_id, user_id, for_update=True)
                count = post['likes_count']

                if liked:
                    changed = await conn.fetchval(
                        '''
                        INSERT INTO post_likes (post_id, user_id) VALUES ($1, $2)
                        ON CONFLICT DO NOTHING
                        RETURNING post_id
                        ''',
                        key, user_id
                    )
                    delta = 1
                else:
                    changed = await conn.fetchval(
                        'DELETE FROM post_likes WHERE post_id = $1 AND user_id = $2 RETURNING post_id',
                        key, user_id
                    )
                    delta = -1

                if changed is not None:
                    count = await conn.fetchval(
                        '''
                        UPDATE social_posts SET likes_count = GREATEST(likes_count + $1, 0)
                        WHERE id = $2
                        RETURNING likes_count
                        ''',
                        delta, key
                    )
        return {'liked': liked, 'likes_count': count}

    async def like_post(self, post_id: str, user_id: str) -> Dict[str, Any]:
        """Like a post; liking twice is a no-op."""
        return await self._set_like(post_id, user_id, True)

    async def unlike_post(self, post_id: str, user_id: str) -> Dict[str, Any]:
        """Remove a like; removing a missing like is a no-op."""
        return await self._set_like(post_id, user_id, False)

    async def add_comment(
        self,
        post_id: str,
        user_id: str,
        content: str,
        parent_comment_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Comment on a post, optionally as a reply.

        Raises:
            ValidationError: If content is empty or longer than 500 characters
            PostNotFoundError: If the post doesn't exist
            ForbiddenError: If the post's visibility excludes the commenter
            CommentNotFoundError: If the parent comment isn't on this post
        """
        text = validate_comment(content)
        key = as_uuid(post_id)
        if key is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await self._visible_post(conn, key, post_id, user_id)

                parent = None
                if parent_comment_id is not None:
                    parent = as_uuid(parent_comment_id)
                    on_post = parent is not None and await conn.fetchval(
                        'SELECT EXISTS(SELECT 1 FROM post_comments WHERE id = $1 AND post_id = $2)',
                        parent, key
                    )
                    if not on_post:
                        raise CommentNotFoundError(f"Comment {parent_comment_id} not found")

                row = await conn.fetchrow(
                    '''
                    INSERT INTO post_comments (post_id, user_id, content, parent_comment_id)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                    ''',
                    key, user_id, text, parent
                )
                await conn.execute(
                    'UPDATE social_posts SET comments_count = comments_count + 1 WHERE id = $1',
                    key
                )
        return comment_from_row(row)

    async def _owned_comment(self, conn, comment_id: str, user_id: str):
        key = as_uuid(comment_id)
        row = await conn.fetchrow(
            'SELECT * FROM post_comments WHERE id = $1 FOR UPDATE', key
        ) if key else None
        if not row:
            raise CommentNotFoundError(f"Comment {comment_id} not found")
        if row['user_id'] != user_id:
            raise ForbiddenError("Only the author can change this comment")
        return row

    async def update_comment(self, comment_id: str, user_id: str, content: str) -> Dict[str, Any]:
        text = validate_comment(content)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                comment = await self._owned_comment(conn, comment_id, user_id)
                row = await conn.fetchrow(
                    'UPDATE post_comments SET content = $1 WHERE id = $2 RETURNING *',
                    text, comment['id']
                )
        return comment_from_row(row)

    async def delete_comment(self, comment_id: str, user_id: str) -> None:
        """Delete a comment and its replies (author only)."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                comment = await self._owned_comment(conn, comment_id, user_id)
                await conn.execute('DELETE FROM post_comments WHERE id = $1', comment['id'])
                # Replies go with the parent, so recount instead of decrementing
                await conn.execute(
                    '''
                    UPDATE social_posts
                    SET comments_count = (SELECT COUNT(*) FROM post_comments WHERE post_id = $1)
                    WHERE id = $1
                    ''',
                    comment['post_id']
                )
        logger.info(f"User {user_id} deleted comment {comment_id}")

    async def get_comments(
        self,
        post_id: str,
        limit: int = 50,
        offset: int = 0,
        viewer_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Comments on a post the viewer may see, oldest first."""
        if limit < 1 or limit > 100 or offset < 0:
            raise ValidationError("limit must be between 1 and 100 and offset not negative")
        key = as_uuid(post_id)
        if key is None:
            raise PostNotFoundError(f"Post {post_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            await self._visible_post(conn, key, post_id, viewer_id)
            rows = await conn.fetch(
                '''
                SELECT * FROM post_comments
                WHERE post_id = $1
                ORDER BY created_at ASC, id
                LIMIT $2 OFFSET $3
                ''',
                key, limit, offset
            )
        return [comment_from_row(row) for row in rows]
