"""Tests for follows, posts, comments and feeds."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from errors import (
    AlreadyFollowingError,
    ForbiddenError,
    InvalidStateError,
    SelfFollowError,
    ValidationError,
)
from social import CommentNotFoundError, FeedManager, FollowManager, PostManager, PostNotFoundError
from social.common import page_bounds, split_page
from social.posts import validate_comment, validate_content

POST_ID = '7a0c9e1b-3f2d-4b6a-8c5e-0d1f2a3b4c5d'
COMMENT_ID = '1e2d3c4b-5a69-4788-9a0b-c1d2e3f4a5b6'
NOW = datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)


def post_row(**overrides):
    row = {
        'id': uuid.UUID(POST_ID),
        'user_id': 'ana',
        'post_type': 'outfit',
        'content': {'images': ['https://img.example/look.jpg'], 'description': 'Sunday look', 'tags': ['denim']},
        'wardrobe_item_ids': [],
        'visibility': 'public',
        'likes_count': 3,
        'comments_count': 1,
        'created_at': NOW,
        'updated_at': NOW,
    }
    row.update(overrides)
    return row


def comment_row(**overrides):
    row = {
        'id': uuid.UUID(COMMENT_ID),
        'post_id': uuid.UUID(POST_ID),
        'user_id': 'bia',
        'content': 'Love it',
        'parent_comment_id': None,
        'created_at': NOW,
        'updated_at': NOW,
    }
    row.update(overrides)
    return row


def follow_rows(count):
    return [
        {'user_id': f'user-{i}', 'created_at': NOW - timedelta(minutes=i)}
        for i in range(count)
    ]


# paging helpers

def test_page_bounds():
    assert page_bounds(1, 20) == (21, 0)
    assert page_bounds(3, 10) == (11, 20)
    for page, limit in [(0, 20), (1, 0), (1, 101)]:
        with pytest.raises(ValidationError):
            page_bounds(page, limit)


def test_split_page():
    assert split_page([1, 2, 3], 2) == ([1, 2], True)
    assert split_page([1, 2], 2) == ([1, 2], False)


# follows

@pytest.fixture
def follows(mock_pool):
    return FollowManager(pool=mock_pool)


@pytest.mark.asyncio
async def test_follow(follows, mock_conn):
    mock_conn.fetchrow.return_value = {'follower_id': 'ana', 'following_id': 'bia', 'created_at': NOW}

    result = await follows.follow('ana', 'bia')

    assert result == {'follower_id': 'ana', 'following_id': 'bia', 'created_at': NOW.isoformat()}
    assert 'ON CONFLICT DO NOTHING' in mock_conn.fetchrow.call_args[0][0]


@pytest.mark.asyncio
async def test_follow_self_rejected(follows, mock_conn):
    with pytest.raises(SelfFollowError) as exc_info:
        await follows.follow('ana', 'ana')
    assert exc_info.value.message == 'Users cannot follow themselves'
    assert isinstance(exc_info.value, ValidationError)
    mock_conn.fetchrow.assert_not_called()


@pytest.mark.asyncio
async def test_follow_twice_rejected(follows, mock_conn):
    mock_conn.fetchrow.return_value = None

    with pytest.raises(AlreadyFollowingError) as exc_info:
        await follows.follow('ana', 'bia')
    assert exc_info.value.message == 'Already following this user'
    assert isinstance(exc_info.value, InvalidStateError)


@pytest.mark.asyncio
async def test_unfollow(follows, mock_conn):
    mock_conn.execute.return_value = 'DELETE 1'
    assert await follows.unfollow('ana', 'bia') is True

    mock_conn.execute.return_value = 'DELETE 0'
    assert await follows.unfollow('ana', 'bia') is False


@pytest.mark.asyncio
async def test_is_following(follows, mock_conn):
    mock_conn.fetchval.return_value = True
    assert await follows.is_following('ana', 'bia') is True


@pytest.mark.asyncio
async def test_get_followers_pages(follows, mock_conn):
    mock_conn.fetch.return_value = follow_rows(3)

    result = await follows.get_followers('ana', page=2, limit=2)

    assert result['has_more'] is True
    assert [u['user_id'] for u in result['users']] == ['user-0', 'user-1']
    query, user_id, fetch, offset = mock_conn.fetch.call_args[0]
    assert 'WHERE following_id = $1' in query
    assert (user_id, fetch, offset) == ('ana', 3, 2)


@pytest.mark.asyncio
async def test_get_following_last_page(follows, mock_conn):
    mock_conn.fetch.return_value = follow_rows(1)

    result = await follows.get_following('ana', limit=20)

    assert result['has_more'] is False
    assert 'WHERE follower_id = $1' in mock_conn.fetch.call_args[0][0]


@pytest.mark.asyncio
async def test_get_friends_requires_mutual_follow(follows, mock_conn):
    await follows.get_friends('ana')

    query = mock_conn.fetch.call_args[0][0]
    assert 'b.follower_id = f.following_id AND b.following_id = f.follower_id' in query


@pytest.mark.asyncio
async def test_get_follow_counts(follows, mock_conn):
    mock_conn.fetchrow.return_value = {'followers_count': 10, 'following_count': 4, 'friends_count': 2}

    assert await follows.get_follow_counts('ana') == {
        'followers_count': 10, 'following_count': 4, 'friends_count': 2
    }


# posts

@pytest.fixture
def posts(mock_pool):
    return PostManager(pool=mock_pool)


def test_validate_content_requires_an_image():
    with pytest.raises(ValidationError) as exc_info:
        validate_content({'images': [], 'description': 'No photo'})
    assert exc_info.value.message == 'Post must include at least one image'

    with pytest.raises(ValidationError):
        validate_content({'images': ['   ']})
    with pytest.raises(ValidationError):
        validate_content('just text')


def test_validate_content_normalizes():
    content = validate_content({'images': ['a.jpg', '', 'b.jpg'], 'description': 'Look'})
    assert content == {'images': ['a.jpg', 'b.jpg'], 'description': 'Look', 'tags': []}


@pytest.mark.parametrize('text', ['', '   ', 'x' * 501])
def test_validate_comment_length(text):
    with pytest.raises(ValidationError) as exc_info:
        validate_comment(text)
    assert exc_info.value.message == 'Comment content must be between 1 and 500 characters'


def test_validate_comment_accepts_limit():
    assert validate_comment('  ' + 'x' * 500 + '  ') == 'x' * 500


@pytest.mark.asyncio
async def test_create_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row()

    post = await posts.create_post('ana', 'outfit', {'images': ['https://img.example/look.jpg']})

    assert post['id'] == POST_ID
    assert post['likes_count'] == 3
    params = mock_conn.fetchrow.call_args[0][1:]
    assert params[0] == 'ana'
    assert params[4] == 'public'


@pytest.mark.asyncio
@pytest.mark.parametrize('post_type, visibility', [('selfie', 'public'), ('outfit', 'friends')])
async def test_create_post_rejects_unknown_values(posts, mock_conn, post_type, visibility):
    with pytest.raises(ValidationError):
        await posts.create_post('ana', post_type, {'images': ['a.jpg']}, visibility=visibility)
    mock_conn.fetchrow.assert_not_called()


@pytest.mark.asyncio
async def test_get_post_visible_to_follower(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(
        visibility='followers', liked_by_viewer=True, viewer_follows=True
    )

    post = await posts.get_post(POST_ID, viewer_id='bia')

    assert post['liked_by_viewer'] is True
    assert 'viewer_follows' not in post


@pytest.mark.asyncio
@pytest.mark.parametrize('visibility, follows_author', [('followers', False), ('private', True)])
async def test_get_post_hidden_from_viewer(posts, mock_conn, visibility, follows_author):
    mock_conn.fetchrow.return_value = post_row(
        visibility=visibility, liked_by_viewer=False, viewer_follows=follows_author
    )

    with pytest.raises(ForbiddenError):
        await posts.get_post(POST_ID, viewer_id='bia')


@pytest.mark.asyncio
async def test_author_sees_private_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(visibility='private', liked_by_viewer=False, viewer_follows=False)

    post = await posts.get_post(POST_ID, viewer_id='ana')

    assert post['visibility'] == 'private'


@pytest.mark.asyncio
async def test_get_missing_post(posts, mock_conn):
    with pytest.raises(PostNotFoundError):
        await posts.get_post(POST_ID)
    with pytest.raises(PostNotFoundError):
        await posts.get_post('bogus')


@pytest.mark.asyncio
async def test_update_post_by_author(posts, mock_conn):
    mock_conn.fetchrow.side_effect = [post_row(), post_row(visibility='private')]

    post = await posts.update_post(POST_ID, 'ana', {'visibility': 'private'})

    assert post['visibility'] == 'private'
    query, visibility, key = mock_conn.fetchrow.call_args[0]
    assert 'SET visibility = $1 WHERE id = $2' in query
    assert (visibility, key) == ('private', uuid.UUID(POST_ID))


@pytest.mark.asyncio
async def test_update_post_by_other_user(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row()

    with pytest.raises(ForbiddenError):
        await posts.update_post(POST_ID, 'bia', {'visibility': 'private'})


@pytest.mark.asyncio
async def test_update_post_rejects_counters(posts):
    with pytest.raises(ValidationError):
        await posts.update_post(POST_ID, 'ana', {'likes_count': 1000})


@pytest.mark.asyncio
async def test_delete_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row()

    await posts.delete_post(POST_ID, 'ana')

    assert mock_conn.execute.call_args[0] == ('DELETE FROM social_posts WHERE id = $1', uuid.UUID(POST_ID))


@pytest.mark.asyncio
async def test_like_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(viewer_follows=False)
    mock_conn.fetchval.side_effect = [uuid.UUID(POST_ID), 4]

    assert await posts.like_post(POST_ID, 'bia') == {'liked': True, 'likes_count': 4}
    assert 'FOR UPDATE OF p' in mock_conn.fetchrow.call_args[0][0]
    assert mock_conn.fetchrow.call_args[0][1:] == (uuid.UUID(POST_ID), 'bia')


@pytest.mark.asyncio
async def test_like_post_twice_keeps_count(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(likes_count=4, viewer_follows=False)
    mock_conn.fetchval.side_effect = [None]

    assert await posts.like_post(POST_ID, 'bia') == {'liked': True, 'likes_count': 4}
    assert mock_conn.fetchval.call_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize('visibility, follows_author', [
    ('private', True),
    ('followers', False),
])
async def test_like_hidden_post_rejected(posts, mock_conn, visibility, follows_author):
    mock_conn.fetchrow.return_value = post_row(visibility=visibility, viewer_follows=follows_author)

    with pytest.raises(ForbiddenError):
        await posts.like_post(POST_ID, 'bia')
    mock_conn.fetchval.assert_not_called()


@pytest.mark.asyncio
async def test_like_followers_post_as_follower(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(visibility='followers', viewer_follows=True)
    mock_conn.fetchval.side_effect = [uuid.UUID(POST_ID), 4]

    assert await posts.like_post(POST_ID, 'bia') == {'liked': True, 'likes_count': 4}


@pytest.mark.asyncio
async def test_unlike_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(likes_count=4, viewer_follows=False)
    mock_conn.fetchval.side_effect = [uuid.UUID(POST_ID), 3]

    assert await posts.unlike_post(POST_ID, 'bia') == {'liked': False, 'likes_count': 3}
    update_query, delta, _ = mock_conn.fetchval.call_args[0]
    assert delta == -1
    assert 'GREATEST(likes_count + $1, 0)' in update_query


@pytest.mark.asyncio
async def test_like_missing_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = None

    with pytest.raises(PostNotFoundError):
        await posts.like_post(POST_ID, 'bia')
    mock_conn.fetchval.assert_not_called()


@pytest.mark.asyncio
async def test_add_comment(posts, mock_conn):
    mock_conn.fetchrow.side_effect = [post_row(viewer_follows=False), comment_row()]

    comment = await posts.add_comment(POST_ID, 'bia', '  Love it ')

    assert comment['post_id'] == POST_ID
    assert comment['parent_comment_id'] is None
    assert mock_conn.fetchrow.call_args[0][3] == 'Love it'
    assert 'comments_count = comments_count + 1' in mock_conn.execute.call_args[0][0]


@pytest.mark.asyncio
async def test_reply_to_comment_on_other_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(viewer_follows=False)
    mock_conn.fetchval.return_value = False

    with pytest.raises(CommentNotFoundError):
        await posts.add_comment(POST_ID, 'bia', 'Reply', parent_comment_id=COMMENT_ID)
    assert mock_conn.fetchrow.call_count == 1


@pytest.mark.asyncio
async def test_comment_on_missing_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = None

    with pytest.raises(PostNotFoundError):
        await posts.add_comment(POST_ID, 'bia', 'Hello?')


@pytest.mark.asyncio
async def test_comment_on_private_post_rejected(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(visibility='private', viewer_follows=True)

    with pytest.raises(ForbiddenError):
        await posts.add_comment(POST_ID, 'bia', 'Nice')
    assert mock_conn.fetchrow.call_count == 1
    mock_conn.execute.assert_not_called()


@pytest.mark.asyncio
async def test_too_long_comment_never_queries(posts, mock_conn):
    with pytest.raises(ValidationError):
        await posts.add_comment(POST_ID, 'bia', 'x' * 501)
    mock_conn.fetchval.assert_not_called()


@pytest.mark.asyncio
async def test_delete_comment_recounts(posts, mock_conn):
    mock_conn.fetchrow.return_value = comment_row()

    await posts.delete_comment(COMMENT_ID, 'bia')

    recount_query, post_key = mock_conn.execute.call_args[0]
    assert 'SELECT COUNT(*) FROM post_comments' in recount_query
    assert post_key == uuid.UUID(POST_ID)


@pytest.mark.asyncio
async def test_delete_comment_by_other_user(posts, mock_conn):
    mock_conn.fetchrow.return_value = comment_row()

    with pytest.raises(ForbiddenError):
        await posts.delete_comment(COMMENT_ID, 'ana')
    mock_conn.execute.assert_not_called()


@pytest.mark.asyncio
async def test_get_comments(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(visibility='followers', viewer_follows=True)
    mock_conn.fetch.return_value = [comment_row()]

    comments = await posts.get_comments(POST_ID, limit=10, offset=5, viewer_id='bia')

    assert [c['id'] for c in comments] == [COMMENT_ID]
    assert mock_conn.fetch.call_args[0][1:] == (uuid.UUID(POST_ID), 10, 5)


@pytest.mark.asyncio
async def test_get_comments_of_followers_only_post(posts, mock_conn):
    mock_conn.fetchrow.return_value = post_row(visibility='followers', viewer_follows=False)

    with pytest.raises(ForbiddenError):
        await posts.get_comments(POST_ID, viewer_id='bia')
    mock_conn.fetch.assert_not_called()


# feeds

@pytest.fixture
def follow_manager():
    manager = MagicMock()
    manager.get_following_ids = AsyncMock(return_value=['bia', 'caio'])
    manager.get_follow_counts = AsyncMock(
        return_value={'followers_count': 1, 'following_count': 2, 'friends_count': 1}
    )
    return manager


@pytest.fixture
def feeds(mock_pool, follow_manager):
    return FeedManager(pool=mock_pool, follows=follow_manager)


@pytest.mark.asyncio
async def test_discover_feed_is_public_only(feeds, mock_conn):
    mock_conn.fetch.return_value = [post_row(liked_by_viewer=False)] * 3

    result = await feeds.get_feed('ana', 'discover', page=1, limit=2)

    assert result['has_more'] is True
    assert len(result['posts']) == 2
    query, *params = mock_conn.fetch.call_args[0]
    assert "p.visibility = 'public'" in query
    assert params == ['ana', 3, 0]


@pytest.mark.asyncio
async def test_following_feed(feeds, mock_conn):
    await feeds.get_feed('ana', 'following')

    query, *params = mock_conn.fetch.call_args[0]
    assert 'p.user_id = ANY($4::text[])' in query
    assert "p.visibility IN ('public', 'followers')" in query
    assert params == ['ana', 21, 0, ['bia', 'caio']]


@pytest.mark.asyncio
async def test_following_feed_empty_without_follows(feeds, follow_manager, mock_conn):
    follow_manager.get_following_ids.return_value = []

    assert await feeds.get_feed('ana', 'following') == {'posts': [], 'has_more': False}
    mock_conn.fetch.assert_not_called()


@pytest.mark.asyncio
async def test_personal_feed(feeds, mock_conn):
    await feeds.get_feed('ana', 'personal', page=2, limit=5)

    query, *params = mock_conn.fetch.call_args[0]
    assert 'WHERE p.user_id = $1' in query
    assert params == ['ana', 6, 5]


@pytest.mark.asyncio
async def test_unknown_feed_type(feeds):
    with pytest.raises(ValidationError):
        await feeds.get_feed('ana', 'trending')


@pytest.mark.asyncio
async def test_search_posts(feeds, mock_conn):
    await feeds.search_posts(query='denim', post_type='outfit', tags=['vintage'], viewer_id='ana')

    query, *params = mock_conn.fetch.call_args[0]
    assert "p.content->>'description' ILIKE $4" in query
    assert 'p.post_type = $5' in query
    assert "p.content->'tags' ?| $6::text[]" in query
    assert params == ['ana', 21, 0, '%denim%', 'outfit', ['vintage']]


@pytest.mark.asyncio
async def test_user_social_stats(feeds, mock_conn):
    mock_conn.fetchrow.return_value = {'posts_count': 7, 'likes_received': 42}

    assert await feeds.get_user_social_stats('ana') == {
        'followers_count': 1,
        'following_count': 2,
        'friends_count': 1,
        'posts_count': 7,
        'likes_received': 42,
    }
