"""Social API endpoints: follows, posts, comments and feeds."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import get_current_user
from social import FeedManager, FollowManager, PostManager
from ..dependencies import get_feed_manager, get_follow_manager, get_post_manager

# Create router
router = APIRouter(
    prefix="/social",
    tags=["Social"]
)


class CreatePostRequest(BaseModel):
    """Request model for publishing a post."""
    post_type: str
    content: Dict[str, Any]
    wardrobe_item_ids: List[str] = Field(default_factory=list)
    visibility: str = 'public'


class CommentRequest(BaseModel):
    content: str
    parent_comment_id: Optional[str] = None


# Follows
@router.post("/follow/{user_id}", status_code=status.HTTP_201_CREATED)
async def follow(
    user_id: str,
    caller_id: str = Depends(get_current_user),
    follows: FollowManager = Depends(get_follow_manager)
):
    return await follows.follow(caller_id, user_id)


@router.delete("/follow/{user_id}")
async def unfollow(
    user_id: str,
    caller_id: str = Depends(get_current_user),
    follows: FollowManager = Depends(get_follow_manager)
):
    return {'unfollowed': await follows.unfollow(caller_id, user_id)}


# Feed and post search; registered before /{user_id}/... routes
@router.get("/feed")
async def get_feed(
    feed_type: str = Query('discover', alias='type'),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller_id: str = Depends(get_current_user),
    feeds: FeedManager = Depends(get_feed_manager)
):
    return await feeds.get_feed(caller_id, feed_type=feed_type, page=page, limit=limit)


@router.get("/posts/search")
async def search_posts(
    q: Optional[str] = None,
    post_type: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    feeds: FeedManager = Depends(get_feed_manager)
):
    return await feeds.search_posts(q, post_type=post_type, tags=tags, page=page, limit=limit)


# Posts
@router.post("/posts", status_code=status.HTTP_201_CREATED)
async def create_post(
    request: CreatePostRequest,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    return await posts.create_post(caller_id, **request.model_dump())


@router.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    return await posts.get_post(post_id, viewer_id=caller_id)


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    await posts.delete_post(post_id, caller_id)


@router.post("/posts/{post_id}/like")
async def like_post(
    post_id: str,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    return await posts.like_post(post_id, caller_id)


@router.delete("/posts/{post_id}/like")
async def unlike_post(
    post_id: str,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    return await posts.unlike_post(post_id, caller_id)


# Comments
@router.post("/posts/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: str,
    request: CommentRequest,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    return await posts.add_comment(
        post_id, caller_id, request.content, parent_comment_id=request.parent_comment_id
    )


@router.get("/posts/{post_id}/comments")
async def get_comments(
    post_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    comments = await posts.get_comments(post_id, limit=limit, offset=offset, viewer_id=caller_id)
    return {'comments': comments}


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    caller_id: str = Depends(get_current_user),
    posts: PostManager = Depends(get_post_manager)
):
    await posts.delete_comment(comment_id, caller_id)


# Profiles
@router.get("/{user_id}/followers")
async def get_followers(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    follows: FollowManager = Depends(get_follow_manager)
):
    return await follows.get_followers(user_id, page=page, limit=limit)


@router.get("/{user_id}/following")
async def get_following(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    follows: FollowManager = Depends(get_follow_manager)
):
    return await follows.get_following(user_id, page=page, limit=limit)


@router.get("/{user_id}/stats")
async def get_stats(
    user_id: str,
    feeds: FeedManager = Depends(get_feed_manager)
):
    return await feeds.get_user_social_stats(user_id)
