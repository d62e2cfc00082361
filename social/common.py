"""Shared helpers for the social services."""
from typing import Any, Dict, List, Tuple

from errors import ValidationError

MAX_PAGE_SIZE = 100


def page_bounds(page: int, limit: int) -> Tuple[int, int]:
    """Validate 1-based paging and return (limit + 1, offset).

    One extra row is fetched so callers can tell whether another page exists.
    """
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return limit + 1, (page - 1) * limit


def split_page(items: List[Any], limit: int) -> Tuple[List[Any], bool]:
    return items[:limit], len(items) > limit


def post_from_row(row) -> Dict[str, Any]:
    data = dict(row)
    post = {
        'id': str(data['id']),
        'user_id': data['user_id'],
        'post_type': data['post_type'],
        'content': data.get('content') or {},
        'wardrobe_item_ids': list(data.get('wardrobe_item_ids') or []),
        'visibility': data['visibility'],
        'likes_count': data.get('likes_count', 0),
        'comments_count': data.get('comments_count', 0),
        'created_at': data['created_at'].isoformat() if data.get('created_at') else None,
        'updated_at': data['updated_at'].isoformat() if data.get('updated_at') else None,
    }
    if 'liked_by_viewer' in data:
        post['liked_by_viewer'] = data['liked_by_viewer']
    return post


def comment_from_row(row) -> Dict[str, Any]:
    data = dict(row)
    return {
        'id': str(data['id']),
        'post_id': str(data['post_id']),
        'user_id': data['user_id'],
        'content': data['content'],
        'parent_comment_id': str(data['parent_comment_id']) if data.get('parent_comment_id') else None,
        'created_at': data['created_at'].isoformat() if data.get('created_at') else None,
        'updated_at': data['updated_at'].isoformat() if data.get('updated_at') else None,
    }
