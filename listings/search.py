"""Build the listing search query from filter options."""
import logging
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    'newest': 'l.created_at DESC',
    'price_low': 'l.price ASC',
    'price_high': 'l.price DESC',
    'most_watched': 'l.watchers DESC',
    'most_viewed': 'l.views DESC',
}

FILTER_KEYS = {
    'category', 'brand', 'condition', 'min_price', 'max_price', 'search',
    'seller_id', 'statuses', 'sort_by', 'tags',
}


def build_search_query(filters: Dict[str, Any]) -> Tuple[str, str, List[Any]]:
    """Render the page query and the count query for a listing search.

    Only ``active`` listings are returned unless ``statuses`` widens the set.

    Args:
        filters: Filter options, see FILTER_KEYS

    Returns:
        Tuple of (page query, count query, params). The page query takes two
        extra trailing params, limit and offset.

    Raises:
        ValueError: If a filter key or sort option is unknown
    """
    unknown = set(filters) - FILTER_KEYS
    if unknown:
        raise ValueError(f"Unknown search filters: {sorted(unknown)}")

    sort_by = filters.get('sort_by') or 'newest'
    if sort_by not in SORT_ORDERS:
        raise ValueError(f"Unknown sort option: {sort_by}")

    conditions = []
    params: List[Any] = []

    def add(template: str, value: Any) -> None:
        params.append(value)
        conditions.append(template.format(p=f"${len(params)}"))

    add("l.status = ANY({p}::text[])", list(filters.get('statuses') or ['active']))

    if filters.get('category'):
        add("l.category = {p}", filters['category'])
    if filters.get('seller_id'):
        add("l.seller_id = {p}", filters['seller_id'])
    if filters.get('brand'):
        add("{p} = ANY(l.tags)", filters['brand'])
    if filters.get('tags'):
        add("l.tags && {p}::text[]", list(filters['tags']))
    if filters.get('condition'):
        add("l.condition_info->>'status' = ANY({p}::text[])", list(filters['condition']))
    if filters.get('min_price') is not None:
        add("l.price >= {p}", filters['min_price'])
    if filters.get('max_price') is not None:
        add("l.price <= {p}", filters['max_price'])
    if filters.get('search'):
        params.append(f"%{filters['search']}%")
        like = f"${len(params)}"
        params.append(filters['search'])
        exact = f"${len(params)}"
        conditions.append(
            f"(l.title ILIKE {like} OR l.description ILIKE {like} OR {exact} = ANY(l.tags))"
        )

    where = ' AND '.join(conditions)
    query = (
        f"SELECT l.* FROM listings l WHERE {where} "
        f"ORDER BY {SORT_ORDERS[sort_by]}, l.id "
        f"LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"
    )
    count_query = f"SELECT COUNT(*) FROM listings l WHERE {where}"

    logger.debug("Listing search query: %s with params: %r", query, params)
    return query, count_query, params
