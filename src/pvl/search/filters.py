"""Post-fusion result filters."""

from ..models import Item, SearchFilters, as_utc


def matches(item: Item, filters: SearchFilters) -> bool:
    """True when ``item`` passes every filter that is set.

    Date bounds are inclusive and compare against the publish date, or the
    date the item was added when it has none. Naive bounds are taken as
    local time, like naive item dates.
    """
    if filters.min_duration is not None and item.duration < filters.min_duration:
        return False
    if filters.max_duration is not None and item.duration > filters.max_duration:
        return False
    if filters.published_after is not None and item.recency < as_utc(filters.published_after):
        return False
    if filters.published_before is not None and item.recency > as_utc(filters.published_before):
        return False
    if filters.source is not None and item.source != filters.source:
        return False
    if filters.cluster_id is not None and item.cluster_id != filters.cluster_id:
        return False
    return True


def apply_filters(items: list[Item], filters: SearchFilters | None) -> list[Item]:
    if filters is None:
        return list(items)
    return [item for item in items if matches(item, filters)]
