"""
Pagination Coordinator
======================

Offset pagination over a stage list:

1. Source stages (match / search / sort) compile into one queryset.
2. The primary key is appended as the final sort key so rows that tie on
   the requested sort still come back in one fixed order.
3. count() + one slice [(page-1)*limit, page*limit).
4. Document stages (joins, computed fields, projection) run on the slice
   only, so a page of 10 never joins more than 10 rows.

Stages that change the number or order of rows after the fetch would make
the slice boundaries meaningless, so they are rejected.
"""

import math
from dataclasses import dataclass, field

from .errors import InvalidOperation
from .pipeline import Group, Match, Sample, Sort, Unwind, split_stages
from .store import store as default_store

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

WINDOW_BREAKING_STAGES = (Group, Match, Sample, Sort, Unwind)


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def total_pages(self):
        return math.ceil(self.total / self.limit)

    @property
    def has_next(self):
        return self.page < self.total_pages

    @property
    def has_previous(self):
        return self.page > 1

    def as_dict(self):
        return {
            'items': self.items,
            'total': self.total,
            'page': self.page,
            'limit': self.limit,
            'total_pages': self.total_pages,
            'has_next': self.has_next,
            'has_previous': self.has_previous,
        }


def _positive_int(value, default, name, maximum=None):
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidOperation(f"{name} must be an integer.") from None
    number = max(number, 1)
    if maximum is not None:
        number = min(number, maximum)
    return number


def with_tiebreak(queryset):
    """Append the primary key to the ordering (same direction as the first key)."""
    ordering = list(queryset.query.order_by or queryset.model._meta.ordering)
    names = {key.lstrip('-') for key in ordering if isinstance(key, str)}
    if 'id' in names or 'pk' in names:
        return queryset.order_by(*ordering)
    first = ordering[0] if ordering else '-id'
    descending = isinstance(first, str) and first.startswith('-')
    return queryset.order_by(*ordering, '-id' if descending else 'id')


def paginate(kind, stages, page=None, limit=None, store=default_store):
    page = _positive_int(page, DEFAULT_PAGE, 'page')
    limit = _positive_int(limit, DEFAULT_LIMIT, 'limit', maximum=MAX_LIMIT)

    source, rest = split_stages(stages)
    if any(isinstance(stage, Sample) for stage in source):
        raise ValueError('Sampled pipelines cannot be paginated')
    for stage in rest:
        if isinstance(stage, WINDOW_BREAKING_STAGES):
            raise ValueError(f"{type(stage).__name__} after a join cannot be paginated")

    queryset = with_tiebreak(store.queryset(kind, source))
    total, rows = store.window(queryset, (page - 1) * limit, limit)
    return Page(items=store.evaluate(rows, rest), total=total, page=page, limit=limit)
