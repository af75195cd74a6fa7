"""
Pipeline Stage Vocabulary
=========================

A view is an ordered list of stages run against one entity kind:

    Match -> Search -> Sort -> Lookup -> AddFields -> Project

EXECUTION MODEL:
----------------
1. Source stages (Match, Search, Sort, Sample) at the head of the list
   compile into ONE ORM queryset over `Model.objects.values()`.
2. Everything after the first non-source stage runs over the fetched rows
   (plain dicts) in Python.

Joins are batched: a Lookup collects every local key of the current rows and
issues a single `foreign__in=keys` query for the joined kind, then buckets the
joined rows by key in O(n). A nested Lookup inside a sub-pipeline adds one
query per nesting level, regardless of how many rows are joined.

    Post detail (1 post, N likes, owner, M followers): 4 queries
    Feed page (20 posts, owners):                       3 queries (+count)

Joins are left-outer: an unmatched key joins as [] (or None for single=True).
"""

import random
from collections import defaultdict

from django.db import connections
from django.db.models import Q

# Carries the foreign key of a joined row through its sub-pipeline
JOIN_KEY = '__join_key__'


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class Stage:
    """Base stage. Source stages can compile into a queryset."""
    source = False

    def apply_queryset(self, queryset):
        raise NotImplementedError(f"{type(self).__name__} cannot run in the database")

    def apply_documents(self, docs, store):
        raise NotImplementedError(f"{type(self).__name__} cannot run over fetched rows")


class Match(Stage):
    """Filter by ORM lookups and/or Q objects; `exclude` removes matches."""
    source = True

    def __init__(self, *conditions, exclude=None, **lookups):
        self.conditions = conditions
        self.lookups = lookups
        self.exclude = exclude or {}

    def apply_queryset(self, queryset):
        queryset = queryset.filter(*self.conditions, **self.lookups)
        if self.exclude:
            queryset = queryset.exclude(**self.exclude)
        return queryset

    def apply_documents(self, docs, store):
        raise ValueError('Match stages must precede all document stages')


class Search(Stage):
    """
    Full-text search restricted to `fields`.

    PostgreSQL: tsvector match via django.contrib.postgres.
    Other backends: case-insensitive containment on any of the fields.
    """
    source = True

    def __init__(self, text, fields=('content',)):
        self.text = text
        self.fields = tuple(fields)

    def apply_queryset(self, queryset):
        if connections[queryset.db].vendor == 'postgresql':
            from django.contrib.postgres.search import SearchQuery, SearchVector
            return queryset.alias(
                search=SearchVector(*self.fields)
            ).filter(search=SearchQuery(self.text))

        condition = Q()
        for field in self.fields:
            condition |= Q(**{f'{field}__icontains': self.text})
        return queryset.filter(condition)


class Sort(Stage):
    """Sort by keys; a leading '-' sorts that key descending."""
    source = True

    def __init__(self, *keys):
        self.keys = keys

    def apply_queryset(self, queryset):
        return queryset.order_by(*self.keys)

    def apply_documents(self, docs, store):
        # Stable sorts applied last key first give a multi-key ordering
        for key in reversed(self.keys):
            field = key.lstrip('-')
            docs.sort(
                key=lambda doc: (doc.get(field) is not None, doc.get(field)),
                reverse=key.startswith('-')
            )
        return docs


class Sample(Stage):
    """Uniform random sample of at most `size` rows. Ends the source phase."""
    source = True

    def __init__(self, size):
        self.size = size

    def apply_queryset(self, queryset):
        return queryset.order_by('?')[:self.size]

    def apply_documents(self, docs, store):
        return random.sample(docs, min(self.size, len(docs)))


class Lookup(Stage):
    """
    Left-outer join of `kind` rows where `foreign_field` equals the local
    value (or any element of a list-valued local field, in list order).

    `pipeline` runs over the joined rows before they are attached.
    `single=True` attaches the first match or None instead of a list.
    """

    def __init__(self, kind, local_field, foreign_field, as_field, pipeline=(), single=False):
        for stage in pipeline:
            if isinstance(stage, (Group, Sample)):
                raise ValueError(f"{type(stage).__name__} is not allowed inside a join")
        self.kind = kind
        self.local_field = local_field
        self.foreign_field = foreign_field
        self.as_field = as_field
        self.pipeline = tuple(pipeline)
        self.single = single

    def apply_documents(self, docs, store):
        keys = []
        seen = set()
        for doc in docs:
            for key in _as_list(doc.get(self.local_field)):
                if key not in seen:
                    seen.add(key)
                    keys.append(key)

        buckets = defaultdict(list)
        if keys:
            stages = [Match(**{f'{self.foreign_field}__in': keys}), *self.pipeline]
            for row in store.aggregate(self.kind, stages, join_key=self.foreign_field):
                buckets[row.pop(JOIN_KEY)].append(row)

        for doc in docs:
            matched = [
                dict(row)
                for key in _as_list(doc.get(self.local_field))
                for row in buckets.get(key, ())
            ]
            if self.single:
                doc[self.as_field] = matched[0] if matched else None
            else:
                doc[self.as_field] = matched
        return docs


class Unwind(Stage):
    """One document per element of a joined list; drops empty joins."""

    def __init__(self, field):
        self.field = field

    def apply_documents(self, docs, store):
        unwound = []
        for doc in docs:
            value = doc.get(self.field)
            if isinstance(value, list):
                unwound.extend({**doc, self.field: item} for item in value)
            elif value is not None:
                unwound.append(doc)
        return unwound


class AddFields(Stage):
    """Set computed fields. Callables receive the document; other values are constants."""

    def __init__(self, **fields):
        self.fields = fields

    def apply_documents(self, docs, store):
        for doc in docs:
            for name, value in self.fields.items():
                doc[name] = value(doc) if callable(value) else value
        return docs


class Project(Stage):
    """Keep only the listed fields (absent fields stay absent)."""

    def __init__(self, *fields):
        self.fields = fields

    def apply_documents(self, docs, store):
        projected = []
        for doc in docs:
            kept = {field: doc[field] for field in self.fields if field in doc}
            if JOIN_KEY in doc:
                kept[JOIN_KEY] = doc[JOIN_KEY]
            projected.append(kept)
        return projected


class Group(Stage):
    """
    Group documents by `by` (None groups everything together).

    Each output document is {'key': <group value>, <name>: <accumulated>}.
    """

    def __init__(self, by=None, **accumulators):
        self.by = by
        self.accumulators = accumulators

    def apply_documents(self, docs, store):
        groups = {}
        for doc in docs:
            key = doc.get(self.by) if self.by else None
            groups.setdefault(key, []).append(doc)
        return [
            {'key': key, **{name: accumulate(members) for name, accumulate in self.accumulators.items()}}
            for key, members in groups.items()
        ]


class Push:
    """Group accumulator: list of `field` values in document order."""

    def __init__(self, field):
        self.field = field

    def __call__(self, members):
        return [member.get(self.field) for member in members]


class Count:
    """Group accumulator: number of documents."""

    def __call__(self, members):
        return len(members)


def size_of(field):
    """AddFields helper: length of a joined list."""
    return lambda doc: len(doc.get(field) or ())


def contains(field, attr, value):
    """AddFields helper: does any joined row have row[attr] == value."""
    return lambda doc: any(row.get(attr) == value for row in doc.get(field) or ())


def split_stages(stages):
    """
    Split stages into (source, documents).

    The source run stops at the first non-source stage, or right after a
    Sample (a sliced queryset cannot be filtered or re-ordered).
    """
    stages = list(stages)
    for index, stage in enumerate(stages):
        if not stage.source:
            return stages[:index], stages[index:]
        if isinstance(stage, Sample):
            return stages[:index + 1], stages[index + 1:]
    return stages, []
