"""
Entity Store
============

Point CRUD over the five entity kinds plus the pipeline query facility
(see pipeline.py). All database access in the core goes through here.

ERROR TRANSLATION:
------------------
- DoesNotExist / zero rows touched -> NotFound
- IntegrityError (unique or check constraint) -> Conflict
- any other DatabaseError -> DependencyFailure(legs=['store'])

Writes that can violate a constraint run inside transaction.atomic() so a
rejected insert only rolls back its own savepoint, never the caller's
enclosing transaction.

`delete` never cascades into relation rows. Cascade policy belongs to the
callers (services.delete_post).
"""

import logging
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F

from .errors import Conflict, DependencyFailure, InvalidOperation, NotFound
from .models import Comment, Follow, Like, Post, User
from .pipeline import JOIN_KEY, split_stages

logger = logging.getLogger(__name__)

KINDS = {
    'user': User,
    'post': Post,
    'comment': Comment,
    'like': Like,
    'follow': Follow,
}


@contextmanager
def store_errors(kind):
    try:
        yield
    except IntegrityError as exc:
        logger.info("Constraint violation on %s: %s", kind, exc)
        raise Conflict(f"{kind.capitalize()} violates a uniqueness constraint.") from exc
    except DatabaseError as exc:
        logger.exception("Entity store failure on %s", kind)
        raise DependencyFailure('Entity store unavailable.', legs=['store']) from exc


class EntityStore:

    def model(self, kind):
        try:
            return KINDS[kind]
        except KeyError:
            raise InvalidOperation(f"Unknown entity kind '{kind}'.") from None

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def get(self, kind, pk):
        model = self.model(kind)
        with store_errors(kind):
            try:
                return model.objects.get(pk=pk)
            except model.DoesNotExist:
                raise NotFound(f"{kind.capitalize()} {pk} does not exist.") from None

    def first(self, kind, *conditions, **lookups):
        """First row matching the filter, or None."""
        model = self.model(kind)
        with store_errors(kind):
            return model.objects.filter(*conditions, **lookups).first()

    def exists(self, kind, *conditions, **lookups):
        model = self.model(kind)
        with store_errors(kind):
            return model.objects.filter(*conditions, **lookups).exists()

    def create(self, kind, **fields):
        model = self.model(kind)
        with store_errors(kind), transaction.atomic():
            return model.objects.create(**fields)

    def update(self, kind, pk, **fields):
        instance = self.get(kind, pk)
        for name, value in fields.items():
            setattr(instance, name, value)
        with store_errors(kind), transaction.atomic():
            instance.save()
        return instance

    def modify(self, kind, pk, mutate):
        """
        Read-modify-write of one row under a row lock.

        `mutate(instance)` edits the locked instance in place.
        """
        model = self.model(kind)
        with store_errors(kind), transaction.atomic():
            try:
                instance = model.objects.select_for_update().get(pk=pk)
            except model.DoesNotExist:
                raise NotFound(f"{kind.capitalize()} {pk} does not exist.") from None
            mutate(instance)
            instance.save()
        return instance

    def update_where(self, kind, filters, **values):
        """
        Conditional update: set `values` on rows matching `filters`.

        Returns the number of rows changed. Used as a compare-and-swap
        (e.g. refresh token rotation).
        """
        model = self.model(kind)
        with store_errors(kind), transaction.atomic():
            return model.objects.filter(**filters).update(**values)

    def increment(self, kind, pk, field, by=1):
        model = self.model(kind)
        with store_errors(kind):
            updated = model.objects.filter(pk=pk).update(**{field: F(field) + by})
        if not updated:
            raise NotFound(f"{kind.capitalize()} {pk} does not exist.")

    def delete(self, kind, pk):
        model = self.model(kind)
        with store_errors(kind):
            deleted, _ = model.objects.filter(pk=pk).delete()
        if not deleted:
            raise NotFound(f"{kind.capitalize()} {pk} does not exist.")

    def delete_where(self, kind, *conditions, **lookups):
        model = self.model(kind)
        with store_errors(kind):
            deleted, _ = model.objects.filter(*conditions, **lookups).delete()
        return deleted

    async def adelete_where(self, kind, *conditions, **lookups):
        model = self.model(kind)
        with store_errors(kind):
            deleted, _ = await model.objects.filter(*conditions, **lookups).adelete()
        return deleted

    # ------------------------------------------------------------------
    # Pipeline queries
    # ------------------------------------------------------------------

    def queryset(self, kind, stages):
        """Compile source stages into a lazy values() queryset."""
        queryset = self.model(kind).objects.values()
        for stage in stages:
            queryset = stage.apply_queryset(queryset)
        return queryset

    def evaluate(self, rows, stages):
        """Run document stages over already-fetched rows."""
        docs = [dict(row) for row in rows]
        for stage in stages:
            docs = stage.apply_documents(docs, self)
        return docs

    def aggregate(self, kind, stages, join_key=None):
        """
        Run a full pipeline and return the result documents in order.

        `join_key` (used by Lookup) tags each source row with the value of
        that field under pipeline.JOIN_KEY before document stages run.
        """
        source, rest = split_stages(stages)
        with store_errors(kind):
            rows = list(self.queryset(kind, source))
        if join_key:
            for row in rows:
                row[JOIN_KEY] = row[join_key]
        return self.evaluate(rows, rest)

    def window(self, queryset, offset, limit):
        """Total row count and one slice of an ordered queryset."""
        kind = queryset.model._meta.model_name
        with store_errors(kind):
            total = queryset.count()
            rows = list(queryset[offset:offset + limit])
        return total, rows


store = EntityStore()
