"""
Datastore gateway.

Thin wrapper over a SQLAlchemy session. Managers receive one of these in
their constructor instead of reaching for a global session, and use
``transaction()`` for multi-statement mutations. Driver exceptions never
leave this module: they come out as ``ConflictError`` (integrity
violations) or ``UpstreamStoreError``.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConflictError, UpstreamStoreError

logger = logging.getLogger(__name__)


def _translate(exc):
    if isinstance(exc, IntegrityError):
        return ConflictError("record conflicts with an existing one")
    return UpstreamStoreError("datastore", str(exc.__class__.__name__))


class Datastore:
    def __init__(self, session):
        self.session = session
        self._depth = 0

    @property
    def in_transaction(self):
        return self._depth > 0

    def _fail(self, exc):
        # Outside a scope nobody else will roll back the failed statement
        if not self._depth:
            self.session.rollback()
        logger.error("datastore error: %s", exc)
        return _translate(exc)

    def query(self, statement):
        """Run a select and return all scalar results."""
        try:
            return self.session.scalars(statement).all()
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    def first(self, statement):
        try:
            return self.session.scalars(statement).first()
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    def scalar(self, statement):
        try:
            return self.session.scalar(statement)
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    def execute(self, statement):
        """Run an insert/update/delete and return the affected row count."""
        try:
            return self.session.execute(statement).rowcount
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    def add(self, instance):
        """Stage a new row and flush it so generated ids are available."""
        try:
            self.session.add(instance)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc
        return instance

    def flush(self):
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    @contextmanager
    def transaction(self):
        """
        Transaction scope. Nested scopes join the outer one; only the
        outermost commits. Any exception rolls everything back and is
        re-raised.
        """
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.session.commit()
        except SQLAlchemyError as exc:
            if self._depth == 1:
                self.session.rollback()
            logger.error("transaction aborted: %s", exc)
            raise _translate(exc) from exc
        except Exception:
            if self._depth == 1:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1
