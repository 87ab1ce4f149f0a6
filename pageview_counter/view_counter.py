import threading

from flask import current_app
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from pageview_counter.models import db, PageCounter

# Backends with INSERT ... ON CONFLICT DO UPDATE ... RETURNING
UPSERT_DIALECTS = {
    'sqlite': sqlite.insert,
    'postgresql': postgresql.insert,
}


class StoreError(Exception):
    """The counter store could not complete a schema setup or a write."""


def build_upsert(key, dialect_name):
    """Build the insert-or-increment statement for ``key`` on the given backend"""
    try:
        insert = UPSERT_DIALECTS[dialect_name]
    except KeyError:
        raise StoreError(f"Unsupported database backend: {dialect_name}") from None

    stmt = insert(PageCounter).values(
        page_key=key,
        views=1,
        last_viewed=func.current_timestamp(),
    )
    return stmt.on_conflict_do_update(
        index_elements=[PageCounter.page_key],
        set_={
            'views': PageCounter.views + 1,
            'last_viewed': func.current_timestamp(),
        },
    ).returning(PageCounter.views)


class ViewCounter:
    """Durable per-page view counters.

    Every increment runs under one process-wide lock and is committed
    before its value is returned.
    """

    def __init__(self, app=None, lock_timeout=None):
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions['view_counter'] = self
        with app.app_context():
            dialect_name = db.engine.dialect.name
            if dialect_name not in UPSERT_DIALECTS:
                raise StoreError(f"Unsupported database backend: {dialect_name}")
            self.create_schema()

    def create_schema(self):
        """Create the pageviews table if it doesn't exist yet"""
        try:
            db.create_all()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not create counter schema: {e}") from e

    def record_view(self, key):
        """Increment the view count for ``key`` and return the new count.

        The first view of a key inserts its row with ``views = 1``. Must be
        called inside an application context.
        """
        timeout = -1 if self.lock_timeout is None else self.lock_timeout
        if not self._lock.acquire(timeout=timeout):
            raise StoreError(f"Timed out after {self.lock_timeout}s waiting for the counter store")

        try:
            stmt = build_upsert(key, db.engine.dialect.name)
            try:
                views = db.session.execute(stmt).scalar_one()
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreError(f"Could not record view: {e}") from e
        finally:
            self._lock.release()

        return views


def get_counter(app=None):
    app = app or current_app
    return app.extensions['view_counter']
