# db.py
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base

logger = logging.getLogger(__name__)


class Store:
    """Owns the engine and session factory for the life of the process.

    Built once by create_app() and handed to every request; nothing else in
    the project opens its own connection.
    """

    def __init__(self, url, echo=False):
        self.url = url
        engine_kwargs = {'echo': echo}
        if url.startswith('sqlite'):
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if url in ('sqlite://', 'sqlite:///:memory:'):
                # one shared connection so every session sees the same in-memory db
                engine_kwargs['poolclass'] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self):
        Base.metadata.create_all(self.engine)
        logger.info('schema ready on %s', self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session(self):
        """Transactional scope: commit on success, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()


def flush_or_raise(session, conflict):
    """Flush pending writes, turning a unique-index violation into `conflict`.

    The caller's transaction is left for Store.session() to roll back.
    """
    try:
        session.flush()
    except IntegrityError as exc:
        logger.warning('write rejected by storage constraint: %s', conflict.message)
        raise conflict from exc
