import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.models import Base

logger = logging.getLogger(__name__)


def create_database(url='sqlite:///:memory:', echo=False):
    """create the engine + session factory and make sure the tables exist"""
    kwargs = {'echo': echo}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in url or url in ('sqlite://', 'sqlite+pysqlite://'):
            # one shared connection, otherwise every checkout sees an empty db
            kwargs['poolclass'] = StaticPool
    engine = create_engine(url, **kwargs)

    Base.metadata.create_all(engine)
    logger.info('database ready (%s)', engine.url.render_as_string(hide_password=True))

    return sessionmaker(engine, expire_on_commit=False), engine


@contextmanager
def transaction(session_factory, session=None):
    """join the caller's unit of work, or open (and commit) a new one"""
    if session is not None:
        yield session
        return
    with session_factory.begin() as new_session:
        yield new_session
