import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from repform.core.config import settings
from repform.models import Base


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or settings.DATABASE_URL
    kwargs = {}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
        path = url.replace('sqlite:///', '', 1)
        if url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        elif os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
    return create_engine(url, **kwargs)


def create_session_factory(database_url: Optional[str] = None) -> sessionmaker:
    engine = create_db_engine(database_url)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

