import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from membership_import.core.config import settings

def make_engine(db_path: str = None):
    """
    SQLite engine for contacts, memberships and import jobs. Import workers
    and the API threadpool share it, so connections are not tied to the
    thread that opened them.
    """
    db_path = db_path or settings.DB_PATH
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})

engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False)

Base = declarative_base()

def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
