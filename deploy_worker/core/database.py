# deploy_worker/core/database.py
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class DatabaseManager:
    """Singleton pour la gestion de la base de données"""
    _instance = None
    _engine = None
    _session_factory = None

    def __new__(cls, database_url: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, database_url: Optional[str] = None):
        if self._engine is None:
            self._initialize_database(database_url)

    def _initialize_database(self, database_url: Optional[str]):
        """Initialise la connexion à la base de données"""
        database_url = database_url or self._get_database_url()

        self._engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_recycle=300,
            echo=False
        )

        self._session_factory = make_session_factory(self._engine)

    def _get_database_url(self) -> str:
        """Construit l'URL de la base de données"""
        from deploy_worker.config import settings

        return settings.database_url

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    def create_tables(self):
        """Crée toutes les tables"""
        import deploy_worker.models  # noqa: F401  enregistre les modèles sur Base

        Base.metadata.create_all(bind=self._engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory utilisée par les repositories (une session par opération)"""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False
    )


@lru_cache()
def get_db_manager() -> DatabaseManager:
    """Instance singleton, créée au premier usage"""
    return DatabaseManager()
