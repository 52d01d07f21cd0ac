# deploy_worker/repositories/base_repository.py
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from deploy_worker.core.database import Base

# Type générique pour les modèles
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Repository générique pour les opérations CRUD de base.

    Chaque opération ouvre sa propre session: les repositories sont appelés
    depuis des threads (asyncio.to_thread) et ne partagent pas de Session.
    """

    def __init__(self, model: Type[ModelType], session_factory: sessionmaker):
        self.model = model
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    def get_by_id(self, id: int) -> Optional[ModelType]:
        """Récupère un enregistrement par son ID"""
        with self._session() as db:
            return db.get(self.model, id)

    def create(self, obj_data: Dict[str, Any]) -> ModelType:
        """Crée un nouvel enregistrement"""
        with self._session() as db:
            try:
                db_obj = self.model(**obj_data)
                db.add(db_obj)
                db.commit()
                db.refresh(db_obj)
                return db_obj
            except SQLAlchemyError:
                db.rollback()
                raise
