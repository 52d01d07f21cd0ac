from typing import Optional

from sqlalchemy.orm import selectinload, sessionmaker

from deploy_worker.models.application import Application
from deploy_worker.models.service import Service
from deploy_worker.repositories.base_repository import BaseRepository


class ServiceRepository(BaseRepository[Service]):
    def __init__(self, session_factory: sessionmaker):
        super().__init__(Service, session_factory)

    def get_for_deployment(self, service_id: int) -> Optional[Service]:
        """
        Charge un service avec tout ce qu'il faut pour le déployer:
        application, cluster, credentials registry et variables d'env.
        L'objet retourné est détaché, ses relations sont déjà chargées.
        """
        with self._session() as db:
            return (db.query(Service)
                    .options(
                        selectinload(Service.application).selectinload(Application.cluster),
                        selectinload(Service.registry_credentials),
                        selectinload(Service.env_bindings),
                    )
                    .filter(Service.id == service_id)
                    .first())
