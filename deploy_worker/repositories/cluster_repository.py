from sqlalchemy.orm import sessionmaker

from deploy_worker.models.cluster import Cluster
from deploy_worker.repositories.base_repository import BaseRepository


class ClusterRepository(BaseRepository[Cluster]):
    def __init__(self, session_factory: sessionmaker):
        super().__init__(Cluster, session_factory)
