from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from deploy_worker.models.base import BaseModel


class Application(BaseModel):
    __tablename__ = "applications"

    name = Column(String(255), unique=True, nullable=False)
    # namespace et cluster sont immuables après création
    namespace = Column(String(255), nullable=False)
    cluster_id = Column(Integer, ForeignKey("clusters.id"), nullable=True)

    cluster = relationship("Cluster", back_populates="applications")
    services = relationship("Service", back_populates="application")

    def __repr__(self):
        return f"<Application(name='{self.name}', namespace='{self.namespace}')>"
