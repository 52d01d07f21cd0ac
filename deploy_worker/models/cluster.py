from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from deploy_worker.models.base import BaseModel


class Cluster(BaseModel):
    __tablename__ = "clusters"

    name = Column(String(255), nullable=False)
    # kubeconfig chiffré (CredentialCipher), jamais en clair
    kubeconfig = Column(Text, nullable=False)

    applications = relationship("Application", back_populates="cluster")

    def __repr__(self):
        return f"<Cluster(id={self.id}, name='{self.name}')>"
