from sqlalchemy import Column, String, Text

from deploy_worker.models.base import BaseModel


class RegistryCredential(BaseModel):
    __tablename__ = "registry_credentials"

    name = Column(String(255), nullable=False)
    server = Column(String(255), nullable=False)
    username = Column(String(255), nullable=False)
    password = Column(Text, nullable=False)  # chiffré

    def __repr__(self):
        return f"<RegistryCredential(name='{self.name}', server='{self.server}')>"
