from sqlalchemy import Column, String, Text

from deploy_worker.models.base import BaseModel


class EnvBinding(BaseModel):
    __tablename__ = "env_bindings"

    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)  # chiffré

    def __repr__(self):
        return f"<EnvBinding(key='{self.key}')>"
