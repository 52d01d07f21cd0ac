from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from deploy_worker.core.database import Base
from deploy_worker.models.base import BaseModel

service_registry_credentials = Table(
    "service_registry_credentials",
    Base.metadata,
    Column("service_id", Integer, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
    Column("registry_credential_id", Integer, ForeignKey("registry_credentials.id", ondelete="CASCADE"),
           primary_key=True),
)

service_env_bindings = Table(
    "service_env_bindings",
    Base.metadata,
    Column("service_id", Integer, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
    Column("env_binding_id", Integer, ForeignKey("env_bindings.id", ondelete="CASCADE"), primary_key=True),
)


class Service(BaseModel):
    __tablename__ = "services"
    __table_args__ = (UniqueConstraint("application_id", "name", name="uq_service_application_name"),)

    name = Column(String(255), nullable=False)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)

    # Workload
    replicas = Column(Integer, nullable=False, default=1)
    container_port = Column(Integer, nullable=False)

    # Ressources: CPU en milli-unités, mémoire en Mi
    cpu_request = Column(Integer)
    cpu_limit = Column(Integer)
    memory_request = Column(Integer)
    memory_limit = Column(Integer)

    # Liveness probe
    liveness_probe_path = Column(String(255))
    liveness_probe_initial_delay_seconds = Column(Integer)
    liveness_probe_period_seconds = Column(Integer)
    liveness_probe_timeout_seconds = Column(Integer)
    liveness_probe_success_threshold = Column(Integer)
    liveness_probe_failure_threshold = Column(Integer)

    # Readiness probe
    readiness_probe_path = Column(String(255))
    readiness_probe_initial_delay_seconds = Column(Integer)
    readiness_probe_period_seconds = Column(Integer)
    readiness_probe_timeout_seconds = Column(Integer)
    readiness_probe_success_threshold = Column(Integer)
    readiness_probe_failure_threshold = Column(Integer)

    # Rolling update: nombre absolu ("1") ou pourcentage ("25%")
    max_surge = Column(String(20))
    max_unavailable = Column(String(20))

    ingress_url = Column(Text)

    # Relations
    application = relationship("Application", back_populates="services")
    registry_credentials = relationship("RegistryCredential", secondary=service_registry_credentials,
                                        order_by="RegistryCredential.id")
    env_bindings = relationship("EnvBinding", secondary=service_env_bindings, order_by="EnvBinding.id")

    def __repr__(self):
        return f"<Service(name='{self.name}', replicas={self.replicas}, port={self.container_port})>"
