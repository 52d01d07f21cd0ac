from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

root_dir = Path(__file__).parent.parent
env_path = root_dir / ".env"
load_dotenv(env_path)


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "deploy-worker"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # PostgreSQL Database
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "deploy_worker"
    DB_CREATE_TABLES: bool = False

    # Chiffrement des secrets (registry, env, kubeconfig)
    ENCRYPTION_KEY: str = ""

    # Dispatcher
    POLL_INTERVAL_SECONDS: float = 1.0
    RECONCILE_TIMEOUT_SECONDS: float = 600.0
    RECOVER_STALE_TASKS: bool = False

    # Kubernetes
    INGRESS_CLASS_NAME: Optional[str] = None

    # Database URL
    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = "ignore"
        case_sensitive = True


settings = Settings()
