from typing import List, Union, Optional
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "MedConnect Prescriptions"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    POSTGRES_PORT: str = "5432"
    DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    @model_validator(mode='after')
    def assemble_db_connection(self) -> 'Settings':
        if not self.DATABASE_URL:
            if all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_SERVER, self.POSTGRES_DB]):
                self.DATABASE_URL = (
                    f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
                    f"{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                )
            else:
                self.DATABASE_URL = "sqlite:///./medconnect.db"

        if self.DATABASE_URL.startswith("postgresql://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)

        return self

    # Bearer tokens are issued by the identity service; we only verify them
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # QR token cryptography
    QR_ENCRYPTION_KEY: str = "default-key-change-in-production"
    # Comma separated, newest first; tokens minted before a rotation still open
    QR_ENCRYPTION_PREVIOUS_KEYS: str = ""
    QR_ENCRYPTION_SALT: str = "medconnect_qr_salt"
    QR_KDF_ITERATIONS: int = 100000

    @property
    def qr_previous_keys(self) -> List[str]:
        return [k.strip() for k in self.QR_ENCRYPTION_PREVIOUS_KEYS.split(",") if k.strip()]

    # Prescription workflow
    QR_EXPIRY_HOURS: int = 24 * 7
    PRESCRIPTION_MAX_AGE_DAYS: int = 30

    # Notifications
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_BATCH_SIZE: int = 50

    # Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    EXPIRY_SWEEP_MINUTES: int = 15
    NOTIFICATION_DISPATCH_SECONDS: int = 30

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')

settings = Settings()
