from typing import Any
from urllib.parse import quote_plus

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración del motor de workflows utilizando Pydantic BaseSettings.
    Carga automáticamente las variables de entorno.
    """

    PROJECT_NAME: str = "Workflow Engine"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = Field("development", description="Entorno de ejecución (development, test, production)")
    DEBUG: bool = Field(False, description="Modo debug (NullPool, logs verbosos)")

    # PostgreSQL Database Settings
    DATABASE_URL: str | None = Field(None, description="URL completa de la base de datos (sobrescribe DB_*)")
    DB_HOST: str = Field("localhost", description="Host de PostgreSQL")
    DB_PORT: int = Field(5432, description="Puerto de PostgreSQL")
    DB_NAME: str = Field("workflows", description="Nombre de la base de datos")
    DB_USER: str = Field("postgres", description="Usuario de PostgreSQL")
    DB_PASSWORD: str | None = Field(None, description="Contraseña de PostgreSQL")
    DB_ECHO: bool = Field(False, description="Log SQL queries (solo para debug)")

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(20, description="Tamaño del pool de conexiones")
    DB_MAX_OVERFLOW: int = Field(30, description="Máximo overflow del pool")
    DB_POOL_RECYCLE: int = Field(3600, description="Reciclar conexiones cada X segundos")
    DB_POOL_TIMEOUT: int = Field(30, description="Timeout para obtener conexión del pool")

    # Logging
    LOG_LEVEL: str = Field("INFO", description="Nivel de log (DEBUG, INFO, WARNING, ERROR)")
    LOG_FORMAT: str = Field("colored", description="Formato de log: colored, json o plain")

    # Workflow engine
    WORKFLOW_MAX_EXECUTION_STEPS: int = Field(
        200, description="Máximo de nodos ejecutados por llamada de drive antes de detectar un ciclo"
    )
    WORKFLOW_TIMEZONE: str = Field("UTC", description="Zona horaria del scheduler")
    WORKFLOW_SCANNER_ENABLED: bool = Field(True, description="Habilita el escáner de deadlines")
    WORKFLOW_SCANNER_INTERVAL_SECONDS: int = Field(
        300, description="Intervalo del escáner de deadlines y transiciones programadas"
    )
    WORKFLOW_DEFAULT_ESCALATION_EXTEND_HOURS: int = Field(
        24, description="Horas que se extiende el deadline al reasignar una aprobación"
    )

    # Resume task retries
    RESUME_MAX_ATTEMPTS: int = Field(3, description="Intentos máximos de un resume encolado")
    RESUME_RETRY_MIN_SECONDS: float = Field(1.0, description="Espera mínima entre reintentos de resume")
    RESUME_RETRY_MAX_SECONDS: float = Field(30.0, description="Espera máxima entre reintentos de resume")

    # Actions
    WEBHOOK_TIMEOUT_SECONDS: float = Field(30.0, description="Timeout de la acción webhook")
    APP_SETTINGS: dict[str, Any] = Field(
        default_factory=dict, description="Valores de configuración accesibles desde parámetros de acciones"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        if value not in ("colored", "json", "plain"):
            raise ValueError(f"LOG_FORMAT must be colored, json or plain, got '{value}'")
        return value

    @field_validator("WORKFLOW_MAX_EXECUTION_STEPS")
    @classmethod
    def validate_max_steps(cls, value: int) -> int:
        if value < 1:
            raise ValueError("WORKFLOW_MAX_EXECUTION_STEPS must be positive")
        return value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """URL asíncrona de la base de datos."""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.DB_USER)
        if self.DB_PASSWORD:
            password = quote_plus(self.DB_PASSWORD)
            return f"postgresql+asyncpg://{user}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        return f"postgresql+asyncpg://{user}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Retorna una instancia cacheada de la configuración.
    Esto evita cargar las variables de entorno múltiples veces.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
