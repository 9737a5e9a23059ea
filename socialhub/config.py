import datetime
import logging
import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ALLOWED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")
MIN_JWT_SECRET_LENGTH = 16


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=False,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    logging_level: str = "INFO"
    timezone: str = "UTC"

    database_url: str = "sqlite:////data/socialhub.db"

    # Token signing
    jwt_secret: str = Field(default="", validate_default=True)
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Argon2id work factor
    password_time_cost: int = 3
    password_memory_cost: int = 65536  # KiB
    password_parallelism: int = 4

    # Uploaded images
    upload_dir: str = "/data/assets"
    max_upload_bytes: int = 5 * 1024 * 1024
    max_images_per_post: int = 5
    image_max_dimension: int = 1200
    image_quality: int = 80

    allowed_origins: str = "*"

    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 10000

    host: str = "0.0.0.0"
    port: int = 5000

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _prefer_docker_secret(cls, v, info):
        """
        Prefer Docker secrets mounted at /run/secrets/<NAME> over environment variables.
        Tries secret files with the field name upper-cased and as-is.
        """
        secret = None
        try:
            candidates = [info.field_name.upper(), info.field_name]
            for name in candidates:
                path = f"/run/secrets/{name}"
                if os.path.isfile(path):
                    with open(path, "r", encoding="utf-8") as f:
                        data = f.read().strip()
                    if data:
                        secret = data
                        break
        except Exception:
            secret = None
        if secret:
            logger.debug("Using docker secret for %s", info.field_name)
            return secret
        return v

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v):
        if v is None or len(str(v).strip()) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(f"jwt_secret must be at least {MIN_JWT_SECRET_LENGTH} characters")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v):
        alg = str(v).strip().upper()
        if alg not in ALLOWED_JWT_ALGORITHMS:
            raise ValueError(f"jwt_algorithm must be one of {', '.join(ALLOWED_JWT_ALGORITHMS)}")
        return alg

    @field_validator("jwt_expiry_hours")
    @classmethod
    def validate_jwt_expiry(cls, v):
        if int(v) < 1:
            raise ValueError("jwt_expiry_hours must be >= 1")
        if int(v) > 720:
            raise ValueError("jwt_expiry_hours must be <= 720")
        return int(v)

    @field_validator("password_time_cost")
    @classmethod
    def validate_time_cost(cls, v):
        if not 1 <= int(v) <= 20:
            raise ValueError("password_time_cost must be between 1 and 20")
        return int(v)

    @field_validator("password_memory_cost")
    @classmethod
    def validate_memory_cost(cls, v):
        if not 1024 <= int(v) <= 1048576:
            raise ValueError("password_memory_cost must be between 1024 and 1048576 KiB")
        return int(v)

    @field_validator("password_parallelism")
    @classmethod
    def validate_parallelism(cls, v):
        if not 1 <= int(v) <= 16:
            raise ValueError("password_parallelism must be between 1 and 16")
        return int(v)

    @field_validator("max_upload_bytes", "rate_limit_window_seconds", "rate_limit_max_requests")
    @classmethod
    def validate_positive(cls, v, info):
        if int(v) < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return int(v)

    @field_validator("max_images_per_post")
    @classmethod
    def validate_max_images(cls, v):
        if not 1 <= int(v) <= 20:
            raise ValueError("max_images_per_post must be between 1 and 20")
        return int(v)

    @field_validator("image_max_dimension")
    @classmethod
    def validate_image_dimension(cls, v):
        if not 64 <= int(v) <= 8192:
            raise ValueError("image_max_dimension must be between 64 and 8192")
        return int(v)

    @field_validator("image_quality")
    @classmethod
    def validate_image_quality(cls, v):
        if not 1 <= int(v) <= 100:
            raise ValueError("image_quality must be between 1 and 100")
        return int(v)

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return origins or ["*"]

    def model_post_init(self, __context):
        logger.debug(
            "Settings loaded: database=%s, token expiry=%sh, argon2 t=%s m=%s p=%s",
            self.database_url.split("://", 1)[0],
            self.jwt_expiry_hours,
            self.password_time_cost,
            self.password_memory_cost,
            self.password_parallelism,
        )


def load_settings() -> Settings:
    try:
        settings = Settings()
        return settings
    except ValidationError as e:
        logger.error("Configuration error:")
        for err in e.errors():
            logger.error(" - %s: %s", err.get('loc'), err.get('msg'))
        sys.exit(1)


class LocalISOFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, tz_name: str | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tz = None
        self._tz_name = tz_name
        if tz_name:
            try:
                self._tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                self._tz = None

    def formatTime(self, record, datefmt=None):
        if self._tz is not None:
            dt = datetime.datetime.fromtimestamp(record.created, tz=self._tz)
        else:
            dt = datetime.datetime.fromtimestamp(record.created).astimezone()
        return dt.isoformat(timespec='milliseconds')


NOISY_LOGGERS = ['httpx', 'httpcore', 'multipart', 'PIL']


def configure_logging(settings: Settings | None = None):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        tzname = getattr(settings, 'timezone', None) if settings is not None else None
        formatter = LocalISOFormatter('%(asctime)s %(levelname)s %(name)s %(message)s', tz_name=tzname)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if settings is not None:
        lvl = str(getattr(settings, 'logging_level', 'INFO')).strip().upper()
        numeric = getattr(logging, lvl, None)
        if not isinstance(numeric, int):
            root.setLevel(logging.INFO)
        else:
            root.setLevel(numeric)
    else:
        root.setLevel(logging.INFO)

    logger.info("Logging configured; root level=%s", logging.getLevelName(root.level))

    for n in NOISY_LOGGERS:
        logging.getLogger(n).setLevel(logging.WARNING)

    for logger_name in ['uvicorn', 'uvicorn.error', 'uvicorn.access']:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    if root.level <= logging.DEBUG:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO)
    else:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
