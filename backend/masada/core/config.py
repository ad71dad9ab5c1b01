from pydantic_settings import BaseSettings
from typing import List, Any
from pathlib import Path
import json


def parse_list(v: Any) -> List[str]:
    """Parse a list setting from a JSON array or comma-separated string"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in v.split(',') if item.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Masada"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    SECRET_KEY: str
    API_VERSION: str = "v1"

    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 5000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str
    DB_ECHO: bool = False

    # ==========================================
    # Authentication
    # ==========================================
    JWT_SECRET_KEY: str
    JWT_REFRESH_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 days
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_HOURS: int = 1
    BCRYPT_ROUNDS: int = 12  # 4 for tests, 12 for prod

    # ==========================================
    # Frontend / CORS
    # ==========================================
    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return parse_list(self.CORS_ORIGINS_STR)

    # ==========================================
    # File uploads
    # ==========================================
    MAX_FILE_SIZE: int = 10485760  # 10MB
    MAX_FILES_PER_UPLOAD: int = 10
    MAX_REQUEST_SIZE: int = 110 * 1024 * 1024
    UPLOAD_PATH: str = "./uploads"
    ALLOWED_FILE_TYPES_STR: str = (
        "image/jpeg,image/png,image/gif,image/webp,"
        "video/mp4,video/webm,application/pdf,text/plain"
    )

    @property
    def ALLOWED_FILE_TYPES(self) -> List[str]:
        return parse_list(self.ALLOWED_FILE_TYPES_STR)

    @property
    def UPLOAD_DIR(self) -> Path:
        return Path(self.UPLOAD_PATH)

    # ==========================================
    # Email
    # ==========================================
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "noreply@masada.et"
    EMAIL_FROM_NAME: str = "Masada"

    # ==========================================
    # Payment providers
    # ==========================================
    CHAPA_SECRET_KEY: str = ""
    TELEBIRR_API_KEY: str = ""
    PAYMENT_BASE_URL: str = "https://payments.masada.et"

    # ==========================================
    # Rate limiting
    # ==========================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100 per 15 minutes"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/masada.log"

    # ==========================================
    # Locale
    # ==========================================
    DEFAULT_TIMEZONE: str = "Africa/Addis_Ababa"
    DEFAULT_CURRENCY: str = "ETB"
    DEFAULT_LANGUAGE: str = "en"

    @property
    def refresh_secret(self) -> str:
        """Refresh tokens fall back to the access secret when no dedicated one is set"""
        return self.JWT_REFRESH_SECRET_KEY or self.JWT_SECRET_KEY

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
