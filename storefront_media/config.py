#config.py
import os
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import List
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    # Application Settings
    APP_NAME: str = "Storefront Media API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./storefront_media.db")

    # CORS Settings (comma-separated)
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Image storage
    MAX_FILE_SIZE: int = 5 * 1024 * 1024  # 5MB
    ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp", "image/gif"]
    UPLOAD_DIR: str = "public/uploads"
    BACKUP_DIR: str = "backups"
    THUMBNAIL_SIZE: tuple = (300, 300)
    THUMBNAIL_QUALITY: int = 70
    # Relative to UPLOAD_DIR; "" is the flat upload root
    LEGACY_IMAGE_DIRS: str = ",originals"

    # Placeholders served by the HTTP layer when resolution fails
    PLACEHOLDER_STORE_IMAGE_URL: str = "/assets/default-store-image.jpg"
    PLACEHOLDER_PRODUCT_IMAGE_URL: str = "/assets/default-product-image.jpg"

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def _split_csv(self, value: str, keep_empty: bool = False) -> List[str]:
        if value is None:
            return []
        items = [item.strip() for item in value.split(",")]
        if keep_empty:
            return items
        return [item for item in items if item]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

    @property
    def legacy_image_dirs_list(self) -> List[str]:
        # An empty entry stands for the upload root itself
        return list(dict.fromkeys(self._split_csv(self.LEGACY_IMAGE_DIRS, keep_empty=True)))


@lru_cache()
def get_settings() -> Settings:
    s = Settings()
    cors_env = os.environ.get("CORS_ORIGINS")
    if cors_env:
        s.ALLOWED_ORIGINS = cors_env
    return s

settings: Settings = get_settings()
