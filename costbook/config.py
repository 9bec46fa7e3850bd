from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./costbook.db"
    CURRENCY: str = "EUR"

    # Variant identity: hex chars of the SHA-1 content hash kept in the key
    VARIANT_HASH_LENGTH: int = 12

    # Combinatorial guard for axis expansion (per template)
    MAX_VARIANTS_PER_TEMPLATE: int = 500
    # Templates without declared axes get at most this many smart variants
    SMART_VARIANTS_CAP: int = 8

    AUTO_SEED: bool = True
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
