from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Signing
    signing_secret: str | None = None  # seed; random when unset
    secret_rotation_interval_seconds: int = 600  # 10 minutes

    # Lifetimes
    challenge_ttl_seconds: int = 60
    nonce_ttl_seconds: int = 120
    token_ttl_seconds: int = 60

    # Proof of Work
    pow_base_difficulty: int = 3  # leading zero hex digits
    pow_difficulty_cap: int = 3

    # Trust model
    trust_decay_window_seconds: float = 600.0
    trust_decay_floor: float = 0.5
    solve_discount_factor: float = 0.5
    burst_window_seconds: float = 10.0
    burst_threshold: int = 30
    burst_penalty: float = 0.5
    shadow_throttle_threshold: float = 0.7
    deny_threshold: float = 5.0

    # Binding
    bind_to_client_ip: bool = True
    trust_forwarded_for: bool = False  # only behind our own proxy

    # Storage
    # memory | redis. Redis shares challenges and nonces across workers, but each
    # process still holds its own signing secret: run one worker, or set a shared
    # signing_secret, and expect tokens to stop crossing workers after rotation.
    store_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    sweep_interval_seconds: int = 30

    # Rate Limiting
    rate_limit_challenges: str = "200/minute"
    rate_limit_verifications: str = "200/minute"
    rate_limit_protected: str = "200/minute"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # CORS
    cors_origins: list[str] | str = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError("store_backend must be 'memory' or 'redis'")
        return v


settings = Settings()
