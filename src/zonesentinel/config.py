"""
ZoneSentinel Configuration Module

Central configuration management with environment variable support.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from enum import Enum


class Environment(Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class RedisConfig:
    """Redis connection configuration."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False

    # Namespace for all risk zone keys
    key_prefix: str = "riskzone"

    # Pool settings
    max_connections: int = 100
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    @property
    def url(self) -> str:
        """Build Redis URL."""
        protocol = "rediss" if self.ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"

    @classmethod
    def from_env(cls) -> "RedisConfig":
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD"),
            ssl=_env_bool("REDIS_SSL", "false"),
            key_prefix=os.getenv("REDIS_KEY_PREFIX", "riskzone"),
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "100")),
            socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "5.0")),
            socket_connect_timeout=float(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5.0")),
        )


@dataclass
class ScoringConfig:
    """Risk zone score engine configuration."""
    # Trailing event window
    window_days: int = 90

    # Severity weights (must increase low -> critical)
    weight_low: float = 10.0
    weight_medium: float = 25.0
    weight_high: float = 50.0
    weight_critical: float = 80.0

    # Verified events count more
    verification_bonus: float = 1.2

    # Temporal decay: exponential half-life with a floor
    decay_enabled: bool = True
    decay_half_life_days: float = 60.0
    decay_floor: float = 0.1

    # Score bounds
    min_score: float = 0.0
    max_score: float = 100.0

    # Risk level thresholds (lower bounds, inclusive)
    extreme_threshold: float = 76.0
    high_threshold: float = 51.0
    medium_threshold: float = 26.0

    # Price multipliers per risk level
    multiplier_low: float = 1.0
    multiplier_medium: float = 1.15
    multiplier_high: float = 1.4
    multiplier_extreme: float = 1.8

    @property
    def severity_weights(self) -> Dict[str, float]:
        return {
            "low": self.weight_low,
            "medium": self.weight_medium,
            "high": self.weight_high,
            "critical": self.weight_critical,
        }

    @property
    def price_multipliers(self) -> Dict[str, float]:
        return {
            "low": self.multiplier_low,
            "medium": self.multiplier_medium,
            "high": self.multiplier_high,
            "extreme": self.multiplier_extreme,
        }

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """Load configuration from environment variables."""
        return cls(
            window_days=int(os.getenv("SCORING_WINDOW_DAYS", "90")),
            weight_low=float(os.getenv("SCORING_WEIGHT_LOW", "10")),
            weight_medium=float(os.getenv("SCORING_WEIGHT_MEDIUM", "25")),
            weight_high=float(os.getenv("SCORING_WEIGHT_HIGH", "50")),
            weight_critical=float(os.getenv("SCORING_WEIGHT_CRITICAL", "80")),
            verification_bonus=float(os.getenv("SCORING_VERIFICATION_BONUS", "1.2")),
            decay_enabled=_env_bool("SCORING_DECAY_ENABLED", "true"),
            decay_half_life_days=float(os.getenv("SCORING_DECAY_HALF_LIFE_DAYS", "60")),
            decay_floor=float(os.getenv("SCORING_DECAY_FLOOR", "0.1")),
        )


@dataclass
class CorridorConfig:
    """Route corridor analysis configuration."""
    proximity_km: float = 15.0
    interpolation_points: int = 10
    max_recommendations: int = 5

    # Override the packaged corridor catalog
    data_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "CorridorConfig":
        """Load configuration from environment variables."""
        return cls(
            proximity_km=float(os.getenv("CORRIDOR_PROXIMITY_KM", "15")),
            interpolation_points=int(os.getenv("CORRIDOR_INTERPOLATION_POINTS", "10")),
            max_recommendations=int(os.getenv("CORRIDOR_MAX_RECOMMENDATIONS", "5")),
            data_path=os.getenv("CORRIDOR_DATA_PATH"),
        )


@dataclass
class BatchConfig:
    """Batch recalculation configuration."""
    max_concurrency: int = 10
    max_batch_size: int = 500

    @classmethod
    def from_env(cls) -> "BatchConfig":
        """Load configuration from environment variables."""
        return cls(
            max_concurrency=int(os.getenv("BATCH_MAX_CONCURRENCY", "10")),
            max_batch_size=int(os.getenv("BATCH_MAX_SIZE", "500")),
        )


@dataclass
class GeocodingConfig:
    """Geocoding collaborator configuration."""
    base_url: str = "http://localhost:8080"
    api_key: str = ""
    timeout_seconds: float = 5.0

    # H3 resolution used for risk aggregation
    resolution: int = 6

    @classmethod
    def from_env(cls) -> "GeocodingConfig":
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("GEOCODING_BASE_URL", "http://localhost:8080"),
            api_key=os.getenv("GEOCODING_API_KEY", ""),
            timeout_seconds=float(os.getenv("GEOCODING_TIMEOUT_SECONDS", "5.0")),
            resolution=int(os.getenv("H3_RESOLUTION", "6")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"

    # Structured logging
    json_format: bool = True

    # Log destinations
    console: bool = True
    file_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Load configuration from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_format=_env_bool("LOG_JSON_FORMAT", "true"),
            console=_env_bool("LOG_CONSOLE", "true"),
            file_path=os.getenv("LOG_FILE_PATH"),
        )


@dataclass
class ZoneSentinelConfig:
    """Master configuration for ZoneSentinel."""
    environment: Environment = Environment.DEVELOPMENT

    # Sub-configurations
    redis: RedisConfig = field(default_factory=RedisConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    corridor: CorridorConfig = field(default_factory=CorridorConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    geocoding: GeocodingConfig = field(default_factory=GeocodingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "ZoneSentinelConfig":
        """Load all configuration from environment variables."""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            environment = Environment.DEVELOPMENT

        return cls(
            environment=environment,
            redis=RedisConfig.from_env(),
            scoring=ScoringConfig.from_env(),
            corridor=CorridorConfig.from_env(),
            batch=BatchConfig.from_env(),
            geocoding=GeocodingConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    def validate(self) -> Dict[str, Any]:
        """
        Validate configuration and return any warnings/errors.

        Returns:
            Dictionary with 'valid' boolean and 'messages' list
        """
        messages = []
        valid = True

        # Check Redis
        if not self.redis.host:
            messages.append("WARNING: Redis host not configured")

        # Severity weights must be monotonic
        scoring = self.scoring
        weights = [
            scoring.weight_low,
            scoring.weight_medium,
            scoring.weight_high,
            scoring.weight_critical,
        ]
        if any(w < 0 for w in weights) or weights != sorted(weights):
            messages.append("ERROR: Severity weights must be non-negative and increase low -> critical")
            valid = False

        if scoring.verification_bonus <= 1.0:
            messages.append("ERROR: Verification bonus must be greater than 1.0")
            valid = False

        if not 0.0 <= scoring.decay_floor <= 1.0:
            messages.append("ERROR: Decay floor must be within [0, 1]")
            valid = False

        if scoring.decay_half_life_days <= 0:
            messages.append("ERROR: Decay half-life must be positive")
            valid = False

        thresholds = [
            scoring.medium_threshold,
            scoring.high_threshold,
            scoring.extreme_threshold,
        ]
        if thresholds != sorted(set(thresholds)):
            messages.append("ERROR: Risk thresholds must be strictly increasing")
            valid = False

        if self.batch.max_concurrency < 1:
            messages.append("ERROR: Batch concurrency must be at least 1")
            valid = False

        if not 0 <= self.geocoding.resolution <= 15:
            messages.append("ERROR: H3 resolution must be within [0, 15]")
            valid = False

        # Check geocoding in production
        if self.environment == Environment.PRODUCTION:
            if not self.geocoding.api_key:
                messages.append("WARNING: Geocoding API key not configured in production")
            if self.redis.host == "localhost":
                messages.append("WARNING: Using localhost Redis in production")

        return {"valid": valid, "messages": messages}


# Global configuration instance
_config: Optional[ZoneSentinelConfig] = None


def get_config() -> ZoneSentinelConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ZoneSentinelConfig.from_env()
    return _config


def set_config(config: ZoneSentinelConfig) -> None:
    """Set the global configuration instance (for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
