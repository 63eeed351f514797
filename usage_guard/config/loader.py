"""
Configuration management and loading.

Resolves every limit threshold from environment variables, optionally
layered over a strictly validated YAML overrides file.

Precedence: environment variable > YAML file > built-in default.
"""

import hmac
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml


CONFIG_FILE_ENV = "USAGE_GUARD_CONFIG_FILE"

BYTES_PER_MB = 1024 * 1024

SUPPORTED_IMAGE_TYPES: Tuple[str, ...] = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/tiff",
    "image/webp",
    "image/bmp",
)

# Scanned documents that may need OCR
SUPPORTED_DOCUMENT_TYPES: Tuple[str, ...] = (
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/tiff",
)


@dataclass(frozen=True)
class TokenLimits:
    """Token quotas for each tier."""
    per_request: int = 4000
    per_session: int = 50000
    per_day: int = 100000
    per_month: int = 1000000
    output_buffer: int = 1000  # Reserved for the model's reply when estimating

    def __post_init__(self):
        """Validate limits are not negative."""
        for name in ("per_request", "per_session", "per_day", "per_month", "output_buffer"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class OCRLimits:
    """OCR file, page, document and queue limits."""
    max_file_size_mb: int = 5
    max_pages_per_document: int = 10
    max_pages_per_session: int = 30
    max_pages_per_day: int = 50
    max_documents_per_session: int = 5
    max_documents_per_day: int = 20
    max_concurrent_jobs: int = 3
    processing_timeout_ms: int = 120000
    supported_image_types: Tuple[str, ...] = SUPPORTED_IMAGE_TYPES
    supported_document_types: Tuple[str, ...] = SUPPORTED_DOCUMENT_TYPES

    def __post_init__(self):
        """Validate limits are not negative."""
        for name in (
            "max_file_size_mb",
            "max_pages_per_document",
            "max_pages_per_session",
            "max_pages_per_day",
            "max_documents_per_session",
            "max_documents_per_day",
            "max_concurrent_jobs",
            "processing_timeout_ms",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * BYTES_PER_MB

    def is_supported_type(self, mime_type: str) -> bool:
        return mime_type in self.supported_image_types or mime_type in self.supported_document_types


@dataclass(frozen=True)
class TierLimits:
    """Request-rate limits for one user tier.

    ``math.inf`` means unlimited.
    """
    requests_per_minute: float
    requests_per_hour: float
    requests_per_day: float
    min_request_interval_ms: float


@dataclass(frozen=True)
class RateLimitConfig:
    """Request-rate limits for every tier."""
    demo: TierLimits = TierLimits(10, 60, 200, 2000)
    authenticated: TierLimits = TierLimits(30, 300, 1000, 500)
    premium: TierLimits = TierLimits(60, 1000, 5000, 100)
    admin: TierLimits = TierLimits(math.inf, math.inf, math.inf, 0)

    def for_tier(self, tier: str) -> TierLimits:
        """Get limits for a tier name.

        Raises:
            ValueError: If the tier is unknown
        """
        if tier not in RATE_LIMIT_TIERS:
            raise ValueError(f"Unknown tier: {tier}")
        return getattr(self, tier)


RATE_LIMIT_TIERS = ("demo", "authenticated", "premium", "admin")


@dataclass(frozen=True)
class AdminConfig:
    """Override keys. A key only works when its flag is on and it is non-empty."""
    override_enabled: bool = False
    override_key: str = field(default="", repr=False)
    ocr_bypass_enabled: bool = False
    ocr_bypass_key: str = field(default="", repr=False)

    def is_admin_override(self, provided: Optional[str]) -> bool:
        return _key_matches(self.override_enabled, self.override_key, provided)

    def is_ocr_bypass(self, provided: Optional[str]) -> bool:
        return _key_matches(self.ocr_bypass_enabled, self.ocr_bypass_key, provided)


def _key_matches(enabled: bool, configured: str, provided: Optional[str]) -> bool:
    if not enabled or not configured or provided is None:
        return False
    return hmac.compare_digest(configured.encode("utf-8"), provided.encode("utf-8"))


@dataclass(frozen=True)
class MaintenanceConfig:
    """Background cleanup settings."""
    session_expiry_hours: int = 24
    job_retention_minutes: int = 60
    cleanup_interval_seconds: int = 3600


@dataclass(frozen=True)
class FeatureFlags:
    """Optional product features. Disabled ones back the upgrade prompts."""
    export: bool = False
    bulk_upload: bool = False
    advanced_search: bool = False
    research_mode: bool = True
    customization: bool = False
    api_access: bool = False

    def disabled_features(self) -> List[str]:
        """Display names of the disabled features that can be upgraded to."""
        return [label for name, label in _FEATURE_LABELS.items() if not getattr(self, name)]


# Research mode is not an upgrade
_FEATURE_LABELS = {
    "export": "Document Export",
    "bulk_upload": "Bulk Upload",
    "advanced_search": "Advanced Search",
    "customization": "Chatbot Customization",
    "api_access": "API Access",
}


@dataclass(frozen=True)
class LimitsConfig:
    """Complete, immutable limits snapshot."""
    tokens: TokenLimits = TokenLimits()
    ocr: OCRLimits = OCRLimits()
    rate_limits: RateLimitConfig = RateLimitConfig()
    admin: AdminConfig = AdminConfig()
    maintenance: MaintenanceConfig = MaintenanceConfig()
    features: FeatureFlags = FeatureFlags()

    def limits_summary(self) -> Dict[str, List[str]]:
        """Short human-readable limit lines for the demo banner."""
        tokens, ocr, features = self.tokens, self.ocr, self.features
        return {
            "tokens": [
                f"{tokens.per_request:,} tokens per request",
                f"{tokens.per_session:,} tokens per session",
                f"{tokens.per_day:,} tokens per day",
            ],
            "ocr": [
                f"{ocr.max_file_size_mb}MB max file size",
                f"{ocr.max_pages_per_document} pages per document",
                f"{ocr.max_documents_per_session} documents per session",
                f"{ocr.max_pages_per_day} pages per day",
            ],
            "features": [
                "Export enabled" if features.export else "Export disabled",
                "Bulk upload enabled" if features.bulk_upload else "Bulk upload disabled",
                "Advanced search enabled" if features.advanced_search else "Advanced search disabled",
            ],
        }


# Environment variable for each (section, field)
_TOKEN_ENV = {
    "per_request": "TOKEN_LIMIT_PER_REQUEST",
    "per_session": "TOKEN_LIMIT_PER_SESSION",
    "per_day": "TOKEN_LIMIT_DAILY_PER_USER",
    "per_month": "TOKEN_LIMIT_MONTHLY_PER_USER",
    "output_buffer": "TOKEN_OUTPUT_BUFFER",
}

_OCR_ENV = {
    "max_file_size_mb": "OCR_MAX_FILE_SIZE_MB",
    "max_pages_per_document": "OCR_MAX_PAGES_PER_DOCUMENT",
    "max_pages_per_session": "OCR_MAX_PAGES_PER_SESSION",
    "max_pages_per_day": "OCR_MAX_PAGES_PER_DAY",
    "max_documents_per_session": "OCR_MAX_DOCUMENTS_PER_SESSION",
    "max_documents_per_day": "OCR_MAX_DOCUMENTS_PER_DAY",
    "max_concurrent_jobs": "OCR_MAX_CONCURRENT_JOBS",
    "processing_timeout_ms": "OCR_PROCESSING_TIMEOUT_MS",
}

_TIER_ENV_PREFIX = {
    "demo": "DEMO",
    "authenticated": "AUTH",
    "premium": "PREMIUM",
}

_TIER_ENV_SUFFIX = {
    "requests_per_minute": "RATE_LIMIT_RPM",
    "requests_per_hour": "RATE_LIMIT_RPH",
    "requests_per_day": "RATE_LIMIT_RPD",
    "min_request_interval_ms": "RATE_LIMIT_MIN_INTERVAL_MS",
}

_MAINTENANCE_ENV = {
    "session_expiry_hours": "USAGE_SESSION_EXPIRY_HOURS",
    "job_retention_minutes": "OCR_JOB_RETENTION_MINUTES",
    "cleanup_interval_seconds": "USAGE_CLEANUP_INTERVAL_SECONDS",
}

_FEATURE_ENV = {
    "export": "DEMO_FEATURE_EXPORT",
    "bulk_upload": "DEMO_FEATURE_BULK_UPLOAD",
    "advanced_search": "DEMO_FEATURE_ADVANCED_SEARCH",
    "research_mode": "DEMO_FEATURE_RESEARCH_MODE",
    "customization": "DEMO_FEATURE_CUSTOMIZATION",
    "api_access": "DEMO_FEATURE_API_ACCESS",
}

_ADMIN_KEYS = {"override_enabled", "override_key", "ocr_bypass_enabled", "ocr_bypass_key"}


def load_config(
    env: Optional[Mapping[str, str]] = None,
    overrides_path: Optional[str] = None,
) -> LimitsConfig:
    """Build a limits snapshot from the environment.

    Malformed numeric environment values silently fall back to the file or
    built-in default. The overrides file, when given (or named by
    ``USAGE_GUARD_CONFIG_FILE``), is validated strictly.

    Args:
        env: Environment mapping (defaults to ``os.environ``)
        overrides_path: Optional path to a YAML overrides file

    Returns:
        A frozen LimitsConfig

    Raises:
        FileNotFoundError: If the overrides file doesn't exist
        yaml.YAMLError: If the overrides file is not valid YAML
        ValueError: If the overrides file is invalid
    """
    env = os.environ if env is None else env
    path = overrides_path or env.get(CONFIG_FILE_ENV)
    overrides = load_overrides_file(path) if path else {}

    token_overrides = overrides.get("tokens", {})
    tokens = TokenLimits(**{
        name: _int_setting(env, key, token_overrides.get(name), getattr(TokenLimits, name))
        for name, key in _TOKEN_ENV.items()
    })

    ocr_overrides = overrides.get("ocr", {})
    ocr = OCRLimits(**{
        name: _int_setting(env, key, ocr_overrides.get(name), getattr(OCRLimits, name))
        for name, key in _OCR_ENV.items()
    })

    rate_overrides = overrides.get("rate_limits", {})
    tiers = {}
    for tier, prefix in _TIER_ENV_PREFIX.items():
        defaults = getattr(RateLimitConfig, tier)
        tier_overrides = rate_overrides.get(tier, {})
        tiers[tier] = TierLimits(**{
            name: _int_setting(env, f"{prefix}_{suffix}", tier_overrides.get(name), getattr(defaults, name))
            for name, suffix in _TIER_ENV_SUFFIX.items()
        })
    rate_limits = RateLimitConfig(**tiers)

    admin_overrides = overrides.get("admin", {})
    admin = AdminConfig(
        override_enabled=_bool_setting(
            env, "ADMIN_OVERRIDE_ENABLED", admin_overrides.get("override_enabled"), False
        ),
        override_key=env.get("ADMIN_OVERRIDE_KEY") or admin_overrides.get("override_key", ""),
        ocr_bypass_enabled=_bool_setting(
            env, "OCR_BYPASS_ENABLED", admin_overrides.get("ocr_bypass_enabled"), False
        ),
        ocr_bypass_key=env.get("OCR_BYPASS_KEY") or admin_overrides.get("ocr_bypass_key", ""),
    )

    maintenance_overrides = overrides.get("maintenance", {})
    maintenance = MaintenanceConfig(**{
        name: _int_setting(env, key, maintenance_overrides.get(name), getattr(MaintenanceConfig, name))
        for name, key in _MAINTENANCE_ENV.items()
    })

    feature_overrides = overrides.get("features", {})
    features = FeatureFlags(**{
        name: _bool_setting(env, key, feature_overrides.get(name), getattr(FeatureFlags, name))
        for name, key in _FEATURE_ENV.items()
    })

    return LimitsConfig(
        tokens=tokens,
        ocr=ocr,
        rate_limits=rate_limits,
        admin=admin,
        maintenance=maintenance,
        features=features,
    )


def load_overrides_file(path: str) -> Dict[str, Dict[str, Any]]:
    """Load and validate a YAML overrides file.

    Strict validation ensures a typo in a limit name can't silently leave
    a quota at its default.

    Args:
        path: Path to YAML overrides file

    Returns:
        Validated overrides, keyed by section

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Limits config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    allowed_top_keys = {'tokens', 'ocr', 'rate_limits', 'admin', 'maintenance', 'features'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    overrides: Dict[str, Dict[str, Any]] = {}

    if 'tokens' in raw_config:
        overrides['tokens'] = _parse_numeric_section(raw_config['tokens'], set(_TOKEN_ENV), "tokens")
    if 'ocr' in raw_config:
        overrides['ocr'] = _parse_numeric_section(raw_config['ocr'], set(_OCR_ENV), "ocr")
    if 'maintenance' in raw_config:
        overrides['maintenance'] = _parse_numeric_section(
            raw_config['maintenance'], set(_MAINTENANCE_ENV), "maintenance"
        )

    if 'rate_limits' in raw_config:
        rate_data = _require_mapping(raw_config['rate_limits'], "rate_limits")
        unknown_tiers = set(rate_data.keys()) - set(_TIER_ENV_PREFIX)
        if unknown_tiers:
            raise ValueError(f"Unknown rate limit tiers: {unknown_tiers}")
        overrides['rate_limits'] = {
            tier: _parse_numeric_section(tier_data, set(_TIER_ENV_SUFFIX), f"rate_limits.{tier}")
            for tier, tier_data in rate_data.items()
        }

    if 'admin' in raw_config:
        admin_data = _require_mapping(raw_config['admin'], "admin")
        unknown_admin_keys = set(admin_data.keys()) - _ADMIN_KEYS
        if unknown_admin_keys:
            raise ValueError(f"Unknown keys in admin: {unknown_admin_keys}")
        for flag in ("override_enabled", "ocr_bypass_enabled"):
            if flag in admin_data and not isinstance(admin_data[flag], bool):
                raise ValueError(f"'{flag}' in admin must be a boolean")
        for key in ("override_key", "ocr_bypass_key"):
            if key in admin_data and not isinstance(admin_data[key], str):
                raise ValueError(f"'{key}' in admin must be a string")
        overrides['admin'] = dict(admin_data)

    if 'features' in raw_config:
        feature_data = _require_mapping(raw_config['features'], "features")
        unknown_features = set(feature_data.keys()) - set(_FEATURE_ENV)
        if unknown_features:
            raise ValueError(f"Unknown keys in features: {unknown_features}")
        for flag, value in feature_data.items():
            if not isinstance(value, bool):
                raise ValueError(f"'{flag}' in features must be a boolean")
        overrides['features'] = dict(feature_data)

    return overrides


def _require_mapping(data: Any, path: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    return data


def _parse_numeric_section(data: Any, allowed_keys: set, path: str) -> Dict[str, int]:
    """Validate a section of non-negative integer limits.

    Raises:
        ValueError: If the section has unknown keys or invalid values
    """
    data = _require_mapping(data, path)
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    parsed = {}
    for key, value in data.items():
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' in {path} must be an integer")
        if value < 0:
            raise ValueError(f"'{key}' in {path} cannot be negative")
        parsed[key] = value
    return parsed


def _int_setting(env: Mapping[str, str], key: str, override: Optional[int], default: float) -> float:
    base = override if override is not None else default
    raw = env.get(key)
    if not raw:
        return base
    try:
        value = int(raw.strip())
    except ValueError:
        return base
    return value if value >= 0 else base


def _bool_setting(env: Mapping[str, str], key: str, override: Optional[bool], default: bool) -> bool:
    base = override if override is not None else default
    raw = env.get(key)
    if not raw:
        return base
    return raw.lower() == "true" or raw == "1"
