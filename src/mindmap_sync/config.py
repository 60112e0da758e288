"""Runtime configuration for the sync service.

Reads backend connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MINDMAP_SYNC_URL: Backend REST base URL (required for the rest backend)
    MINDMAP_SYNC_API_KEY: Backend API key (required for the rest backend)
    MINDMAP_SYNC_BACKEND: "rest" or "memory" (optional, default: rest)
    MINDMAP_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    MINDMAP_SYNC_MAX_PARALLEL_REQUESTS: Max parallel backend requests (optional, default: 5)
    MINDMAP_SYNC_POLL_INTERVAL: Seconds between change-feed polls (optional, default: 2)
    MINDMAP_SYNC_STATE_DIR: Directory for the pending-operation log (optional)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

BACKEND_KINDS = ("rest", "memory")


@dataclass
class Config:
    backend_url: str = ""
    api_key: str = ""
    backend_kind: str = "rest"
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    poll_interval: float = 2.0
    state_dir: str | None = None


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    The memory backend needs no connection settings.

    Raises:
        ValueError: If the backend kind is unknown, the URL is malformed
            or the API key is empty.
    """
    if config.backend_kind not in BACKEND_KINDS:
        raise ValueError(
            f"Invalid backend '{config.backend_kind}': must be one of {', '.join(BACKEND_KINDS)}"
        )

    if config.poll_interval <= 0:
        raise ValueError(
            f"Invalid poll interval {config.poll_interval}: must be positive"
        )

    if config.backend_kind == "memory":
        return

    config.backend_url = config.backend_url.strip()

    if not config.backend_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid backend URL '{config.backend_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.backend_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid backend URL '{config.backend_url}': URL must include a hostname"
        )

    config.backend_url = config.backend_url.removesuffix("/")

    if not config.api_key.strip():
        raise ValueError(
            "Backend API key cannot be empty. Set MINDMAP_SYNC_API_KEY environment variable."
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(key: str, kind, low, high):
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = kind(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    url: str | None = None,
    api_key: str | None = None,
    backend: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override backend URL.
        api_key: Override backend API key.
        backend: Override backend kind ("rest" or "memory").
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Merged ``backend`` and ``sync`` sections of the
            YAML config, used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required settings are missing or invalid after
            checking all sources.
    """
    fb = yaml_fallbacks or {}

    backend_kind = (
        backend
        or os.getenv("MINDMAP_SYNC_BACKEND")
        or fb.get("kind")
        or "rest"
    ).strip()

    backend_url = url or os.getenv("MINDMAP_SYNC_URL") or fb.get("url") or ""
    key = api_key or os.getenv("MINDMAP_SYNC_API_KEY") or fb.get("api_key") or ""

    if backend_kind == "rest":
        if not backend_url:
            raise ValueError(
                "Backend URL not found. Set MINDMAP_SYNC_URL environment variable, "
                "pass --url CLI argument, or add 'url' to config.yml."
            )
        if not key:
            raise ValueError(
                "Backend API key not found. Set MINDMAP_SYNC_API_KEY environment variable, "
                "pass --api-key CLI argument, or add 'api_key' to config.yml."
            )

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("MINDMAP_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("MINDMAP_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    max_parallel = _get_number_env(
        "MINDMAP_SYNC_MAX_PARALLEL_REQUESTS", int, 1, 100
    )
    if max_parallel is None:
        max_parallel = int(fb.get("max_parallel_requests", 5))

    poll_interval = _get_number_env(
        "MINDMAP_SYNC_POLL_INTERVAL", float, 0.1, 3600
    )
    if poll_interval is None:
        poll_interval = float(fb.get("poll_interval", 2.0))

    state_dir = os.getenv("MINDMAP_SYNC_STATE_DIR") or fb.get("state_dir")

    config = Config(
        backend_url=backend_url.strip(),
        api_key=key.strip(),
        backend_kind=backend_kind,
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=max_parallel,
        poll_interval=poll_interval,
        state_dir=state_dir,
    )

    validate_config(config)

    return config
