"""
Feature flags and runtime settings.

Everything here is read from the environment (a `.env` file is loaded by
`pollvault.database` before this module is consulted).
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class FeatureFlags:
    """
    Feature flags for the voting core.

    To add a new flag, declare it here, load it from the environment
    and read it through `feature_flags`.
    """

    # Commit the tallies of every poll when an event enters FINALIZED
    FEATURE_RESULTS_COMMITMENT: bool = get_bool_env('FEATURE_RESULTS_COMMITMENT', True)

    # Run the date-driven status sweep in the background while the API is up
    FEATURE_AUTO_RECONCILE: bool = get_bool_env('FEATURE_AUTO_RECONCILE', False)
    RECONCILE_INTERVAL_SECONDS: int = get_int_env('RECONCILE_INTERVAL_SECONDS', 60)

    # slowapi limit string applied to ballot submission
    VOTE_RATE_LIMIT: str = os.getenv('VOTE_RATE_LIMIT', '30/minute')

    @classmethod
    def is_enabled(cls, flag_name: str) -> bool:
        """Check if a feature flag is enabled by name."""
        return bool(getattr(cls, flag_name, False))

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all boolean feature flags as a dictionary."""
        return {
            key: value
            for key, value in vars(cls).items()
            if key.startswith('FEATURE_') and isinstance(value, bool)
        }


feature_flags = FeatureFlags()
