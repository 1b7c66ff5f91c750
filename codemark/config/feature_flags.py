"""
Feature Flags Configuration

All feature flags are loaded from environment variables.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the application.

    Routes and tasks read the class attributes at call time, so a flag
    changed on the class takes effect immediately.
    """

    # Poll the provider from a background task right after /analyze
    FEATURE_BACKGROUND_POLLING: bool = get_bool_env('FEATURE_BACKGROUND_POLLING', True)

    # Periodically resume polling for submissions left in Processing
    FEATURE_POLL_SWEEPER: bool = get_bool_env('FEATURE_POLL_SWEEPER', False)

    # Store one AnalysisResult per archive entry when the provider reports them
    FEATURE_PER_FILE_RESULTS: bool = get_bool_env('FEATURE_PER_FILE_RESULTS', True)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in vars(cls).items()
            if key.startswith('FEATURE_') and isinstance(value, bool)
        }
