"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (test reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Auth metrics
login_attempts_counter = _counter(
    'gramlink_login_attempts_total',
    'Total number of application login attempts',
    ['status', 'method']
)

# Instagram account linking
instagram_link_attempts_counter = _counter(
    'gramlink_instagram_link_attempts_total',
    'Total number of Instagram account link attempts',
    ['status']
)

# Token lifecycle
token_refresh_counter = _counter(
    'gramlink_instagram_token_refresh_total',
    'Total number of Instagram long-lived token refresh attempts',
    ['result']
)

# Publishing
publish_counter = _counter(
    'gramlink_instagram_publish_total',
    'Total number of Instagram publish attempts',
    ['status']
)
