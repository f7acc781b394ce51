"""Runtime configuration for the quick-add enrichment service.

Values are read from environment variables at import time so deployments can
change them without code changes. Tests patch the module attributes directly.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


# Vikunja instance the enriched tasks are written back to. Both are required;
# the app refuses to start without them (see main.lifespan).
VIKUNJA_BASE_URL = os.getenv('VIKUNJA_BASE_URL', '').rstrip('/')
VIKUNJA_TOKEN = os.getenv('VIKUNJA_TOKEN', '')

HOST = os.getenv('HOST', '0.0.0.0')
try:
    PORT = int(os.getenv('PORT', '3000'))
except ValueError:
    PORT = 3000

# Outgoing Vikunja API calls: per-request timeout in seconds and the number of
# extra attempts made after a timeout, network error or 5xx response.
try:
    HTTP_TIMEOUT_SECONDS = float(os.getenv('HTTP_TIMEOUT_SECONDS', '5'))
except ValueError:
    HTTP_TIMEOUT_SECONDS = 5.0
try:
    HTTP_RETRIES = max(0, int(os.getenv('HTTP_RETRIES', '1')))
except ValueError:
    HTTP_RETRIES = 1

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Vikunja reports "no due date" as this zero timestamp rather than null. A task
# whose due date is anything else has already been scheduled (by the user or
# by a previous enrichment) and is left alone.
VIKUNJA_EMPTY_DUE_DATE = os.getenv('VIKUNJA_EMPTY_DUE_DATE', '0001-01-01T00:00:00Z')

# When false, webhooks are still acknowledged but no task is modified.
ENABLE_ENRICHMENT = _trueish(os.getenv('ENABLE_ENRICHMENT', '1'))

# Optional local overrides: define variables in quickadd/local_config.py to
# override the defaults above without changing versioned config.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    pass
