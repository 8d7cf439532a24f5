import pytest


_ENV_VARS = (
    'DIFY_API_KEY', 'DIFY_API_URL', 'DIFY_USER_ID', 'DIFY_STOP_TIMEOUT_S',
    'STREAM_DISPLAY_GRACE_MS', 'STREAM_HIDDEN_NODE_PREFIXES',
    'PRIVACY_ENABLED', 'PRIVACY_EXCLUDE_CATEGORIES',
    'CLI_QUIET', 'CLI_SHOW_TRACE', 'LOG_LEVEL', 'LOG_FORMAT',
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Settings read the process env and ./.env; keep both out of unit tests
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
