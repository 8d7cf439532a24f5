from turnstream.infrastructure.config import settings as settings_module
from turnstream.infrastructure.config.settings import (
    AppSettings, BackendSettings, PrivacySettings, StreamSettings,
)


def test_defaults():
    s = AppSettings()
    assert s.backend.api_key is None
    assert s.backend.user_id == 'cli-user'
    assert s.backend.stop_timeout_s == 5.0
    assert s.stream.display_grace_ms == 300
    assert 'Check ' in s.stream.hidden_node_prefixes
    assert 'GATE_' in s.stream.hidden_node_prefixes
    assert s.privacy.enabled is True
    assert s.validate_required_settings() == ['DIFY_API_KEY', 'DIFY_API_URL']


def test_backend_env_and_url_normalization(monkeypatch):
    monkeypatch.setenv('DIFY_API_KEY', ' app-123 ')
    monkeypatch.setenv('DIFY_API_URL', 'https://dify.example/v1/ ')
    monkeypatch.setenv('DIFY_STOP_TIMEOUT_S', '2.5')
    b = BackendSettings()
    assert b.api_key == 'app-123'
    assert b.api_url == 'https://dify.example/v1'
    assert b.stop_timeout_s == 2.5


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / '.env').write_text('DIFY_API_KEY=from-file\nDIFY_API_URL=https://file.example\n')
    s = AppSettings()
    assert s.backend.api_key == 'from-file'
    assert s.validate_required_settings() == []


def test_stream_settings_parsing(monkeypatch):
    monkeypatch.setenv('STREAM_HIDDEN_NODE_PREFIXES', 'INTERNAL_, Check ,')
    monkeypatch.setenv('STREAM_DISPLAY_GRACE_MS', '99999')
    s = StreamSettings()
    assert s.hidden_node_prefixes == ['INTERNAL_', 'Check ']
    assert s.display_grace_ms == 5000
    assert StreamSettings(display_grace_ms=-5).display_grace_ms == 0


def test_privacy_settings_parsing(monkeypatch):
    monkeypatch.setenv('PRIVACY_ENABLED', 'false')
    monkeypatch.setenv('PRIVACY_EXCLUDE_CATEGORIES', 'Email, phone_number')
    p = PrivacySettings()
    assert p.enabled is False
    assert p.exclude_categories == ['email', 'phone_number']


def test_cli_and_logging_aliases(monkeypatch):
    monkeypatch.setenv('CLI_SHOW_TRACE', 'true')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    s = AppSettings()
    assert s.show_trace is True
    assert s.log_level == 'DEBUG'
    assert AppSettings(log_level='loud').log_level == 'INFO'


def test_to_dict_masks_api_key():
    s = AppSettings(backend=BackendSettings(api_key='secret', api_url='https://x'))
    data = s.to_dict()
    assert data['backend']['api_key'] == '***'
    assert data['backend']['api_url'] == 'https://x'


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setattr(settings_module, '_settings', None)
    first = settings_module.get_settings()
    assert settings_module.get_settings() is first
    assert settings_module.reload_settings() is not first
