"""
turnstream - Streaming chat client that assembles structured turns from a workflow backend.
"""

__version__ = "1.0.0"

__all__ = [
    "ChatService",
    "PrivacyVault",
    "ResponseAssembler",
]


# Lazy attribute access keeps `import turnstream.domain...` light.
def __getattr__(name: str):  # pragma: no cover - simple lazy loader
    if name == "ChatService":
        from .application.chat_service import ChatService as _C
        return _C
    if name == "PrivacyVault":
        from .domain.services.privacy_vault import PrivacyVault as _V
        return _V
    if name == "ResponseAssembler":
        from .domain.services.response_assembler import ResponseAssembler as _A
        return _A
    raise AttributeError(f"module 'turnstream' has no attribute {name!r}")
