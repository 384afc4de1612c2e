"""
Chat Backend Factory

This module provides a factory function to create chat backends based on configuration.

Usage:
    # Local Ollama server
    backend = create_chat_backend("ollama", base_url="http://127.0.0.1:11434", model_id="deepseek-r1:1.5b")

    # Recorded response body, no server needed
    backend = create_chat_backend("replay", path="recordings/hello.ndjson")
"""

from .base_llm_client import BaseChatBackend


def create_chat_backend(provider: str, **kwargs) -> BaseChatBackend:
    """
    Factory function to create chat backends

    Args:
        provider: The backend provider ("ollama", "replay")
        **kwargs: Provider-specific configuration

    Returns:
        BaseChatBackend: An instance of the appropriate backend

    Raises:
        ValueError: If provider is not supported
    """

    if provider == "ollama":
        from .ollama_client import OllamaClient
        return OllamaClient(**kwargs)

    elif provider == "replay":
        from .replay_client import ReplayClient
        path = kwargs.pop("path", None)
        if path is not None:
            return ReplayClient.from_file(path, **kwargs)
        return ReplayClient(**kwargs)

    else:
        raise ValueError(
            f"Unsupported provider: {provider}. "
            f"Supported providers: ollama, replay"
        )
