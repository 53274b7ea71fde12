"""LLM provider abstraction layer.

Public surface area for the providers package.  Import from here rather than
from the individual submodules so internal structure can change freely.

Example::

    from chatrelay.providers import CompletionRequest, ProviderClient

    client = ProviderClient(api_keys={"openai": "sk-..."})
    request = CompletionRequest(
        model="gpt-4",
        messages=[{"role": "user", "content": "Hello"}],
    )
    result = await client.chat(request)
    print(result.content, result.cost)
"""

from chatrelay.providers.litellm_wrapper import FALLBACK_MODELS, ProviderClient
from chatrelay.providers.models import ChatResult, CompletionChunk, CompletionRequest

__all__ = [
    # Models
    "CompletionRequest",
    "CompletionChunk",
    "ChatResult",
    # Client
    "ProviderClient",
    "FALLBACK_MODELS",
]
