# scripts/test_all_providers.py
import asyncio
from pathlib import Path

from dotenv import load_dotenv

# Resolve .env relative to the repo root so this script works from any cwd.
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from chatrelay.config import Settings  # noqa: E402
from chatrelay.errors import RelayError  # noqa: E402
from chatrelay.providers import CompletionRequest, ProviderClient  # noqa: E402

# One representative registry model per provider.
MODELS_TO_TEST = ["gpt-3.5-turbo", "claude-3-haiku", "deepseek-chat"]


async def test_model(provider: ProviderClient, model_id: str) -> None:
    """Stream a short answer from one model."""
    model = provider.resolve_model(model_id)
    if not provider.configuration_status()[model.provider.value]:
        print(f"⏭️  Skipping {model.name} (no API key)")
        return

    print(f"\n🧪 Testing {model.name}...")
    request = CompletionRequest(
        model=model_id,
        messages=[{"role": "user", "content": "Say 'Hello from chatrelay!' in one sentence."}],
        stream=True,
    )

    try:
        print("   Response: ", end="")
        async for chunk in provider.generate(request):
            if chunk.content:
                print(chunk.content, end="", flush=True)
            if chunk.usage:
                print(f"\n   Tokens: {chunk.usage}")
        print(f"\n   ✅ {model.name} working!")
    except RelayError as e:
        print(f"\n   ❌ Error: {type(e).__name__}: {e.message}")


async def test_chat_with_fallback(provider: ProviderClient) -> None:
    """Non-streaming chat; a rate-limited model falls back to another provider."""
    request = CompletionRequest(
        model="deepseek-chat",
        messages=[{"role": "user", "content": "What is 2+2?"}],
        temperature=0,
    )
    print("\n🧪 Testing chat()...")
    try:
        result = await provider.chat(request)
    except RelayError as e:
        print(f"   ❌ Error: {type(e).__name__}: {e.message}")
        return
    print(f"   Answered by {result.model}: {result.content}")
    print(f"   Usage: {result.usage_dict()}  cost: ${result.cost:.6f}")


async def main() -> None:
    print("=" * 60)
    print("Multi-Provider Test Suite")
    print("=" * 60)

    provider = ProviderClient(api_keys=Settings().api_keys())
    print(f"Configuration: {provider.configuration_status()}")

    for model_id in MODELS_TO_TEST:
        await test_model(provider, model_id)
    await test_chat_with_fallback(provider)

    print("\n" + "=" * 60)
    print("Testing complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
