"""
LLM Client for Project Vanguard
Runs generator calls off the tick loop and hands back futures.

FLOW:
1. Orchestrator builds a GeneratorRequest (prompt_builder)
2. submit(request) -> concurrent.futures.Future
   - mock: the future is already resolved (keyword generator is instant)
   - live: provider.generate() runs on a worker thread
3. The orchestrator polls future.done() every tick; the result is the
   provider's (response_text, error) tuple

Provider is selected via the LLM_MODE environment variable:
- "mock" (default): Keyword generator
- "openai": OpenAI structured outputs
- "anthropic": Claude API
- "groq": Groq API (fast, cheap)

Supports BYOK (Bring Your Own Key) for users with their own API keys.
"""

import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Tuple

from dotenv import load_dotenv

from vanguard.ai.providers import get_provider, PROVIDERS
from vanguard.ai.schemas import GeneratorRequest
from vanguard.config import DEFAULT_MAX_CONCURRENT_REQUESTS, DEFAULT_REQUEST_TIMEOUT_SECONDS

# Load environment variables
load_dotenv()

GeneratorResult = Tuple[Optional[str], Optional[str]]


class LLMClient:
    """
    Generator client with provider abstraction and a worker pool.

    The pool size caps real concurrency; the orchestrator's own limit is
    what decides how many requests are outstanding. Cancelling a running
    future does not stop it: a call the orchestrator timed out keeps its
    worker until the provider's httpx timeout (request_timeout) fires.
    """

    def __init__(self, provider: str = None, api_key: str = None,
                 max_workers: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS):
        """
        Initialize the client.

        Args:
            provider: Override provider selection (mock, openai, anthropic, groq)
            api_key: BYOK - user-provided API key. If provided, overrides env key.
            max_workers: Worker threads for live calls
            request_timeout: HTTP timeout handed to the provider
        """
        # Store BYOK key if provided
        self._byok_key = api_key
        self.request_timeout = request_timeout
        self.max_workers = max_workers

        self.provider_name = (provider or os.getenv("LLM_MODE", "mock")).lower()

        # Validate provider name
        if self.provider_name not in PROVIDERS:
            print(f"Warning: Unknown LLM_MODE '{self.provider_name}', falling back to 'mock'")
            self.provider_name = "mock"

        self.provider = get_provider(self.provider_name)
        self.use_real_api = self.provider_name != "mock"

        # API key handling - BYOK takes priority
        if self._byok_key:
            self.api_key = self._byok_key
            # Also set on provider for when it makes API calls
            self.provider._api_key = self._byok_key
        else:
            self.api_key = self.provider.get_api_key()

        if self.use_real_api and not self.api_key:
            print(f"Warning: API key not found for provider '{self.provider_name}'. "
                  "Requests will fail until a key is configured.")

        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="vanguard-llm")

        print(f"LLM Client: provider={self.provider_name.upper()}, key_source={self.key_source}")

    @classmethod
    def create(cls, user_api_key: str = None, max_workers: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
               request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> "LLMClient":
        """
        Factory to create appropriate client.

        Args:
            user_api_key: If provided, use BYOK mode. If None, use env config.

        Returns:
            LLMClient configured for mock, inhouse, or byok.
        """
        mode = os.getenv("LLM_MODE", "mock").lower()
        if user_api_key and mode == "mock":
            # A key without a provider choice means Anthropic
            mode = "anthropic"
        return cls(provider=mode, api_key=user_api_key, max_workers=max_workers,
                   request_timeout=request_timeout)

    @property
    def key_source(self) -> str:
        """Return 'none', 'inhouse', or 'byok' for logging/UI."""
        if not self.use_real_api or not self.api_key:
            return "none"
        if self._byok_key:
            return "byok"
        return "inhouse"

    def submit(self, request: GeneratorRequest) -> Future:
        """
        Start a generator call without blocking.

        Returns:
            Future resolving to (response_text, error)
        """
        if not self.use_real_api:
            future: Future = Future()
            future.set_result(self._call(request))
            return future

        print(f"LLM Client: dispatching {request.request_id} "
              f"({request.schema_variant}, units={request.unit_ids})")
        return self._executor.submit(self._call, request)

    def generate(self, request: GeneratorRequest) -> GeneratorResult:
        """Blocking call, for scripts and the HTTP layer's debug paths."""
        return self._call(request)

    def _call(self, request: GeneratorRequest) -> GeneratorResult:
        try:
            return self.provider.generate(request, timeout=self.request_timeout)
        except Exception as e:
            # Providers should not raise; a bug in one must not kill the worker
            print(f"LLM Client: provider {self.provider_name} raised {type(e).__name__}: {e}")
            return None, f"Unexpected error: {type(e).__name__}"

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
