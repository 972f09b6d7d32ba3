"""
Dispatcher module: multi-key AI request dispatch with credential rotation.

Key exports:
- GenerationRequest / GenerationResult: request envelope and raw result
- KeyRotatingDispatcher: rotates API keys on retryable provider failures
- get_dispatcher(): the process-wide dispatcher built from settings
- create_client() / client_factory_for(): credential-bound provider clients
- Error taxonomy: ConfigurationError, NonRetryableProviderError,
  ExhaustedRetriesError, ...
- Retry predicates: is_retryable_error (default), retry_on_any_error
"""

from agricare.dispatcher.clients import (
    # Envelope and result
    GenerationRequest,
    GenerationResult,
    TokenUsage,
    # Provider clients
    AIProvider,
    GenerationClient,
    GeminiClient,
    ChatCompletionsClient,
    create_client,
    client_factory_for,
)
from agricare.dispatcher.errors import (
    # Errors
    DispatchError,
    ConfigurationError,
    ProviderError,
    RetryableProviderError,
    NonRetryableProviderError,
    ExhaustedRetriesError,
    # Retry predicates
    is_retryable_error,
    retry_on_any_error,
    get_retry_predicate,
)
from agricare.dispatcher.handlers import (
    KeyRotatingDispatcher,
    get_dispatcher,
    reset_dispatcher,
)

__all__ = [
    # Envelope and result
    "GenerationRequest",
    "GenerationResult",
    "TokenUsage",
    # Provider clients
    "AIProvider",
    "GenerationClient",
    "GeminiClient",
    "ChatCompletionsClient",
    "create_client",
    "client_factory_for",
    # Errors
    "DispatchError",
    "ConfigurationError",
    "ProviderError",
    "RetryableProviderError",
    "NonRetryableProviderError",
    "ExhaustedRetriesError",
    # Retry predicates
    "is_retryable_error",
    "retry_on_any_error",
    "get_retry_predicate",
    # Dispatcher
    "KeyRotatingDispatcher",
    "get_dispatcher",
    "reset_dispatcher",
]
