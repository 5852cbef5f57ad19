import logging
from typing import Dict, List, NamedTuple, Optional

from lib.error_handler import AllProvidersFailedError

logger = logging.getLogger(__name__)

COMPLEX_INDICATORS = (
    'explain',
    'how to',
    'what is',
    'why does',
    'analyze',
    'compare',
    'describe',
    'elaborate',
    'detailed',
    'comprehensive',
)

TECHNICAL_TERMS = (
    'api',
    'database',
    'algorithm',
    'framework',
    'protocol',
    'architecture',
    'integration',
    'deployment',
    'optimization',
    'scalability',
)

class ProviderSelection(NamedTuple):
    provider: str
    reason: str

class ProviderResult(NamedTuple):
    provider: str
    text: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)

class ProviderRouter:
    """Picks a generation provider for a message and falls back once on failure.

    The fallback attempt always goes to the primary provider's conversational
    entry point, whatever provider was selected first. The secondary provider
    is registered (so an explicit override can name it) but is never chosen by
    the heuristics.
    """

    def __init__(
        self,
        providers: Dict[str, object],
        primary: str = 'grok',
        fallback: str = 'openai',
        history_turn_threshold: int = 5,
        long_message_chars: int = 500
    ):
        if primary not in providers:
            raise ValueError(f"Primary provider {primary!r} is not registered")
        self.providers = providers
        self.primary = primary
        self.fallback = fallback
        self.history_turn_threshold = history_turn_threshold
        self.long_message_chars = long_message_chars

    def select_provider(
        self,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> ProviderSelection:
        options = options or {}
        requested = options.get('provider')
        if requested and requested in self.providers:
            return ProviderSelection(requested, 'override')
        if self.is_complex_message(message):
            return ProviderSelection(self.primary, 'complex_intent')
        if self.has_technical_terms(message):
            return ProviderSelection(self.primary, 'technical_terms')
        if len(history) > self.history_turn_threshold:
            return ProviderSelection(self.primary, 'long_history')
        if len(message) > self.long_message_chars:
            return ProviderSelection(self.primary, 'long_message')
        return ProviderSelection(self.primary, 'default')

    @staticmethod
    def is_complex_message(message: str) -> bool:
        lower_message = message.lower()
        return any(indicator in lower_message for indicator in COMPLEX_INDICATORS)

    @staticmethod
    def has_technical_terms(message: str) -> bool:
        lower_message = message.lower()
        return any(term in lower_message for term in TECHNICAL_TERMS)

    def provider_chain(self, selected: str) -> List[str]:
        return [selected, self.primary]

    async def attempt(
        self,
        provider_name: str,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> ProviderResult:
        provider = self.providers[provider_name]
        try:
            text = await provider.get_conversational_response(message, history, options)
        except Exception as e:
            logger.error(f"Provider {provider_name} failed: {str(e)}")
            return ProviderResult(provider_name, error=e)
        if not text:
            return ProviderResult(provider_name, error=ValueError("empty response"))
        return ProviderResult(provider_name, text=text)

    async def route(
        self,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> str:
        selection = self.select_provider(message, history, options)
        logger.info(
            f"Routing message to {selection.provider} ({selection.reason}), "
            f"length {len(message)}, history {len(history)}"
        )

        errors = {}
        for position, provider_name in enumerate(self.provider_chain(selection.provider)):
            if position > 0:
                logger.warning(
                    f"Primary attempt failed, trying fallback "
                    f"(declared fallback {self.fallback}, served by {provider_name})"
                )
            result = await self.attempt(provider_name, message, history, options)
            if result.ok:
                logger.info(f"AI response generated by {provider_name}: {len(result.text)} characters")
                return result.text
            errors[f"{position}:{provider_name}"] = result.error

        logger.error(f"All AI providers failed: {errors}")
        raise AllProvidersFailedError(errors)
