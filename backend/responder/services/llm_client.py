"""Chat-completion transport for classification and drafting.

LLM_PROVIDER selects the backend:
  - anthropic (default): Anthropic Messages API (ANTHROPIC_API_KEY or CLAUDE_API_KEY)
  - openrouter: OpenRouter chat completions (OPENROUTER_API_KEY)

Both are plain HTTPS calls through httpx with a per-request timeout
(LLM_TIMEOUT seconds) so a stuck request fails instead of hanging the caller.
"""
from typing import Any, Dict, Optional
import os, logging, time, random
from datetime import datetime, timezone

import httpx

log = logging.getLogger(__name__)

ANTHROPIC_ENDPOINT = 'https://api.anthropic.com/v1/messages'
ANTHROPIC_VERSION = '2023-06-01'

# Track last error state for diagnostics
LAST_LLM_ERROR: dict | None = None


class LLMUnavailable(RuntimeError):
    """No provider is configured; nothing can be sent."""


class LLMError(RuntimeError):
    """A request reached the provider (or tried to) and failed."""


def _provider() -> str:
    provider = os.getenv('LLM_PROVIDER', 'anthropic').lower()
    return 'openrouter' if provider in {'openrouter', 'or'} else 'anthropic'


def _api_key(provider: str) -> str | None:
    if provider == 'openrouter':
        return os.getenv('OPENROUTER_API_KEY')
    return os.getenv('ANTHROPIC_API_KEY') or os.getenv('CLAUDE_API_KEY')


def _model(provider: str) -> str:
    if provider == 'openrouter':
        return os.getenv('OPENROUTER_MODEL', 'anthropic/claude-sonnet-4')
    return os.getenv('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514')


def _record_error(provider: str, model: str, exc: Exception):
    global LAST_LLM_ERROR
    LAST_LLM_ERROR = {
        'error_type': type(exc).__name__,
        'error_message': str(exc)[:300],
        'provider': provider,
        'model': model,
        'ts': datetime.now(timezone.utc).timestamp(),
    }


class LLMClient:
    def __init__(self, provider: str, api_key: str, model: str, timeout_s: float = 45.0, max_tokens: int = 4000):
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens

    def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        """Send one system+user exchange and return the text of the reply."""
        tokens = max_tokens or self.max_tokens
        try:
            if self.provider == 'openrouter':
                return self._openrouter_call(system, prompt, tokens)
            return self._anthropic_call(system, prompt, tokens)
        except LLMError as e:
            _record_error(self.provider, self.model, e)
            raise
        except (httpx.HTTPError, AttributeError, TypeError) as e:
            # AttributeError/TypeError: reply shaped differently than the provider documents
            _record_error(self.provider, self.model, e)
            raise LLMError(f'{type(e).__name__}: {e}') from e

    def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout_s) as client:
            attempts = 0
            while True:
                attempts += 1
                resp = client.post(url, headers=headers, json=payload)
                if resp.status_code == 429 and attempts < 2:
                    retry_after = resp.headers.get('retry-after')
                    try:
                        backoff_s = float(retry_after) if retry_after is not None else 5.0
                    except ValueError:
                        backoff_s = 5.0
                    backoff_s = min(max(1.0, backoff_s), 20.0) + random.uniform(0, 0.5)
                    log.warning('llm rate limited; backing off', extra={'provider': self.provider, 'duration_ms': round(backoff_s * 1000)})
                    time.sleep(backoff_s)
                    continue
                if resp.status_code >= 400:
                    raise LLMError(f'{self.provider}_http_{resp.status_code}: {resp.text[:160]}')
                try:
                    data = resp.json()
                except ValueError as e:
                    raise LLMError(f'{self.provider}_bad_response: {resp.text[:160]}') from e
                if not isinstance(data, dict):
                    raise LLMError(f'{self.provider}_bad_response: expected an object, got {type(data).__name__}')
                return data

    def _anthropic_call(self, system: str, prompt: str, max_tokens: int) -> str:
        headers = {
            'x-api-key': self.api_key,
            'anthropic-version': ANTHROPIC_VERSION,
            'content-type': 'application/json',
        }
        payload = {
            'model': self.model,
            'max_tokens': max_tokens,
            'system': system,
            'messages': [{'role': 'user', 'content': prompt}],
        }
        data = self._post(ANTHROPIC_ENDPOINT, headers, payload)
        parts = [b.get('text', '') for b in (data.get('content') or []) if isinstance(b, dict) and b.get('type') == 'text']
        text = ''.join(parts).strip()
        if not text:
            raise LLMError('anthropic returned no text content')
        return text

    def _openrouter_call(self, system: str, prompt: str, max_tokens: int) -> str:
        endpoint = os.getenv('OPENROUTER_BASE', 'https://openrouter.ai/api/v1/chat/completions')
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
            'HTTP-Referer': os.getenv('OPENROUTER_REFERRER', 'http://localhost'),
            'X-Title': os.getenv('OPENROUTER_APP_NAME', 'EmailResponder'),
        }
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': prompt},
            ],
            'temperature': float(os.getenv('OPENROUTER_TEMPERATURE', '0.3')),
            'max_tokens': max_tokens,
        }
        data = self._post(endpoint, headers, payload)
        choice = (data.get('choices') or [{}])[0]
        content = (choice.get('message') or {}).get('content')
        # Some providers return a list of segments
        if isinstance(content, list):
            content = '\n'.join(
                p.get('text', '') if isinstance(p, dict) else str(p) for p in content
            )
        text = (content or '').strip()
        if not text:
            raise LLMError('openrouter returned empty content')
        return text


def build_llm_client() -> LLMClient:
    provider = _provider()
    api_key = _api_key(provider)
    if not api_key:
        raise LLMUnavailable(f'{provider} API key not configured')
    return LLMClient(
        provider=provider,
        api_key=api_key,
        model=_model(provider),
        timeout_s=float(os.getenv('LLM_TIMEOUT', '45')),
        max_tokens=int(os.getenv('LLM_MAX_TOKENS', '4000')),
    )


def llm_diagnostics() -> Dict[str, Any]:
    provider = _provider()
    return {
        'provider': provider,
        'model': _model(provider),
        'has_key': bool(_api_key(provider)),
        'timeout_s': float(os.getenv('LLM_TIMEOUT', '45')),
        'last_error': LAST_LLM_ERROR,
    }
