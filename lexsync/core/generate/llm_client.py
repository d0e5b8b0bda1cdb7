import logging
import httpx
import time
from typing import List, Dict, Any, Optional
from lexsync.config.settings import LLMConfig
from lexsync.core.errors import ConfigurationError, SummarizationFailure

logger = logging.getLogger(__name__)

class LLMClient:
    """
    OpenRouter chat-completions client with retry on 429 and model fallback.
    """

    def __init__(self, config: LLMConfig, api_key: str, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.config = config
        self.base_url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "HTTP-Referer": "https://lexsync.internal",
            "X-Title": "LexSync",
            "Content-Type": "application/json"
        }
        self.max_retries = config.max_retries
        self.base_delay = config.base_delay
        self.client = client or httpx.Client(timeout=config.timeout)

    def generate(self, messages: List[Dict[str, str]]) -> str:
        """
        Returns the full response string. Falls back to `fallback_model` once if the primary fails.
        """
        if not self.api_key:
            raise ConfigurationError("Missing credential(s): OPENROUTER_API_KEY")

        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature
        }
        try:
            return self._sync_response(payload)
        except SummarizationFailure as e:
            if not self.config.fallback_model or self.config.fallback_model == payload["model"]:
                raise
            logger.warning(f"Primary model {payload['model']} failed: {e}. Trying fallback.")
            payload["model"] = self.config.fallback_model
            return self._sync_response(payload)

    def _sync_response(self, payload: Dict[str, Any]) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            delay = self.base_delay * (2 ** attempt)
            try:
                response = self.client.post(self.base_url, headers=self.headers, json=payload)
                if response.status_code == 429:
                    last_error = SummarizationFailure("Rate limited (429)")
                    if attempt < self.max_retries - 1:
                        logger.warning(f"Rate limited (429). Retrying in {delay:.2f}s... (Attempt {attempt+1}/{self.max_retries})")
                        time.sleep(delay)
                    continue

                response.raise_for_status()
                data = response.json()
                return data["choices"][0]["message"]["content"]
            except httpx.HTTPStatusError as e:
                # Other 4xx/5xx will not get better by retrying the same model
                raise SummarizationFailure(f"{payload['model']} returned {e.response.status_code}") from e
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                last_error = SummarizationFailure(f"{payload['model']} request failed: {e}")
                if attempt < self.max_retries - 1:
                    logger.warning(f"Request failed: {e}. Retrying in {delay:.2f}s...")
                    time.sleep(delay)

        raise last_error or SummarizationFailure("Failed after maximum retries")
