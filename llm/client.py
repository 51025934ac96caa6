"""
Classification service client using direct REST calls to an
OpenRouter-compatible chat completions endpoint.
Handles API calls with retries and structured output.
"""
import json
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings, get_settings
from core.exceptions import ClassificationError, ConfigurationError, LLMError
from core.logger import setup_logger

logger = setup_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class RetryableStatusError(Exception):
    """Raised for HTTP statuses worth retrying."""

    def __init__(self, response: requests.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block, if present."""
    content_stripped = content.strip()
    if content_stripped.startswith("```"):
        lines = content_stripped.split('\n')
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content_stripped = '\n'.join(lines).strip()
    return content_stripped


class OpenRouterClient:
    """Wrapper for the OpenRouter REST API with retry logic."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize REST API client."""
        settings = settings or get_settings()
        if not settings.openrouter_api_key:
            raise ConfigurationError(
                "OPENROUTER_KEY environment variable not set",
                details={"required_key": "OPENROUTER_KEY"}
            )

        self.url = settings.openrouter_url
        self.api_key = settings.openrouter_api_key
        self.model = settings.openrouter_model
        self.timeout = settings.openrouter_timeout
        self.session = requests.Session()

        logger.info(f"Initialized OpenRouter client with model: {self.model}, url: {self.url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((
            requests.exceptions.Timeout,
            requests.exceptions.ConnectionError,
            RetryableStatusError,
        )),
        reraise=True
    )
    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        response = self.session.post(
            self.url,
            headers=headers,
            data=json.dumps(payload),
            timeout=self.timeout
        )
        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Classification service returned HTTP {response.status_code}, retrying")
            raise RetryableStatusError(response)
        return response

    def call_with_structured_output(
        self,
        system_prompt: str,
        user_message: str,
        response_schema: Dict[str, Any],
        temperature: float = 0.1,
    ) -> Dict[str, Any]:
        """
        Call the chat completions API and parse the JSON answer.

        Args:
            system_prompt: System instruction
            user_message: User message with the purchase description
            response_schema: JSON schema for structured output
            temperature: Model temperature (0.0-1.0)

        Returns:
            Parsed JSON response

        Raises:
            LLMError: If the API call fails after retries
            ClassificationError: If the answer is not a JSON object
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "categorized_spendings",
                    "strict": True,
                    "schema": response_schema
                }
            }
        }

        try:
            response = self._post(payload)
            response.raise_for_status()

            completion_data = response.json()

            content = None
            try:
                content = completion_data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError):
                pass

            if not isinstance(content, str) or not content.strip():
                if isinstance(completion_data, dict):
                    logger.error(f"Response keys: {list(completion_data.keys())}")
                raise ValueError("Unexpected response structure: could not find content in 'choices'")

            logger.debug(f"LLM generated text: {content}")
            result = json.loads(strip_code_fences(content))

            if isinstance(completion_data, dict) and "usage" in completion_data:
                usage = completion_data['usage']
                input_tokens = usage.get('prompt_tokens', 'N/A')
                output_tokens = usage.get('completion_tokens', 'N/A')
                logger.debug(f"Token usage - Input: {input_tokens}, Output: {output_tokens}")

            if not isinstance(result, dict):
                raise ValueError("Answer is not a JSON object")

            return result

        except requests.exceptions.Timeout as e:
            logger.error(f"Classification request timeout after {self.timeout}s: {e}")
            raise LLMError(
                f"Classification service timed out after {self.timeout}s",
                details={"url": self.url, "timeout": self.timeout}
            )

        except RetryableStatusError as e:
            logger.error(f"Classification service unavailable: {e}")
            raise LLMError(
                f"Classification service unavailable (HTTP {e.response.status_code})",
                details={"url": self.url, "status_code": e.response.status_code}
            )

        except requests.exceptions.HTTPError as e:
            logger.error(f"Classification HTTP error: {e}")
            raise LLMError(
                f"Classification service returned HTTP error: {e}",
                details={
                    "url": self.url,
                    "status_code": getattr(e.response, "status_code", None),
                    "response_text": getattr(e.response, "text", None),
                }
            )

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse classification answer as JSON: {e}")
            raise ClassificationError(
                f"Classification service returned invalid JSON: {e}",
                details={"error": str(e)}
            )

        except requests.exceptions.RequestException as e:
            logger.error(f"Classification request failed: {e}")
            raise LLMError(
                f"Failed to connect to classification service: {str(e)}",
                details={"url": self.url, "error": str(e)}
            )

        except ValueError as e:
            logger.error(f"Error parsing classification response: {e}")
            raise ClassificationError(
                f"Classification response parsing error: {str(e)}",
                details={"error": str(e)}
            )


def create_response_schema() -> Dict[str, Any]:
    """
    Create JSON schema for ClassificationResult.

    Returns:
        JSON schema dictionary
    """
    return {
        "type": "object",
        "properties": {
            "ambiguity_flag": {
                "type": "string",
                "description": "Short reason if the purchase or its split is unclear, otherwise empty"
            },
            "spendings": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "apportion_mode": {
                            "type": "string",
                            "enum": ["alone", "shared", "other"],
                        },
                        "category": {
                            "type": "string",
                            "description": "Exact category name from the catalog"
                        },
                        "amount": {
                            "type": "number",
                            "description": "Amount of this part of the purchase"
                        },
                        "description": {
                            "type": "string",
                            "description": "Short description, may be empty"
                        }
                    },
                    "required": ["apportion_mode", "category", "amount", "description"],
                    "additionalProperties": False
                }
            }
        },
        "required": ["ambiguity_flag", "spendings"],
        "additionalProperties": False
    }


# Singleton client instance
_client: Optional[OpenRouterClient] = None


def get_client() -> OpenRouterClient:
    """
    Get or create the classification client singleton.

    Returns:
        Client wrapper instance
    """
    global _client
    if _client is None:
        _client = OpenRouterClient()
    return _client
