"""
Spending classification using the LLM with structured output.
Validates the answer and re-asks when it is malformed.
"""
from typing import Any, List, Optional

from pydantic import ValidationError

from core.exceptions import ClassificationError
from core.logger import setup_logger
from core.schema import Category, ClassificationResult
from llm.client import create_response_schema, get_client
from llm.prompts import build_system_prompt, build_user_message

logger = setup_logger(__name__)

# Max attempts for malformed LLM responses
MAX_VALIDATION_RETRIES = 3
AMOUNT_TOLERANCE = 3.0


def parse_classification(payload: Any, total_amount: float, tolerance: float = AMOUNT_TOLERANCE) -> ClassificationResult:
    """
    Validate a raw classification payload.

    Args:
        payload: Decoded JSON returned by the classification service
        total_amount: Declared total of the purchase
        tolerance: Allowed difference between declared total and sum of parts

    Returns:
        Validated ClassificationResult

    Raises:
        ClassificationError: If the payload does not conform
    """
    if not isinstance(payload, dict):
        raise ClassificationError(
            "Classification payload is not a JSON object",
            details={"payload_type": type(payload).__name__}
        )

    try:
        result = ClassificationResult(**payload)
    except ValidationError as e:
        raise ClassificationError(
            f"Classification payload failed validation: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)}
        )

    if abs(result.total - total_amount) > tolerance:
        raise ClassificationError(
            f"Line items sum to {result.total:.2f}, expected {total_amount:.2f}",
            details={"counted_total": result.total, "declared_total": total_amount}
        )

    return result


class SpendingClassifier:
    """Turns a free-text purchase description into categorized line items."""

    def __init__(
        self,
        client=None,
        max_attempts: int = MAX_VALIDATION_RETRIES,
        tolerance: float = AMOUNT_TOLERANCE,
        temperature: float = 0.1,
    ):
        """
        Args:
            client: Object exposing call_with_structured_output(); defaults to the OpenRouter client
            max_attempts: Attempts before a malformed answer fails the job
            tolerance: Allowed difference between declared total and sum of parts
            temperature: LLM temperature (0.0-1.0)
        """
        self._client = client
        self.max_attempts = max_attempts
        self.tolerance = tolerance
        self.temperature = temperature

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def classify(
        self,
        description: str,
        total_amount: float,
        buyer_name: str,
        partner_name: Optional[str],
        categories: List[Category],
    ) -> ClassificationResult:
        """
        Classify one purchase.

        Args:
            description: Free-text description of the purchase
            total_amount: Declared total
            buyer_name: Name of the buyer
            partner_name: Name of the partner, None when the buyer has none
            categories: Category catalog

        Returns:
            Validated ClassificationResult

        Raises:
            LLMError: If the classification service fails
            ClassificationError: If every answer was malformed
        """
        system_prompt = build_system_prompt()
        user_message = build_user_message(description, total_amount, buyer_name, partner_name, categories)
        response_schema = create_response_schema()

        last_error = None
        for attempt in range(self.max_attempts):
            try:
                payload = self.client.call_with_structured_output(
                    system_prompt=system_prompt,
                    user_message=user_message,
                    response_schema=response_schema,
                    temperature=self.temperature,
                )
                result = parse_classification(payload, total_amount, self.tolerance)
            except ClassificationError as e:
                last_error = e
                if attempt < self.max_attempts - 1:
                    logger.warning(
                        f"Malformed classification (attempt {attempt + 1}/{self.max_attempts}), retrying: {e.message}"
                    )
                continue

            logger.info(
                f"Classified purchase into {len(result.spendings)} line item(s)"
                + (f", ambiguity: {result.ambiguity_flag}" if result.is_ambiguity_flagged else "")
            )
            return result

        logger.error(f"Classification failed after {self.max_attempts} attempts: {last_error.message}")
        raise ClassificationError(
            f"Classification failed after {self.max_attempts} attempts: {last_error.message}",
            details=last_error.details
        )
