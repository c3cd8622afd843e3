"""Anthropic API integration for reading receipt images into structured data."""

import asyncio
import base64
import time
from pathlib import Path

from anthropic import APIError, AsyncAnthropic
from anthropic.types.beta import (
    BetaCacheControlEphemeralParam,
    BetaMessageParam,
    BetaTextBlockParam,
)
from pydantic import ValidationError

from receiptwise.errors import ExternalServiceError
from receiptwise.models import ExtractedReceipt, ExtractionResult
from receiptwise.templates import prompt_environment


class ExtractionError(ExternalServiceError):
    """Base exception for extraction errors."""


class ExtractionRefusedError(ExtractionError):
    """Raised when the model refuses to process the request."""


class ExtractionIncompleteError(ExtractionError):
    """Raised when the response is truncated due to token limits."""


class AnthropicExtractor:
    """
    Anthropic-powered receipt extractor using vision and structured outputs.

    The receipt photo is sent as an image block and the response is parsed
    straight into an ``ExtractedReceipt``. Failures are reported once and
    never retried; callers decide what to tell the user.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 2048,
        temperature: float = 0.0,
        timeout: float = 30.0,
        prompts_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize the Anthropic extractor.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-haiku-4-5)
            max_tokens: Maximum tokens for response (default: 2048)
            temperature: Sampling temperature (default: 0.0 for deterministic)
            timeout: Total seconds allowed for one analysis (default: 30)
            prompts_dir: Directory containing Jinja2 templates (default: bundled prompts)
        """
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.jinja_env = prompt_environment(prompts_dir)

    def _render_prompts(self, mime_type: str) -> tuple[str, str]:
        """
        Render system and user prompts from Jinja2 templates.

        Args:
            mime_type: MIME type of the receipt image

        Returns:
            Tuple of (system_prompt, user_prompt)
        """
        system_template = self.jinja_env.get_template("extractor_system.jinja2")
        user_template = self.jinja_env.get_template("extractor_user.jinja2")

        system_prompt = system_template.render()
        user_prompt = user_template.render(MIME_TYPE=mime_type)

        return system_prompt, user_prompt

    async def extract_receipt_data(
        self, image: bytes, mime_type: str, max_tokens: int | None = None
    ) -> ExtractionResult:
        """
        Extract structured receipt data from a receipt image.

        Args:
            image: Raw image bytes
            mime_type: MIME type of the image (e.g. image/jpeg)
            max_tokens: Override default max_tokens if specified

        Returns:
            ExtractionResult containing the validated receipt and metadata

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If response is truncated
            ExtractionError: For API errors, timeouts and unusable output
        """
        start_time = time.time()

        system_prompt, user_prompt = self._render_prompts(mime_type)

        messages: list[BetaMessageParam] = [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": mime_type,
                            "data": base64.b64encode(image).decode("ascii"),
                        },
                    },
                    BetaTextBlockParam(type="text", text=user_prompt),
                ],
            }
        ]

        try:
            response = await asyncio.wait_for(
                self.client.beta.messages.parse(
                    model=self.model,
                    max_tokens=max_tokens or self.max_tokens,
                    temperature=self.temperature,
                    betas=["structured-outputs-2025-11-13"],
                    system=[
                        BetaTextBlockParam(
                            type="text",
                            text=system_prompt,
                            cache_control=BetaCacheControlEphemeralParam(type="ephemeral"),
                        )
                    ],
                    messages=messages,
                    output_format=ExtractedReceipt,
                ),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise ExtractionError(
                f"Receipt analysis timed out after {self.timeout:g}s"
            ) from e
        except (APIError, ValidationError) as e:
            raise ExtractionError(str(e)) from e

        if response.stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")

        if response.stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        receipt: ExtractedReceipt | None = response.parsed_output  # type: ignore
        if receipt is None:
            raise ExtractionError("Model returned no structured receipt data")

        return ExtractionResult(
            receipt=receipt,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            processing_time=time.time() - start_time,
        )
