import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

import google.generativeai as genai
from flask import current_app

from config.ai_prompts import IMAGE_ANALYSIS_PROMPT, fill_prompt_template
from core.resilience import intelligent_retry, RetryConfig, CircuitBreaker, AIServiceError

logger = logging.getLogger(__name__)

retry_config = RetryConfig()
gemini_circuit_breaker = CircuitBreaker()

_CODE_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


@intelligent_retry(config=retry_config, circuit_breaker=gemini_circuit_breaker)
def _call_gemini_vision(prompt_text: str, image_bytes: bytes, mime_type: str,
                        api_key: Optional[str], model_name: str) -> str:
    if not api_key:
        raise AIServiceError(
            "AI service not configured. Missing API key.",
            error_type="configuration",
            is_retryable=False
        )

    logger.debug(f"Calling Gemini vision with model: {model_name} ({len(image_bytes)} bytes, {mime_type})")
    genai.configure(api_key=api_key)
    model_instance = genai.GenerativeModel(model_name)
    response = model_instance.generate_content(
        [prompt_text, {'mime_type': mime_type, 'data': image_bytes}],
        generation_config=genai.types.GenerationConfig(
            temperature=0.1,
            max_output_tokens=4096,
            top_p=0.8,
            top_k=40
        )
    )

    if not response.parts:
        if response.prompt_feedback and response.prompt_feedback.block_reason:
            raise AIServiceError(
                f"Content generation blocked by Gemini: {response.prompt_feedback.block_reason}",
                error_type="content_filtered",
                is_retryable=False
            )
        raise AIServiceError(
            "AI model did not return content - response parts empty",
            error_type="empty_response",
            is_retryable=True
        )

    generated_text = response.text
    if not generated_text or not generated_text.strip():
        raise AIServiceError(
            "AI model returned empty text content",
            error_type="empty_content",
            is_retryable=True
        )

    return generated_text


def parse_json_response(generated_text: str) -> Dict[str, Any]:
    """Decode the model reply, tolerating markdown code fences around the JSON"""
    cleaned = _CODE_FENCE.sub('', generated_text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Some replies wrap the object in prose; keep the outermost braces
        start, end = cleaned.find('{'), cleaned.rfind('}')
        if start == -1 or end <= start:
            raise AIServiceError("AI reply is not valid JSON", error_type="invalid_response", is_retryable=False)
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise AIServiceError(f"AI reply is not valid JSON: {e}", error_type="invalid_response",
                                 is_retryable=False)

    if not isinstance(parsed, dict):
        raise AIServiceError("AI reply is not a JSON object", error_type="invalid_response", is_retryable=False)
    return parsed


def analyze_label_image(image_bytes: bytes, mime_type: str,
                        known_breweries: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Send a bottle photo to the vision model and return the decoded analysis.

    Raises:
        AIServiceError: the call failed after retries or the reply was unusable
    """
    prompt = fill_prompt_template(IMAGE_ANALYSIS_PROMPT, {
        'known_breweries': sorted(set(known_breweries))[:200],
    })
    generated_text = _call_gemini_vision(
        prompt,
        image_bytes,
        mime_type,
        current_app.config.get('GEMINI_API_KEY'),
        current_app.config.get('GEMINI_MODEL', 'gemini-1.5-flash'),
    )
    logger.info(f"Gemini analysis received ({len(generated_text)} characters)")
    return parse_json_response(generated_text)


def error_status(error: AIServiceError) -> int:
    """HTTP status to report for an AI failure"""
    if error.error_type == "configuration":
        return 503
    if error.error_type == "authentication":
        return 502
    if error.error_type == "rate_limit":
        return 429
    return 503
