import logging
from typing import List, Optional

import httpx

from app.core.config import settings
from app.models.domain_models import DecisionOutcome

logger = logging.getLogger(__name__)

# -----------------------------
# Prompt
# -----------------------------

DECISION_SYSTEM_PROMPT = (
    "You are a professional loan officer explaining a loan decision. "
    "Be empathetic and clear. If rejected, provide constructive feedback on how to "
    "improve eligibility. Keep the response under 100 words. "
    "Never change or restate amounts, rates or the decision itself."
)

# -----------------------------
# HTTP Config
# -----------------------------

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

TIMEOUT = httpx.Timeout(
    timeout=20.0,
    connect=5.0,
    read=20.0,
    write=20.0,
)


class OpenRouterClient:
    """
    Chat completions over OpenRouter with an ordered model fallback chain.

    Returns ``None`` instead of raising when no model produced a usable reply;
    callers fall back to their canned text.
    """

    def __init__(self, api_key: Optional[str] = None, models: Optional[List[str]] = None):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.models = list(models or settings.OPENROUTER_MODELS)

    async def complete(self, system_prompt: str, user_message: str) -> Optional[str]:
        if not self.api_key:
            logger.info("OpenRouter API key not configured; skipping phrasing")
            return None

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": settings.APP_NAME,
        }

        async with httpx.AsyncClient(timeout=TIMEOUT) as client:

            for model in self.models:
                payload = {
                    "model": model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_message},
                    ],
                    "temperature": 0.2,
                    "max_tokens": 512,
                }

                try:
                    resp = await client.post(
                        OPENROUTER_URL,
                        headers=headers,
                        json=payload,
                    )

                    logger.info("openrouter: model=%s status=%s", model, resp.status_code)

                    if resp.status_code != 200:
                        continue

                    data = resp.json()
                    choice = (data.get("choices") or [{}])[0]
                    finish_reason = choice.get("finish_reason")
                    content = ((choice.get("message") or {}).get("content") or "").strip()

                    # truncated or empty answers are not worth showing
                    if finish_reason not in (None, "stop"):
                        logger.warning("model %s returned finish_reason=%s; skipping", model, finish_reason)
                        continue

                    if not content:
                        logger.warning("model %s returned empty content; skipping", model)
                        continue

                    return content

                except (httpx.TimeoutException, httpx.ConnectError) as exc:
                    logger.warning("network error calling model %s: %s", model, exc)
                    continue

                except ValueError as exc:
                    logger.warning("model %s returned a non-JSON body: %s", model, exc)
                    continue

        logger.error("all OpenRouter models failed; using canned reply")
        return None

    async def explain_decision(
        self, decision: DecisionOutcome, reason: str, applicant_name: Optional[str]
    ) -> Optional[str]:
        name = applicant_name or "the applicant"
        if decision == DecisionOutcome.APPROVED:
            message = f"Generate a congratulatory message for {name} whose loan has been approved. Reason: {reason}"
        else:
            message = (
                f"Generate a polite rejection message for {name} explaining why their loan was not "
                f"approved. Reason: {reason}. Provide tips to improve eligibility."
            )
        return await self.complete(DECISION_SYSTEM_PROMPT, message)
