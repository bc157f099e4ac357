"""Builder Agent — turns the agreed design into a validated n8n workflow document.

The document provider (Claude) is asked for raw workflow JSON. Each candidate
is cleaned, then validated; a rejected candidate is re-prompted with the
rejection reason, a connectivity failure is resent as-is. At most
MAX_RETRIES + 1 provider calls are made per ``generate``.
"""

import sys
from typing import Callable, Protocol

from langchain_anthropic import ChatAnthropic

from wfp.config import get_config
from wfp.errors import EmptyResponseError, SchemaError, TransportError
from wfp.state import ConversationTurn
from wfp.utils.parsing import clean_json_response, message_text
from wfp.utils.retry import RetryNotice, RetryPolicy
from wfp.utils.validator import validate_workflow_document

MAX_RETRIES = 3
SCHEMA_RETRY_DELAY = 1.0
CONNECTION_RETRY_DELAY = 2.0

SYSTEM_PROMPT = """\
You are an expert n8n workflow automation designer and JSON generator.
CRITICAL INSTRUCTIONS FOR JSON OUTPUT:
1. You MUST respond with valid JSON only, with no explanations, comments, or text
2. The JSON must conform exactly to n8n's workflow export format
3. Use double quotes throughout and proper syntax
4. All IDs must be unique UUIDs, timestamps in ISO 8601
5. Node types must use canonical n8n strings (e.g., "n8n-nodes-base.manualTrigger")
Root fields: name, nodes, connections, active, settings, versionId, id, createdAt, updatedAt"""

USER_PROMPT = """\
Based on the following workflow discussion, generate a complete n8n workflow in JSON format:

{design}

Create a functional n8n workflow JSON that:
1. Implements the workflow design discussed
2. Uses appropriate n8n node types
3. Includes proper connections between nodes
4. Has realistic configuration for each node
5. Follows n8n best practices

Return ONLY the JSON, no other text or formatting."""

REJECTION_SUFFIX = """

Your previous response was rejected: {reason}
Please try again with ONLY the raw JSON object, with no markdown fences and no commentary."""


class DocumentProvider(Protocol):
    async def generate(self, system_instruction: str, user_prompt: str) -> str: ...


class ClaudeDocumentProvider:
    """DocumentProvider backed by ChatAnthropic."""

    def __init__(self, model: str | None = None, temperature: float | None = None,
                 max_tokens: int | None = None):
        config = get_config()
        self.model = model or config["document_model"]
        self.temperature = config.get("document_temperature", 0.1) if temperature is None else temperature
        self.max_tokens = max_tokens or config.get("document_max_tokens", 16000)
        self._llm = None

    @property
    def llm(self):
        if self._llm is None:
            self._llm = ChatAnthropic(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                max_retries=get_config().get("sdk_max_retries", 1),
            )
        return self._llm

    async def generate(self, system_instruction: str, user_prompt: str) -> str:
        messages = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": user_prompt},
        ]
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        text = message_text(response).strip()
        if not text:
            raise EmptyResponseError("Empty response from the document provider")
        return text


def extract_workflow_design(turns: list[ConversationTurn], window: int = 10) -> str:
    """Render the last ``window`` turns as "role: text" blocks."""
    return "\n\n".join(f"{turn['role']}: {turn['text']}" for turn in turns[-window:])


def build_user_prompt(design: str, rejection: str | None = None) -> str:
    prompt = USER_PROMPT.format(design=design)
    if rejection:
        prompt += REJECTION_SUFFIX.format(reason=rejection)
    return prompt


def _retry_delay(retry_state) -> float:
    if isinstance(retry_state.outcome.exception(), SchemaError):
        return SCHEMA_RETRY_DELAY
    return CONNECTION_RETRY_DELAY


class DocumentGenerationLoop:
    def __init__(
        self,
        provider: DocumentProvider,
        retry_policy: RetryPolicy | None = None,
        notify: Callable[[dict], None] | None = None,
    ):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.notify = notify

    def _announce(self, notice: RetryNotice) -> None:
        if isinstance(notice.error, SchemaError):
            text = f"Fixing JSON structure... (Attempt {notice.attempt}/{MAX_RETRIES})"
        else:
            text = f"Connection issue, retrying... (Attempt {notice.attempt}/{MAX_RETRIES})"
        if self.notify is not None:
            self.notify({
                "type": "notice",
                "phase": "build",
                "text": text,
                "attempt": notice.attempt,
                "max_attempts": MAX_RETRIES,
            })

    async def generate(self, design: str) -> dict | None:
        """Return a validated workflow document, or None once schema retries run out.

        TransportError / EmptyResponseError still propagate when they are the
        final failure.
        """
        rejections: list[str] = []

        async def attempt() -> dict:
            prompt = build_user_prompt(design, rejections[-1] if rejections else None)
            raw = await self.provider.generate(SYSTEM_PROMPT, prompt)
            verdict = validate_workflow_document(clean_json_response(raw))
            if not verdict["valid"]:
                rejections.append(verdict["reason"])
                raise verdict["error"]
            return verdict["value"]

        outcome = await self.retry_policy.execute(
            attempt,
            MAX_RETRIES + 1,
            wait=_retry_delay,
            on_retry=self._announce,
            retry_on=(SchemaError, TransportError, EmptyResponseError),
        )
        if outcome.ok:
            return outcome.value
        if isinstance(outcome.error, SchemaError):
            print(
                f"[WFP] Document rejected after {outcome.attempts} attempts: {outcome.error}",
                file=sys.stderr,
            )
            return None
        raise outcome.error
