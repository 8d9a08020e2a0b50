"""Image generation - prompt validation, rewriting and content-policy retries.

Prompts are rewritten deterministically before they go upstream: flagged words
are swapped for neutral ones and an illustration framing is added. When the
provider still refuses on policy grounds, a fixed list of alternative
phrasings is tried in order.
"""

import logging
import re
from dataclasses import dataclass

from chatrelay.core.config import settings
from chatrelay.core.errors import RequestError
from chatrelay.models.conversation import TYPE_IMAGE
from chatrelay.services.llm.base import BaseLLMProvider, UpstreamError, UpstreamPolicyError
from chatrelay.services.store import ConversationStore

logger = logging.getLogger(__name__)

BLOCKED_TERMS = ("nsfw", "nude", "naked", "porn", "pornographic", "explicit")

FLAGGED_WORDS = {
    "blood": "red paint",
    "bloody": "messy",
    "gun": "toy blaster",
    "guns": "toy blasters",
    "weapon": "tool",
    "weapons": "tools",
    "kill": "defeat",
    "killing": "defeating",
    "dead": "sleeping",
    "violent": "dramatic",
    "fight": "contest",
    "war": "conflict",
    "bomb": "balloon",
    "explosion": "burst of color",
}

ILLUSTRATION_PREFIX = "A digital illustration of "

ALTERNATIVE_TEMPLATES = (
    "A friendly cartoon-style illustration of {subject}",
    "A simple, family-friendly artistic drawing of {subject}",
    "A soft watercolor painting of {subject}",
    "A minimalist flat-design illustration of {subject}",
)

_FLAGGED_RE = re.compile(
    r"\b(" + "|".join(re.escape(w) for w in sorted(FLAGGED_WORDS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_BLOCKED_RE = re.compile(r"\b(" + "|".join(re.escape(w) for w in BLOCKED_TERMS) + r")\b", re.IGNORECASE)


def sanitize_prompt(prompt: str) -> str:
    """Strip markup characters and script protocols."""
    cleaned = re.sub(r"[<>]", "", prompt)
    cleaned = re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


def validate_image_prompt(prompt: str) -> str:
    """Return the sanitized prompt or raise ``RequestError``."""
    cleaned = sanitize_prompt(prompt)
    if len(cleaned) < settings.min_image_prompt_length:
        raise RequestError(
            f"Image prompt too short (min {settings.min_image_prompt_length} characters)"
        )
    if len(cleaned) > settings.max_image_prompt_length:
        raise RequestError(
            f"Image prompt too long (max {settings.max_image_prompt_length} characters)"
        )
    if _BLOCKED_RE.search(cleaned):
        raise RequestError("Image prompt contains content that cannot be generated")
    return cleaned


def neutralize(prompt: str) -> str:
    return _FLAGGED_RE.sub(lambda m: FLAGGED_WORDS[m.group(1).lower()], prompt)


def preprocess_prompt(prompt: str) -> str:
    prompt = neutralize(prompt)
    if "illustration" in prompt.lower():
        return prompt
    return ILLUSTRATION_PREFIX + prompt


def candidate_prompts(prompt: str, alternatives: int | None = None) -> list[str]:
    """The preprocessed prompt followed by ``alternatives`` rephrasings."""
    count = settings.image_prompt_alternatives if alternatives is None else alternatives
    subject = neutralize(prompt)
    candidates = [preprocess_prompt(prompt)]
    candidates.extend(t.format(subject=subject) for t in ALTERNATIVE_TEMPLATES[:count])
    return candidates


@dataclass
class GeneratedImage:
    image_url: str
    prompt: str
    revised_prompt: str
    chat_id: str
    attempts: int


class ImagePolicyError(RequestError):
    """Every phrasing was refused by the provider's content policy."""

    def __init__(self, prompt: str, attempts: int):
        super().__init__(
            "The image request was rejected by the content policy. "
            "Please try describing it differently.",
            status_code=400,
            prompt=prompt,
        )
        self.attempts = attempts


class ImageGenerator:
    def __init__(
        self,
        provider: BaseLLMProvider,
        store: ConversationStore,
        alternatives: int | None = None,
    ):
        self._provider = provider
        self._store = store
        self._alternatives = alternatives

    async def generate(self, chat_id: str, prompt: str) -> GeneratedImage:
        """Generate an image for an already validated and stored user prompt."""
        candidates = candidate_prompts(prompt, self._alternatives)

        for attempt, candidate in enumerate(candidates, start=1):
            try:
                result = await self._provider.generate_image(candidate)
            except UpstreamPolicyError as e:
                logger.info(f"Image attempt {attempt}/{len(candidates)} refused by policy: {e}")
                continue
            except UpstreamError as e:
                logger.error(f"Image generation failed for chat {chat_id}: {e}")
                raise RequestError(
                    "Image generation is currently unavailable. Please try again later.",
                    status_code=502,
                ) from e

            revised = result.revised_prompt or candidate
            self._store.add_assistant_message(
                chat_id, revised, type=TYPE_IMAGE, image_url=result.url
            )
            return GeneratedImage(
                image_url=result.url,
                prompt=prompt,
                revised_prompt=revised,
                chat_id=chat_id,
                attempts=attempt,
            )

        logger.warning(f"All {len(candidates)} image prompt phrasings refused for chat {chat_id}")
        raise ImagePolicyError(prompt, attempts=len(candidates))
