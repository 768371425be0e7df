"""Text-generation collaborator (Gemini REST API)."""
import logging

import requests

from quantumwatch.errors import CollaboratorError

logger = logging.getLogger(__name__)

# Content shorter than this, or carrying a "read more" marker, is treated as a teaser
PREVIEW_MAX_LENGTH = 1000
PREVIEW_MARKERS = ("Continue reading", "Read more")

SUMMARY_PROMPT = """Please summarize the following article in 3-5 concise paragraphs. Focus on the key points and main takeaways.

TITLE: {title}

CONTENT:
{content}"""

PREVIEW_PROMPT = """The following is a preview/excerpt of an article. Based on this limited information,
provide a brief summary of what the article seems to be about. Be clear that this is based only on the preview,
and note any key topics or themes that appear to be discussed.

TITLE: {title}

PREVIEW CONTENT:
{content}"""


def is_preview_only(content: str) -> bool:
    return len(content) < PREVIEW_MAX_LENGTH or any(m in content for m in PREVIEW_MARKERS)


def build_prompt(title: str, content: str) -> str:
    """Single summarization prompt with title and content."""
    template = PREVIEW_PROMPT if is_preview_only(content) else SUMMARY_PROMPT
    return template.format(title=title, content=content)


class LLMClient:
    """Minimal generateContent client: prompt in, text out."""

    def __init__(self, config: dict):
        llm = config["llm"]
        self.api_key = llm["api_key"]
        self.model = llm["model"]
        self.base_url = llm["base_url"].rstrip("/")
        self.timeout = config["http"]["timeout"]

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def generate(self, prompt: str) -> str:
        """Return the generated text.

        Raises:
            CollaboratorError: transport failure, error status, or empty answer
        """
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}

        try:
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise CollaboratorError("llm", str(e), status=status)
        except ValueError as e:
            raise CollaboratorError("llm", f"invalid JSON response: {e}")

        text = "".join(
            part.get("text", "")
            for candidate in data.get("candidates", [])[:1]
            for part in candidate.get("content", {}).get("parts", [])
        ).strip()

        if not text:
            raise CollaboratorError("llm", "empty response")
        logger.debug(f"LLM returned {len(text)} characters")
        return text
