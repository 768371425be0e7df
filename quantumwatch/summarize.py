"""Summarize stage: generate one summary per item that has none."""
from quantumwatch.database import Database
from quantumwatch.errors import ConfigError
from quantumwatch.llm_client import LLMClient, build_prompt
from quantumwatch.models import Item, Summary
from quantumwatch.stage_runner import StageRunner
from quantumwatch.textutils import detect_language


def summary_input(item: Item) -> str:
    """Text to summarize: content, else description, else empty."""
    return item.content or item.description or ""


class SummarizeStage(StageRunner):
    name = "summarize"
    log_prefix = "[SUMMARIZE]"

    def __init__(self, db: Database, config: dict, llm: LLMClient | None = None, **kwargs):
        super().__init__(db, config, **kwargs)
        self.llm = llm or LLMClient(config)

    def check_config(self) -> None:
        if not self.llm.configured:
            raise ConfigError("Gemini API key is not set")

    @property
    def batch_size(self) -> int:
        return self.config["summarize"]["batch_size"]

    @property
    def delay_seconds(self) -> float:
        return self.config["summarize"]["delay_seconds"]

    def select_pending(self, limit: int | None) -> list[Item]:
        return self.db.get_items_without_summary(limit if limit is not None else self.batch_size)

    def describe(self, item: Item) -> str:
        return f"item {item.id} ({item.title})"

    def process_one(self, item: Item) -> tuple[str, str] | None:
        content = summary_input(item)
        title = item.title or ""
        if not content and not title:
            self.logger.warning(f"{self.log_prefix} Item {item.id} has no content to summarize")
            return None

        # Another run may have summarized it since selection
        if self.db.has_summary(item.id):
            self.logger.info(f"{self.log_prefix} Item {item.id} already summarized")
            return None

        self.logger.info(f"{self.log_prefix} Generating summary for item {item.id}")
        summary_text = self.llm.generate(build_prompt(title, content))
        return summary_text, detect_language(summary_text)

    def persist_outcome(self, item: Item, outcome: tuple[str, str]) -> Summary | None:
        summary_text, language = outcome
        summary = self.db.insert_summary(item.id, summary_text, language)
        if summary is None:
            self.logger.info(f"{self.log_prefix} Item {item.id} summarized concurrently, discarding")
            return None
        self.logger.info(f"{self.log_prefix} ✓ Summary {summary.id} ({language}) for item {item.id}")
        return summary
