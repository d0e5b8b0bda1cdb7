import json
import logging
import re
from pydantic import ValidationError
from lexsync.config.settings import SummarizationConfig
from lexsync.core.errors import LexSyncError, SummarizationFailure
from lexsync.core.generate.llm_client import LLMClient
from lexsync.core.generate.prompt_builder import PromptBuilder
from lexsync.core.pipeline.throttle import Throttle
from lexsync.models.document import DocumentAnalysis

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

class SummarizationService:
    """
    AI analysis of a document's text: summary, legal entities, case citations, concepts.
    Calls are serialized through a throttle to stay under the provider's rate limit.
    """

    def __init__(self, llm: LLMClient, config: SummarizationConfig):
        self.llm = llm
        self.config = config
        self.throttle = Throttle(config.min_interval, name="summarizer")

    def unavailable(self) -> DocumentAnalysis:
        return DocumentAnalysis(summary=self.config.unavailable_text, confidence=0.0)

    def analyze(self, text: str) -> DocumentAnalysis:
        """Raises SummarizationFailure; callers decide whether to fall back to `unavailable()`."""
        if not text or not text.strip():
            raise SummarizationFailure("No text to summarize")

        messages = PromptBuilder.build_analysis_prompt(text, self.config.max_input_chars)
        try:
            with self.throttle:
                output = self.llm.generate(messages)
        except SummarizationFailure:
            raise
        except LexSyncError as e:
            raise SummarizationFailure(str(e)) from e

        return self.parse_analysis(output)

    @staticmethod
    def parse_analysis(output: str) -> DocumentAnalysis:
        # Models wrap the JSON in prose or code fences often enough
        match = _JSON_OBJECT.search(output or "")
        if not match:
            raise SummarizationFailure("Could not parse JSON response")
        try:
            analysis = DocumentAnalysis.model_validate(json.loads(match.group(0)))
        except (ValueError, ValidationError) as e:
            raise SummarizationFailure(f"Malformed analysis JSON: {e}") from e
        if not analysis.summary.strip():
            raise SummarizationFailure("Analysis has an empty summary")
        return analysis
