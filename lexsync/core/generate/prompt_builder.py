SYSTEM_PROMPT = """You are a legal research assistant.
Rules: use only the document text, never invent citations,
return valid JSON only, with no prose before or after it."""

ANALYSIS_SCHEMA = """{
  "summary": "2-3 sentence summary focusing on the key legal points",
  "legal_entities": [
    {"type": "case_name", "value": "Case Name", "confidence": 0.9},
    {"type": "statute", "value": "Statute Name", "confidence": 0.8}
  ],
  "case_citations": [
    {"citation": "Citation", "court": "Court Name", "date": "Date"}
  ],
  "legal_concepts": ["concept1", "concept2"],
  "confidence": 0.85
}"""

class PromptBuilder:
    @staticmethod
    def build_analysis_prompt(text: str, max_chars: int = 4000) -> list[dict]:
        """
        Builds messages asking for a summary plus entities, citations and concepts as one JSON object.
        """
        user_prompt = (
            f"Analyze this legal document and extract key information.\n\n"
            f"Text:\n---\n{text[:max_chars]}\n---\n\n"
            f"Provide a JSON response with:\n{ANALYSIS_SCHEMA}\n\n"
            f"Only return the JSON, no additional text."
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt}
        ]
