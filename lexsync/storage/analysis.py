"""Legal-domain text analysis shared by the Elasticsearch mapping and the local BM25 index."""

import re
from typing import Dict, List

LEGAL_STOPWORDS = ["the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"]

LEGAL_SYNONYMS = [
    "plaintiff,petitioner,claimant",
    "defendant,respondent,accused",
    "court,tribunal,bench",
    "judgment,ruling,decision",
    "statute,law,regulation",
    "contract,agreement,pact",
]

# Multi-field boosts, same weights as the Elasticsearch multi_match query
FIELD_BOOSTS = {"title": 3, "summary": 2, "content": 1, "chunks.text": 1}

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")
_STOP = set(LEGAL_STOPWORDS)

def _synonym_map() -> Dict[str, List[str]]:
    mapping = {}
    for line in LEGAL_SYNONYMS:
        group = [w.strip() for w in line.split(",")]
        for word in group:
            mapping[word] = group
    return mapping

SYNONYMS = _synonym_map()

def analyze(text: str) -> List[str]:
    """standard tokenizer -> lowercase -> legal_stop."""
    return [t for t in (m.group(0).lower() for m in _TOKEN_RE.finditer(text or "")) if t not in _STOP]

def expand_synonyms(tokens: List[str]) -> List[str]:
    expanded = []
    for token in tokens:
        for word in SYNONYMS.get(token, [token]):
            if word not in expanded:
                expanded.append(word)
    return expanded

def auto_fuzziness(term: str) -> int:
    """Elasticsearch 'AUTO': 0 edits up to 2 chars, 1 up to 5, 2 beyond."""
    if len(term) <= 2:
        return 0
    if len(term) <= 5:
        return 1
    return 2

def index_settings() -> dict:
    return {
        "analysis": {
            "analyzer": {
                "legal_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "legal_stop", "legal_synonyms"]
                }
            },
            "filter": {
                "legal_stop": {"type": "stop", "stopwords": LEGAL_STOPWORDS},
                "legal_synonyms": {"type": "synonym", "synonyms": LEGAL_SYNONYMS}
            }
        }
    }

def index_mappings() -> dict:
    return {
        "properties": {
            "id": {"type": "keyword"},
            "user_id": {"type": "keyword"},
            "title": {
                "type": "text",
                "analyzer": "legal_analyzer",
                "fields": {
                    "keyword": {"type": "keyword"},
                    "suggest": {"type": "completion"}
                }
            },
            "content": {"type": "text", "analyzer": "legal_analyzer"},
            "summary": {"type": "text", "analyzer": "legal_analyzer"},
            "file_type": {"type": "keyword"},
            "file_name": {"type": "keyword"},
            "status": {"type": "keyword"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
            "metadata": {"type": "object", "enabled": False},
            "chunks": {
                "type": "nested",
                "properties": {
                    "text": {"type": "text", "analyzer": "legal_analyzer"},
                    "page_number": {"type": "integer"},
                    "chunk_index": {"type": "integer"},
                    "token_count": {"type": "integer"}
                }
            },
            "legal_entities": {
                "type": "nested",
                "properties": {
                    "type": {"type": "keyword"},
                    "value": {"type": "text"},
                    "confidence": {"type": "float"}
                }
            },
            "case_citations": {
                "type": "nested",
                "properties": {
                    "citation": {"type": "text"},
                    "court": {"type": "keyword"},
                    "date": {"type": "keyword"}
                }
            },
            "legal_concepts": {"type": "keyword"}
        }
    }
