import os
import re
import json
import difflib
import threading
from collections import Counter
from typing import List, Dict, Optional
from rank_bm25 import BM25Okapi
import numpy as np
from lexsync.models.document import IndexDocument
from lexsync.models.search import FacetBucket, SearchFacets, SearchFilters, SearchResponse, SearchResult
from lexsync.storage.analysis import FIELD_BOOSTS, analyze, auto_fuzziness, expand_synonyms
from lexsync.storage.base import SearchIndex

class LocalSearchIndex(SearchIndex):
    """
    Implements SearchIndex in memory using rank-bm25, with an optional JSON file for persistence.
    Mirrors the Elasticsearch index closely enough for local runs and tests:
    - same legal analyzer (stopwords + synonyms), field boosts applied by repeating tokens
    - fuzzy terms matched against the corpus vocabulary
    - facets over file type, court and year
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._docs: Dict[str, IndexDocument] = {}
        self._lock = threading.Lock()
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                for raw in json.load(f):
                    doc = IndexDocument(**raw)
                    self._docs[doc.id] = doc

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([d.model_dump(mode="json") for d in self._docs.values()], f, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def ensure_schema(self) -> None:
        # Nothing to create locally
        return None

    def upsert(self, doc: IndexDocument) -> None:
        with self._lock:
            self._docs[doc.id] = doc.model_copy(deep=True)
            self._persist()

    def get(self, doc_id: str) -> Optional[IndexDocument]:
        with self._lock:
            doc = self._docs.get(doc_id)
            return doc.model_copy(deep=True) if doc else None

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._docs.keys())

    def delete(self, doc_id: str) -> None:
        with self._lock:
            if self._docs.pop(doc_id, None) is not None:
                self._persist()

    def search(self, query: str, filters: Optional[SearchFilters] = None, size: int = 10) -> SearchResponse:
        with self._lock:
            candidates = [d for d in self._docs.values() if self._matches_filters(d, filters or SearchFilters())]

        if not candidates:
            return SearchResponse()

        corpus = [self._tokens(d) for d in candidates]
        query_terms = self._query_terms(query, corpus)

        if query_terms:
            # 1. Score every candidate, keep the ones sharing at least one term
            scores = BM25Okapi(corpus).get_scores(query_terms)
            terms = set(query_terms)
            matched = [i for i, tokens in enumerate(corpus) if terms.intersection(tokens)]
            order = sorted(matched, key=lambda i: float(scores[i]), reverse=True)
        else:
            # Blank query browses everything that passes the filters
            scores = np.zeros(len(candidates))
            order = sorted(range(len(candidates)), key=lambda i: candidates[i].created_at, reverse=True)

        hits = [candidates[i] for i in order]
        results = [
            self._to_result(candidates[i], float(scores[i]), query_terms)
            for i in order[:size]
        ]
        return SearchResponse(results=results, facets=self._facets(hits), total=len(hits))

    def suggest(self, prefix: str, size: int = 5) -> List[str]:
        prefix = (prefix or "").strip().lower()
        if not prefix:
            return []
        with self._lock:
            titles = sorted({d.title for d in self._docs.values() if d.title.lower().startswith(prefix)})
        return titles[:min(size, 5)]

    @staticmethod
    def _tokens(doc: IndexDocument) -> List[str]:
        tokens = []
        tokens.extend(analyze(doc.title) * FIELD_BOOSTS["title"])
        tokens.extend(analyze(doc.summary) * FIELD_BOOSTS["summary"])
        tokens.extend(analyze(doc.content))
        for chunk in doc.chunks:
            tokens.extend(analyze(chunk.text))
        return tokens

    @staticmethod
    def _query_terms(query: str, corpus: List[List[str]]) -> List[str]:
        vocabulary = sorted({t for tokens in corpus for t in tokens})
        terms = []
        for term in expand_synonyms(analyze(query)):
            terms.append(term)
            if auto_fuzziness(term) and term not in vocabulary:
                for close in difflib.get_close_matches(term, vocabulary, n=3, cutoff=0.8):
                    if close not in terms:
                        terms.append(close)
        return terms

    @staticmethod
    def _courts(doc: IndexDocument) -> List[str]:
        courts = [c.court for c in doc.case_citations if c.court]
        if doc.metadata.get("court"):
            courts.append(str(doc.metadata["court"]))
        return list(dict.fromkeys(courts))

    def _matches_filters(self, doc: IndexDocument, filters: SearchFilters) -> bool:
        if filters.file_type and doc.file_type not in filters.file_type:
            return False
        if filters.courts and not set(filters.courts).intersection(self._courts(doc)):
            return False
        if filters.legal_concepts and not set(filters.legal_concepts).intersection(doc.legal_concepts):
            return False
        if filters.date_range:
            created = doc.created_at.date().isoformat()
            if filters.date_range.from_ and created < filters.date_range.from_[:10]:
                return False
            if filters.date_range.to and created > filters.date_range.to[:10]:
                return False
        return True

    def _facets(self, docs: List[IndexDocument]) -> SearchFacets:
        file_types = Counter(d.file_type for d in docs)
        courts = Counter(c for d in docs for c in self._courts(d))
        years = Counter(str(d.created_at.year) for d in docs)
        return SearchFacets(
            file_types=[FacetBucket(key=k, doc_count=v) for k, v in file_types.most_common()],
            courts=[FacetBucket(key=k, doc_count=v) for k, v in courts.most_common()],
            date_ranges=[FacetBucket(key=k, doc_count=v) for k, v in sorted(years.items())]
        )

    def _to_result(self, doc: IndexDocument, score: float, terms: List[str]) -> SearchResult:
        return SearchResult(
            id=doc.id,
            title=doc.title,
            summary=doc.summary,
            file_type=doc.file_type,
            created_at=doc.created_at.isoformat(),
            legal_entities=doc.legal_entities,
            case_citations=doc.case_citations,
            legal_concepts=doc.legal_concepts,
            ai_confidence=float(doc.metadata.get("analysis", {}).get("confidence", 0.5)),
            highlighted_text=self._highlight(doc, terms),
            score=score
        )

    @staticmethod
    def _highlight(doc: IndexDocument, terms: List[str], fragment_size: int = 150) -> str:
        if not terms:
            return ""
        pattern = re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b", re.IGNORECASE)
        sources = [doc.content] + [c.text for c in doc.chunks] + [doc.summary]
        for text in sources:
            match = pattern.search(text or "")
            if not match:
                continue
            start = max(match.start() - fragment_size // 2, 0)
            fragment = text[start:start + fragment_size]
            return pattern.sub(lambda m: f"<em>{m.group(0)}</em>", fragment)
        return ""
