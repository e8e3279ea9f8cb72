"""
Grounding validation for EDEN.

Responsibility:
- Bundle retrieved episodes into a GroundedContext for prompting
- Build mode-specific prompts constrained to that context
- Check a generated response's claims against the retrieved episodes
- Score hallucination risk (low / medium / high)

Does NOT:
- Retrieve episodes (memory_store does)
- Generate text (generation does)
- Decide whether to regenerate (orchestrator does)

RetrievalGroundingValidator is heuristic: claims are sentences, evidence
is key-term overlap with an episode's text. No model calls.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from eden.models import ConversationMode, Failure, Ok, Result, RetrievedEpisode, RiskLevel

logger = logging.getLogger(__name__)


@dataclass
class GroundedContext:
    query: str
    documents: List[RetrievedEpisode]
    context_text: str
    reasoning: str
    sources: List[str]
    confidence: float


@dataclass
class GroundingCheck:
    is_grounded: bool
    confidence: float
    supporting_evidence: List[str] = field(default_factory=list)
    missing_info: List[str] = field(default_factory=list)


class GroundingValidator:
    """Interface used by the orchestrator."""

    async def generate_grounded_response(
        self, query: str, episodes: List[RetrievedEpisode]
    ) -> GroundedContext:
        raise NotImplementedError

    def create_prompt(self, query: str, bundle: GroundedContext, mode: ConversationMode) -> str:
        raise NotImplementedError

    def validate_response(self, text: str, bundle: GroundedContext) -> Result[GroundingCheck]:
        raise NotImplementedError

    def assess_hallucination_risk(
        self, text: str, bundle: GroundedContext, check: GroundingCheck
    ) -> RiskLevel:
        raise NotImplementedError


# ============================================================================
# HEURISTICS
# ============================================================================

_SENTENCE_SPLIT = re.compile(r"[.!?。]+")
_STOPWORDS = {"the", "and", "or", "but", "with", "for"}
_NON_FACTUAL_MARKERS = ("?", "would you", "do you", "i think", "in my opinion", "personally")
_SPECIFIC_PATTERNS = (
    re.compile(r"\d{4}"),
    re.compile(r"\d+%"),
    re.compile(r"\d+\s*(seconds|minutes|hours|days)"),
    re.compile(r"[A-Z][a-z]+\s[A-Z][a-z]+"),
    re.compile(r"version\s+\d"),
)

KEY_TERM_COVERAGE = 0.6
CONFIDENCE_WITHOUT_DOCUMENTS = 0.3


def extract_claims(text: str) -> List[str]:
    """Sentences that read as factual statements (no questions, no hedged opinions)."""
    claims = []
    for sentence in _SENTENCE_SPLIT.split(text):
        if not sentence.strip():
            continue
        lower = sentence.lower()
        if any(marker in lower for marker in _NON_FACTUAL_MARKERS):
            continue
        claims.append(sentence)
    return claims


def find_evidence(claim: str, documents: List[RetrievedEpisode]) -> Optional[str]:
    key_terms = [w for w in claim.lower().split() if len(w) > 3 and w not in _STOPWORDS]
    for doc in documents:
        doc_text = f"{doc.user_message} {doc.assistant_response}".lower()
        matches = sum(1 for term in key_terms if term in doc_text)
        if matches >= len(key_terms) * KEY_TERM_COVERAGE:
            return f'Supported by: "{doc.user_message}"'
    return None


def has_specific_claims(text: str) -> bool:
    return any(pattern.search(text) for pattern in _SPECIFIC_PATTERNS)


def _query_intent(query: str) -> str:
    lower = query.lower()
    if "how" in lower:
        return "a process or method"
    if "what" in lower:
        return "a definition or explanation"
    if "why" in lower:
        return "a reason or cause"
    if "when" in lower:
        return "timing or schedule"
    if "where" in lower:
        return "a location"
    return "general information"


# ============================================================================
# REFERENCE IMPLEMENTATION
# ============================================================================

class RetrievalGroundingValidator(GroundingValidator):
    def __init__(self, grounding_threshold: float = 0.7, max_context_length: int = 2000):
        self.grounding_threshold = grounding_threshold
        self.max_context_length = max_context_length

    async def generate_grounded_response(
        self, query: str, episodes: List[RetrievedEpisode]
    ) -> GroundedContext:
        logger.info(f'[Grounding] Building context for: "{query[:50]}"')
        context_text = self.extract_relevant_context(episodes)
        return GroundedContext(
            query=query,
            documents=list(episodes),
            context_text=context_text,
            reasoning=self._reasoning(query, context_text),
            sources=[doc.id for doc in episodes],
            confidence=self.calculate_confidence(episodes),
        )

    def extract_relevant_context(self, episodes: List[RetrievedEpisode]) -> str:
        """Highest-similarity episode text that fits the token budget (len/4 estimate)."""
        if not episodes:
            return ""
        parts = []
        tokens = 0
        for doc in sorted(episodes, key=lambda d: d.similarity, reverse=True):
            text = f"{doc.user_message} {doc.assistant_response}"
            doc_tokens = -(-len(text) // 4)
            if tokens + doc_tokens > self.max_context_length:
                break
            parts.append(text)
            tokens += doc_tokens
        return "\n\n".join(parts)

    @staticmethod
    def calculate_confidence(episodes: List[RetrievedEpisode]) -> float:
        if not episodes:
            return CONFIDENCE_WITHOUT_DOCUMENTS
        top = episodes[:3]
        avg = sum(doc.similarity for doc in top) / len(top)
        bonus = min(len(episodes) / 10, 0.1)
        return min(avg + bonus, 1.0)

    @staticmethod
    def _reasoning(query: str, context_text: str) -> str:
        found = "relevant" if context_text else "no"
        strategy = "Ground response in context" if context_text else "Provide general knowledge with disclaimer"
        return (
            f"Query: {query}\n\n"
            f"Step 1: Query asks about {_query_intent(query)}\n\n"
            f"Step 2: Found {found} context\n\n"
            f"Step 3: {strategy}\n"
        )

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def create_prompt(self, query: str, bundle: GroundedContext, mode: ConversationMode) -> str:
        if ConversationMode(mode) == ConversationMode.FAST:
            return self._fast_prompt(query, bundle)

        lines = [
            "You are Eden, a helpful AI assistant. Answer the following question "
            "based ONLY on the provided context.",
            "",
            "# Context from Memory:",
        ]
        for i, doc in enumerate(bundle.documents[:5], start=1):
            lines.extend([
                "",
                f"[Document {i}] (Relevance: {doc.relevance_score:.0f}%)",
                f"User asked: {doc.user_message}",
                f"Eden answered: {doc.assistant_response}",
                "---",
            ])
        if not bundle.documents:
            lines.extend([
                "",
                "[No relevant documents found in memory]",
                "Please answer based on your general knowledge, but clearly state "
                "that you're not recalling specific previous conversations.",
            ])
        lines.extend([
            "",
            "# Question:",
            query,
            "",
            "# Instructions:",
            "1. Think step-by-step",
            "2. ONLY use information from the context above",
            '3. If information is not in context, say "I don\'t have specific information about that"',
            "4. Be conversational and friendly",
            "5. Provide detailed explanation",
            "",
            "# Your Response:",
            "",
        ])
        return "\n".join(lines)

    @staticmethod
    def _fast_prompt(query: str, bundle: GroundedContext) -> str:
        if not bundle.documents:
            return f"Question: {query}\n\nRespond naturally in 1-2 sentences. If you don't know, say so briefly."
        top = bundle.documents[0]
        return (
            "Based on this memory:\n"
            f"User: {top.user_message}\n"
            f"Eden: {top.assistant_response}\n\n"
            f"Question: {query}\n\n"
            "Respond in 1-2 sentences, conversationally."
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_response(self, text: str, bundle: GroundedContext) -> Result[GroundingCheck]:
        try:
            claims = extract_claims(text)
            supporting = []
            missing = []
            for claim in claims:
                evidence = find_evidence(claim, bundle.documents)
                if evidence:
                    supporting.append(evidence)
                else:
                    missing.append(claim)
        except Exception as e:
            logger.error(f"[Grounding] Validation failed: {e}", exc_info=True)
            return Failure(f"validation failed: {e}", e)

        ratio = len(supporting) / max(len(claims), 1)
        return Ok(GroundingCheck(
            is_grounded=ratio >= self.grounding_threshold,
            confidence=ratio,
            supporting_evidence=supporting,
            missing_info=missing,
        ))

    def assess_hallucination_risk(
        self, text: str, bundle: GroundedContext, check: GroundingCheck
    ) -> RiskLevel:
        risk = 0

        if not check.is_grounded:
            risk += 3
        elif check.confidence < 0.8:
            risk += 1

        docs = bundle.documents
        avg_similarity = sum(doc.similarity for doc in docs) / max(len(docs), 1)
        if avg_similarity < 0.6:
            risk += 3
        elif avg_similarity < 0.75:
            risk += 1

        if has_specific_claims(text) and check.missing_info:
            risk += 2

        if not docs:
            risk += 4

        if risk >= 6:
            return RiskLevel.HIGH
        if risk >= 3:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW
