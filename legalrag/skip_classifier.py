"""
Decide whether a message needs knowledge-base retrieval at all.

Greetings, small talk, platform questions and clearly non-legal questions are
answered without touching the KB. Anything that names a specific legal source
or asks for exact provisions always goes to the KB, even if it also looks like
small talk. Pure pattern matching; no I/O.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from legalrag.models import CASE_ASSESSMENT_MODE

GREETING_PATTERNS = (
    "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    "kumusta", "kamusta", "what's up", "whats up", "sup", "yo",
)

FAREWELL_PATTERNS = (
    "goodbye", "bye", "see you", "paalam", "salamat", "thank you", "thanks",
    "i'm done", "that's all", "thats all", "exit", "quit",
)

IDENTITY_PATTERNS = (
    "who are you", "what are you", "what is your name", "your name",
    "tell me about yourself", "introduce yourself", "what can you do",
    "what are your capabilities", "how can you help", "what services",
    "what is civilify", "what does civilify do", "are you a lawyer",
    "are you human", "are you a robot", "are you ai",
)

USAGE_PATTERNS = (
    "how do i use this", "how to use", "how do i ask", "how do i get a report",
    "how do i switch modes", "what should i ask", "give me examples",
    "how does this work", "how does this chat work", "instructions",
)

ACKNOWLEDGMENT_PATTERNS = (
    "okay", "ok", "got it", "i understand", "i see", "alright",
    "yes", "yeah", "yep", "no", "nope", "sure", "fine",
)

META_PATTERNS = (
    "is this free", "how much does this cost", "do i need to pay",
    "is my information private", "is this confidential", "can i trust this",
    "can you represent me", "can you go to court", "are you always right",
    "can you guarantee", "what can't you do", "your limitations",
)

LEGAL_SYSTEM_OVERVIEW_PATTERNS = (
    "philippine legal system", "court system", "levels of courts",
    "how does the court work", "what are my rights", "constitutional rights",
    "lawyer vs attorney", "difference between lawyer and attorney",
)

NON_LEGAL_INDICATORS = (
    "photosynthesis", "capital of", "president of",
    "math", "science", "history", "geography", "medical", "health",
    "investment", "stocks", "business advice", "technology", "computer",
    "phone", "recipe", "weather", "sports", "entertainment",
)

KB_REQUIRED_INDICATORS = (
    "article", "section", "rule", "republic act", "ra ", "r.a.",
    "presidential decree", "pd ", "p.d.", "executive order", "eo ",
    "revised penal code", "rpc", "rules of court", "roc",
    "civil code", "labor code", "family code", "corporation code",
    "supreme court", "jurisprudence", "case law", "doctrine",
    "specific steps to file", "exact procedure", "deadline for filing",
    "statute of limitations", "prescriptive period", "legal basis",
    "cite the law", "what law", "which law", "specific provision",
    "penalty for", "imprisonment for", "fine for", "punishment for",
)

MAX_ACKNOWLEDGMENT_LENGTH = 15
MAX_SHORT_RESPONSE_LENGTH = 50

ARITHMETIC_PATTERN = re.compile(r"\d+\s*[+\-*/]\s*\d+")
SHORT_CONVERSATIONAL_PATTERN = re.compile(
    r"yes|no|i have|i don't have|yesterday|last week|last month|not sure|i think|maybe|probably"
)

REASON_EMPTY = "Empty query"
REASON_CASE_REPORT = "CPA report generation - KB required"
REASON_KB_REQUIRED = "Requires specific legal provisions - KB required"
REASON_STANDARD = "Standard query - KB recommended"


def _with_trailing_punctuation(patterns) -> re.Pattern:
    alternatives = "|".join(re.escape(p) for p in patterns)
    return re.compile(rf"^(?:{alternatives})[!?.,\s]*$")


GREETING_EXACT = _with_trailing_punctuation(GREETING_PATTERNS)
ACKNOWLEDGMENT_EXACT = _with_trailing_punctuation(ACKNOWLEDGMENT_PATTERNS)


@dataclass(frozen=True)
class SkipDecision:
    skip: bool
    reason: str


def _contains_any(text: str, patterns) -> bool:
    return any(p in text for p in patterns)


def requires_knowledge_base(text: str) -> bool:
    return _contains_any(text, KB_REQUIRED_INDICATORS)


def is_greeting(text: str) -> bool:
    # Plain prefix match, so "hi" also matches "hiring"
    return any(text.startswith(p) for p in GREETING_PATTERNS) or bool(GREETING_EXACT.match(text))


def is_farewell(text: str) -> bool:
    return _contains_any(text, FAREWELL_PATTERNS)


def is_identity_question(text: str) -> bool:
    return _contains_any(text, IDENTITY_PATTERNS)


def is_usage_question(text: str) -> bool:
    return _contains_any(text, USAGE_PATTERNS)


def is_acknowledgment(text: str) -> bool:
    return len(text) <= MAX_ACKNOWLEDGMENT_LENGTH and bool(ACKNOWLEDGMENT_EXACT.match(text))


def is_meta_question(text: str) -> bool:
    return _contains_any(text, META_PATTERNS)


def is_legal_system_overview(text: str) -> bool:
    return _contains_any(text, LEGAL_SYSTEM_OVERVIEW_PATTERNS)


def is_non_legal_question(text: str) -> bool:
    return bool(ARITHMETIC_PATTERN.search(text)) or _contains_any(text, NON_LEGAL_INDICATORS)


def is_short_conversational_response(text: str) -> bool:
    return len(text) <= MAX_SHORT_RESPONSE_LENGTH and bool(SHORT_CONVERSATIONAL_PATTERN.search(text))


# Checked in order after the KB-required overrides; first match skips retrieval
SKIP_RULES: List[Tuple[str, Callable[[str], bool]]] = [
    ("Greeting", is_greeting),
    ("Farewell/Thank you", is_farewell),
    ("Identity/Capability question", is_identity_question),
    ("Usage instruction question", is_usage_question),
    ("Simple acknowledgment", is_acknowledgment),
    ("Meta/Platform question", is_meta_question),
    ("Legal system overview (general)", is_legal_system_overview),
    ("Non-legal question (redirect)", is_non_legal_question),
    ("Short conversational response", is_short_conversational_response),
]


def classify(query: Optional[str], mode: str = "A", is_final_report: bool = False) -> SkipDecision:
    """
    Classify a message for retrieval.

    Args:
        query: Raw user message
        mode: Chat mode ("A" general information, "B" case assessment)
        is_final_report: True when a case-assessment report is being generated

    Returns:
        SkipDecision with the skip flag and a human-readable reason
    """
    if query is None or not query.strip():
        return SkipDecision(True, REASON_EMPTY)

    text = query.lower().strip()

    if mode == CASE_ASSESSMENT_MODE and is_final_report:
        return SkipDecision(False, REASON_CASE_REPORT)

    if requires_knowledge_base(text):
        return SkipDecision(False, REASON_KB_REQUIRED)

    for reason, matches in SKIP_RULES:
        if matches(text):
            return SkipDecision(True, reason)

    return SkipDecision(False, REASON_STANDARD)


def should_skip_retrieval(query: Optional[str], mode: str = "A", is_final_report: bool = False) -> bool:
    return classify(query, mode, is_final_report).skip


def classification_reason(query: Optional[str], mode: str = "A", is_final_report: bool = False) -> str:
    return classify(query, mode, is_final_report).reason
