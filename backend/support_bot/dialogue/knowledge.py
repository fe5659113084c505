"""
Knowledge document and lookup.

The served knowledge document is the static markdown file with the
active knowledge entries from the database spliced into its
"Common User Questions and Answers" section. Lookup is a plain
bag-of-terms ranker over the document's markdown sections.

Version: 1.0.0
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


COMMON_QUESTIONS_HEADER = "## Common User Questions and Answers"
DB_ENTRY_MARKER = "<!-- kb-entry"

DEFAULT_CONFIDENCE_THRESHOLD = 0.3

# Scoring weights
QUESTION_WORD_WEIGHT = 3.0
KEY_PHRASE_WEIGHT = 2.0
TERM_FREQUENCY_WEIGHT = 0.5
TERM_FREQUENCY_CAP = 1.5
QA_SECTION_BONUS = 0.5
STEP_SECTION_BONUS = 0.3
DB_SECTION_BONUS = 0.2
MIN_CONFIDENCE_DIVISOR = 3
MIN_QUESTION_WORD_LENGTH = 4

SECTION_SPLIT_PATTERN = re.compile(r"^(?=##\s|###\s*Q:)", re.MULTILINE)
WORD_PATTERN = re.compile(r"[a-z0-9][a-z0-9'-]*")
STEP_PATTERN = re.compile(r"(^\s*\d+\.\s|\bstep\b)", re.IGNORECASE | re.MULTILINE)
KEY_PHRASE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE) for p in (
        r"how (?:do i|can i|to|should i|would i) ([a-z0-9 '-]+)",
        r"where (?:do i|can i|is|are|to) ([a-z0-9 '-]+)",
        r"what (?:is|are|does) ([a-z0-9 '-]+)",
        r"why (?:is|does|can't|cannot|won't) ([a-z0-9 '-]+)",
        r"(?:unable|trying) to ([a-z0-9 '-]+)",
    )
)

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "can", "could", "do", "does", "for", "from",
    "get", "how", "i", "in", "is", "it", "me", "my", "of", "on", "or",
    "should", "the", "this", "to", "what", "when", "where", "which", "why",
    "with", "would", "you", "your", "pm", "next", "pm-next", "please",
})


# ===========================
# Canned answers
# ===========================

FAQ_RESPONSES: Dict[str, str] = {
    "candidate_management": """**Candidate Management FAQs:**

• **Add Candidate**: Dashboard → Candidates → Add New → fill form → Save
• **Upload Resume**: Drag & drop or click upload (AI parsing enabled)
• **Link to Job**: Candidate profile → Applications tab → Add to job
• **Update Status**: Use status dropdown in candidate profile

**Common Issues:**
• Resume not parsing? Check file format (PDF/DOC/DOCX) and size (<10MB)
• Candidate not saving? Ensure required fields are filled
• Can't find candidate? Use search bar or check filters""",

    "job_management": """**Job Management FAQs:**

• **Create Job**: Dashboard → Jobs → Create Job → fill details → Save
• **Edit Job**: Click job title → update fields → Save
• **Add Candidates**: Job profile → Candidates section → Add Candidate
• **Set Status**: Use status dropdown (Active/Closed/On Hold)

**Common Issues:**
• Job not saving? Check required fields are completed
• Can't find job? Use search or check job status filters
• Candidates not linking? Ensure both candidate and job exist""",

    "authentication": """**Login & Access FAQs:**

• **Login Issues**: Clear browser cache → try different browser → contact admin
• **Password Reset**: Use "Forgot Password" link or contact admin
• **Access Denied**: Check with admin about user permissions
• **Session Expired**: Log out completely and log back in

**Common Issues:**
• Browser compatibility: Use Chrome, Firefox, Safari, or Edge
• Clear cookies and cache if login loops
• Check internet connection stability""",

    "general": """**General PM-Next FAQs:**

• **Navigation**: Use Dashboard menu → select module
• **Search**: Global search bar finds candidates, jobs, clients
• **Help**: Look for ? icons throughout the system
• **Performance**: Close unused tabs, clear cache

**Common Issues:**
• Page loading slowly? Check internet speed and close other tabs
• Feature not working? Try refreshing the page
• Data not syncing? Check internet connection""",
}

PAGE_FALLBACK: Dict[str, str] = {
    "dashboard": (
        "The Dashboard is the central hub for analytics and KPIs. Use the time "
        "period filter at the top to change the reporting window, open the staff "
        "performance widgets for individual metrics, and hover over pipeline "
        "values to see how they are calculated. What you can see depends on "
        "your role."
    ),
    "jobs": (
        "Open Jobs from the main menu. Use **Create Job** to add a posting, click "
        "a job title to edit it, and use the Candidates section of a job to "
        "assign candidates. The status dropdown tracks Active, Closed and On Hold "
        "jobs, and the financial fields hold budgets and fee percentages."
    ),
    "candidates": (
        "Open Candidates from the main menu. Use **Add New** to create a "
        "candidate, drag a resume onto the upload area for automatic parsing, "
        "and use the Applications tab to link a candidate to a job. The "
        "activity timeline on each profile shows communication history."
    ),
    "clients": (
        "Open Clients from the main menu. Use **Add Client** to create a "
        "company, set a parent company to group related clients, and open the "
        "client's Jobs tab for its job history. Financial values are edited on "
        "the client profile."
    ),
    "calendar": (
        "Open Calendar from the main menu. Click a time slot to schedule a "
        "candidate or client meeting, use **Request Leave** to submit leave for "
        "approval, and switch to the team view to see everyone's events."
    ),
    "claims": (
        "Open Claims from the main menu. Use **New Claim** to submit an expense "
        "and attach receipt images or PDFs. Managers approve claims from the "
        "Approvals tab, and the status column shows each claim's history."
    ),
}


def category_fallback(category: Optional[str]) -> str:
    return FAQ_RESPONSES.get(category or "general", FAQ_RESPONSES["general"])


def page_fallback(page_key: Optional[str]) -> Optional[str]:
    return PAGE_FALLBACK.get(page_key or "")


# ===========================
# Lookup
# ===========================

@dataclass
class KnowledgeMatch:
    """Best-scoring section of the knowledge document."""
    section: str
    confidence: float
    score: float
    index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "confidence": round(self.confidence, 4),
            "score": round(self.score, 4),
            "index": self.index
        }


def _words(text: str) -> List[str]:
    return WORD_PATTERN.findall(text.lower())


def extract_search_terms(question: str) -> List[str]:
    """Distinct content words of a question, in order of appearance."""
    terms: List[str] = []
    for word in _words(question or ""):
        word = word.strip("'-")
        if len(word) < 3 or word in STOP_WORDS or word in terms:
            continue
        terms.append(word)
    return terms


def extract_key_phrases(question: str) -> List[str]:
    """Phrases such as "add a candidate" pulled from "how do I add a candidate"."""
    phrases: List[str] = []
    for pattern in KEY_PHRASE_PATTERNS:
        for match in pattern.finditer(question or ""):
            phrase = match.group(1).strip(" '-").lower()
            if len(phrase) >= 3 and phrase not in phrases:
                phrases.append(phrase)
    return phrases


def split_sections(document: str) -> List[str]:
    """Split on ``## `` and ``### Q:`` headers, dropping blank pieces."""
    return [s.strip() for s in SECTION_SPLIT_PATTERN.split(document or "") if s.strip()]


def _is_bare_question(section: str) -> bool:
    lines = [line for line in section.splitlines() if line.strip()]
    return len(lines) == 1 and lines[0].lstrip().startswith("### Q:")


def score_section(section: str, terms: Sequence[str], question: str) -> float:
    lowered = section.lower()
    score = 0.0

    question_words = {w for w in _words(question or "") if len(w) >= MIN_QUESTION_WORD_LENGTH}
    if question_words:
        present = sum(1 for w in question_words if w in lowered)
        score += (present / len(question_words)) * QUESTION_WORD_WEIGHT

    for phrase in extract_key_phrases(question):
        if phrase in lowered:
            score += KEY_PHRASE_WEIGHT

    for term in terms:
        count = lowered.count(term.lower())
        if count:
            score += min(count * TERM_FREQUENCY_WEIGHT, TERM_FREQUENCY_CAP)

    if "### q:" in lowered or "**a**:" in lowered:
        score += QA_SECTION_BONUS
    if STEP_PATTERN.search(section):
        score += STEP_SECTION_BONUS
    if DB_ENTRY_MARKER in section:
        score += DB_SECTION_BONUS

    return score


def search_knowledge_base(
    document: str,
    terms: Sequence[str],
    question: str
) -> Optional[KnowledgeMatch]:
    """
    Return the best matching section of ``document``.

    Deterministic for identical inputs; ties go to the earlier section.
    A bare ``### Q:`` header is returned together with the section after
    it so the answer comes along.

    Returns:
        KnowledgeMatch, or None when nothing scores above zero
    """
    sections = split_sections(document)
    if not sections:
        return None

    divisor = max(len(terms), MIN_CONFIDENCE_DIVISOR)
    best_index = -1
    best_score = 0.0
    best_confidence = 0.0

    for index, section in enumerate(sections):
        score = score_section(section, terms, question)
        confidence = min(score / divisor, 1.0)
        if best_index < 0 or confidence > best_confidence:
            best_index, best_score, best_confidence = index, score, confidence

    if best_score <= 0:
        return None

    section = sections[best_index]
    if _is_bare_question(section) and best_index + 1 < len(sections):
        section = f"{section}\n{sections[best_index + 1]}"

    return KnowledgeMatch(
        section=section,
        confidence=best_confidence,
        score=best_score,
        index=best_index
    )


# ===========================
# Document
# ===========================

def _entry_value(entry: Any, name: str, default: Any = None) -> Any:
    if isinstance(entry, dict):
        return entry.get(name, default)
    return getattr(entry, name, default)


def format_entry(entry: Any) -> str:
    """Render one knowledge entry as a Q&A pair."""
    marker_parts = [DB_ENTRY_MARKER]
    entry_id = _entry_value(entry, "id")
    if entry_id is not None:
        marker_parts.append(f"id={entry_id}")
    marker_parts.append(f"category={_entry_value(entry, 'category') or 'general'}")
    ticket = _entry_value(entry, "ticket_source")
    if ticket:
        marker_parts.append(f"ticket={ticket}")
    marker = " ".join(marker_parts) + " -->"

    question = str(_entry_value(entry, "question", "")).strip()
    answer = str(_entry_value(entry, "answer", "")).strip()
    return f"### Q: {question}\n**A**: {answer}\n{marker}\n"


def merge_entries(static_text: str, entries: Iterable[Any]) -> str:
    """
    Splice active entries, oldest first, into the common questions section.

    The section is created at the end of the document when missing.
    """
    active = [e for e in entries if _entry_value(e, "is_active", True)]
    if not active:
        return static_text

    active.sort(key=lambda e: str(_entry_value(e, "created_at") or ""))
    block = "\n".join(format_entry(e) for e in active)

    header_index = static_text.find(COMMON_QUESTIONS_HEADER)
    if header_index == -1:
        separator = "" if static_text.endswith("\n") or not static_text else "\n"
        return f"{static_text}{separator}\n{COMMON_QUESTIONS_HEADER}\n\n{block}"

    next_section = static_text.find("\n## ", header_index + len(COMMON_QUESTIONS_HEADER))
    if next_section == -1:
        separator = "" if static_text.endswith("\n") else "\n"
        return f"{static_text}{separator}\n{block}"

    return f"{static_text[:next_section]}\n\n{block}{static_text[next_section:]}"


@dataclass
class KnowledgeBase:
    """
    Static knowledge file plus database entries, served as one document.

    A failed reload keeps the previously served document.
    """
    path: Path
    static_text: str = ""
    entry_count: int = 0
    loaded_at: Optional[datetime] = None
    _document: str = field(default="", repr=False)

    @property
    def document(self) -> str:
        return self._document

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    def load(self, entries: Optional[Iterable[Any]] = None) -> str:
        """Read the static file and merge ``entries`` into it."""
        try:
            static_text = Path(self.path).read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"✗ Failed to read knowledge base {self.path}: {e}")
            return self._document

        entries = list(entries or [])
        self.static_text = static_text
        self._document = merge_entries(static_text, entries)
        self.entry_count = sum(1 for e in entries if _entry_value(e, "is_active", True))
        self.loaded_at = datetime.utcnow()

        logger.info(
            f"✓ Knowledge base loaded ({len(self._document)} chars, "
            f"{self.entry_count} database entries)"
        )
        return self._document

    reload = load

    def search(
        self,
        question: str,
        terms: Optional[Sequence[str]] = None
    ) -> Optional[KnowledgeMatch]:
        if terms is None:
            terms = extract_search_terms(question)
        return search_knowledge_base(self._document, terms, question)

    def answer(
        self,
        question: str,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    ) -> Optional[KnowledgeMatch]:
        """Best match above ``threshold``, else None."""
        match = self.search(question)
        if match is None or match.confidence <= threshold:
            return None
        return match

    def stats(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "loaded": self.is_loaded,
            "document_size": len(self._document),
            "static_size": len(self.static_text),
            "sections": len(split_sections(self._document)),
            "database_entries": self.entry_count,
            "last_loaded_at": self.loaded_at.isoformat() if self.loaded_at else None
        }


__all__ = [
    'COMMON_QUESTIONS_HEADER',
    'DB_ENTRY_MARKER',
    'DEFAULT_CONFIDENCE_THRESHOLD',
    'FAQ_RESPONSES',
    'PAGE_FALLBACK',
    'category_fallback',
    'page_fallback',
    'KnowledgeMatch',
    'extract_search_terms',
    'extract_key_phrases',
    'split_sections',
    'score_section',
    'search_knowledge_base',
    'format_entry',
    'merge_entries',
    'KnowledgeBase',
]
