"""
Classifier bank.

Pure predicates over a user message and the recent conversation context.
Every pattern table is ordered module-level data so it can be tested and
tuned on its own; the functions only walk the tables.

Version: 1.0.0
"""
import re
from typing import Optional, Pattern, Sequence, Tuple, Union

from ..state.chat_state import ContextTurn

ContextLike = Sequence[Union[ContextTurn, dict]]


def _compile(patterns: Sequence[str]) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# ===========================
# Pattern tables
# ===========================

# Keyword -> category; first match in table order wins
ISSUE_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("candidate", "candidate_management"),
    ("resume", "candidate_management"),
    ("job", "job_management"),
    ("position", "job_management"),
    ("client", "client_management"),
    ("company", "client_management"),
    ("pipeline", "pipeline_management"),
    ("deal", "pipeline_management"),
    ("login", "authentication"),
    ("password", "authentication"),
    ("access", "authentication"),
    ("upload", "file_upload"),
    ("file", "file_upload"),
    ("slow", "system_performance"),
    ("performance", "system_performance"),
    ("loading", "system_performance"),
    ("add", "general"),
    ("create", "general"),
    ("save", "general"),
    ("other", "general"),
)

DEFAULT_CATEGORY = "general"
CATEGORY_CONTEXT_TURNS = 6

ESCALATION_TRIGGERS: Tuple[Pattern, ...] = _compile([
    # Persisting failure
    r"still.*(not|doesn't|don't|doesnt).*(work|working|help|helping)",
    r"tried.*(that|everything|all)",
    r"doesn't.*(work|help)",
    r"doesnt.*(work|help)",
    r"still.*not.*working",
    r"still.*doesnt.*work",
    r"still.*having.*trouble",
    r"need.*(human|person|live|real).*(help|support)",
    r"speak.*(to|with).*(someone|person|human)",
    r"this.*(is|isn't).*(working|helpful)",
    r"frustrated",
    r"urgent",
    r"critical",
    r"escalate.*to.*(support|team|human)",
    r"can.*i.*escalate",
    r"create.*ticket",
    r"(cant|can't|cannot).*(add|create|upload|login|access)",
    r"not.*working",
    r"having.*trouble",
    r"error",
    # Pages and screens that will not come up
    r"(won't|wont|will not|doesn't|does not|can't|cannot).*(load|open)",
    # Frustration
    r"this.*(sucks|terrible|awful|horrible|useless)",
    r"waste.*of.*time",
    r"annoying",
    r"ridiculous",
    r"pathetic",
    r"broken",
    r"buggy",
    r"glitched",
    r"messed.*up",
    r"screwed.*up",
    r"totally.*broken",
    r"completely.*broken",
    r"not.*functioning",
    # Asking for a human
    r"talk.*to.*(someone|person|human|agent|rep)",
    r"contact.*(support|help|team)",
    r"get.*(help|support).*from.*(human|person)",
    r"live.*(chat|support|help|agent)",
    r"real.*(person|human|agent)",
    r"technical.*(support|help)",
    r"customer.*(service|support)",
    r"help.*desk",
    r"support.*team",
    r"human.*help",
    r"manual.*help",
    # Recurring problems
    r"keeps.*(happening|occurring|breaking|failing)",
    r"always.*(broken|failing|not.*working)",
    r"constantly.*(failing|broken|not.*working)",
    r"repeatedly.*(failing|broken|not.*working)",
    r"consistently.*(failing|broken|not.*working)",
    r"same.*problem",
    r"same.*issue",
    r"again.*and.*again",
    r"over.*and.*over",
    r"multiple.*times",
    # Blocked tasks
    r"unable.*to",
    r"impossible.*to",
    r"(cant|can't|cannot).*(save|submit|complete|finish)",
    r"(cant|can't|cannot).*(get.*it.*to|make.*it)",
    r"won't.*let.*me",
    r"wont.*let.*me",
    r"preventing.*me",
    r"blocking.*me",
    r"stuck.*on",
    r"stuck.*at",
    r"locked.*out",
    # Errors and failures
    r"error.*message",
    r"error.*code",
    r"system.*error",
    r"failed.*to",
    r"failure",
    r"crash",
    r"crashed",
    r"freezing",
    r"frozen",
    r"timeout",
    r"timed.*out",
    r"connection.*error",
    r"server.*error",
    r"database.*error",
    r"404.*error",
    r"500.*error",
    # Time pressure
    r"asap",
    r"immediately",
    r"right.*now",
    r"emergency",
    r"deadline",
    r"time.*sensitive",
    r"running.*out.*of.*time",
    r"need.*this.*fixed",
    r"fix.*this.*now",
    r"priority",
    r"high.*priority",
    # Work blocked
    r"(cant|can't|cannot).*continue",
    r"(cant|can't|cannot).*proceed",
    r"(cant|can't|cannot).*move.*forward",
    r"(cant|can't|cannot).*complete.*work",
    r"blocking.*my.*work",
    r"stopping.*me.*from",
    r"preventing.*work",
    r"halt.*work",
    r"work.*stopped",
    # Data loss
    r"lost.*data",
    r"lost.*work",
    r"disappeared",
    r"vanished",
    r"missing.*files",
    r"missing.*data",
    r"corrupted",
    r"damaged",
    # Repeated attempts
    r"tried.*multiple.*times",
    r"tried.*several.*times",
    r"attempted.*many.*times",
    r"keep.*trying",
    r"tried.*different.*ways",
    r"nothing.*works",
    r"nothing.*is.*working",
    r"none.*of.*this.*works",
    # Last resort
    r"last.*resort",
    r"final.*option",
    r"no.*other.*choice",
    r"exhausted.*options",
    r"tried.*everything.*else",
    r"what.*else.*can.*i.*do",
    r"help.*me.*please",
    r"please.*help",
    r"desperate",
    r"desperately.*need",
])

# Escalations that skip the FAQ step and open a ticket straight away
DIRECT_ESCALATION_PHRASES: Tuple[Pattern, ...] = _compile([
    r"still.*(not|doesn't|don't).*(work|working)",
    r"escalate.*to.*(support|team|human)",
    r"can.*i.*escalate",
    r"create.*ticket",
    r"not.*working",
    r"need.*human.*help",
    r"speak.*to.*(someone|person|human)",
    r"talk.*to.*(support|agent|human)",
    r"contact.*support",
    r"urgent.*help",
    r"emergency",
    r"critical.*issue",
    r"this.*is.*broken",
    r"completely.*broken",
    r"nothing.*works",
    r"tried.*everything",
    r"exhausted.*options",
    r"desperate.*help",
    r"last.*resort",
    r"immediately.*need",
    r"right.*now",
    r"asap",
    r"blocking.*work",
    r"cant.*continue",
    r"can't.*continue",
    r"cannot.*continue",
    r"lost.*data",
    r"system.*error",
    r"server.*error",
    r"crashed",
    r"frozen",
    r"timeout",
    r"failed.*multiple.*times",
    r"keep.*failing",
    r"repeatedly.*failing",
])

TICKET_OFFER_PHRASES: Tuple[str, ...] = (
    "create a support ticket",
    "create a ticket",
    "support ticket for you",
)
TICKET_OFFER_LOOKBACK = 4

CONFIRMATION_PHRASES: Tuple[Pattern, ...] = _compile([
    r"^yes$",
    r"^yes please$",
    r"^yeah$",
    r"^sure$",
    r"^ok$",
    r"^okay$",
    r"yes.*create",
    r"yes.*ticket",
    r"please.*create",
    r"go ahead",
    r"^do it$",
])

SOLUTION_KEYWORDS: Tuple[str, ...] = (
    "solution:", "fix:", "resolved:", "answer:", "steps to fix:", "how to fix:",
    "to resolve this:", "the issue is:", "you need to:", "try this:",
    "fixed by:", "solution is:", "resolve by:", "fix this by:",
    "here's the solution:", "here is how to fix:", "problem solved:",
)

KNOWLEDGE_UPDATE_INDICATORS: Tuple[str, ...] = (
    "for future reference", "common issue", "similar problem", "faq",
    "frequently asked", "add to kb", "add to knowledge base", "update kb",
    "document this", "remember this solution", "save this solution",
)

SUPPORT_RESPONSE_PATTERNS: Tuple[Pattern, ...] = _compile([
    r"here.*how.*to",
    r"follow.*these.*steps",
    r"you.*can.*fix.*this.*by",
    r"the.*problem.*is",
    r"to.*resolve.*this",
    r"issue.*caused.*by",
    r"workaround.*is",
    r"temporary.*fix",
    r"try.*this",
    r"clear.*cache",
])

# A thread reply to a ticket counts as a solution from this length on
MIN_THREAD_SOLUTION_LENGTH = 5

GREETING_PATTERNS: Tuple[Pattern, ...] = _compile([
    r"^(hi|hello|hey|hiya|yo)( there)?( bot)?$",
    r"^good (morning|afternoon|evening)$",
    r"^(start|help|menu)$",
    r"^(restart|start over|main menu|show menu|back to menu)$",
])

RESTART_PATTERNS: Tuple[Pattern, ...] = _compile([
    r"^(start|menu|restart|start over|main menu|show menu|back to menu)$",
])

TICKET_NUMBER_PATTERN: Pattern = re.compile(r"\b([A-Z]{2,3}-\d{8}-\d{4})\b", re.IGNORECASE)


# ===========================
# Helpers
# ===========================

def normalize_message(message: str) -> str:
    """Lowercase, trim and straighten typographic apostrophes."""
    return (message or "").replace("’", "'").strip().lower()


def _turn_role(turn: Union[ContextTurn, dict]) -> str:
    if isinstance(turn, ContextTurn):
        return turn.role
    return turn.get("role", "")


def _turn_content(turn: Union[ContextTurn, dict]) -> str:
    if isinstance(turn, ContextTurn):
        return turn.content or ""
    return turn.get("content") or ""


def _matches_any(patterns: Sequence[Pattern], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def _first_category(text: str) -> Optional[str]:
    for keyword, category in ISSUE_CATEGORIES:
        if keyword in text:
            return category
    return None


# ===========================
# Classifiers
# ===========================

def categorize_issue(message: str, context: Optional[ContextLike] = None) -> str:
    """
    Map a message to an issue category.

    The message is scanned first; when it names no category the last six
    context turns are scanned as one text. Defaults to ``general``.
    """
    category = _first_category(normalize_message(message))
    if category:
        return category

    if context:
        recent = " ".join(
            normalize_message(_turn_content(turn))
            for turn in list(context)[-CATEGORY_CONTEXT_TURNS:]
        )
        category = _first_category(recent)
        if category:
            return category

    return DEFAULT_CATEGORY


def should_escalate_to_ticket(context: Optional[ContextLike], message: str) -> bool:
    """True when the message reads as frustration, failure or urgency."""
    return _matches_any(ESCALATION_TRIGGERS, normalize_message(message))


def is_direct_escalation(message: str) -> bool:
    """True when an escalation should skip the FAQ step."""
    return _matches_any(DIRECT_ESCALATION_PHRASES, normalize_message(message))


def offers_ticket(text: str) -> bool:
    """True when an assistant reply offers to open a support ticket."""
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in TICKET_OFFER_PHRASES)


def check_ticket_confirmation(context: Optional[ContextLike], message: str) -> bool:
    """
    True when the user accepts a ticket offer made in the last four turns.
    """
    if not context:
        return False

    recent = list(context)[-TICKET_OFFER_LOOKBACK:]
    bot_offered = any(
        _turn_role(turn) == "assistant" and (
            (isinstance(turn, ContextTurn) and turn.offers_ticket)
            or offers_ticket(_turn_content(turn))
        )
        for turn in recent
    )
    if not bot_offered:
        return False

    return _matches_any(CONFIRMATION_PHRASES, normalize_message(message))


def is_support_solution(message: str, is_reply_to_ticket: bool = False) -> bool:
    """
    Decide whether a support-team message carries a solution.

    Inside a ticket thread any reply of reasonable length counts.
    Elsewhere the message needs a solution keyword, a knowledge-update
    indicator or a typical support-response phrasing.
    """
    text = (message or "").strip()

    if is_reply_to_ticket:
        return len(text) >= MIN_THREAD_SOLUTION_LENGTH

    lowered = normalize_message(text)
    if any(keyword in lowered for keyword in SOLUTION_KEYWORDS):
        return True
    if any(indicator in lowered for indicator in KNOWLEDGE_UPDATE_INDICATORS):
        return True
    return _matches_any(SUPPORT_RESPONSE_PATTERNS, lowered)


def is_greeting(message: str) -> bool:
    text = normalize_message(message).rstrip("!.?")
    return _matches_any(GREETING_PATTERNS, text)


def is_restart_request(message: str) -> bool:
    text = normalize_message(message).rstrip("!.?")
    return _matches_any(RESTART_PATTERNS, text)


def extract_ticket_number(text: Optional[str]) -> Optional[str]:
    """Find a ticket number such as ``PMN-20240101-0001`` anywhere in text."""
    if not text:
        return None
    match = TICKET_NUMBER_PATTERN.search(text)
    return match.group(1).upper() if match else None


__all__ = [
    'ISSUE_CATEGORIES',
    'DEFAULT_CATEGORY',
    'ESCALATION_TRIGGERS',
    'DIRECT_ESCALATION_PHRASES',
    'TICKET_OFFER_PHRASES',
    'CONFIRMATION_PHRASES',
    'SOLUTION_KEYWORDS',
    'KNOWLEDGE_UPDATE_INDICATORS',
    'SUPPORT_RESPONSE_PATTERNS',
    'GREETING_PATTERNS',
    'RESTART_PATTERNS',
    'TICKET_NUMBER_PATTERN',
    'normalize_message',
    'categorize_issue',
    'should_escalate_to_ticket',
    'is_direct_escalation',
    'offers_ticket',
    'check_ticket_confirmation',
    'is_support_solution',
    'is_greeting',
    'is_restart_request',
    'extract_ticket_number',
]
