"""
Page and FAQ navigation menus.

Interactive cards for Lark plus numbered plain-text equivalents used when
a card cannot be delivered, and the parsing of whatever the user sends
back (button values, numbers, page names).

Version: 1.0.0
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Page:
    key: str
    name: str
    description: str
    faqs: Tuple[str, ...]

    @property
    def label(self) -> str:
        """Display name without the leading emoji."""
        return self.name.split(" ", 1)[-1]


MAIN_PAGES: Dict[str, Page] = {
    page.key: page for page in (
        Page("dashboard", "📊 Dashboard", "Central hub with analytics and KPIs", (
            "How to view staff performance metrics?",
            "How to filter data by time period?",
            "How to understand pipeline values?",
            "How to access role-based analytics?",
        )),
        Page("jobs", "💼 Jobs", "Job management and candidate assignment", (
            "How to create a new job posting?",
            "How to assign candidates to jobs?",
            "How to track job status and pipeline?",
            "How to manage job budgets and percentages?",
        )),
        Page("candidates", "👥 Candidates", "Candidate management and profiles", (
            "How to add a new candidate?",
            "How to upload and parse resumes?",
            "How to assign candidates to jobs?",
            "How to track candidate communication history?",
        )),
        Page("clients", "🏢 Clients", "Client relationship management", (
            "How to add a new client?",
            "How to organize parent company relationships?",
            "How to track client job history?",
            "How to manage client financial values?",
        )),
        Page("calendar", "📅 Calendar", "Scheduling and event management", (
            "How to schedule a candidate meeting?",
            "How to request leave approval?",
            "How to create client meetings?",
            "How to view team calendar events?",
        )),
        Page("claims", "💰 Claims", "Expense claims and approvals", (
            "How to submit an expense claim?",
            "How to upload receipt attachments?",
            "How to approve claims as a manager?",
            "How to track claim status and history?",
        )),
    )
}

PAGE_ORDER: Tuple[str, ...] = tuple(MAIN_PAGES)

ACTION_BACK_TO_PAGES = "back_to_pages"
ACTION_ASK_CUSTOM = "ask_custom"
ACTION_CUSTOM_QUESTION = "custom_question"
FAQ_ACTION_PATTERN = re.compile(r"^faq_([a-z]+)_(\d+)$")

BACK_KEYWORDS = frozenset({
    "back", "menu", "pages", "back to pages", "main menu", "show menu", "0"
})

CUSTOM_QUESTION_PROMPT = "Please type your question and I'll help you find the answer! 🤖"
CUSTOM_QUESTION_OPEN_PROMPT = "Please go ahead and ask me anything about PM-Next! I'm here to help. 🤖"
UNKNOWN_PAGE_MESSAGE = "Sorry, I couldn't find that page. Please try again."
UNKNOWN_FAQ_MESSAGE = "Sorry, I couldn't find that FAQ. Please try again."


def get_page(page_key: Optional[str]) -> Optional[Page]:
    return MAIN_PAGES.get(page_key or "")


# ===========================
# Cards
# ===========================

def _button(text: str, value: str, button_type: str = "default") -> Dict[str, Any]:
    return {
        "tag": "button",
        "text": {"tag": "plain_text", "content": text},
        "type": button_type,
        "value": value
    }


def _rows(buttons: List[Dict[str, Any]], per_row: int = 2) -> List[Dict[str, Any]]:
    return [
        {"tag": "action", "actions": buttons[i:i + per_row]}
        for i in range(0, len(buttons), per_row)
    ]


def build_page_selection_card() -> Dict[str, Any]:
    buttons = [_button(page.name, page.key, "primary") for page in MAIN_PAGES.values()]
    return {
        "config": {"wide_screen_mode": True, "enable_forward": False},
        "header": {
            "template": "blue",
            "title": {"tag": "plain_text", "content": "🚀 PM-Next Support Assistant"}
        },
        "elements": [
            {
                "tag": "div",
                "text": {
                    "tag": "lark_md",
                    "content": (
                        "**Welcome!** 👋\n\nSelect a page to see common questions, "
                        "or ask me anything about PM-Next!"
                    )
                }
            },
            {"tag": "hr"},
            *_rows(buttons)
        ]
    }


def build_faq_card(page_key: str) -> Optional[Dict[str, Any]]:
    page = get_page(page_key)
    if page is None:
        return None

    faq_buttons = [
        _button(faq, f"faq_{page.key}_{index}")
        for index, faq in enumerate(page.faqs)
    ]
    navigation = {
        "tag": "action",
        "actions": [
            _button("🔙 Back to Pages", ACTION_BACK_TO_PAGES),
            _button("💭 Ask Custom Question", ACTION_ASK_CUSTOM, "primary"),
        ]
    }

    return {
        "config": {"wide_screen_mode": True, "enable_forward": False},
        "header": {
            "template": "blue",
            "title": {"tag": "plain_text", "content": f"{page.name} - Common Questions"}
        },
        "elements": [
            {
                "tag": "div",
                "text": {
                    "tag": "lark_md",
                    "content": f"**{page.description}**\n\nSelect a question below or ask something custom:"
                }
            },
            {"tag": "hr"},
            *_rows(faq_buttons),
            {"tag": "hr"},
            navigation
        ]
    }


# ===========================
# Text menus
# ===========================

def build_page_selection_text() -> str:
    lines = [
        "🚀 **PM-Next Support Assistant**",
        "",
        "Which page do you need help with? Reply with a number:",
        "",
    ]
    for number, page in enumerate(MAIN_PAGES.values(), start=1):
        lines.append(f"{number}. {page.name} - {page.description}")
    lines += ["", "Or just type your question and I'll do my best to help!"]
    return "\n".join(lines)


def build_faq_text(page_key: str) -> Optional[str]:
    page = get_page(page_key)
    if page is None:
        return None

    lines = [f"**{page.name} - Common Questions**", ""]
    for number, faq in enumerate(page.faqs, start=1):
        lines.append(f"{number}. {faq}")
    lines += [
        "",
        "Reply with a number, type **back** to see all pages, or ask your own question."
    ]
    return "\n".join(lines)


# ===========================
# Selection parsing
# ===========================

def clean_action_value(value: Any) -> Optional[str]:
    """
    Normalize a card action value to a plain string.

    Values may arrive quoted (``'"jobs"'``) or wrapped in an object.
    """
    if isinstance(value, dict):
        for key in ("value", "action", "key"):
            if isinstance(value.get(key), str):
                value = value[key]
                break
        else:
            strings = [v for v in value.values() if isinstance(v, str)]
            value = strings[0] if strings else None

    if not isinstance(value, str):
        return None

    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return value or None


def parse_faq_action(value: str) -> Optional[Tuple[str, int]]:
    match = FAQ_ACTION_PATTERN.match(value or "")
    if not match:
        return None
    return match.group(1), int(match.group(2))


def is_back_request(text: str) -> bool:
    return (text or "").strip().lower().rstrip("!.") in BACK_KEYWORDS


def resolve_page_selection(text: str) -> Optional[str]:
    """Page key for a typed number, key or page name."""
    choice = (text or "").strip().lower().rstrip(".")
    if choice.isdigit():
        index = int(choice) - 1
        if 0 <= index < len(PAGE_ORDER):
            return PAGE_ORDER[index]
        return None

    for page in MAIN_PAGES.values():
        if choice in (page.key, page.label.lower(), page.name.lower()):
            return page.key
    return None


def resolve_faq_selection(page_key: str, text: str) -> Optional[int]:
    """FAQ index for a typed number or the FAQ's exact wording."""
    page = get_page(page_key)
    if page is None:
        return None

    choice = (text or "").strip().lower().rstrip(".")
    if choice.isdigit():
        index = int(choice) - 1
        return index if 0 <= index < len(page.faqs) else None

    for index, faq in enumerate(page.faqs):
        if choice == faq.lower().rstrip("?") or choice == faq.lower():
            return index
    return None


__all__ = [
    'Page',
    'MAIN_PAGES',
    'PAGE_ORDER',
    'ACTION_BACK_TO_PAGES',
    'ACTION_ASK_CUSTOM',
    'ACTION_CUSTOM_QUESTION',
    'CUSTOM_QUESTION_PROMPT',
    'CUSTOM_QUESTION_OPEN_PROMPT',
    'UNKNOWN_PAGE_MESSAGE',
    'UNKNOWN_FAQ_MESSAGE',
    'get_page',
    'build_page_selection_card',
    'build_faq_card',
    'build_page_selection_text',
    'build_faq_text',
    'clean_action_value',
    'parse_faq_action',
    'is_back_request',
    'resolve_page_selection',
    'resolve_faq_selection',
]
