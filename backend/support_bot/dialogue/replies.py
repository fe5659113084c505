"""
Fixed reply texts and LLM prompts.

Version: 1.0.0
"""
import json
import re
from datetime import datetime
from typing import Any, Dict, Iterable, Optional


# ===========================
# LLM prompts
# ===========================

SYSTEM_PROMPT_TEMPLATE = """You are a helpful assistant for the PM-Next Recruitment Management System.
Your role is to help users navigate and understand how to use the application effectively.

IMPORTANT:
- Always respond to user messages. Never leave a user without a response.
- Pay attention to conversation context - don't ask for details the user already provided.
- If user says "still not working" or similar, the system will automatically escalate.

Use this knowledge base about PM-Next:
{knowledge}

ENHANCED RESPONSE GUIDELINES:

1. **Initial Response**: Provide clear, step-by-step instructions for navigation and usage

2. **Follow-up Questions**: If the user encounters issues or needs clarification, ask specific diagnostic questions based on their problem type:

**For File Upload Issues:**
- What file format are you trying to upload? (PDF, DOC, DOCX, etc.)
- What is the file size?
- What error message do you see exactly?
- Which browser are you using?
- Have you tried uploading a different file to test?

**For Candidate Management Issues:**
- At which step are you experiencing the problem?
- Are you seeing any error messages?
- What candidate status are you trying to set?
- Are you able to access the candidate list?
- Is this happening with all candidates or specific ones?

**For Job Management Issues:**
- Which specific job feature is not working?
- Can you see the job in your job list?
- Are you trying to create, edit, or delete a job?
- What error appears when you try to save?
- Are the required fields filled in correctly?

**For Client Management Issues:**
- What client information are you trying to access or modify?
- Can you see the client in your client list?
- Are you experiencing issues with contact management or financial tracking?
- What error message appears?

**For Login/Access Issues:**
- Are you using the correct login credentials?
- What error message do you see when trying to log in?
- Have you tried resetting your password?
- Which page are you unable to access?

**For Performance Issues:**
- Which specific pages or features are loading slowly?
- How long does it typically take to load?
- Are you experiencing this across all features or specific ones?
- What device and browser are you using?

3. **General Guidelines:**
- Be specific about where to find features in the application
- Keep responses concise but helpful
- Use bullet points or numbered steps when appropriate
- Always be friendly and professional
- If asked about features not in the knowledge base, politely explain limitations and offer general guidance"""

KB_CURATOR_PROMPT = """You are a knowledge base curator. Extract a clear question and answer from a support ticket and its solution.

Format the response as JSON:
{
  "question": "Clear, general question that future users might ask",
  "answer": "Step-by-step solution that can help similar issues",
  "category": "One of: candidate_management, job_management, client_management, pipeline_management, authentication, system_performance, general"
}

Make the question generic enough to match similar future issues, but specific enough to be useful.
Make the answer comprehensive with clear steps."""

KB_CURATOR_USER_TEMPLATE = """Support Ticket:
Title: {title}
Description: {description}
Category: {category}
Steps Attempted: {steps}

Solution Provided:
{solution}

Extract a Q&A pair from this support interaction."""

JSON_BLOCK_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def build_system_prompt(knowledge_document: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(knowledge=knowledge_document)


def build_extraction_prompt(ticket: Dict[str, Any], solution: str) -> str:
    steps = ticket.get("steps_attempted") or []
    return KB_CURATOR_USER_TEMPLATE.format(
        title=ticket.get("issue_title") or "",
        description=ticket.get("issue_description") or "",
        category=ticket.get("issue_category") or "",
        steps=", ".join(steps) if steps else "None",
        solution=solution
    )


def parse_qa_pair(
    raw: Optional[str],
    ticket: Dict[str, Any],
    solution: str
) -> Dict[str, str]:
    """
    Parse the curator's JSON reply.

    Anything unparseable, or missing a question or answer, falls back to
    the ticket title and the solution text as given.
    """
    fallback = {
        "question": ticket.get("issue_title") or solution[:100],
        "answer": solution,
        "category": ticket.get("issue_category") or "general"
    }
    if not raw:
        return fallback

    candidate = raw.strip()
    match = JSON_BLOCK_PATTERN.search(candidate)
    if match:
        candidate = match.group(0)

    try:
        data = json.loads(candidate)
    except ValueError:
        return fallback

    if not isinstance(data, dict):
        return fallback

    question = str(data.get("question") or "").strip()
    answer = str(data.get("answer") or "").strip()
    if not question or not answer:
        return fallback

    return {
        "question": question,
        "answer": answer,
        "category": str(data.get("category") or fallback["category"]).strip()
    }


# ===========================
# Escalation and FAQs
# ===========================

FAQ_WRAPPER = (
    "I understand you're having trouble. Let me share some relevant FAQs that might help:\n\n"
    "{faq}\n\n"
    "If these don't resolve your issue, I can create a support ticket for you to get "
    "personalized help. Just let me know!"
)

FAQ_ANSWER_TEMPLATE = "**{faq}**\n\n{answer}"

PAGE_CONTEXT_TEMPLATE = "[{page} page] {question}"


def build_faq_reply(faq_text: str) -> str:
    return FAQ_WRAPPER.format(faq=faq_text)


# ===========================
# Ticket intake
# ===========================

TICKET_STEP_TITLE_PROMPT = (
    "I'll help you create a support ticket to get personalized assistance. "
    "Let me collect some details:\n\n"
    "**Step 1 of 3: Issue Title**\n"
    "Please provide a brief title that describes your issue "
    "(e.g., \"Cannot add candidate to job\", \"Login page not loading\"):"
)

TICKET_STEP_DESCRIPTION_PROMPT = (
    "**Step 2 of 3: Detailed Description**\n"
    "Please describe the issue in detail. What exactly happens when you try to "
    "perform the action?"
)

TICKET_STEP_STEPS_PROMPT = (
    "**Step 3 of 3: Steps Attempted**\n"
    "What steps have you already tried to resolve this issue? "
    "(e.g., \"Refreshed page, cleared cache, tried different browser\")"
)

TICKET_EMPTY_ANSWER_PREFIX = "I didn't catch that. "

TICKET_RESET_MESSAGE = (
    "I encountered an error in the ticket creation process. Let me start over. "
    "Please describe your issue and I'll help you create a support ticket."
)

TICKET_SUCCESS_TEMPLATE = """✅ **Support Ticket Created Successfully!**

**Ticket Number**: {ticket_number}
**Status**: Open
**Urgency**: {urgency}

Your ticket has been submitted and our support team has been notified. They will review your issue and respond as soon as possible.

**What happens next:**
• Our support team will review your ticket
• You'll receive updates on the progress
• A support agent may reach out for additional information

**Estimated Response Time:**
• Critical: Within 1 hour
• High: Within 4 hours
• Medium: Within 24 hours
• Low: Within 48 hours

Thank you for providing detailed information. Is there anything else I can help you with?"""

TICKET_FAILURE_TEMPLATE = """❌ I encountered an error creating your support ticket. This could be due to:

• Database connection issues
• Missing required information
• System configuration problems

**Please try again in a few minutes, or contact our support team directly:**

📧 Email: {support_email}
💬 Direct Chat: {support_chat_link}

I apologize for the inconvenience. Our technical team has been notified of this issue."""

TICKET_NOTIFICATION_TEMPLATE = """🚨 **New Support Ticket Created**

**Ticket**: {ticket_number}
**User**: {user_name}
**Category**: {category}
**Title**: {title}
**Urgency**: {urgency}

**Description**: {description}

**Steps Attempted**: {steps}

**Browser/Device**: {browser} / {device}

**Created**: {created}

Please assign and respond to this ticket promptly."""


def build_ticket_success(ticket_number: str, urgency: str) -> str:
    return TICKET_SUCCESS_TEMPLATE.format(
        ticket_number=ticket_number,
        urgency=(urgency or "medium").upper()
    )


def build_ticket_failure(support_email: str, support_chat_link: str) -> str:
    return TICKET_FAILURE_TEMPLATE.format(
        support_email=support_email,
        support_chat_link=support_chat_link
    )


def build_ticket_notification(ticket: Dict[str, Any]) -> str:
    steps: Iterable[str] = ticket.get("steps_attempted") or []
    created = ticket.get("created_at")
    if isinstance(created, datetime):
        created = created.isoformat()

    return TICKET_NOTIFICATION_TEMPLATE.format(
        ticket_number=ticket.get("ticket_number"),
        user_name=ticket.get("user_name") or "Unknown",
        category=ticket.get("issue_category"),
        title=ticket.get("issue_title"),
        urgency=(ticket.get("urgency_level") or "medium").upper(),
        description=ticket.get("issue_description"),
        steps=", ".join(steps) or "None specified",
        browser=ticket.get("browser_info") or "Not specified",
        device=ticket.get("device_info") or "Not specified",
        created=created or datetime.utcnow().isoformat()
    )


# ===========================
# Knowledge base updates
# ===========================

KB_UPDATED_TEMPLATE = """✅ **Knowledge Base Updated**

**Ticket**: {ticket_number}
**New Q&A Added**: {question}
**Category**: {category}

This solution has been added to the knowledge base and will help answer similar questions automatically in the future. 🤖📚"""


def build_kb_updated(ticket_number: str, qa_pair: Dict[str, str]) -> str:
    return KB_UPDATED_TEMPLATE.format(
        ticket_number=ticket_number,
        question=qa_pair.get("question"),
        category=qa_pair.get("category") or "general"
    )


# ===========================
# Error replies
# ===========================

LLM_TIMEOUT_REPLY = (
    "I apologize for the delay. The system is taking longer than usual to respond. "
    "Please try asking your question again, or contact our support team if this continues."
)

LLM_RATE_LIMIT_REPLY = "I'm currently experiencing high demand. Please wait a moment and try again."

LLM_ERROR_REPLY = (
    "I encountered a technical issue while processing your request. Please try "
    "rephrasing your question or our support team for immediate assistance."
)

NO_ANSWER_REPLY = (
    "I couldn't find an answer to that in the PM-Next knowledge base. Could you "
    "rephrase your question, or tell me more about what you're trying to do? If "
    "you're stuck, I can create a support ticket for you."
)


__all__ = [
    'SYSTEM_PROMPT_TEMPLATE',
    'KB_CURATOR_PROMPT',
    'KB_CURATOR_USER_TEMPLATE',
    'build_system_prompt',
    'build_extraction_prompt',
    'parse_qa_pair',
    'FAQ_WRAPPER',
    'FAQ_ANSWER_TEMPLATE',
    'PAGE_CONTEXT_TEMPLATE',
    'build_faq_reply',
    'TICKET_STEP_TITLE_PROMPT',
    'TICKET_STEP_DESCRIPTION_PROMPT',
    'TICKET_STEP_STEPS_PROMPT',
    'TICKET_EMPTY_ANSWER_PREFIX',
    'TICKET_RESET_MESSAGE',
    'build_ticket_success',
    'build_ticket_failure',
    'build_ticket_notification',
    'build_kb_updated',
    'LLM_TIMEOUT_REPLY',
    'LLM_RATE_LIMIT_REPLY',
    'LLM_ERROR_REPLY',
    'NO_ANSWER_REPLY',
]
