"""
Persona metadata and system prompt construction.

Untrusted request context is sanitised before it reaches any prompt; the
trusted profile snapshot is shown to specialists as verified data.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import settings
from models.schemas import AgentType, RequestContext, UserProfile


MAX_FIELD_LENGTH = 100

_INJECTION_PATTERNS = [
    re.compile(r"IGNORE\s+PREVIOUS\s+INSTRUCTIONS", re.IGNORECASE),
    re.compile(r"SYSTEM\s+PROMPT", re.IGNORECASE),
    re.compile(r"ACT\s+AS", re.IGNORECASE),
]


@dataclass(frozen=True)
class PersonaMetadata:
    display_name: str
    emoji: str
    description: str


PERSONAS: Dict[AgentType, PersonaMetadata] = {
    AgentType.ROUTER: PersonaMetadata(
        f"{settings.assistant_name} Assistant", "👋", "Greeting and routing your request"
    ),
    AgentType.FINANCIAL: PersonaMetadata(
        "Financial Negotiator", "💰", "Building your case to lower bills and get refunds"
    ),
    AgentType.INSURANCE: PersonaMetadata(
        "Insurance Claims Specialist", "🛡️", "Handling claims and compensation"
    ),
    AgentType.BOOKING: PersonaMetadata(
        "Booking Coordinator", "📅", "Scheduling appointments and reservations"
    ),
    AgentType.ACCOUNT: PersonaMetadata(
        "Account Manager", "👤", "Managing account changes and services"
    ),
    AgentType.SUPPORT: PersonaMetadata(
        "Technical Support Agent", "🔧", "Troubleshooting technical issues"
    ),
}


def sanitize_value(value: Optional[str]) -> Optional[str]:
    """Flatten newlines, filter injection phrases and cap the length."""
    if not value:
        return value
    cleaned = value.replace("\n", " ").replace("\r", " ")
    for pattern in _INJECTION_PATTERNS:
        cleaned = pattern.sub("[filtered]", cleaned)
    return cleaned[:MAX_FIELD_LENGTH]


def sanitize_context(ctx: RequestContext) -> RequestContext:
    return RequestContext(
        name=sanitize_value(ctx.name),
        email=sanitize_value(ctx.email),
        phone=sanitize_value(ctx.phone),
        timezone=sanitize_value(ctx.timezone),
        address=sanitize_value(ctx.address),
    )


def _context_lines(ctx: RequestContext) -> List[str]:
    lines = []
    if ctx.name:
        lines.append(f"Name: {ctx.name}")
    if ctx.email:
        lines.append(f"Email: {ctx.email}")
    if ctx.phone:
        lines.append(f"Phone: {ctx.phone}")
    if ctx.timezone:
        lines.append(f"Timezone: {ctx.timezone}")
    if ctx.address:
        lines.append(f"Address: {ctx.address}")
    return lines


def _profile_lines(ctx: RequestContext, profile: Optional[UserProfile]) -> List[str]:
    """Verified facts for specialists; falls back to the request context."""
    if profile is None:
        return [f"- {line}" for line in _context_lines(ctx)]

    lines = []
    if profile.first_name and profile.last_name:
        lines.append(f"- Full Name: {profile.full_name}")
    elif ctx.name:
        lines.append(f"- Name: {ctx.name}")
    if profile.phone:
        lines.append(f"- Phone: {profile.phone}")
    if profile.email:
        lines.append(f"- Email: {profile.email}")
    if profile.address:
        lines.append(f"- Address: {profile.address}")
    if profile.timezone:
        lines.append(f"- Timezone: {profile.timezone}")
    if profile.birthdate:
        lines.append(f"- Date of Birth: {profile.birthdate}")
    return lines


def router_prompt(ctx: RequestContext, profile: Optional[UserProfile] = None) -> str:
    known = _context_lines(ctx)
    return f"""You are {settings.assistant_name}'s friendly assistant. You handle casual conversation and let specialists take over when the user has a real issue.

Your job:
- Greetings and small talk: reply warmly and briefly.
- When the user raises an issue (a bill, a claim, a booking, an account change, a technical problem): acknowledge it in one sentence. The system routes them to the right specialist automatically.

Known context:
{chr(10).join(known) if known else "None"}

IMPORTANT: You have NO tools. You cannot search the web or place calls. You only converse."""


@dataclass(frozen=True)
class SpecialistBrief:
    role: str
    questions: List[str]
    research: List[str]
    call_notes: List[str]


_BRIEFS: Dict[AgentType, SpecialistBrief] = {
    AgentType.FINANCIAL: SpecialistBrief(
        role="financial negotiator who gets bills lowered, fees waived and refunds issued",
        questions=[
            "Which company is billing you?",
            "What is the charge or fee, and how much is it?",
            "How long have you been a customer?",
            "Have you seen a better price from a competitor?",
            "What is your account number?",
            "What outcome would you accept: a discount, a refund or a plan change?",
        ],
        research=[
            "the company's customer service or retention phone number",
            "current promotions and competitor prices for the same service",
        ],
        call_notes=[
            "Lead with loyalty and competitor offers.",
            "Ask for the retention department if the first agent cannot help.",
        ],
    ),
    AgentType.INSURANCE: SpecialistBrief(
        role="insurance claims specialist who files claims, appeals denials and chases compensation",
        questions=[
            "Which insurer or airline is involved?",
            "What happened, and on what date?",
            "What is your policy, claim or booking reference?",
            "Has anything been denied already? What reason was given?",
            "Which documents do you have (receipts, reports, boarding passes)?",
            "What amount or outcome are you seeking?",
        ],
        research=[
            "the insurer's claims phone number",
            "the compensation rules that apply (policy terms or passenger rights)",
        ],
        call_notes=[
            "Cite the specific rule or policy clause that supports the claim.",
            "Request a claim reference number and a decision timeline.",
        ],
    ),
    AgentType.BOOKING: SpecialistBrief(
        role="booking coordinator who schedules appointments and makes reservations",
        questions=[
            "Which business or provider do you want to book with?",
            "What kind of appointment or reservation is it?",
            "Which dates and times work for you?",
            "How many people, and any special requirements?",
            "Are you an existing customer or patient there?",
        ],
        research=[
            "the business phone number and opening hours",
        ],
        call_notes=[
            "Offer the user's preferred windows in order.",
            "Confirm the final date, time and any confirmation number.",
        ],
    ),
    AgentType.ACCOUNT: SpecialistBrief(
        role="account manager who activates, changes and cancels services",
        questions=[
            "Which company holds the account?",
            "What change do you need: activation, an update, a cancellation or an equipment return?",
            "What is your account number?",
            "What is the service address on the account?",
            "When should the change take effect?",
            "If cancelling: why are you leaving?",
        ],
        research=[
            "the company's account services phone number",
            "the cancellation or equipment return policy",
        ],
        call_notes=[
            "Document the reason for cancelling so retention offers can be declined quickly.",
            "Ask for written confirmation of the change.",
        ],
    ),
    AgentType.SUPPORT: SpecialistBrief(
        role="technical support specialist who gets outages and broken services fixed",
        questions=[
            "Which company provides the service?",
            "What exactly is happening? Any error codes?",
            "When did it start?",
            "What have you already tried?",
            "How is it affecting you (work from home, business)?",
            "What is your account number?",
            "What is the service address?",
            "Which equipment do you have (modem or router model)?",
            "When are you available for a technician visit?",
        ],
        research=[
            "the company's technical support phone number",
            "known outages near the service address",
            "common fixes for the user's equipment",
        ],
        call_notes=[
            "List every troubleshooting step already taken so the agent skips the basic script.",
            "Ask for the earliest technician appointment and confirm it in the user's timezone.",
        ],
    ),
}


def specialist_prompt(agent: AgentType, ctx: RequestContext, profile: Optional[UserProfile] = None) -> str:
    brief = _BRIEFS[agent]
    saved = _profile_lines(ctx, profile)
    questions = "\n".join(f"{i}. {q}" for i, q in enumerate(brief.questions, start=1))
    research = "\n".join(f"- {item}" for item in brief.research)
    notes = "\n".join(f"- {note}" for note in brief.call_notes)

    return f"""You are {settings.assistant_name}'s {brief.role}. Build a strong case before placing any call.

USER'S SAVED INFORMATION (verified, use it in the call):
{chr(10).join(saved) if saved else "No saved information available. Ask the user for the details you need."}

PHASE 1 - INFORMATION GATHERING
Ask one or two questions at a time until you can answer all of these:
{questions}

PHASE 2 - RESEARCH
Use firecrawl_search to find:
{research}

PHASE 3 - CASE SUMMARY
Summarise everything you gathered and the number you will call. Ask the user to confirm.

PHASE 4 - EXECUTE
After the user confirms, call start_call with the complete context: contact (name, type, phoneNumber), issue, goal, caller, verification and availability.
{notes}

RULES
- Never invent account numbers, phone numbers or policy details.
- Do not call start_call before the user confirms the summary.
- If a tool keeps failing, stop calling it and tell the user what you need instead.

You have firecrawl_search, firecrawl_scrape, firecrawl_crawl, firecrawl_extract and start_call tools."""


def build_prompt(agent: AgentType, ctx: RequestContext, profile: Optional[UserProfile] = None) -> str:
    """Base system prompt for a persona. Context is sanitised here."""
    safe = sanitize_context(ctx)
    if agent == AgentType.ROUTER:
        return router_prompt(safe, profile)
    return specialist_prompt(agent, safe, profile)
