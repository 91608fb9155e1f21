"""Prompt templates and the formatters that feed them."""
import json
from typing import Any, Optional

AGENT_SYSTEM_PROMPT = """You are a fundraising communications assistant helping a nonprofit staff member \
prepare personalized donor emails.

Your job in this conversation is to agree on an email-generation INSTRUCTION with the user. \
You do not write the emails yourself.

How to work:
1. Gather context first. Call get_donor_info for the donors in this session and \
get_organization_context for the organization and user before proposing anything.
2. Ask focused questions when the goal, tone, ask amount or call to action is unclear. \
Ask at most two questions at a time.
3. Draft the instruction with generate_instruction. When the user gives feedback, \
call refine_instruction with the current instruction and their feedback.
4. Only when the user clearly approves the instruction, call summarize_for_generation. \
Never call it before the user has approved.
5. Always end your turn with a short, plain-text reply to the user. When you drafted or \
refined an instruction, show it and ask whether it should be changed.

Session facts (use these ids in tool calls):
- Organization ID: {organization_id}
- User ID: {user_id}
- Donor IDs: {donor_ids}
- Current step: {current_step}
- Original request: {initial_instruction}
{organization_section}{donor_section}"""

ORGANIZATION_SECTION = """
Organization context already gathered:
- Name: {name}
- Key topics: {key_topics}
- Writing style: {writing_style}
- Brand tone: {brand_tone}
- Recommended tone: {recommended_tone}
- Writing guidelines: {writing_guidelines}
"""

DONOR_SECTION = """
Donor context already gathered for {count} donor(s). Call get_donor_info again only if \
you need details that are not in the conversation.
"""

INITIAL_USER_PROMPT = """I want to create personalized emails for {donor_count} donor(s).

My instruction: "{instruction}"

Donor IDs: {donor_ids}
Organization ID: {organization_id}
User ID: {user_id}

Please look up the donors and our organization, then help me turn this into a clear \
instruction for generating the emails."""

TEXT_REPLY_REMINDER = """Your previous turn contained no reply for the user. Do not call any tools. \
Write your reply to the user now in plain text, summarizing what you found or did and what \
you need from them next."""

GENERATE_INSTRUCTION_SYSTEM_PROMPT = """You write instructions for an email-generation model that \
drafts personalized fundraising emails, one per donor.

A good instruction:
- states the purpose of the email and the single call to action
- sets the tone and length
- names which donor facts to personalize with (giving history, interests, relationship)
- reflects the organization's writing guidelines and the sender's style
- lists anything the emails must avoid

Write the instruction so it works for every donor in the group without placeholders; the \
generation model applies it to each donor separately."""

GENERATE_INSTRUCTION_TASK_PROMPT = """Draft an email-generation instruction.

DONOR ANALYSIS:
{donor_analysis}

ORGANIZATION CONTEXT:
{org_context}

USER PREFERENCES:
{user_preferences}

CONVERSATION SO FAR:
{conversation}"""

REFINE_INSTRUCTION_SYSTEM_PROMPT = """You revise email-generation instructions based on user feedback.

Rules:
- Apply every point of the feedback.
- Keep every part of the current instruction the feedback does not address.
- Do not add requirements the user did not ask for.
- Record each change you made and why."""

REFINE_INSTRUCTION_TASK_PROMPT = """CURRENT INSTRUCTION:
{current_instruction}

USER FEEDBACK:
{user_feedback}

DONOR ANALYSIS:
{donor_analysis}

ORGANIZATION CONTEXT:
{org_context}

RECENT CONVERSATION:
{conversation}"""

SUMMARIZE_SYSTEM_PROMPT = """You finalize an email-generation instruction the user has approved.

Produce the final instruction exactly as agreed in the conversation, made self-contained so \
the generation model needs nothing else. Do not introduce new requirements. Summarize the \
insights that informed it and the challenges the generation model should watch for."""

SUMMARIZE_TASK_PROMPT = """APPROVED INSTRUCTION (may be empty; then take it from the conversation):
{approved_instruction}

DONOR ANALYSIS:
{donor_analysis}

ORGANIZATION CONTEXT:
{org_context}

FULL CONVERSATION:
{conversation}"""

REVIEWER_SYSTEM_PROMPT = """You review generated emails for instruction compliance only.

Decide whether the email follows the final instruction and ALL instructions the user gave during \
the conversation:
- every explicit instruction was followed
- nothing contradicts a user request
- every requested element is present
- every element the user asked to exclude is absent

Do not judge general quality, grammar, style, tone or length unless the user gave an \
instruction about it.

Return "OK" when every instruction is followed. Return "NEEDS_IMPROVEMENT" otherwise, with \
specific feedback naming each instruction that was missed or broken."""

REVIEWER_TASK_PROMPT = """EMAIL GENERATION CONTEXT:

SYSTEM PROMPT:
{system_prompt}

FINAL INSTRUCTION:
{instruction}

DONOR CONTEXT:
{donor_context}

CONVERSATION HISTORY:
{conversation}

GENERATED EMAIL:
Subject: {subject}
Content:
{content}

Review whether the generated email strictly follows the final instruction and all user instructions \
from the conversation above."""

EMAIL_DRAFTER_SYSTEM_PROMPT = """You write one personalized fundraising email for one donor.

Follow the instruction exactly. Use only facts present in the donor context; never invent \
gift amounts, dates or events. Return a subject line and a plain-text body that ends with \
the sender's signature when one is given."""

EMAIL_DRAFTER_TASK_PROMPT = """INSTRUCTION:
{instruction}

DONOR CONTEXT:
{donor_context}

{revision_context}"""

EMAIL_DRAFTER_REVISION_CONTEXT = """**Revision required:** attempt #{attempt}

**Reviewer feedback:**
{feedback}

**Previous draft (fix the issues above, keep everything else):**
Subject: {subject}
{content}
"""


def to_prompt_json(value: Any, limit: Optional[int] = None) -> str:
    """Compact JSON rendering for prompt sections."""
    if value in (None, {}, []):
        return "Not available."
    text = json.dumps(value, indent=2, default=str, ensure_ascii=False)
    if limit and len(text) > limit:
        return text[:limit] + "\n... (truncated)"
    return text


def format_conversation(history: list[dict], last: Optional[int] = None) -> str:
    """Render role/content pairs as a transcript."""
    turns = history[-last:] if last else history
    if not turns:
        return "No conversation yet."
    return "\n\n".join(f"{turn['role'].upper()}: {turn['content']}" for turn in turns)


def format_organization_section(org_analysis: Optional[dict]) -> str:
    """Prompt block for a cached organization analysis."""
    if not org_analysis:
        return ""
    organization = org_analysis.get("organization", {})
    analysis = org_analysis.get("context_analysis", {})
    return ORGANIZATION_SECTION.format(
        name=organization.get("name", "Unknown"),
        key_topics=", ".join(organization.get("key_topics", [])) or "None identified",
        writing_style=organization.get("writing_style", ""),
        brand_tone=organization.get("brand_tone", ""),
        recommended_tone=analysis.get("recommended_tone", ""),
        writing_guidelines="; ".join(analysis.get("writing_guidelines", [])),
    )


GENERATION_CONTEXT_PROMPT = """{base}

ORGANIZATION: {organization_name}
About: {organization_description}
Website summary: {website_summary}
Writing instructions: {writing_instructions}
Organization memories:
{organization_memories}

SENDER: {sender_name}
Sender writing style: {sender_style}
Sender memories:
{sender_memories}
Signature:
{signature}

Today's date: {current_date}"""


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- None"


def build_generation_system_prompt(org_analysis: Optional[dict], current_date: str) -> str:
    """System prompt for per-donor email generation, built from the cached organization context."""
    org_analysis = org_analysis or {}
    organization = org_analysis.get("organization", {})
    user = org_analysis.get("user_context", {})
    staff = user.get("staff") or {}
    writing_instructions = " ".join(
        part for part in (organization.get("writing_instructions"), staff.get("writing_instructions")) if part
    )
    return GENERATION_CONTEXT_PROMPT.format(
        base=EMAIL_DRAFTER_SYSTEM_PROMPT,
        organization_name=organization.get("name", "the organization"),
        organization_description=organization.get("description") or organization.get("short_description") or "Not provided.",
        website_summary=organization.get("website_summary") or "Not provided.",
        writing_instructions=writing_instructions or "None.",
        organization_memories=_bullets(organization.get("memories", [])),
        sender_name=user.get("full_name", "the sender"),
        sender_style=user.get("preferred_style", "Professional and approachable"),
        sender_memories=_bullets(user.get("memories", [])),
        signature=staff.get("signature") or user.get("email_signature") or user.get("full_name", ""),
        current_date=current_date,
    )


def format_donor_context(profile: dict) -> str:
    """Plain-text donor summary for generation and review."""
    stats = profile.get("statistics") or {}
    lines = [
        f"Donor: {profile.get('name') or 'Unknown'} (id {profile.get('id')})",
        f"Email: {profile.get('email') or 'Not on file'}",
    ]
    if stats.get("total_donations"):
        lines.append(
            f"Giving: {stats['total_donations']} gift(s) totalling ${stats['total_amount'] / 100:,.2f}, "
            f"average ${stats['average_donation'] / 100:,.2f}"
            + (", recurring donor" if stats.get("is_recurring") else "")
        )
        last = profile.get("last_donation") or {}
        if last:
            project = f" to {last['project_name']}" if last.get("project_name") else ""
            lines.append(f"Last gift: ${last['amount'] / 100:,.2f}{project} on {str(last['date'])[:10]}")
        if stats.get("months_since_last_donation") is not None:
            lines.append(f"Months since last gift: {stats['months_since_last_donation']}")
    else:
        lines.append("Giving: no recorded gifts")
    if profile.get("notes"):
        lines.append("Notes:\n" + _bullets(profile["notes"]))
    research = profile.get("person_research") or {}
    if research:
        details = ", ".join(part for part in (research.get("profession"), research.get("location")) if part)
        if details:
            lines.append(f"Background: {details}")
        if research.get("key_insights"):
            lines.append("Insights: " + ", ".join(research["key_insights"]))
    communications = profile.get("communication_history") or []
    if communications:
        lines.append(
            "Recent communications:\n"
            + _bullets([f"[{str(c['date'])[:10]}] {c['excerpt']}" for c in communications])
        )
    return "\n".join(lines)
