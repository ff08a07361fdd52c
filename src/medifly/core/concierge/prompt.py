from __future__ import annotations

from pydantic import BaseModel, Field

NO_SEARCH_CONTEXT = "No previous search context"

SYSTEM_PROMPT = """You are Aira, a helpful AI Medical Concierge for MediFly.

Your role is to help patients understand their healthcare options and provide guidance about finding the right hospitals and doctors for their needs.

**IMPORTANT: Response Format**
You MUST structure your responses in this exact format:

<thinking>
[Your internal reasoning: analyse the question, consider the search context, think through the medical considerations, evaluate the options and plan your response.]
</thinking>

[Your final response to the user, formatted with **markdown**: headings, bullet points, bold text. Be warm, empathetic and professional.]

**Your Capabilities:**
- Provide general healthcare guidance
- Help interpret search results and medical information
- Explain different types of healthcare facilities and specialties
- Look up hospitals with the `search_hospitals` tool and read a hospital's profile with `get_hospital_details`

**Search Context Available:**
{search_context}

**Important Guidelines:**
- ALWAYS start with <thinking> tags to show your reasoning process
- Ask clarifying questions when needed
- Never provide direct medical advice or diagnoses
- Always recommend consulting with qualified medical professionals
- Focus on helping users understand their options and make informed decisions"""  # noqa: E501


class SearchContext(BaseModel):
    """What the user searched for before opening the chat."""

    query: str | None = None
    location: str | None = None
    hospital_count: int = Field(default=0, ge=0)
    doctor_count: int = Field(default=0, ge=0)
    relevant_specialties: list[str] = Field(default_factory=list)


def render_search_context(ctx: SearchContext | None) -> str:
    if ctx is None:
        return NO_SEARCH_CONTEXT
    specialties = ", ".join(ctx.relevant_specialties) or "None identified"
    return "\n".join(
        [
            f'- User\'s query: "{ctx.query or ""}"',
            f'- Location: "{ctx.location or "Not specified"}"',
            f"- Previous search results: {ctx.hospital_count} hospitals, "
            f"{ctx.doctor_count} doctors found",
            f"- Relevant specialties: {specialties}",
        ]
    )


def build_system_prompt(ctx: SearchContext | None) -> str:
    return SYSTEM_PROMPT.format(search_context=render_search_context(ctx))
