"""
Prompt construction for diagram generation.

Builds the chat messages for the initial generation call and for each
feedback-driven improvement call.
"""

from typing import Dict, List

from .models import GenerationRequest, SearchContext

DIAGRAM_SYSTEM_PROMPT = """You are an expert at creating beautiful, professional diagrams and illustrations using HTML and Tailwind CSS.

CRITICAL RULES - FOLLOW EXACTLY:

1. OUTPUT FORMAT:
   - Only code in HTML/Tailwind in a single ```html code block
   - Use inline CSS styles in the style attribute only - no separate <style> tags
   - Always include proper HTML structure with html, head, and body tags

2. REQUIRED SCRIPTS (MUST BE INCLUDED IN <head>):
   <script src="https://cdn.tailwindcss.com"></script>
   <script src="https://unpkg.com/lucide@latest"></script>

3. ICONS:
   - Use Lucide icons exclusively, with strokeWidth 1.5
   - Initialize icons with <script>lucide.createIcons();</script> at the end of body

4. DESIGN:
   - Modern, clean, minimalist aesthetic with subtle 1px dividers
   - One font weight thinner than you think; tracking-tight for titles above 20px
   - Fully responsive with sm:, md:, lg: and xl: classes
   - No Tailwind classes on the <html> tag - put them on <body>

5. CHARTS (if needed):
   - Use Chart.js from https://cdn.jsdelivr.net/npm/chart.js with animation: false

6. INTERACTIVITY:
   - No JavaScript animations; Tailwind hover: and transition classes only
   - No floating download buttons

7. ACCESSIBILITY:
   - Semantic HTML, ARIA labels where needed, alt text on every image

Output ONLY the HTML code block - no explanations before or after."""

Message = Dict[str, str]


def _search_section(context: SearchContext) -> str:
    citations = "\n".join(
        f"[{index}] {citation.title} - {citation.url}"
        for index, citation in enumerate(context.citations, start=1)
    )
    return (
        "**Web Research Context:**\n\n"
        f"{context.answer}\n\n"
        "**Sources:**\n"
        f"{citations}\n\n"
        "**Instructions:** Use the above research to inform your diagram. "
        "Include a small citation footer referencing the sources by number [1], [2], etc.\n\n"
        "---\n\n"
    )


def build_generation_messages(
    request: GenerationRequest,
    system_prompt: str = DIAGRAM_SYSTEM_PROMPT,
) -> List[Message]:
    """Build the messages for the initial generation call.

    The user message carries, in order: web research context, the request
    text, uploaded file context and the most recent previous artifact.
    """
    user_message = request.text

    if request.search_context is not None:
        user_message = _search_section(request.search_context) + user_message

    if request.file_context:
        user_message += "\n\n**Context from uploaded files:**\n" + "\n\n---\n\n".join(request.file_context)

    if request.latest_artifact is not None:
        user_message += f"\n\n**This is an iteration. Previous version:**\n{request.latest_artifact}"

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


def build_improvement_messages(
    original_request: str,
    current_artifact: str,
    feedback: str,
    system_prompt: str = DIAGRAM_SYSTEM_PROMPT,
    artifact_language: str = "html",
) -> List[Message]:
    """Build the messages for one feedback-driven improvement call."""
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": original_request},
        {"role": "assistant", "content": f"```{artifact_language}\n{current_artifact}\n```"},
        {
            "role": "user",
            "content": (
                "The diagram has the following issues that need to be fixed:\n\n"
                f"{feedback}\n\n"
                "Please generate an improved version that addresses all these issues "
                "while maintaining the original intent."
            ),
        },
    ]
