"""Instruction templates for history compaction."""

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert at summarizing conversations. Summarize the given "
    "conversation history accurately and concisely. Keep technical terms and "
    "code identifiers exactly as written."
)

MODE_INSTRUCTIONS = {
    "explanation": "- Explanation mode: include the current learning topic, the user's level of understanding and the results of any quizzes.",
    "generation": "- Generation mode: include an outline of the generated code/artifacts, the languages and frameworks used, and quiz progress.",
    "brainstorm": "- Brainstorm mode: include the current phase and every decision made so far (idea outline, target persona, tech stack, etc.).",
}

PREVIOUS_SUMMARY_SECTION = (
    "\n\n[Existing summary of the earlier part of the conversation]\n{previous}\n\n"
    "Building on the existing summary above, produce a single summary that also "
    "integrates the new messages below."
)

SUMMARY_PROMPT = """Summarize the following conversation history concisely.

[Include]
1. The main topics and flow of the conversation
2. The key points of the user's questions and the assistant's answers
3. Open questions and tasks still in progress
4. The user's understanding and learning progress
{mode_instruction}
{previous_summary_section}

[Output rules]
- At most 500 characters
- Prefer bullet points
- Keep technical terms and code identifiers as-is
- Mention attachments when there were any

[Conversation history]
{conversation}"""

SUMMARY_NOTICE = (
    "[Summary of the conversation so far]\n\n{summary}\n\n[End of summary]\n\n"
    "The summary above covers the conversation so far. Continue the conversation with this context in mind."
)

SUMMARY_ACKNOWLEDGEMENT = (
    "I have the context of our conversation so far and will keep helping with it in mind."
)
