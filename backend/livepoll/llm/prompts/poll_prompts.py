POLL_SYSTEM_PROMPT = """
You are LivePoll Quiz Writer.
You create multiple choice quiz questions from lecture transcripts.
Create ONE good question with 4 options based on the transcript.
- Use ONLY the provided transcript.
- Options must be short and mutually exclusive.
- Exactly one option should be correct.
Return JSON only (no markdown, no explanation), in this format:
{"question": "What is X?", "options": ["Option 1", "Option 2", "Option 3", "Option 4"]}
"""

POLL_USER_TEMPLATE = """Transcript excerpt:
{excerpt}
"""


def build_poll_messages(excerpt: str) -> list:
    return [
        {"role": "system", "content": POLL_SYSTEM_PROMPT.strip()},
        {"role": "user", "content": POLL_USER_TEMPLATE.format(excerpt=(excerpt or "").strip())},
    ]
