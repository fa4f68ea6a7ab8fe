"""Fixed instruction texts for the completion calls."""

SYSTEM_PROMPT = "You are LeIA, a helpful assistant. Answer in Markdown."

# Used when a turn arrives without prompt text (typically image-only)
DEFAULT_IMAGE_PROMPT = "Describe and analyze the attached image."

TITLE_PROMPT = (
    "Summarize the user's message as a conversation title in at most three words. "
    "Do not use quotation marks."
)

# Stored on every turn after the first, and used when title generation fails
PLACEHOLDER_TITLE = "New conversation"
