SYSTEM_PROMPT = "You are a helpful assistant."

DEFAULT_PROMPT = (
    "Describe the image naturally, as if you're telling a friend what you see. "
    "Mention who's in it, what they look like, and what they might be doing or feeling. "
    "If there are people in the photo please describe them in detail. "
    "Tell me their hair colour, eye colour, clothing, and any other notable features."
)


def description_messages(prompt: str, mime: str, data: str) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{data}"}},
            ],
        },
    ]
