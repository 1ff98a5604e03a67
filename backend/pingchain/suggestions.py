# pingchain/suggestions.py
import logging
import random
import re
from typing import List, Optional

import requests

from .config import HUGGINGFACE_API_KEY, HUGGINGFACE_MODEL_URL, LLM_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

TONE_TEMPLATES = {
    "friendly": [
        "Hi {contact}! How are things going?",
        "Hey {contact}! Just wanted to check in on our conversation.",
        "Hi {contact}! Hope you're doing well. Any updates?",
        "Hey {contact}! How's everything on your end?",
    ],
    "professional": [
        "Hello {contact}, I hope this message finds you well.",
        "Hi {contact}, I wanted to follow up on our recent conversation.",
        "Hello {contact}, I hope you're having a productive day.",
        "Hi {contact}, I wanted to check in regarding our discussion.",
    ],
    "casual": [
        "Hey {contact}! What's up?",
        "Hi {contact}! How's it going?",
        "Hey {contact}! Any news?",
        "Hi {contact}! What's new?",
    ],
    "formal": [
        "Dear {contact}, I hope this message finds you well.",
        "Hello {contact}, I trust you are doing well.",
        "Dear {contact}, I hope you are having a pleasant day.",
        "Hello {contact}, I wanted to reach out regarding our conversation.",
    ],
}

MIN_GENERATED_LENGTH = 5

# ----------------------------------
# Hosted model
# ----------------------------------

def build_prompt(contact: str, previous_messages: List[str], tone: str, context: Optional[str] = None) -> str:
    lines = [f"Conversation with {contact}:"]
    lines += [f"Message {i + 1}: {msg}" for i, msg in enumerate(previous_messages[-3:])]
    if context:
        lines.append(f"Context: {context}")
    lines.append(f"Next {tone} response:")
    return "\n".join(lines)


def _generated_text(data) -> str:
    if isinstance(data, list):
        first = data[0] if data and isinstance(data[0], dict) else {}
        return first.get("generated_text") or first.get("text") or ""
    if isinstance(data, dict):
        return data.get("generated_text") or data.get("text") or ""
    return ""


def clean_generated_text(text: str, prompt: str) -> str:
    text = text.replace(prompt, "").strip()
    text = re.sub(r"^[^a-zA-Z]*", "", text)
    return text.split("\n")[0]


def generate_with_model(contact: str, previous_messages: List[str], tone: str = "friendly",
                        context: Optional[str] = None) -> str:
    """
    One call to the Hugging Face inference endpoint. Never raises: any
    transport or parse failure comes back as a generic check-in sentence.
    """
    prompt = build_prompt(contact, previous_messages, tone, context)
    headers = {
        "Authorization": f"Bearer {HUGGINGFACE_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "inputs": prompt,
        "parameters": {
            "max_length": 100,
            "temperature": 0.7,
            "do_sample": True,
            "return_full_text": False,
        },
    }

    try:
        response = requests.post(HUGGINGFACE_MODEL_URL, headers=headers, json=payload, timeout=LLM_TIMEOUT_SECONDS)
        response.raise_for_status()
        generated = clean_generated_text(_generated_text(response.json()), prompt)
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"Error generating message with Hugging Face: {e}")
        return f"Hi {contact}! Just checking in on our conversation. How are things going?"

    if len(generated) < MIN_GENERATED_LENGTH:
        logger.warning("Hugging Face returned an empty or too short suggestion")
        return f"Hi {contact}! How are things going?"
    return generated

# ----------------------------------
# Templates
# ----------------------------------

def generate_template_message(contact: str, tone: str = "friendly") -> str:
    templates = TONE_TEMPLATES.get(tone, TONE_TEMPLATES["friendly"])
    return random.choice(templates).format(contact=contact)


def generate_smart_template_message(contact: str, previous_messages: List[str], tone: str = "friendly") -> str:
    last = (previous_messages[-1] if previous_messages else "").lower()

    if "meeting" in last or "call" in last:
        what = "meeting" if "meeting" in last else "call"
        return f"Hi {contact}! Looking forward to our {what}. See you soon!"
    if "project" in last or "work" in last:
        what = "project" if "project" in last else "work"
        return f"Hi {contact}! How's the {what} coming along?"
    if "weekend" in last or "holiday" in last:
        what = "weekend" if "weekend" in last else "holiday"
        return f"Hi {contact}! Hope you had a great {what}!"
    if "thank" in last:
        return f"Hi {contact}! You're very welcome. Happy to help!"

    return generate_template_message(contact, tone)


def generate_suggestion(contact: str, previous_messages: List[str], tone: str = "friendly",
                        context: Optional[str] = None, use_ai: bool = False) -> str:
    tone = tone or "friendly"
    if use_ai:
        return generate_with_model(contact, previous_messages, tone, context)
    return generate_smart_template_message(contact, previous_messages, tone)
