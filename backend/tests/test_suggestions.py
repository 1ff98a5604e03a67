import pytest
import requests

from pingchain.suggestions import (
    TONE_TEMPLATES, build_prompt, clean_generated_text, generate_with_model,
    generate_smart_template_message, generate_suggestion,
)


def test_prompt_uses_last_three_messages():
    prompt = build_prompt("Alex", ["one", "two", "three", "four"], "casual", "catching up")
    assert prompt == (
        "Conversation with Alex:\n"
        "Message 1: two\n"
        "Message 2: three\n"
        "Message 3: four\n"
        "Context: catching up\n"
        "Next casual response:"
    )


def test_clean_generated_text_strips_prompt_and_leading_noise():
    prompt = "Conversation with Alex:"
    assert clean_generated_text(f"{prompt} -- 42. Sure thing!\nMore text", prompt) == "Sure thing!"


def test_model_call_sends_bearer_key_and_parameters():
    suggestion = generate_with_model("Alex", ["Hi"], "friendly")

    assert suggestion == "Sounds great, talk soon!"
    args, kwargs = requests.post.call_args
    assert kwargs["headers"]["Authorization"].startswith("Bearer ")
    assert kwargs["json"]["parameters"]["max_length"] == 100
    assert kwargs["json"]["parameters"]["temperature"] == 0.7
    assert kwargs["json"]["inputs"].endswith("Next friendly response:")
    assert "timeout" in kwargs


def test_model_dict_response_is_accepted():
    requests.post.return_value.json.return_value = {"text": "Happy to help out"}
    assert generate_with_model("Alex", ["Hi"]) == "Happy to help out"


def test_short_generation_falls_back():
    requests.post.return_value.json.return_value = [{"generated_text": "ok"}]
    assert generate_with_model("Alex", ["Hi"]) == "Hi Alex! How are things going?"


def test_request_failure_falls_back():
    requests.post.side_effect = requests.exceptions.ConnectionError("offline")
    assert generate_with_model("Alex", ["Hi"]) == \
        "Hi Alex! Just checking in on our conversation. How are things going?"


def test_bad_json_falls_back():
    requests.post.return_value.json.side_effect = ValueError("not json")
    assert generate_with_model("Alex", ["Hi"]) == \
        "Hi Alex! Just checking in on our conversation. How are things going?"


@pytest.mark.parametrize("last, expected", [
    ("See you at the meeting", "Hi Alex! Looking forward to our meeting. See you soon!"),
    ("I'll call you later", "Hi Alex! Looking forward to our call. See you soon!"),
    ("The project is late", "Hi Alex! How's the project coming along?"),
    ("Busy at work", "Hi Alex! How's the work coming along?"),
    ("Off for the holiday", "Hi Alex! Hope you had a great holiday!"),
    ("Thanks a lot", "Hi Alex! You're very welcome. Happy to help!"),
])
def test_smart_templates(last, expected):
    assert generate_smart_template_message("Alex", ["earlier", last]) == expected


@pytest.mark.parametrize("tone", ["friendly", "professional", "casual", "formal"])
def test_tone_pool(tone):
    suggestion = generate_smart_template_message("Alex", ["Hello"], tone)
    assert suggestion in [t.format(contact="Alex") for t in TONE_TEMPLATES[tone]]


def test_unknown_tone_uses_friendly_pool():
    suggestion = generate_smart_template_message("Alex", [], "sarcastic")
    assert suggestion in [t.format(contact="Alex") for t in TONE_TEMPLATES["friendly"]]


def test_templates_do_not_touch_network():
    generate_suggestion("Alex", ["Hello"], use_ai=False)
    requests.post.assert_not_called()
