import pytest
from datetime import timedelta

from pingchain.conversation_analysis import (
    is_question, determine_urgency, extract_context, calculate_conversation_health,
    calculate_engagement_score, calculate_average_response_time, detect_open_loops,
    analyze_conversation, generate_context_aware_suggestion,
)
from pingchain.models import OpenLoop

from conftest import NOW


def _loops(n):
    return [
        OpenLoop(id=f"loop_{i}", message_id=str(i), question="?", asked_by="contact",
                 created_at=NOW, urgency="low", context="general")
        for i in range(n)
    ]


@pytest.mark.parametrize("content", [
    "?",
    "Sounds good, see you then?",
    "I'm sorry to bother you, but did the invoice go out?",
    "URGENT?",
])
def test_question_mark_always_counts_as_question(content):
    assert is_question(content) is True


def test_keyword_questions_without_question_mark():
    assert is_question("Let me know what you think about the draft") is False
    assert is_question("Could you send the slides") is True
    assert is_question("") is False


@pytest.mark.parametrize("keyword", ["urgent", "asap", "emergency", "important", "deadline", "critical"])
@pytest.mark.parametrize("hours_ago", [0, 30, 500])
def test_urgent_keyword_is_high_regardless_of_age(make_message, keyword, hours_ago):
    message = make_message(f"Please reply, this is {keyword.upper()}", hours_ago=hours_ago)
    assert determine_urgency(message, now=NOW) == "high"


@pytest.mark.parametrize("hours_ago, expected", [
    (1, "low"),
    (24, "low"),
    (30, "medium"),
    (48, "medium"),
    (50, "high"),
])
def test_urgency_by_age(make_message, hours_ago, expected):
    assert determine_urgency(make_message("Any news?", hours_ago=hours_ago), now=NOW) == expected


def test_context_is_first_match_in_priority_order():
    assert extract_context("Thanks for the call about the project") == "meeting"
    assert extract_context("How is work going?") == "work"
    assert extract_context("Sorry, I missed that") == "apology"
    assert extract_context("Hello there") == "general"


def test_health_excellent_only_with_no_loops_and_recent_message(make_message):
    recent = [make_message("hi", hours_ago=23)]
    assert calculate_conversation_health(recent, [], NOW) == "excellent"
    assert calculate_conversation_health(recent, _loops(1), NOW) == "good"


@pytest.mark.parametrize("days_ago, loops, expected", [
    (1, 0, "good"),
    (3, 1, "needs_attention"),
    (7, 2, "at_risk"),
    (2.9, 1, "good"),
    (6.9, 2, "needs_attention"),
    (0, 3, "at_risk"),
])
def test_health_band_boundaries(make_message, days_ago, loops, expected):
    messages = [make_message("hi", hours_ago=days_ago * 24)]
    assert calculate_conversation_health(messages, _loops(loops), NOW) == expected


def test_engagement_score_is_clamped_to_zero(make_message):
    messages = [make_message("hello", hours_ago=30 * 24)]
    assert calculate_engagement_score(messages, _loops(15), NOW) == 0


def test_engagement_score_is_clamped_to_hundred(make_message):
    messages = [make_message("hello", hours_ago=0.5)]
    assert calculate_engagement_score(messages, [], NOW) == 100


def test_response_time_skips_same_direction_and_long_gaps(make_message):
    messages = [
        make_message("first", hours_ago=300, direction="outbound"),
        # 10 days later, outside the reply window
        make_message("late reply", hours_ago=60, direction="inbound"),
        make_message("follow up", hours_ago=58, direction="inbound"),
        make_message("answer", hours_ago=54, direction="outbound"),
    ]
    assert calculate_average_response_time(messages) == pytest.approx(4.0)
    assert calculate_average_response_time(messages, max_gap=None) == pytest.approx((240 + 4) / 2)


def test_response_gap_of_exactly_one_week_is_counted(make_message):
    messages = [
        make_message("see you next week", hours_ago=170, direction="outbound"),
        make_message("back again", hours_ago=2, direction="inbound"),
    ]
    assert calculate_average_response_time(messages) == pytest.approx(168.0)


def test_dana_meeting_scenario(make_message):
    message = make_message("Can we meet tomorrow?", hours_ago=50, direction="inbound", contact_name="Dana")
    context = analyze_conversation([message], "c1", "Dana", now=NOW)

    loop = context.open_loops[0]
    assert is_question(message.content)
    assert loop.asked_by == "contact"
    # past 48 hours the age rule says high
    assert loop.urgency == "high"
    assert loop.context == "meeting"
    assert [p.message_id for p in context.pending_responses] == [message.id]


def test_dana_meeting_scenario_inside_medium_band(make_message):
    message = make_message("Can we meet tomorrow?", hours_ago=30, direction="inbound", contact_name="Dana")
    context = analyze_conversation([message], "c1", "Dana", now=NOW)
    assert context.open_loops[0].urgency == "medium"
    assert context.pending_responses[0].urgency == "medium"


def test_empty_conversation_defaults_to_excellent():
    context = analyze_conversation([], "c1", "Dana", now=NOW)
    assert context.conversation_health == "excellent"
    assert context.open_loops == []
    assert context.last_interaction == NOW
    assert context.response_time == 0.0


def test_user_questions_are_loops_but_not_pending(make_message):
    messages = [
        make_message("Are you free Friday?", hours_ago=2, direction="outbound"),
        make_message("Yes, I am", hours_ago=1, direction="inbound"),
    ]
    loops = detect_open_loops(messages, NOW)
    assert len(loops) == 1
    assert loops[0].asked_by == "user"
    context = analyze_conversation(messages, "c1", now=NOW)
    assert context.pending_responses == []
    assert context.contact_name == "Alex"


def test_analysis_ignores_other_contacts(make_message):
    messages = [
        make_message("Any update?", hours_ago=1, contact_id="c1"),
        make_message("Where are you?", hours_ago=1, contact_id="c2"),
    ]
    context = analyze_conversation(messages, "c2", now=NOW)
    assert [loop.question for loop in context.open_loops] == ["Where are you?"]


def test_suggestion_prefers_most_urgent_pending_response(make_message):
    messages = [
        make_message("How was the trip?", hours_ago=2, direction="inbound"),
        make_message("Can you review this ASAP?", hours_ago=1, direction="inbound"),
    ]
    context = analyze_conversation(messages, "c1", now=NOW)
    suggestion = generate_context_aware_suggestion(context, messages[-1].content)
    assert suggestion == 'I should respond to: "Can you review this ASAP?"'


def test_suggestion_for_quiet_conversation(make_message):
    messages = [make_message("Talk later", hours_ago=24 * 10)]
    context = analyze_conversation(messages, "c1", now=NOW)
    assert context.conversation_health == "at_risk"
    assert "re-engage" in generate_context_aware_suggestion(context, "Talk later")


def test_suggestion_by_topic(make_message):
    messages = [make_message("Good luck with the project", hours_ago=1)]
    context = analyze_conversation(messages, "c1", now=NOW)
    assert generate_context_aware_suggestion(context, messages[0].content) == \
        "Check in on the project progress with Alex"
