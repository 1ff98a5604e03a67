import pytest
from datetime import timedelta

from pingchain.analytics import build_metrics, time_range_bounds, average_response_time, engagement_score
from pingchain.models import Contact

from conftest import NOW, TEST_USER


@pytest.mark.parametrize("time_range, days", [("7d", 7), ("30d", 30), ("90d", 90), ("1y", 365), ("bogus", 30), (None, 30)])
def test_time_range_bounds(time_range, days):
    start, end = time_range_bounds(time_range, NOW)
    assert end == NOW
    assert end - start == timedelta(days=days)


def test_average_response_time_uses_first_later_reply(make_message):
    messages = [
        make_message("ping", hours_ago=10, direction="outbound"),
        make_message("pong", hours_ago=7, direction="inbound"),
        make_message("again", hours_ago=6, direction="inbound"),
        make_message("other contact", hours_ago=9, direction="inbound", contact_id="c2"),
    ]
    assert average_response_time(messages) == pytest.approx(3.0)


def test_engagement_score_components():
    assert engagement_score(0, 0, 0) == 0
    assert engagement_score(200, 1000, 100) == pytest.approx(100)


def test_build_metrics(make_message):
    contacts = [
        Contact(id="c1", user_id=TEST_USER, name="Alex", email="alex@example.com", created_at=NOW - timedelta(days=2)),
        Contact(id="c2", user_id=TEST_USER, name="Sam", email="sam@example.com", created_at=NOW - timedelta(days=60)),
    ]
    messages = [
        make_message("Thanks, this is great", hours_ago=5, direction="outbound"),
        make_message("Happy to help", hours_ago=4, direction="inbound"),
        make_message("Terrible news", hours_ago=3, direction="inbound", contact_id="c2", contact_name="Sam"),
        make_message("Ancient history", hours_ago=24 * 40, direction="outbound"),
    ]
    start, end = time_range_bounds("7d", NOW)

    metrics = build_metrics(TEST_USER, contacts, messages, start, end)

    assert metrics["totalContacts"] == 1
    assert metrics["totalMessages"] == 3
    assert metrics["responseRate"] == pytest.approx(200.0)
    assert metrics["averageResponseTime"] == pytest.approx(1.0)
    assert [c["id"] for c in metrics["topPerformingContacts"]] == ["c1"]
    assert metrics["topPerformingContacts"][0]["messageCount"] == 2
    assert len(metrics["messageTrends"]) == 8
    assert sum(day["sent"] for day in metrics["messageTrends"]) == 1
    assert metrics["platformBreakdown"] == [{"platform": "email", "count": 3, "percentage": 100.0}]

    insights = {i["contactId"]: i for i in metrics["conversationInsights"]}
    assert insights["c1"]["sentiment"] == "positive"
    assert insights["c2"]["sentiment"] == "negative"
    assert insights["c2"]["contactName"] == "Sam"


def test_build_metrics_for_empty_period():
    start, end = time_range_bounds("30d", NOW)
    metrics = build_metrics(TEST_USER, [], [], start, end)
    assert metrics["totalMessages"] == 0
    assert metrics["responseRate"] == 0
    assert metrics["platformBreakdown"] == []
    assert all(day["sent"] == 0 for day in metrics["messageTrends"])
