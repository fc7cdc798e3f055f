from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from learnchat.core.errors import TokenLimitError, ValidationError
from learnchat.features.usage.service import (
    RESPONSE_TOKEN_RESERVE,
    check_token_limit,
    daily_token_limit,
    enforce_token_limit,
    estimate_conversation_tokens,
    estimate_tokens,
    get_token_usage,
    record_token_usage,
)
from learnchat.main import app
from learnchat.models.conversation import Message


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    messages = [Message(role="user", content="a" * 8), Message(role="assistant", content="b" * 5)]
    assert estimate_conversation_tokens(messages, system_prompt="c" * 4) == 5


def test_usage_accumulates_per_category(individual, now):
    record_token_usage(individual.user_id, 100, category="explanation", now=now)
    record_token_usage(individual.user_id, 50, category="explanation", now=now)
    breakdown = record_token_usage(individual.user_id, 20, category="generation", now=now)

    assert breakdown == {"explanation": 150, "generation": 20}
    usage = get_token_usage(individual.user_id, now=now)
    assert usage == {"date": "2026-03-15", "tokensUsed": 170, "breakdown": {"explanation": 150, "generation": 20}}


def test_usage_resets_each_day(individual, now):
    record_token_usage(individual.user_id, 100, now=now)
    assert get_token_usage(individual.user_id, now=now + timedelta(days=1))["tokensUsed"] == 0


def test_negative_tokens_are_rejected(individual):
    with pytest.raises(ValidationError):
        record_token_usage(individual.user_id, -1)


def test_daily_limits(individual, free_individual, organization):
    assert daily_token_limit(individual) == 200_000
    assert daily_token_limit(free_individual) == 50_000
    assert daily_token_limit(organization["member"]) == 100_000
    assert daily_token_limit(organization["keyless"]) == 500_000
    assert daily_token_limit(organization["owner"]) == 500_000


def test_enforce_includes_response_reserve(free_individual, now):
    record_token_usage(free_individual.user_id, 50_000 - RESPONSE_TOKEN_RESERVE - 10, now=now)

    check = enforce_token_limit(free_individual, 10, now=now)
    assert check.remaining == RESPONSE_TOKEN_RESERVE + 10

    with pytest.raises(TokenLimitError) as exc:
        enforce_token_limit(free_individual, 11, now=now)
    assert exc.value.details["dailyLimit"] == 50_000
    assert exc.value.details["remaining"] == RESPONSE_TOKEN_RESERVE + 10


def test_remaining_never_negative(free_individual, now):
    record_token_usage(free_individual.user_id, 80_000, now=now)
    check = check_token_limit(free_individual, now=now)
    assert check.remaining == 0
    assert check.allowed is True


def test_usage_endpoint(organization):
    member = organization["member"]
    record_token_usage(member.user_id, 300, category="explanation")
    resp = TestClient(app).get("/v1/usage/tokens", headers={"X-User-Id": member.user_id})
    body = resp.json()
    assert body["tokensUsed"] == 300
    assert body["dailyLimit"] == 100_000
    assert body["remaining"] == 99_700
