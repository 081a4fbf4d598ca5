import json

import pytest

from paygate.utils.claims import extract_email


@pytest.mark.parametrize("claims, expected", [
    ({"email": "a@x.io"}, "a@x.io"),
    ({"email": {"address": "b@x.io"}}, "b@x.io"),
    ({"google": {"email": "c@x.io"}}, "c@x.io"),
    ({"linked_accounts": [{"type": "wallet", "address": "0x1"}, {"type": "email", "address": "d@x.io"}]}, "d@x.io"),
    ({"linked_accounts": json.dumps([{"type": "email", "address": "e@x.io"}])}, "e@x.io"),
    ({"linked_accounts": [{"type": "google_oauth", "email": "f@x.io"}]}, "f@x.io"),
])
def test_known_claim_shapes(claims, expected):
    assert extract_email(claims) == expected


def test_direct_email_wins_over_linked_accounts():
    claims = {
        "email": "first@x.io",
        "linked_accounts": [{"type": "email", "address": "second@x.io"}],
    }

    assert extract_email(claims) == "first@x.io"


def test_email_account_preferred_over_google_account():
    claims = {"linked_accounts": [
        {"type": "google_oauth", "email": "g@x.io"},
        {"type": "email", "address": "e@x.io"},
    ]}

    assert extract_email(claims) == "e@x.io"


@pytest.mark.parametrize("claims", [
    None,
    {},
    {"email": ""},
    {"email": 42},
    {"linked_accounts": "{not json"},
    {"linked_accounts": json.dumps({"type": "email"})},
    {"linked_accounts": ["junk", {"type": "email"}]},
])
def test_missing_or_malformed_claims(claims):
    assert extract_email(claims) is None
