"""
Tests for post URL and payout request validation.
"""

import pytest

from marketplace_payments.core.exceptions import ValidationError
from marketplace_payments.utils.validators import (
    INVALID_AMOUNT_MESSAGE,
    detect_platform,
    validate_payout_request,
    validate_post_url,
)


def _payout_body(**overrides):
    body = {
        "deliverableId": "dlv_001",
        "creatorId": "creator_001",
        "campaignId": "cmp_001",
        "amountCents": 25000,
        "stripeAccountId": "acct_creator_001",
    }
    body.update(overrides)
    return body


class TestValidatePostUrl:

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.instagram.com/p/Cx1abc/", "instagram"),
            ("https://www.instagram.com/reel/Cx1abc/", "instagram"),
            ("https://www.tiktok.com/@foodie/video/7301", "tiktok"),
            ("https://youtu.be/dQw4w9WgXcQ", "youtube"),
            ("https://www.youtube.com/shorts/abc123", "youtube"),
            ("https://twitter.com/foodie/status/1720", "twitter"),
            ("https://www.facebook.com/foodie/posts/1234", "facebook"),
        ],
    )
    def test_detects_platform_from_url(self, url, expected):
        assert validate_post_url(url) == expected

    def test_x_alias_is_normalized_to_twitter(self):
        assert validate_post_url("https://x.com/foodie/status/1720", "x") == "twitter"

    def test_declared_platform_is_lowercased(self):
        assert validate_post_url("https://www.instagram.com/p/Cx1abc/", "Instagram") == "instagram"

    def test_rejects_plain_http(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("http://www.instagram.com/p/Cx1abc/")
        assert exc_info.value.code == "INVALID_URL"
        assert exc_info.value.message == "URL must use HTTPS"

    def test_rejects_malformed_url(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("not a url")
        assert exc_info.value.code == "INVALID_URL"

    def test_rejects_empty_url(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("")
        assert exc_info.value.code == "INVALID_URL"

    def test_rejects_unsupported_declared_platform(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("https://www.linkedin.com/posts/foodie-123", "linkedin")
        assert exc_info.value.code == "UNSUPPORTED_PLATFORM"

    def test_rejects_unknown_site(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("https://example.com/my-post")
        assert exc_info.value.code == "UNSUPPORTED_PLATFORM"

    def test_rejects_url_not_matching_declared_platform(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("https://www.instagram.com/p/Cx1abc/", "tiktok")
        assert exc_info.value.code == "INVALID_URL"

    def test_profile_link_is_not_a_post(self):
        assert detect_platform("https://www.instagram.com/foodie/") is None

    @pytest.mark.parametrize(
        "url",
        [
            "https://evil.example/?r=instagram.com/p/x",
            "https://evil.example/#instagram.com/p/x",
            "https://evil.example/instagram.com/p/x",
            "https://instagram.com.evil.example/p/x",
            "https://notx.com/foodie/status/1720",
        ],
    )
    def test_platform_must_be_the_host(self, url):
        assert detect_platform(url) is None

    def test_declared_platform_must_be_the_host(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_post_url("https://evil.example/?r=instagram.com/p/x", "instagram")
        assert exc_info.value.code == "INVALID_URL"

    def test_mobile_subdomain_is_accepted(self):
        assert detect_platform("https://m.facebook.com/foodie/posts/1234") == "facebook"


class TestValidatePayoutRequest:

    def test_valid_body_returns_request(self):
        request = validate_payout_request(_payout_body())

        assert request.deliverable_id == "dlv_001"
        assert request.creator_id == "creator_001"
        assert request.amount_cents == 25000
        assert request.stripe_account_id == "acct_creator_001"

    def test_missing_fields_are_listed(self):
        body = _payout_body()
        del body["campaignId"]
        body["stripeAccountId"] = ""

        with pytest.raises(ValidationError) as exc_info:
            validate_payout_request(body)

        assert exc_info.value.code == "MISSING_FIELDS"
        assert "campaignId" in exc_info.value.message
        assert "stripeAccountId" in exc_info.value.message

    @pytest.mark.parametrize("amount", [0, -100, 10.5, "2500", True])
    def test_rejects_invalid_amount(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            validate_payout_request(_payout_body(amountCents=amount))

        assert exc_info.value.code == "INVALID_AMOUNT"
        assert exc_info.value.message == INVALID_AMOUNT_MESSAGE

    def test_rejects_non_object_body(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payout_request(["dlv_001"])
        assert exc_info.value.code == "INVALID_REQUEST"
