"""
tests/test_verifier.py -- Unit tests for auth/verifier.py.

The provider is never contacted: a MagicMock(spec=requests.Session) returns
canned responses, and assertions check both the normalized profile and the
request that would have been sent.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests
from jose import jwt

from auth.verifier import IdentityVerifier
from conftest import Clock, make_settings
from core.errors import VerificationError
from core.models import BusinessProfile, ConsumerProfile, PersonName, TenancyMode, TokenKind

NOW = 1_700_000_000

CONSUMER_USER = {
    "user_id": "user-test-1",
    "emails": [
        {"email": "ada@example.com", "verified": True},
        {"email": "ada@work.test", "verified": False},
    ],
    "name": {"first_name": "Ada", "middle_name": "", "last_name": "Lovelace"},
}

BUSINESS_PAYLOAD = {
    "member": {
        "member_id": "member-test-1",
        "email_address": "grace@acme.test",
        "email_address_verified": True,
        "name": "Grace Hopper",
        "status": "active",
        "organization_id": "organization-test-1",
    },
    "organization": {
        "organization_id": "organization-test-1",
        "organization_name": "Acme",
        "organization_slug": "acme",
    },
}


def _response(status_code: int = 200, body=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body if body is not None else {}
    return resp


def _verifier(*responses) -> tuple[IdentityVerifier, MagicMock]:
    http = MagicMock(spec=requests.Session)
    http.request.side_effect = list(responses)
    return IdentityVerifier(make_settings(), http=http, clock=Clock(NOW)), http


def _jwt(exp: int) -> str:
    return jwt.encode({"sub": "session-test-1", "exp": exp}, "k" * 32, algorithm="HS256")


class TestOpaqueToken:
    def test_consumer_profile_is_normalized(self) -> None:
        verifier, http = _verifier(_response(200, {"user": CONSUMER_USER, "session": {}}))
        profile = verifier.verify_token(TokenKind.OPAQUE_SESSION, "tok", TenancyMode.CONSUMER)

        assert isinstance(profile, ConsumerProfile)
        assert profile.identity.external_user_id == "user-test-1"
        assert profile.identity.primary_email.address == "ada@example.com"
        assert profile.identity.primary_email.verified is True
        assert profile.identity.display_name == PersonName("Ada", "Lovelace")

        method, url = http.request.call_args.args
        assert method == "POST"
        assert url == "https://test.stytch.com/v1/sessions/authenticate"
        assert http.request.call_args.kwargs["json"] == {"session_token": "tok"}

    def test_business_profile_carries_membership(self) -> None:
        verifier, http = _verifier(_response(200, BUSINESS_PAYLOAD))
        profile = verifier.verify_token(TokenKind.OPAQUE_SESSION, "tok", TenancyMode.BUSINESS)

        assert isinstance(profile, BusinessProfile)
        assert profile.identity.external_user_id == "member-test-1"
        assert profile.identity.display_name == "Grace Hopper"
        assert profile.membership.organization_id == "organization-test-1"
        assert profile.membership.organization_slug == "acme"
        assert profile.membership.member_status == "active"
        assert http.request.call_args.args[1].endswith("/v1/b2b/sessions/authenticate")

    def test_user_without_emails_is_legal(self) -> None:
        user = {"user_id": "user-test-2", "emails": [], "name": None}
        verifier, _ = _verifier(_response(200, {"user": user}))
        profile = verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert profile.identity.emails == ()
        assert profile.identity.primary_email is None
        assert profile.identity.display_name is None


class TestSignedToken:
    def test_business_mode_is_unsupported_without_network(self) -> None:
        verifier, http = _verifier()
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_token(TokenKind.SIGNED_JWT, _jwt(NOW + 60), TenancyMode.BUSINESS)
        assert excinfo.value.reason == VerificationError.UNSUPPORTED
        http.request.assert_not_called()

    def test_consumer_jwt_fetches_user(self) -> None:
        verifier, http = _verifier(
            _response(200, {"session": {"user_id": "user-test-1"}}),
            _response(200, CONSUMER_USER),
        )
        profile = verifier.verify_token(TokenKind.SIGNED_JWT, _jwt(NOW + 60), TenancyMode.CONSUMER)

        assert profile.identity.external_user_id == "user-test-1"
        second = http.request.call_args_list[1]
        assert second.args == ("GET", "https://test.stytch.com/v1/users/user-test-1")

    def test_expired_jwt_skips_the_round_trip(self) -> None:
        verifier, http = _verifier()
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_signed(_jwt(NOW - 1))
        assert excinfo.value.reason == VerificationError.EXPIRED
        http.request.assert_not_called()

    def test_garbage_jwt_is_invalid(self) -> None:
        verifier, http = _verifier()
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_signed("not-a-jwt")
        assert excinfo.value.reason == VerificationError.INVALID
        http.request.assert_not_called()

    def test_session_without_user_id_is_invalid(self) -> None:
        verifier, _ = _verifier(_response(200, {"session": {}}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_token(TokenKind.SIGNED_JWT, _jwt(NOW + 60), TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.INVALID


class TestErrorMapping:
    def test_timeout_is_transport(self) -> None:
        verifier, _ = _verifier(requests.Timeout("read timed out"))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.TRANSPORT

    def test_connection_error_is_transport(self) -> None:
        verifier, _ = _verifier(requests.ConnectionError("refused"))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.TRANSPORT

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_provider_outage_is_transport(self, status: int) -> None:
        verifier, _ = _verifier(_response(status, {}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.TRANSPORT

    def test_expired_session_is_expired(self) -> None:
        verifier, _ = _verifier(_response(404, {"error_type": "session_expired"}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.EXPIRED

    def test_unauthorized_is_invalid(self) -> None:
        verifier, _ = _verifier(_response(401, {"error_type": "unauthorized_credentials"}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.INVALID

    def test_non_json_body_is_invalid(self) -> None:
        verifier, _ = _verifier(_response(200, ValueError("no json")))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.INVALID

    def test_missing_user_object_is_invalid(self) -> None:
        verifier, _ = _verifier(_response(200, {"session": {}}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.INVALID

    def test_non_list_emails_is_invalid(self) -> None:
        verifier, _ = _verifier(_response(200, {"user": {"user_id": "user-test-1", "emails": 5}}))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.CONSUMER)
        assert excinfo.value.reason == VerificationError.INVALID

    def test_malformed_email_entries_are_skipped(self) -> None:
        user = {
            "user_id": "user-test-1",
            "emails": ["ada@example.com", {"email": 7}, {"email": "ada@work.test", "verified": "yes"}],
            "name": {"first_name": 1, "last_name": "Lovelace"},
        }
        verifier, _ = _verifier(_response(200, {"user": user}))
        profile = verifier.verify_opaque("tok", TenancyMode.CONSUMER)

        assert [e.address for e in profile.identity.emails] == ["ada@work.test"]
        assert profile.identity.primary_email.verified is False
        assert profile.identity.display_name == PersonName("", "Lovelace")

    def test_non_string_member_email_is_invalid(self) -> None:
        payload = {"member": {**BUSINESS_PAYLOAD["member"], "email_address": ["grace@acme.test"]}}
        verifier, _ = _verifier(_response(200, payload))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.BUSINESS)
        assert excinfo.value.reason == VerificationError.INVALID

    def test_non_string_organization_id_is_invalid(self) -> None:
        payload = {"member": {**BUSINESS_PAYLOAD["member"], "organization_id": 42}}
        verifier, _ = _verifier(_response(200, payload))
        with pytest.raises(VerificationError) as excinfo:
            verifier.verify_opaque("tok", TenancyMode.BUSINESS)
        assert excinfo.value.reason == VerificationError.INVALID


class TestPasswordAuthentication:
    def test_consumer_password(self) -> None:
        verifier, http = _verifier(_response(200, {"user": CONSUMER_USER}))
        profile = verifier.authenticate_password("ada@example.com", "pw", TenancyMode.CONSUMER)

        assert profile.identity.external_user_id == "user-test-1"
        assert http.request.call_args.kwargs["json"] == {"email": "ada@example.com", "password": "pw"}

    def test_business_password_requires_organization(self) -> None:
        verifier, http = _verifier()
        with pytest.raises(VerificationError) as excinfo:
            verifier.authenticate_password("grace@acme.test", "pw", TenancyMode.BUSINESS)
        assert excinfo.value.reason == VerificationError.INVALID
        http.request.assert_not_called()

    def test_business_password(self) -> None:
        verifier, http = _verifier(_response(200, BUSINESS_PAYLOAD))
        profile = verifier.authenticate_password(
            "grace@acme.test", "pw", TenancyMode.BUSINESS, organization_id="organization-test-1"
        )
        assert isinstance(profile, BusinessProfile)
        assert http.request.call_args.kwargs["json"]["organization_id"] == "organization-test-1"


class TestTransportSetup:
    def test_live_project_uses_live_host(self) -> None:
        http = MagicMock(spec=requests.Session)
        http.request.return_value = _response(200, {"user": CONSUMER_USER})
        settings = make_settings(project_id="project-live-1234")
        IdentityVerifier(settings, http=http).verify_opaque("tok", TenancyMode.CONSUMER)
        assert http.request.call_args.args[1].startswith("https://api.stytch.com/")

    def test_credentials_and_redirect_cap(self) -> None:
        http = MagicMock(spec=requests.Session)
        settings = make_settings()
        IdentityVerifier(settings, http=http)
        assert http.auth == (settings.project_id, settings.secret)
        assert http.max_redirects == 3
