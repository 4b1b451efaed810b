import pytest

from config import Settings
from services.auth_service import (
    AccountExistsWithDifferentCredential,
    AuthGateway,
    Identity,
    IdentityProvider,
    UnhandledProviderError,
    identity_from_headers,
    sign_in_url,
    sign_out_url,
)

ALICE = Identity(uid="uid-alice", email="alice@example.com")


class FakeProvider(IdentityProvider):
    def __init__(self):
        self.popup_results = {}
        self.popup_errors = {}
        self.redirect_result = None
        self.redirect_error = None
        self.methods = {}
        self.redirects = []
        self.linked = []
        self.signed_out = False
        self.sign_out_error = None

    async def sign_in_with_popup(self, kind):
        if kind in self.popup_errors:
            raise self.popup_errors[kind]
        return self.popup_results.get(kind)

    async def sign_in_with_redirect(self, kind):
        self.redirects.append(kind)

    async def get_redirect_result(self):
        if self.redirect_error is not None:
            raise self.redirect_error
        return self.redirect_result

    async def fetch_sign_in_methods(self, email):
        return self.methods.get(email, [])

    async def link_with_credential(self, identity, credential):
        self.linked.append((identity, credential))

    async def sign_out(self):
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.signed_out = True


@pytest.fixture
def provider():
    return FakeProvider()


def test_session_starts_loading(provider):
    session = AuthGateway(provider).session
    assert session.identity is None
    assert session.is_loading


async def test_popup_sign_in_returns_identity_and_updates_session(provider):
    provider.popup_results["google"] = ALICE
    gateway = AuthGateway(provider)
    seen = []
    gateway.on_session_change(seen.append)

    assert await gateway.sign_in("google") == ALICE
    assert gateway.session.identity == ALICE
    assert not gateway.session.is_loading
    assert [s.identity for s in seen] == [None, ALICE]


async def test_redirect_sign_in_delivers_identity_on_next_load(provider):
    gateway = AuthGateway(provider, use_redirect=True)
    assert await gateway.sign_in("github") is None
    assert provider.redirects == ["github"]

    provider.redirect_result = ALICE
    assert await AuthGateway(provider, use_redirect=True).handle_redirect_result() == ALICE


async def test_conflict_signs_in_with_existing_provider_and_links(provider):
    provider.popup_errors["github"] = AccountExistsWithDifferentCredential(ALICE.email, "github-token")
    provider.methods[ALICE.email] = ["google.com"]
    provider.popup_results["google"] = ALICE
    gateway = AuthGateway(provider)

    assert await gateway.sign_in("github") == ALICE
    assert provider.linked == [(ALICE, "github-token")]
    assert gateway.session.identity == ALICE


async def test_conflict_after_redirect_is_resolved_too(provider):
    provider.redirect_error = AccountExistsWithDifferentCredential(ALICE.email, "google-token")
    provider.methods[ALICE.email] = ["github.com"]
    provider.popup_results["github"] = ALICE

    assert await AuthGateway(provider, use_redirect=True).handle_redirect_result() == ALICE
    assert provider.linked == [(ALICE, "google-token")]


async def test_conflict_with_unknown_provider_is_fatal(provider):
    provider.popup_errors["google"] = AccountExistsWithDifferentCredential(ALICE.email, "token")
    provider.methods[ALICE.email] = ["password"]

    with pytest.raises(UnhandledProviderError, match="password"):
        await AuthGateway(provider).sign_in("google")


async def test_failed_sign_in_returns_none(provider):
    provider.popup_errors["google"] = RuntimeError("popup closed by user")
    gateway = AuthGateway(provider)
    assert await gateway.sign_in("google") is None
    assert gateway.session.identity is None


async def test_sign_out_clears_identity(provider):
    provider.popup_results["google"] = ALICE
    gateway = AuthGateway(provider)
    await gateway.sign_in("google")

    await gateway.sign_out()

    assert provider.signed_out
    assert gateway.session.identity is None


async def test_sign_out_failure_keeps_session(provider):
    provider.popup_results["google"] = ALICE
    provider.sign_out_error = RuntimeError("network down")
    gateway = AuthGateway(provider)
    await gateway.sign_in("google")

    await gateway.sign_out()

    assert gateway.session.identity == ALICE


def test_unsubscribed_listener_is_not_called(provider):
    gateway = AuthGateway(provider)
    seen = []
    unsubscribe = gateway.on_session_change(seen.append)
    unsubscribe()
    gateway._set_identity(ALICE)
    assert len(seen) == 1


def test_identity_from_proxy_headers():
    settings = Settings()
    identity = identity_from_headers(
        {"X-Forwarded-User": "uid-alice", "X-Forwarded-Email": "alice@example.com"}, settings
    )
    assert identity == ALICE
    assert identity_from_headers({}, settings) is None
    assert identity_from_headers({"X-Forwarded-User": "  "}, settings) is None


def test_proxy_urls():
    settings = Settings(auth_proxy_prefix="/oauth2")
    assert sign_in_url("github", settings) == "/oauth2/start?provider=github&rd=%2F"
    assert sign_out_url(settings) == "/oauth2/sign_out?rd=%2F"
