"""Sign-in, sign-out and session state on top of an external identity provider."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from config import Settings

logger = logging.getLogger(__name__)

ProviderKind = Literal["google", "github"]

# Sign-in method ids reported by the provider, mapped to the kind we sign in with
SIGN_IN_METHODS: Dict[str, ProviderKind] = {
    "google.com": "google",
    "github.com": "github",
}


class Identity(BaseModel):
    uid: str
    email: Optional[str] = None


class SessionState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identity: Optional[Identity] = None
    is_loading: bool = Field(True, alias="isLoading")


class AccountExistsWithDifferentCredential(Exception):
    """The email is already registered under another provider."""

    def __init__(self, email: str, credential: Any = None):
        self.email = email
        self.credential = credential
        super().__init__(f"An account already exists for {email} with a different sign-in method.")


class UnhandledProviderError(RuntimeError):
    pass


class IdentityProvider(ABC):
    """The third-party identity service the gateway delegates to."""

    @abstractmethod
    async def sign_in_with_popup(self, kind: ProviderKind) -> Optional[Identity]: ...

    @abstractmethod
    async def sign_in_with_redirect(self, kind: ProviderKind) -> None: ...

    @abstractmethod
    async def get_redirect_result(self) -> Optional[Identity]: ...

    @abstractmethod
    async def fetch_sign_in_methods(self, email: str) -> List[str]: ...

    @abstractmethod
    async def link_with_credential(self, identity: Identity, credential: Any) -> None: ...

    @abstractmethod
    async def sign_out(self) -> None: ...


class AuthGateway:
    """
    Session handling for one client.

    With `use_redirect` the sign-in leaves the page and the identity arrives
    through `handle_redirect_result` on the next load instead of as the return
    value of `sign_in`.
    """

    def __init__(self, provider: IdentityProvider, use_redirect: bool = False):
        self.provider = provider
        self.use_redirect = use_redirect
        self._session = SessionState()
        self._listeners: List[Callable[[SessionState], None]] = []

    @property
    def session(self) -> SessionState:
        return self._session

    def on_session_change(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._session)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, kind: ProviderKind) -> Optional[Identity]:
        try:
            if self.use_redirect:
                await self.provider.sign_in_with_redirect(kind)
                return None
            identity = await self.provider.sign_in_with_popup(kind)
        except AccountExistsWithDifferentCredential as conflict:
            identity = await self._link_existing_account(conflict)
        except Exception as e:
            logger.error(f"Error signing in with {kind}: {e}")
            return None
        self._set_identity(identity)
        return identity

    async def handle_redirect_result(self) -> Optional[Identity]:
        try:
            identity = await self.provider.get_redirect_result()
        except AccountExistsWithDifferentCredential as conflict:
            identity = await self._link_existing_account(conflict)
        except Exception as e:
            logger.error(f"Error handling redirect result: {e}")
            identity = None
        self._set_identity(identity)
        return identity

    async def sign_out(self) -> None:
        try:
            await self.provider.sign_out()
        except Exception as e:
            logger.error(f"Error signing out: {e}")
            return
        self._set_identity(None)

    async def _link_existing_account(self, conflict: AccountExistsWithDifferentCredential) -> Optional[Identity]:
        """Sign in with the provider the email already uses, then attach the new credential."""
        methods = await self.provider.fetch_sign_in_methods(conflict.email)
        method = methods[0] if methods else None
        kind = SIGN_IN_METHODS.get(method)
        if kind is None:
            raise UnhandledProviderError(f"Unhandled provider: {method}")

        logger.info(f"Linking new credential for {conflict.email} to existing {method} account.")
        identity = await self.provider.sign_in_with_popup(kind)
        if identity is not None and conflict.credential is not None:
            await self.provider.link_with_credential(identity, conflict.credential)
        return identity

    def _set_identity(self, identity: Optional[Identity]) -> None:
        self._session = SessionState(identity=identity, is_loading=False)
        for listener in list(self._listeners):
            listener(self._session)


# --- HTTP session boundary ---
# The service sits behind an OAuth proxy that performs the provider sign-in
# and forwards the authenticated identity as request headers.

def identity_from_headers(headers: Mapping[str, str], settings: Settings) -> Optional[Identity]:
    uid = (headers.get(settings.auth_uid_header) or "").strip()
    if not uid:
        return None
    email = (headers.get(settings.auth_email_header) or "").strip() or None
    return Identity(uid=uid, email=email)


def sign_in_url(kind: ProviderKind, settings: Settings, redirect_to: str = "/") -> str:
    query = urlencode({"provider": kind, "rd": redirect_to})
    return f"{settings.auth_proxy_prefix}/start?{query}"


def sign_out_url(settings: Settings, redirect_to: str = "/") -> str:
    return f"{settings.auth_proxy_prefix}/sign_out?{urlencode({'rd': redirect_to})}"
