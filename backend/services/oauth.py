"""OAuth2 provider contracts and the authorization-code client.

Only the provider side lives here: endpoint constants, building the
authorize URL, exchanging the code and reading the provider's user record.
The signup/login/bind flows live in services.accounts.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import requests

from entities import AuthType
from error_handler import UnauthorizedError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15


@dataclass(frozen=True)
class OAuthProvider:
    auth_type: AuthType
    auth_url: str
    token_url: str
    user_url: str
    scopes: tuple[str, ...]

    @property
    def slug(self) -> str:
        return self.auth_type.value.lower()


PROVIDERS: dict[AuthType, OAuthProvider] = {
    AuthType.TWITCH: OAuthProvider(
        AuthType.TWITCH,
        auth_url="https://id.twitch.tv/oauth2/authorize",
        token_url="https://id.twitch.tv/oauth2/token",
        user_url="https://api.twitch.tv/helix/users",
        scopes=("user:read:email",),
    ),
    AuthType.DISCORD: OAuthProvider(
        AuthType.DISCORD,
        auth_url="https://discord.com/api/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        user_url="https://discord.com/api/users/@me",
        scopes=("email", "identify"),
    ),
    AuthType.PATREON: OAuthProvider(
        AuthType.PATREON,
        auth_url="https://www.patreon.com/oauth2/authorize",
        token_url="https://www.patreon.com/api/oauth2/token",
        user_url=(
            "https://www.patreon.com/api/oauth2/v2/identity"
            "?fields%5Buser%5D=email,first_name,full_name,last_name,vanity"
        ),
        scopes=("identity", "identity[email]"),
    ),
}


def provider_by_slug(slug: str) -> OAuthProvider:
    for provider in PROVIDERS.values():
        if provider.slug == slug.lower():
            return provider
    raise KeyError(slug)


@dataclass
class OAuthUser:
    """The provider's view of the account being authenticated."""

    ext_id: str
    name: str
    email: str = ""


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str = ""


def parse_user(auth_type: AuthType, payload) -> OAuthUser:
    """Extract id, display name and email from a provider user response.

    Raises:
        UnauthorizedError: The response lacks an id.
    """
    record = {}
    name_field = "username"
    if not isinstance(payload, dict):
        payload = {}
    if auth_type == AuthType.TWITCH:
        entries = payload.get("data")
        record = entries[0] if isinstance(entries, list) and entries and isinstance(entries[0], dict) else {}
        name_field = "display_name"
    elif auth_type == AuthType.DISCORD:
        record = payload
    elif auth_type == AuthType.PATREON:
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        attrs = data.get("attributes") if isinstance(data.get("attributes"), dict) else {}
        record = {"id": data.get("id"), "full_name": attrs.get("full_name"), "email": attrs.get("email")}
        name_field = "full_name"

    ext_id = record.get("id")
    if ext_id in (None, ""):
        raise UnauthorizedError(f"{auth_type.value} did not return an account id")
    name = record.get(name_field)
    email = record.get("email")
    return OAuthUser(
        ext_id=str(ext_id),
        name=name if isinstance(name, str) else "",
        email=email if isinstance(email, str) else "",
    )


class OAuthClient:
    """Authorization-code grant against one provider."""

    def __init__(
        self,
        provider: OAuthProvider,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: int = REQUEST_TIMEOUT,
    ):
        self.provider = provider
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"

    def authorize_url(self, state: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.provider.scopes),
            "state": state,
        })
        return f"{self.provider.auth_url}?{query}"

    def exchange_code(self, code: str) -> OAuthTokens:
        """Trade an authorization code for tokens.

        Raises:
            UnauthorizedError: The provider rejected the code or is unreachable.
        """
        name = self.provider.auth_type.value
        try:
            resp = self.session.post(
                self.provider.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("%s token exchange failed: %s", name, type(e).__name__)
            raise UnauthorizedError(f"{name} login failed") from e
        token = data.get("access_token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise UnauthorizedError(f"{name} login failed")
        refresh = data.get("refresh_token")
        return OAuthTokens(access_token=token, refresh_token=refresh if isinstance(refresh, str) else "")

    def fetch_user(self, access_token: str) -> OAuthUser:
        """Read the authenticated account from the provider."""
        headers = {"Authorization": f"Bearer {access_token}"}
        if self.provider.auth_type == AuthType.TWITCH:
            headers["Client-Id"] = self.client_id
        name = self.provider.auth_type.value
        try:
            resp = self.session.get(self.provider.user_url, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("%s user lookup failed: %s", name, type(e).__name__)
            raise UnauthorizedError(f"Could not read the {name} account") from e
        return parse_user(self.provider.auth_type, payload)
