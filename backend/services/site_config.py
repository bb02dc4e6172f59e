"""Site configuration: the registry of recognised keys and typed access.

Values live in the data layer. Reads of an absent key return the registry
default without writing it back; the three process secrets are the
exception and are generated and stored on first read.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from db.connector import DataConnector
from entities import ConfigScalar, ConfigType
from error_handler import InvalidInputError, NoValueError, NotFoundError
from security_utils import (
    PASS_SALT_SIZE,
    SESSION_AUTH_KEY_SIZE,
    SESSION_ENCRYPT_KEY_SIZE,
    get_crypt_rand_key,
)

logger = logging.getLogger(__name__)

# ─── Key names ───────────────────────────────────────────────────────────────

HOST_ADDRESS = "HostAddress"
NOTICE_BANNER = "NoticeBanner"

MIN_NAME_LENGTH = "MinNameLength"
MAX_NAME_LENGTH = "MaxNameLength"
MAX_TITLE_LENGTH = "MaxTitleLength"
MAX_DESCRIPTION_LENGTH = "MaxDescriptionLength"
MAX_LINK_LENGTH = "MaxLinkLength"
MAX_REMARKS_LENGTH = "MaxRemarksLength"

FORMFILL_ENABLED = "FormfillEnabled"
JIKAN_ENABLED = "JikanEnabled"
JIKAN_BANNED_TYPES = "JikanBannedTypes"
JIKAN_MAX_EPISODES = "JikanMaxEpisodes"
MAX_MULT_EP_LENGTH = "MaxMultEpLength"
TMDB_ENABLED = "TmdbEnabled"
TMDB_TOKEN = "TmdbToken"

LOCAL_SIGNUP_ENABLED = "LocalSignupEnabled"

MAX_USER_VOTES = "MaxUserVotes"
VOTING_ENABLED = "VotingEnabled"
ENTRIES_REQUIRE_APPROVAL = "EntriesRequireApproval"
UNLIMITED_VOTES = "UnlimitedVotes"

SESSION_AUTH = "SessionAuth"
SESSION_ENCRYPT = "SessionEncrypt"
PASS_SALT = "PassSalt"
CYCLE_ENDING = "CycleEnding"

OAUTH_PROVIDERS = ("Twitch", "Discord", "Patreon")


def oauth_enabled_key(provider: str) -> str:
    return f"{provider}OauthEnabled"


def oauth_signup_enabled_key(provider: str) -> str:
    return f"{provider}OauthSignupEnabled"


def oauth_client_id_key(provider: str) -> str:
    return f"{provider}OauthClientID"


def oauth_client_secret_key(provider: str) -> str:
    return f"{provider}OauthClientSecret"


@dataclass(frozen=True)
class ConfigKey:
    name: str
    type: ConfigType
    default: ConfigScalar
    section: str
    private: bool = False
    editable: bool = True


def _build_registry() -> dict[str, ConfigKey]:
    keys = [
        ConfigKey(HOST_ADDRESS, ConfigType.STRING, "localhost", "General"),
        ConfigKey(NOTICE_BANNER, ConfigType.STRING, "", "General"),
        ConfigKey(MIN_NAME_LENGTH, ConfigType.INT, 4, "Field limits"),
        ConfigKey(MAX_NAME_LENGTH, ConfigType.INT, 100, "Field limits"),
        ConfigKey(MAX_TITLE_LENGTH, ConfigType.INT, 100, "Field limits"),
        ConfigKey(MAX_DESCRIPTION_LENGTH, ConfigType.INT, 1000, "Field limits"),
        ConfigKey(MAX_LINK_LENGTH, ConfigType.INT, 500, "Field limits"),
        ConfigKey(MAX_REMARKS_LENGTH, ConfigType.INT, 200, "Field limits"),
        ConfigKey(FORMFILL_ENABLED, ConfigType.BOOL, True, "Movie input"),
        ConfigKey(JIKAN_ENABLED, ConfigType.BOOL, False, "Movie input"),
        ConfigKey(JIKAN_BANNED_TYPES, ConfigType.STRING, "TV,music", "Movie input"),
        ConfigKey(JIKAN_MAX_EPISODES, ConfigType.INT, 1, "Movie input"),
        ConfigKey(MAX_MULT_EP_LENGTH, ConfigType.INT, 120, "Movie input"),
        ConfigKey(TMDB_ENABLED, ConfigType.BOOL, False, "Movie input"),
        ConfigKey(TMDB_TOKEN, ConfigType.STRING, "", "Movie input", private=True),
        ConfigKey(LOCAL_SIGNUP_ENABLED, ConfigType.BOOL, True, "Authentication"),
    ]
    for provider in OAUTH_PROVIDERS:
        keys += [
            ConfigKey(oauth_enabled_key(provider), ConfigType.BOOL, False, "Authentication"),
            ConfigKey(oauth_signup_enabled_key(provider), ConfigType.BOOL, False, "Authentication"),
            ConfigKey(oauth_client_id_key(provider), ConfigType.STRING, "", "Authentication", private=True),
            ConfigKey(oauth_client_secret_key(provider), ConfigType.STRING, "", "Authentication", private=True),
        ]
    keys += [
        ConfigKey(MAX_USER_VOTES, ConfigType.INT, 5, "Administration"),
        ConfigKey(VOTING_ENABLED, ConfigType.BOOL, False, "Administration"),
        ConfigKey(ENTRIES_REQUIRE_APPROVAL, ConfigType.BOOL, False, "Administration"),
        ConfigKey(UNLIMITED_VOTES, ConfigType.BOOL, False, "Administration"),
        ConfigKey(SESSION_AUTH, ConfigType.STRING, "", "Internal", private=True, editable=False),
        ConfigKey(SESSION_ENCRYPT, ConfigType.STRING, "", "Internal", private=True, editable=False),
        ConfigKey(PASS_SALT, ConfigType.STRING, "", "Internal", private=True, editable=False),
        ConfigKey(CYCLE_ENDING, ConfigType.STRING, "", "Internal", editable=False),
    ]
    return {k.name: k for k in keys}


CONFIG_KEYS: dict[str, ConfigKey] = _build_registry()

_SECRET_SIZES = {
    SESSION_AUTH: SESSION_AUTH_KEY_SIZE,
    SESSION_ENCRYPT: SESSION_ENCRYPT_KEY_SIZE,
    PASS_SALT: PASS_SALT_SIZE,
}


class SiteConfig:
    """Typed access to site configuration stored in a DataConnector."""

    def __init__(self, data: DataConnector):
        self.data = data

    @staticmethod
    def _key(name: str) -> ConfigKey:
        key = CONFIG_KEYS.get(name)
        if key is None:
            raise NotFoundError(f"Unknown config key {name!r}")
        return key

    def get_string(self, name: str, default: Optional[str] = None) -> str:
        if default is None:
            default = str(self._key(name).default)
        try:
            return self.data.get_cfg_string(name, default)
        except NoValueError:
            return default

    def get_int(self, name: str, default: Optional[int] = None) -> int:
        if default is None:
            default = int(self._key(name).default)
        try:
            return self.data.get_cfg_int(name, default)
        except NoValueError:
            return default

    def get_bool(self, name: str, default: Optional[bool] = None) -> bool:
        if default is None:
            default = bool(self._key(name).default)
        try:
            return self.data.get_cfg_bool(name, default)
        except NoValueError:
            return default

    def get(self, name: str) -> ConfigScalar:
        """Read a registry key through the getter of its declared type."""
        key = self._key(name)
        if key.type == ConfigType.BOOL:
            return self.get_bool(name)
        if key.type == ConfigType.INT:
            return self.get_int(name)
        return self.get_string(name)

    def set_string(self, name: str, value: str) -> None:
        self.data.set_cfg_string(name, value)

    def set_int(self, name: str, value: int) -> None:
        self.data.set_cfg_int(name, value)

    def set_bool(self, name: str, value: bool) -> None:
        self.data.set_cfg_bool(name, value)

    def delete(self, name: str) -> None:
        self.data.delete_cfg_key(name)

    def set(self, name: str, value) -> None:
        """Write a registry key after checking and coercing its type.

        Form values arrive as strings; "true"/"false"/"on" and decimal
        integers are accepted for bool and int keys respectively.

        Raises:
            NotFoundError: Unknown key.
            InvalidInputError: Key is internal or the value has the wrong type.
        """
        key = self._key(name)
        if not key.editable:
            raise InvalidInputError(f"Config key {name!r} cannot be changed")
        if key.type == ConfigType.BOOL:
            self.set_bool(name, _coerce_bool(name, value))
        elif key.type == ConfigType.INT:
            self.set_int(name, _coerce_int(name, value))
        else:
            if not isinstance(value, str):
                raise InvalidInputError(f"Config key {name!r} expects a string")
            self.set_string(name, value)

    def host_url(self) -> str:
        """HostAddress lower-cased, with ``http://`` added when it has no scheme."""
        host = self.get_string(HOST_ADDRESS).strip().lower().rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = "http://" + host
        return host

    def get_secret(self, name: str) -> str:
        """Return a process secret, generating and persisting it if absent."""
        size = _SECRET_SIZES[name]
        try:
            value = self.data.get_cfg_string(name, "")
        except NoValueError:
            value = ""
        if not value:
            value = get_crypt_rand_key(size)
            self.data.set_cfg_string(name, value)
            logger.info("Generated new %s", name)
        return value

    def load_defaults_if_not_set(self) -> int:
        """Persist the default of every editable key that has no stored value."""
        seeded = 0
        for key in CONFIG_KEYS.values():
            if not key.editable:
                continue
            try:
                if key.type == ConfigType.BOOL:
                    self.data.get_cfg_bool(key.name, bool(key.default))
                elif key.type == ConfigType.INT:
                    self.data.get_cfg_int(key.name, int(key.default))
                else:
                    self.data.get_cfg_string(key.name, str(key.default))
            except NoValueError:
                if key.type == ConfigType.BOOL:
                    self.data.set_cfg_bool(key.name, bool(key.default))
                elif key.type == ConfigType.INT:
                    self.data.set_cfg_int(key.name, int(key.default))
                else:
                    self.data.set_cfg_string(key.name, str(key.default))
                seeded += 1
        for name in _SECRET_SIZES:
            self.get_secret(name)
        if seeded:
            logger.info("Seeded %d config defaults", seeded)
        return seeded

    def public_values(self) -> list[dict]:
        """Editable keys with their current values; private values are blanked."""
        out = []
        for key in CONFIG_KEYS.values():
            if not key.editable:
                continue
            out.append({
                "key": key.name,
                "type": key.type.name.lower(),
                "section": key.section,
                "value": "" if key.private else self.get(key.name),
                "private": key.private,
                "default": "" if key.private else key.default,
            })
        return out


def _coerce_bool(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "on", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "off", "0", "no", ""):
        return False
    raise InvalidInputError(f"Config key {name!r} expects a boolean")


def _coerce_int(name: str, value) -> int:
    if isinstance(value, bool):
        raise InvalidInputError(f"Config key {name!r} expects an integer")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidInputError(f"Config key {name!r} expects an integer") from None
