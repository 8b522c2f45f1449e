"""
GitHub App credentials and installation token caching for branchsource.

An installation token is minted by signing a short-lived JWT with the
app's private key, locating the app installation for the target account
and asking GitHub for an access token. Tokens live for an hour; the caches
here hand out the current token and replace it shortly before it matters:

- InstallationToken: immutable token value with its staleness deadline
- InstallationTokenCache: one token per credential
- MultiOrgTokenCache: one token per (credential, organization)

Refreshes are single-flight: one caller performs the network issuance and
every concurrent caller waits for, and shares, its outcome.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import InitVar, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import jwt
import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..exit_codes import AuthenticationError, CommandError, ConfigError
from .github_client import DEFAULT_API_URI

logger = logging.getLogger(__name__)

# JWTs used to talk to the app endpoints; GitHub caps them at 10 minutes
JWT_VALIDITY_SECONDS = 8 * 60
JWT_CLOCK_SKEW_SECONDS = 60

# Staleness defaults, see TokenPolicy
NOT_STALE_MINIMUM_SECONDS = 60
STALE_BEFORE_EXPIRATION_SECONDS = 45 * 60
MAXIMUM_AGE_SECONDS = 30 * 60

# Multi-organization cache limits
ORGANIZATIONS_TTL_SECONDS = 60 * 60
MAX_CACHED_TOKENS = 100

ERROR_AUTHENTICATING_GITHUB_APP = "Couldn't authenticate with GitHub app ID {app_id}"
ERROR_NOT_INSTALLED = (
    ERROR_AUTHENTICATING_GITHUB_APP
    + ", has it been installed to your GitHub organisation / user?"
)
ERROR_PRIVATE_KEY = (
    "Couldn't parse private key for GitHub app ID {app_id}: {error}. "
    "The key must be a PEM encoded RSA private key; to convert a key to PKCS#8 use: "
    "openssl pkcs8 -topk8 -inform PEM -outform PEM -in current-key.pem -out new-key.pem -nocrypt"
)


@dataclass(frozen=True)
class TokenPolicy:
    """
    When a token stops being handed out.

    A token goes stale ``stale_before_expiration_seconds`` before it
    expires, but never later than ``maximum_age_seconds`` after issuance and
    never sooner than ``not_stale_minimum_seconds`` after it. The minimum
    is clamped to one second so a misconfiguration cannot make every token
    stale on arrival.
    """
    not_stale_minimum_seconds: int = NOT_STALE_MINIMUM_SECONDS
    stale_before_expiration_seconds: int = STALE_BEFORE_EXPIRATION_SECONDS
    maximum_age_seconds: int = MAXIMUM_AGE_SECONDS

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'TokenPolicy':
        tokens = config.get('tokens', {})
        return cls(
            not_stale_minimum_seconds=int(tokens.get('not_stale_minimum_seconds', NOT_STALE_MINIMUM_SECONDS)),
            stale_before_expiration_seconds=int(
                tokens.get('stale_before_expiration_seconds', STALE_BEFORE_EXPIRATION_SECONDS)
            ),
            maximum_age_seconds=int(tokens.get('maximum_age_seconds', MAXIMUM_AGE_SECONDS)),
        )

    def stale_at(self, issued_at: int, expires_at: int) -> int:
        minimum = max(1, self.not_stale_minimum_seconds)
        return max(
            issued_at + minimum,
            min(expires_at - self.stale_before_expiration_seconds,
                issued_at + self.maximum_age_seconds)
        )


@dataclass(frozen=True)
class InstallationToken:
    """An installation access token. Times are epoch seconds."""
    secret: str = field(repr=False)
    expires_at: int
    issued_at: int = field(default_factory=lambda: int(time.time()))
    policy: InitVar[Optional[TokenPolicy]] = None
    stale_at: int = field(init=False)

    def __post_init__(self, policy: Optional[TokenPolicy]):
        policy = policy or TokenPolicy()
        object.__setattr__(self, 'stale_at', policy.stale_at(self.issued_at, self.expires_at))

    def is_stale(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.stale_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at


@dataclass(frozen=True)
class AppCredentials:
    """Identity of a GitHub App, optionally bound to one account."""
    app_id: str
    private_key: str = field(repr=False)
    api_uri: str = DEFAULT_API_URI
    owner: Optional[str] = None

    def __post_init__(self):
        if not self.app_id or not str(self.app_id).strip():
            raise ConfigError("GitHub App ID cannot be empty")
        if not self.private_key or not self.private_key.strip():
            raise ConfigError(f"GitHub App private key cannot be empty for app ID {self.app_id}")
        object.__setattr__(self, 'app_id', str(self.app_id).strip())
        object.__setattr__(self, 'api_uri', (self.api_uri or DEFAULT_API_URI).rstrip('/'))
        object.__setattr__(self, 'owner', self.owner or None)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'AppCredentials':
        """
        Build credentials from the ``github`` config section.

        The private key comes from ``private_key`` or, preferably, from the
        file named by ``private_key_file``.
        """
        github = config.get('github', {})
        app_id = github.get('app_id')
        if not app_id:
            raise ConfigError("github.app_id is not configured")

        private_key = github.get('private_key') or ''
        key_file = github.get('private_key_file')
        if key_file:
            path = Path(key_file).expanduser()
            try:
                private_key = path.read_text()
            except OSError as e:
                raise ConfigError(f"Cannot read GitHub App private key {path}: {e}") from e

        return cls(
            app_id=str(app_id),
            private_key=private_key,
            api_uri=github.get('api_uri') or DEFAULT_API_URI,
            owner=github.get('owner') or None,
        )

    def signing_key(self) -> rsa.RSAPrivateKey:
        """
        Parse the private key.

        Raises:
            ConfigError: with a conversion hint when the key is unusable
        """
        try:
            key = serialization.load_pem_private_key(self.private_key.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ConfigError(ERROR_PRIVATE_KEY.format(app_id=self.app_id, error=e)) from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigError(ERROR_PRIVATE_KEY.format(app_id=self.app_id, error="not an RSA key"))
        return key


def create_jwt(credentials: AppCredentials, now: Optional[int] = None) -> str:
    """Sign the app JWT used to call the ``/app`` endpoints."""
    now = int(time.time()) if now is None else now
    payload = {
        'iat': now - JWT_CLOCK_SKEW_SECONDS,
        'exp': now + JWT_VALIDITY_SECONDS,
        'iss': credentials.app_id,
    }
    return jwt.encode(payload, credentials.signing_key(), algorithm='RS256')


def _parse_expiry(value: Optional[str]) -> int:
    if not value:
        raise AuthenticationError("GitHub returned an installation token without expiry")
    return int(datetime.fromisoformat(value.replace('Z', '+00:00')).timestamp())


class AppInstallationIssuer:
    """
    Mints installation tokens for a GitHub App.

    Example:
        issuer = AppInstallationIssuer(AppCredentials("12345", pem))
        token = issuer.issue("my-org")
    """

    def __init__(
        self,
        credentials: AppCredentials,
        policy: Optional[TokenPolicy] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        self.credentials = credentials
        self.policy = policy or TokenPolicy()
        self.timeout = timeout
        self.session = session or requests.Session()

    def _app_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        if endpoint.startswith(('http://', 'https://')):
            url = endpoint
        else:
            url = f"{self.credentials.api_uri}/{endpoint.lstrip('/')}"
        headers = {
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'branchsource',
            'Authorization': f'Bearer {create_jwt(self.credentials)}',
        }
        app_id = self.credentials.app_id
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise AuthenticationError(
                f"{ERROR_AUTHENTICATING_GITHUB_APP.format(app_id=app_id)}: {e}"
            ) from e
        if response.status_code >= 400:
            raise AuthenticationError(
                f"{ERROR_AUTHENTICATING_GITHUB_APP.format(app_id=app_id)}: "
                f"HTTP {response.status_code} from {url}"
            )
        return response

    def list_installations(self) -> List[Dict[str, Any]]:
        """Every installation of the app."""
        installations: List[Dict[str, Any]] = []
        endpoint: Optional[str] = "app/installations?per_page=100"
        while endpoint:
            response = self._app_request('GET', endpoint)
            installations.extend(response.json())
            endpoint = response.links.get('next', {}).get('url')
        return installations

    def available_organizations(self) -> List[str]:
        """Account logins the app is installed on."""
        organizations = []
        for installation in self.list_installations():
            login = (installation.get('account') or {}).get('login')
            if login:
                organizations.append(login)
            else:
                logger.warning(f"Installation {installation.get('id')} has no account login")
        return organizations

    def find_installation(self, target: Optional[str]) -> Dict[str, Any]:
        """
        Pick the installation to mint a token from.

        A single installation is used whatever the target; with several,
        the one whose account login equals ``target`` is required.
        """
        app_id = self.credentials.app_id
        installations = self.list_installations()
        if not installations:
            raise AuthenticationError(ERROR_NOT_INSTALLED.format(app_id=app_id))
        if len(installations) == 1:
            return installations[0]
        for installation in installations:
            if (installation.get('account') or {}).get('login') == target:
                return installation
        raise AuthenticationError(ERROR_NOT_INSTALLED.format(app_id=app_id))

    def issue(self, target: Optional[str] = None) -> InstallationToken:
        """Mint a new installation token for ``target`` (or the only installation)."""
        app_id = self.credentials.app_id
        logger.info(f"Generating App Installation Token for app ID {app_id}")
        installation = self.find_installation(target)
        issued_at = int(time.time())
        response = self._app_request(
            'POST', f"app/installations/{installation['id']}/access_tokens"
        )
        data = response.json()
        token = InstallationToken(
            secret=data.get('token', ''),
            expires_at=_parse_expiry(data.get('expires_at')),
            issued_at=issued_at,
            policy=self.policy,
        )
        if not token.secret:
            raise AuthenticationError(f"{ERROR_AUTHENTICATING_GITHUB_APP.format(app_id=app_id)}: empty token")
        logger.info(f"Generated App Installation Token for app ID {app_id}")
        return token


T = TypeVar('T')


class _Flight:
    """One in-progress load that concurrent callers wait on."""

    def __init__(self):
        self._done = threading.Event()
        self._value = None
        self._error: Optional[BaseException] = None

    def resolve(self, value=None, error: Optional[BaseException] = None) -> None:
        self._value = value
        self._error = error
        self._done.set()

    def result(self):
        self._done.wait()
        if self._error is not None:
            raise self._error
        return self._value


class _SingleFlightValue(Generic[T]):
    """
    A cached value refreshed by at most one caller at a time.

    The current value is a single immutable reference, so readers never
    see partial updates. A failed load never replaces the previous value;
    ``usable_on_failure`` decides whether that previous value may still be
    returned when the load raised AuthenticationError.
    """

    def __init__(
        self,
        name: str,
        load: Callable[[], T],
        is_fresh: Callable[[T], bool],
        usable_on_failure: Callable[[T], bool]
    ):
        self.name = name
        self._load = load
        self._is_fresh = is_fresh
        self._usable_on_failure = usable_on_failure
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._in_flight: Optional[_Flight] = None

    @property
    def value(self) -> Optional[T]:
        return self._value

    def get(self, force: bool = False) -> T:
        with self._lock:
            current = self._value
            if current is not None and not force and self._is_fresh(current):
                return current
            flight = self._in_flight
            leader = flight is None
            if leader:
                flight = self._in_flight = _Flight()

        if leader:
            self._run(flight)

        try:
            return flight.result()
        except AuthenticationError as e:
            if current is not None and self._usable_on_failure(current):
                logger.warning(f"Refreshing {self.name} failed, using the previous value: {e}")
                return current
            raise

    def _run(self, flight: _Flight) -> None:
        value: Optional[T] = None
        error: Optional[BaseException] = AuthenticationError(f"Refreshing {self.name} was interrupted")
        try:
            value = self._load()
            error = None
        except CommandError as e:
            error = e
        except Exception as e:
            error = AuthenticationError(f"Refreshing {self.name} failed: {e}")
        finally:
            with self._lock:
                if error is None:
                    self._value = value
                self._in_flight = None
            flight.resolve(value, error=error)


class InstallationTokenCache:
    """
    Keeps one valid installation token for a credential.

    Example:
        cache = InstallationTokenCache(AppCredentials.from_config(config))
        client = GitHubClient(token_supplier=cache.get_token)
    """

    def __init__(
        self,
        credentials: AppCredentials,
        issuer: Optional[AppInstallationIssuer] = None,
        policy: Optional[TokenPolicy] = None,
        use_stale_on_failure: bool = True
    ):
        """
        Args:
            credentials: App identity; ``credentials.owner`` selects the installation
            issuer: Token issuer (defaults to AppInstallationIssuer)
            policy: Staleness policy for issued tokens
            use_stale_on_failure: Return a stale, unexpired token when refresh fails
        """
        self.credentials = credentials
        self.issuer = issuer or AppInstallationIssuer(credentials, policy=policy)
        self.use_stale_on_failure = use_stale_on_failure
        self._slot: _SingleFlightValue[InstallationToken] = _SingleFlightValue(
            name=f"installation token for app ID {credentials.app_id}",
            load=lambda: self.issuer.issue(credentials.owner),
            is_fresh=lambda token: not token.is_stale(),
            usable_on_failure=lambda token: self.use_stale_on_failure and not token.is_expired(),
        )

    @property
    def token(self) -> Optional[InstallationToken]:
        """The current token value, without refreshing."""
        return self._slot.value

    def get_token(self) -> str:
        """Secret of a token that is not stale, refreshing if needed."""
        return self._slot.get().secret

    def is_stale(self) -> bool:
        token = self._slot.value
        return token is None or token.is_stale()

    def force_refresh(self) -> InstallationToken:
        return self._slot.get(force=True)


@dataclass(frozen=True)
class _Organizations:
    names: Tuple[str, ...]
    fetched_at: float


class MultiOrgTokenCache:
    """
    Keeps one installation token per organization for a single app.

    Each organization's token is refreshed independently. The list of
    organizations the app is installed on is cached separately with its
    own refresh window.
    """

    def __init__(
        self,
        credentials: AppCredentials,
        issuer: Optional[AppInstallationIssuer] = None,
        policy: Optional[TokenPolicy] = None,
        use_stale_on_failure: bool = True,
        organizations_ttl: float = ORGANIZATIONS_TTL_SECONDS,
        max_cached_tokens: int = MAX_CACHED_TOKENS
    ):
        self.credentials = credentials
        self.issuer = issuer or AppInstallationIssuer(credentials, policy=policy)
        self.use_stale_on_failure = use_stale_on_failure
        self.organizations_ttl = organizations_ttl
        self.max_cached_tokens = max_cached_tokens
        self._slots: 'OrderedDict[str, _SingleFlightValue[InstallationToken]]' = OrderedDict()
        self._slots_lock = threading.Lock()
        self._organizations: _SingleFlightValue[_Organizations] = _SingleFlightValue(
            name=f"organizations for app ID {credentials.app_id}",
            load=self._load_organizations,
            is_fresh=lambda orgs: time.time() - orgs.fetched_at < self.organizations_ttl,
            usable_on_failure=lambda orgs: True,
        )

    def _load_organizations(self) -> _Organizations:
        names = tuple(self.issuer.available_organizations())
        logger.debug(
            f"Refreshed available organizations for GitHub App ID {self.credentials.app_id}: "
            f"{', '.join(names)}"
        )
        return _Organizations(names=names, fetched_at=time.time())

    def available_organizations(self) -> List[str]:
        return list(self._organizations.get().names)

    def force_refresh_organizations(self) -> List[str]:
        return list(self._organizations.get(force=True).names)

    def _cleanup_expired(self) -> None:
        for org in [org for org, slot in self._slots.items()
                    if slot.value is not None and slot.value.is_expired()]:
            del self._slots[org]
            logger.debug(f"Removed expired token for org: {org}")

    def _slot(self, org: str) -> _SingleFlightValue[InstallationToken]:
        with self._slots_lock:
            slot = self._slots.get(org)
            if slot is None:
                self._cleanup_expired()
                slot = _SingleFlightValue(
                    name=f"installation token for app ID {self.credentials.app_id} and org {org}",
                    load=lambda: self.issuer.issue(org),
                    is_fresh=lambda token: not token.is_stale(),
                    usable_on_failure=lambda token: self.use_stale_on_failure and not token.is_expired(),
                )
                self._slots[org] = slot
                while len(self._slots) > self.max_cached_tokens:
                    oldest, _ = self._slots.popitem(last=False)
                    logger.debug(f"Removed least recently used token for org: {oldest}")
            else:
                self._slots.move_to_end(org)
            return slot

    def resolve_org(self, org: Optional[str]) -> str:
        org = org or self.credentials.owner
        if org:
            return org
        organizations = self.available_organizations()
        if not organizations:
            raise AuthenticationError(ERROR_NOT_INSTALLED.format(app_id=self.credentials.app_id))
        return organizations[0]

    def token_for(self, org: str) -> Optional[InstallationToken]:
        """The current token for an organization, without refreshing."""
        with self._slots_lock:
            slot = self._slots.get(org)
        return slot.value if slot is not None else None

    def get_token(self, org: Optional[str] = None) -> str:
        """
        Secret of a non-stale token for ``org``.

        Without an org, the configured owner is used, then the first
        organization the app is installed on.
        """
        return self._slot(self.resolve_org(org)).get().secret

    def is_stale(self, org: Optional[str] = None) -> bool:
        token = self.token_for(self.resolve_org(org))
        return token is None or token.is_stale()

    def force_refresh(self, org: Optional[str] = None) -> InstallationToken:
        return self._slot(self.resolve_org(org)).get(force=True)

    def for_organization(self, org: str) -> 'OrganizationTokens':
        """A cache view bound to one organization, with its token pre-warmed."""
        available = self.available_organizations()
        if org not in available:
            logger.warning(
                f"Organization {org} is not in the list of available organizations for "
                f"GitHub App ID {self.credentials.app_id}. Available organizations: {', '.join(available)}"
            )
        view = OrganizationTokens(self, org)
        try:
            view.get_token()
        except AuthenticationError as e:
            logger.warning(f"Failed to pre-warm token cache for organization {org}: {e}")
        return view


class OrganizationTokens:
    """MultiOrgTokenCache narrowed to one organization."""

    def __init__(self, cache: MultiOrgTokenCache, org: str):
        self.cache = cache
        self.org = org

    @property
    def token(self) -> Optional[InstallationToken]:
        return self.cache.token_for(self.org)

    def get_token(self) -> str:
        return self.cache.get_token(self.org)

    def is_stale(self) -> bool:
        return self.cache.is_stale(self.org)

    def force_refresh(self) -> InstallationToken:
        return self.cache.force_refresh(self.org)
