"""Remote scheme authority clients."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError as PydanticValidationError

from scheme_engine.config.models import AuthorityConfig
from scheme_engine.domain.models import Manifest, Scheme
from scheme_engine.logging import get_logger

from .exceptions import AuthorityError, NetworkError

logger = get_logger(__name__, component="authority")

# Status codes worth retrying besides 5xx
_RETRYABLE_STATUS = {408, 425, 429}


class SchemeAuthority(ABC):
    """Source of truth the corpus is reconciled against."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identifier used for sync status and logging."""
        pass

    @abstractmethod
    def fetch_manifest(self, since_version: Optional[int] = None) -> Manifest:
        """Fetch {scheme_id, content_hash} entries changed since ``since_version``.

        Raises:
            NetworkError: On transient failures
            AuthorityError: On permanent failures
        """
        pass

    @abstractmethod
    def fetch_record(self, scheme_id: str) -> Scheme:
        """Fetch one full scheme payload.

        Raises:
            NetworkError: On transient failures
            AuthorityError: On permanent failures or an unparseable payload
        """
        pass


class HttpSchemeAuthority(SchemeAuthority):
    """JSON-over-HTTP authority client.

    Endpoints:
        GET {base_url}/manifest?since=<version>  -> Manifest JSON
        GET {base_url}/schemes/<scheme_id>       -> Scheme JSON

    Attributes:
        base_url: Authority base URL without trailing slash
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        user_agent: str = "SchemeEligibilityEngine/1.0",
        api_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("base_url cannot be empty")

        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
        if api_token:
            self._session.headers["Authorization"] = f"Bearer {api_token}"

    @classmethod
    def from_config(cls, config: AuthorityConfig, api_token: Optional[str] = None) -> "HttpSchemeAuthority":
        return cls(
            base_url=config.base_url,
            timeout=config.timeout,
            user_agent=config.user_agent,
            api_token=api_token,
        )

    @property
    def name(self) -> str:
        return self.base_url

    def fetch_manifest(self, since_version: Optional[int] = None) -> Manifest:
        params = {"since": str(since_version)} if since_version is not None else None
        url = f"{self.base_url}/manifest"
        data = self._make_request(url, params=params)
        try:
            return Manifest.model_validate(data)
        except PydanticValidationError as e:
            raise AuthorityError(f"Invalid manifest from {url}: {e}", url=url) from e

    def fetch_record(self, scheme_id: str) -> Scheme:
        url = f"{self.base_url}/schemes/{quote(scheme_id, safe='')}"
        data = self._make_request(url)
        try:
            return Scheme.model_validate(data)
        except PydanticValidationError as e:
            raise AuthorityError(f"Invalid scheme payload from {url}: {e}", url=url) from e

    def _make_request(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET a JSON document, classifying failures as transient or permanent.

        Raises:
            NetworkError: On timeout, connection failure, 5xx, 408, 425 or 429
            AuthorityError: On other 4xx status codes or invalid JSON
        """
        logger.debug(
            f"HTTP GET request to {url}",
            extra={"event": "authority.fetch.request", "url": url, "timeout": self.timeout},
        )

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "authority.fetch.retryable_error", "error_type": "Timeout", "url": url},
            )
            raise NetworkError(f"Request to {url} timed out after {self.timeout} seconds", url=url) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"Request to {url} failed: {e}",
                extra={
                    "event": "authority.fetch.retryable_error",
                    "error_type": type(e).__name__,
                    "url": url,
                },
            )
            raise NetworkError(f"Request to {url} failed: {e}", url=url) from e

        if response.status_code >= 400:
            is_retryable = response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS
            logger.log(
                logging.WARNING if is_retryable else logging.ERROR,
                f"HTTP {response.status_code} error from {url}",
                extra={
                    "event": "authority.fetch.retryable_error" if is_retryable else "authority.fetch.error",
                    "status_code": response.status_code,
                    "url": url,
                },
            )
            error_cls = NetworkError if is_retryable else AuthorityError
            raise error_cls(
                f"HTTP {response.status_code}: {response.reason}",
                url=url,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error(
                f"Failed to parse JSON response from {url}",
                extra={"event": "authority.fetch.error", "error_type": "JSONDecodeError", "url": url},
            )
            raise AuthorityError(f"Failed to parse JSON response from {url}: {e}", url=url) from e
