"""GitLab API client implementation."""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urljoin

import aiohttp
import requests
from loguru import logger
from pydantic import BaseModel, Field

from ..config.config import GitLabInstanceConfig
from .backoff import BackoffPolicy
from .exceptions import (
    GitLabAPIError,
    GitLabAuthenticationError,
    GitLabConflictError,
    GitLabNetworkError,
    GitLabNotFoundError,
    GitLabPermissionError,
    GitLabRateLimitError,
    GitLabServerError,
    GitLabValidationError,
    RetriesExhaustedError,
    describe_error,
)

USER_AGENT = 'gitlab-org-migrate/0.1.0'
DOWNLOAD_CHUNK_SIZE = 64 * 1024
TRANSIENT_STATUSES = (502, 503, 504)


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    success: bool


class RawResponse(BaseModel):
    """Undecoded HTTP response as returned by the transport."""

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b''


class GitLabClient:
    """GitLab API client with authentication and retry/backoff.

    Every logical call is attempted at most ``backoff.max_attempts`` times.
    Only rate limiting (429), gateway errors (502/503/504) and network
    failures are retried; any other error response is raised immediately.
    """

    def __init__(
        self,
        config: GitLabInstanceConfig,
        backoff: Optional[BackoffPolicy] = None,
        transfer_timeout: int = 300,
    ):
        """Initialize GitLab client.

        Args:
            config: GitLab instance configuration
            backoff: Retry schedule (three attempts starting at one second by default)
            transfer_timeout: Timeout in seconds for archive downloads and uploads
        """
        if not config.token:
            raise GitLabAuthenticationError('No authentication token provided')

        self.config = config
        self.base_url = config.api_url
        self.backoff = backoff or BackoffPolicy()
        self.transfer_timeout = transfer_timeout
        self.session = requests.Session()
        self.session.headers.update(self._headers())

        # Replaced in tests to avoid real waiting
        self._sleep = asyncio.sleep
        self._sleep_sync = time.sleep

        logger.info(f'Initialized GitLab client for {config.url}')

    def _headers(self) -> Dict[str, str]:
        return {'Private-Token': self.config.token, 'User-Agent': USER_AGENT}

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint.

        Args:
            endpoint: API endpoint path

        Returns:
            Full API URL
        """
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    @staticmethod
    def _decode_body(body: bytes) -> Any:
        if not body:
            return None
        try:
            return json.loads(body.decode('utf-8'))
        except ValueError:
            return body.decode('utf-8', errors='replace')

    def _handle_response(self, raw: RawResponse) -> APIResponse:
        """Classify a response and convert it to the standard format.

        Args:
            raw: Undecoded HTTP response

        Returns:
            Standardized API response

        Raises:
            GitLabAPIError: For any non-2xx status
        """
        status = raw.status
        data = self._decode_body(raw.body)

        if 200 <= status < 300:
            return APIResponse(
                status_code=status, data=data, headers=raw.headers, success=True
            )

        message = describe_error(data) or f'HTTP {status}'
        details = {'status_code': status, 'response_data': data}

        if status == 429:
            retry_after = raw.headers.get('Retry-After')
            raise GitLabRateLimitError(
                f'Rate limit exceeded: {message}',
                retry_after=int(retry_after) if str(retry_after).isdigit() else None,
                response_data=data,
            )
        if status in TRANSIENT_STATUSES:
            raise GitLabServerError(f'Server unavailable: {message}', **details)
        if status == 401:
            raise GitLabAuthenticationError(f'Authentication failed: {message}', **details)
        if status == 403:
            raise GitLabPermissionError(f'Permission denied: {message}', **details)
        if status == 404:
            raise GitLabNotFoundError(f'Resource not found: {message}', **details)
        if status == 409:
            raise GitLabConflictError(f'Conflict: {message}', **details)
        if status in (400, 422):
            raise GitLabValidationError(f'Validation failed: {message}', **details)

        raise GitLabAPIError(f'API request failed: {message}', **details)

    async def _send_async(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Path]] = None,
        download_to: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        """Perform a single HTTP exchange without interpreting the status.

        A successful response is streamed to ``download_to`` when given.

        Raises:
            GitLabNetworkError: If no response was received
        """
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.config.timeout)
        handles = []

        try:
            async with aiohttp.ClientSession(
                headers=self._headers(), timeout=client_timeout
            ) as session:
                body = None
                if form is not None or files:
                    body = aiohttp.FormData()
                    for name, value in (form or {}).items():
                        body.add_field(name, str(value))
                    for name, path in (files or {}).items():
                        handle = open(path, 'rb')
                        handles.append(handle)
                        body.add_field(
                            name,
                            handle,
                            filename=Path(path).name,
                            content_type='application/octet-stream',
                        )

                async with session.request(
                    method, url, params=params, json=json_body, data=body
                ) as response:
                    headers = dict(response.headers)

                    if download_to is not None and 200 <= response.status < 300:
                        with open(download_to, 'wb') as f:
                            async for chunk in response.content.iter_chunked(
                                DOWNLOAD_CHUNK_SIZE
                            ):
                                f.write(chunk)
                        return RawResponse(status=response.status, headers=headers)

                    return RawResponse(
                        status=response.status,
                        headers=headers,
                        body=await response.read(),
                    )

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GitLabNetworkError(f'Network error: {e!r}') from e
        finally:
            for handle in handles:
                handle.close()

    def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        """Synchronous counterpart of ``_send_async`` without transfer support."""
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=timeout or self.config.timeout,
            )
        except requests.RequestException as e:
            raise GitLabNetworkError(f'Network error: {e}') from e

        return RawResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def _retry_or_raise(
        self,
        error: GitLabAPIError,
        method: str,
        endpoint: str,
        attempt: int,
        attempts: int,
    ) -> Optional[float]:
        """Decide what follows a failed attempt.

        Returns:
            Seconds to wait before the next attempt

        Raises:
            GitLabAPIError: The error itself when it is not transient
            RetriesExhaustedError: When the attempt budget is used up
        """
        if not error.transient:
            raise error

        if attempt >= attempts:
            logger.error(
                f'{method} {endpoint} failed after {attempts} attempt(s): {error}'
            )
            raise RetriesExhaustedError(
                f'{method} {endpoint} failed after {attempts} attempt(s): {error}',
                last_error=error,
                attempts=attempts,
            ) from error

        delay = self.backoff.delay_for(attempt)
        logger.warning(
            f'{method} {endpoint} attempt {attempt}/{attempts} failed ({error}); '
            f'retrying in {delay:g}s'
        )
        return delay

    async def request_async(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
        **kwargs,
    ) -> APIResponse:
        """Make asynchronous API request with retry on transient failures.

        Args:
            method: HTTP method
            endpoint: API endpoint
            params: Query parameters
            data: JSON request body
            max_attempts: Override of the policy's attempt budget
            **kwargs: Transport arguments (form, files, download_to, timeout)

        Returns:
            API response
        """
        url = self._build_url(endpoint)
        attempts = max_attempts or self.backoff.max_attempts

        for attempt in range(1, attempts + 1):
            logger.debug(f'{method} {endpoint} (attempt {attempt}/{attempts})')
            try:
                raw = await self._send_async(
                    method, url, params=params, json_body=data, **kwargs
                )
                return self._handle_response(raw)
            except GitLabAPIError as e:
                delay = self._retry_or_raise(e, method, endpoint, attempt, attempts)
            await self._sleep(delay)

        raise AssertionError('unreachable')

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
    ) -> APIResponse:
        """Make synchronous API request with retry on transient failures."""
        url = self._build_url(endpoint)
        attempts = max_attempts or self.backoff.max_attempts

        for attempt in range(1, attempts + 1):
            logger.debug(f'{method} {endpoint} (attempt {attempt}/{attempts})')
            try:
                raw = self._send(method, url, params=params, json_body=data)
                return self._handle_response(raw)
            except GitLabAPIError as e:
                delay = self._retry_or_raise(e, method, endpoint, attempt, attempts)
            self._sleep_sync(delay)

        raise AssertionError('unreachable')

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make GET request."""
        return self.request('GET', endpoint, params=params)

    def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> APIResponse:
        """Make POST request."""
        return self.request('POST', endpoint, data=data)

    def delete(self, endpoint: str) -> APIResponse:
        """Make DELETE request."""
        return self.request('DELETE', endpoint)

    async def get_async(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make asynchronous GET request.

        Args:
            endpoint: API endpoint
            params: Query parameters
            **kwargs: Additional request arguments

        Returns:
            API response
        """
        return await self.request_async('GET', endpoint, params=params, **kwargs)

    async def post_async(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make asynchronous POST request.

        Args:
            endpoint: API endpoint
            data: Request body data
            **kwargs: Additional request arguments

        Returns:
            API response
        """
        return await self.request_async('POST', endpoint, data=data, **kwargs)

    async def delete_async(self, endpoint: str, **kwargs) -> APIResponse:
        """Make asynchronous DELETE request."""
        return await self.request_async('DELETE', endpoint, **kwargs)

    async def download_async(self, endpoint: str, destination: Union[str, Path]) -> Path:
        """Stream a binary endpoint to a local file.

        A partially written file is removed when the download fails.

        Args:
            endpoint: API endpoint returning the binary body
            destination: Local file path

        Returns:
            Path of the written file
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            await self.request_async(
                'GET',
                endpoint,
                download_to=destination,
                timeout=self.transfer_timeout,
            )
        except GitLabAPIError:
            destination.unlink(missing_ok=True)
            raise

        return destination

    async def import_project_async(
        self, archive: Union[str, Path], path: str, namespace_id: int
    ) -> APIResponse:
        """Submit a project export archive for import.

        The upload is attempted exactly once; a retried upload could start a
        second import of the same archive.

        Args:
            archive: Export archive on local disk
            path: Project path to create
            namespace_id: Destination namespace ID

        Returns:
            API response describing the scheduled import
        """
        return await self.request_async(
            'POST',
            '/projects/import',
            max_attempts=1,
            form={'path': path, 'namespace': namespace_id},
            files={'file': Path(archive)},
            timeout=self.transfer_timeout,
        )

    def test_connection(self) -> bool:
        """Test connection to GitLab instance.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            response = self.get('/user')
            return response.success
        except GitLabAPIError as e:
            logger.error(f'Connection test failed for {self.config.url}: {e}')
            return False

    def get_version(self) -> Optional[str]:
        """Get GitLab version.

        Returns:
            GitLab version string or None if unavailable
        """
        try:
            response = self.get('/version')
        except GitLabAPIError as e:
            logger.warning(f'Could not retrieve GitLab version: {e}')
            return None

        if isinstance(response.data, dict):
            return response.data.get('version')
        return None

    def close(self):
        """Close the client session."""
        self.session.close()
        logger.debug(f'GitLab client session closed for {self.config.url}')

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class GitLabClientFactory:
    """Factory for creating GitLab API clients."""

    @staticmethod
    def create_client(
        config: GitLabInstanceConfig,
        backoff: Optional[BackoffPolicy] = None,
        transfer_timeout: int = 300,
    ) -> GitLabClient:
        """Create GitLab client from configuration.

        Args:
            config: GitLab instance configuration
            backoff: Retry schedule shared by every call of the client
            transfer_timeout: Timeout for archive transfers

        Returns:
            Configured GitLab client

        Raises:
            GitLabAuthenticationError: If authentication configuration is invalid
        """
        if not config.token:
            raise GitLabAuthenticationError('A personal access token must be provided')

        return GitLabClient(config, backoff=backoff, transfer_timeout=transfer_timeout)
