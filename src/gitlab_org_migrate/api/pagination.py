"""Aggregation of paged GitLab listings."""

import asyncio
from typing import Any, Dict, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from .client import GitLabClient
from .exceptions import GitLabAPIError, MalformedResponseError

ModelType = TypeVar('ModelType', bound=BaseModel)

PER_PAGE = 100


class PaginatedCollector:
    """Drain a paged listing endpoint into one ordered list.

    Pages are requested with ``page=1, 2, ...`` and a fixed ``per_page`` until
    the server answers with an empty list. Each page is fetched through the
    client's retry policy. A failure on the first page is raised; a failure
    on a later page truncates the listing with a warning.
    """

    def __init__(self, client: GitLabClient, page_delay: float = 1.0):
        """Initialize collector.

        Args:
            client: Client used for the page requests
            page_delay: Pause in seconds between successive page requests
        """
        self.client = client
        self.page_delay = page_delay
        self._sleep = asyncio.sleep

    @staticmethod
    def _validate_page(endpoint: str, page: int, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, list) or not all(isinstance(i, dict) for i in data):
            raise MalformedResponseError(
                f'Expected a JSON list of objects from {endpoint} page {page}, '
                f'got {type(data).__name__}',
                response_data=data,
            )
        return data

    async def collect_all(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch every page of a listing.

        Args:
            endpoint: Listing endpoint
            params: Extra query parameters

        Returns:
            All records in server order

        Raises:
            GitLabAPIError: If the first page cannot be fetched or is malformed
        """
        items: List[Dict[str, Any]] = []
        page = 1

        while True:
            if page > 1 and self.page_delay:
                await self._sleep(self.page_delay)

            query = dict(params or {})
            query.update({'page': page, 'per_page': PER_PAGE})

            try:
                response = await self.client.get_async(endpoint, params=query)
                records = self._validate_page(endpoint, page, response.data)
            except GitLabAPIError as e:
                if page == 1:
                    logger.error(f'Failed to list {endpoint}: {e}')
                    raise
                logger.warning(
                    f'Listing of {endpoint} truncated at page {page} '
                    f'after {len(items)} item(s): {e}'
                )
                break

            if not records:
                break

            items.extend(records)
            logger.debug(f'{endpoint} page {page}: {len(records)} item(s)')
            page += 1

        logger.info(f'Retrieved {len(items)} items from {endpoint}')
        return items

    async def collect_models(
        self,
        endpoint: str,
        model: Type[ModelType],
        params: Optional[Dict[str, Any]] = None,
    ) -> List[ModelType]:
        """Fetch every page of a listing and parse the records.

        Records that do not parse are dropped with a warning.
        """
        parsed = []
        for record in await self.collect_all(endpoint, params=params):
            try:
                parsed.append(model(**record))
            except ValidationError as e:
                logger.warning(
                    f'Skipping malformed {model.__name__} record from {endpoint}: '
                    f'{e.errors()[0].get("msg", e)}'
                )
        return parsed
