"""Shared fixtures."""

import pytest

from gitlab_org_migrate.api.pagination import PaginatedCollector
from gitlab_org_migrate.config.config import MigrationConfig
from gitlab_org_migrate.migration.mapper import EntityMapper
from gitlab_org_migrate.migration.pacing import Pacer
from gitlab_org_migrate.migration.strategy import MigrationContext
from gitlab_org_migrate.utils.workspace import RunWorkspace

from fake_gitlab import NO_DELAYS, FakeGitLab, make_client


@pytest.fixture
def source():
    return FakeGitLab('source.example.com')


@pytest.fixture
def destination():
    return FakeGitLab('dest.example.com')


@pytest.fixture
def make_context(source, destination, tmp_path):
    """Factory for a migration context wired to both fake instances."""

    def factory(**settings):
        options = dict(NO_DELAYS)
        options.update(settings)
        source_client = make_client(source)
        destination_client = make_client(destination)
        return MigrationContext(
            source_client=source_client,
            destination_client=destination_client,
            source_collector=PaginatedCollector(source_client, page_delay=0),
            destination_collector=PaginatedCollector(destination_client, page_delay=0),
            mapper=EntityMapper(destination_client),
            settings=MigrationConfig(**options),
            workspace=RunWorkspace(tmp_path / 'work', run_name='run').create(),
            pacer=Pacer(),
        )

    return factory
