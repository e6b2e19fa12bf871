"""Per-run working directory."""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union

from loguru import logger

ARTIFACT_PREFIX = 'temp_'
RUN_PREFIX = 'gitlab_migration_'

TRANSFER_FILE = re.compile(rf'^{ARTIFACT_PREFIX}\d+_(metadata\.json|.+\.tar\.gz)$')


class RunWorkspace:
    """Directory holding the log, listings, transient archives and report of a run.

    Runs live side by side under a base directory as
    ``gitlab_migration_<YYYYmmdd_HHMMSS>``.
    """

    def __init__(self, base_dir: Union[str, Path], run_name: Optional[str] = None):
        """Initialize workspace.

        Args:
            base_dir: Directory containing all runs
            run_name: Directory name of this run (timestamped by default)
        """
        self.base_dir = Path(base_dir)
        self.run_name = run_name or datetime.now().strftime(f'{RUN_PREFIX}%Y%m%d_%H%M%S')
        self.run_dir = self.base_dir / self.run_name

    def create(self) -> 'RunWorkspace':
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def log_file(self) -> Path:
        return self.run_dir / 'migration.log'

    @property
    def report_file(self) -> Path:
        return self.run_dir / 'migration_report.txt'

    @property
    def mapping_file(self) -> Path:
        return self.run_dir / 'id_mapping.json'

    def save_json(self, name: str, data: Any) -> Path:
        """Write ``data`` as pretty-printed JSON into the run directory."""
        path = self.run_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        return path

    def artifact_path(self, project_id: int, path_with_namespace: str) -> Path:
        """Local path of a project's export archive."""
        safe_name = path_with_namespace.replace('/', '_')
        return self.run_dir / f'{ARTIFACT_PREFIX}{project_id}_{safe_name}.tar.gz'

    def metadata_path(self, project_id: int) -> Path:
        """Local path of a project's export metadata."""
        return self.run_dir / f'{ARTIFACT_PREFIX}{project_id}_metadata.json'

    def remove(self, *paths: Optional[Path]) -> List[Path]:
        """Delete transient files, logging instead of raising on failure.

        Returns:
            Paths that were actually removed
        """
        removed = []
        for path in paths:
            if path is None:
                continue
            try:
                if path.exists():
                    path.unlink()
                    removed.append(path)
                    logger.debug(f'Removed {path}')
            except OSError as e:
                logger.warning(f'Failed to remove {path}: {e}')
        return removed

    def sweep_artifacts(self) -> List[Path]:
        """Remove leftover archives and metadata of this and earlier runs.

        Only run directories directly below ``base_dir`` are searched, and only
        files named like those from ``artifact_path``/``metadata_path`` go.
        """
        if not self.base_dir.exists():
            return []

        run_dirs = {
            path for path in self.base_dir.glob(f'{RUN_PREFIX}*') if path.is_dir()
        }
        if self.run_dir.is_dir():
            run_dirs.add(self.run_dir)

        leftovers = [
            path
            for run_dir in sorted(run_dirs)
            for path in run_dir.iterdir()
            if path.is_file() and TRANSFER_FILE.match(path.name)
        ]
        removed = self.remove(*leftovers)
        if removed:
            logger.info(f'Removed {len(removed)} leftover transfer file(s)')
        return removed
