"""
Deduplication Gateway backed by `duperemove`.
"""

import logging
from typing import Optional

from .command_runner import CommandRunner
from .errors import GatewayError
from .protocols import DeduplicationGateway

logger = logging.getLogger(__name__)

NO_CANDIDATES_MARKER = "No dedupe candidates found"


class DuperemoveGateway(DeduplicationGateway):
    """Collapses duplicate extents across all backups."""

    def __init__(self, runner: CommandRunner, hashfile_path: Optional[str] = None,
                 timeout: Optional[int] = None):
        """
        Initialize the gateway.

        Args:
            runner: Command runner
            hashfile_path: Persistent hash database reused between runs
            timeout: Override of the runner's default timeout
        """
        self.runner = runner
        self.hashfile_path = hashfile_path
        self.timeout = timeout

    def deduplicate(self, root_path: str, block_size: int) -> None:
        args = ['duperemove', '-dr', '-b', str(block_size), '--lookup-extents=yes']
        if self.hashfile_path:
            args.append(f'--hashfile={self.hashfile_path}')
        args.append(root_path)

        result = self.runner.run(args, operation='deduplicate', path=root_path,
                                 timeout=self.timeout, check=False)

        if result.returncode != 0:
            output = (result.stderr or '') + (result.stdout or '')
            if NO_CANDIDATES_MARKER in output:
                logger.info(f"No dedupe candidates found under {root_path}")
                return
            raise GatewayError(
                'deduplicate',
                'failed to perform data deduplication using `duperemove`',
                path=root_path,
                returncode=result.returncode,
                stderr=(result.stderr or '').strip()
            )

        logger.info(f"Deduplicated {root_path} (block size {block_size})")
