# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Management of the apt sources list during a temporary channel swap.
"""
import hashlib
import logging
import os
import shutil
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..exceptions import ChannelRestoreError
from ..MODELS.provisioning import ChannelSwapStep

logger = logging.getLogger("nbimage.sources")


def file_sha256(path: str) -> str:
    """SHA-256 of a file's bytes."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


class SourcesListManager:
    """
    Performs the backup, append and restore around a channel swap.
    All paths are resolved below `root` so a build tree can be staged
    somewhere other than `/`.
    """

    def __init__(self, root: str = "/"):
        """
        Initialize the manager.

        Args:
            root: Filesystem root the sources list paths are relative to.
        """
        self.root = root

    def host_path(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip("/"))

    def snapshot(self, sources_list: str) -> str:
        """Digest of the sources list as it is now."""
        return file_sha256(self.host_path(sources_list))

    @contextmanager
    def swapped(self, step: ChannelSwapStep,
                clean: Optional[Callable[[], None]] = None) -> Iterator[str]:
        """
        Adds the step's channel entry for the duration of the block.

        On exit, whether or not the block raised, the backup is moved back
        over the sources list and `clean` is called. The restored file must
        match the pre-swap snapshot byte for byte.

        Args:
            step: The channel swap being performed.
            clean: Called after the restore, typically `apt-get clean` and
                removal of the package lists.

        Yields:
            The SHA-256 of the sources list before the swap.

        Raises:
            ChannelRestoreError: If the sources list cannot be backed up or
                restored, or the restored content differs from the snapshot.
        """
        sources = self.host_path(step.sources_list)
        backup = self.host_path(step.backup_path)
        if os.path.exists(backup):
            raise ChannelRestoreError(
                f"{step.backup_path} already exists; a previous swap was not restored"
            )

        try:
            snapshot = file_sha256(sources)
            shutil.copy2(sources, backup)
        except OSError as e:
            raise ChannelRestoreError(f"cannot back up {step.sources_list}: {e}") from e

        try:
            logger.info("Adding channel '%s' to %s", step.entry, step.sources_list)
            with open(sources, 'ab') as f:
                if os.path.getsize(sources) and not self._ends_with_newline(sources):
                    f.write(b"\n")
                f.write(step.entry.encode("utf-8") + b"\n")
            yield snapshot
        finally:
            try:
                os.replace(backup, sources)
                restored = file_sha256(sources)
            except OSError as e:
                raise ChannelRestoreError(f"cannot restore {step.sources_list}: {e}") from e
            if restored != snapshot:
                raise ChannelRestoreError(
                    f"{step.sources_list} differs from its pre-swap content "
                    f"({restored[:12]} != {snapshot[:12]})"
                )
            logger.info("Restored %s", step.sources_list)
            if clean:
                clean()

    def clear_lists(self, lists_dir: str) -> None:
        """Removes downloaded package lists (`rm -rf /var/lib/apt/lists/`)."""
        path = self.host_path(lists_dir)
        if os.path.isdir(path):
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise ChannelRestoreError(f"cannot remove {lists_dir}: {e}") from e

    @staticmethod
    def _ends_with_newline(path: str) -> bool:
        with open(path, 'rb') as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"
