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
Ownership fixups for cache and home directories.
"""
import grp
import logging
import os
import pwd
from typing import List, Tuple

from ..exceptions import OwnershipError

logger = logging.getLogger("nbimage.ownership")


def resolve_owner(owner: str) -> Tuple[int, int]:
    """
    Resolves 'user', 'user:group' or numeric 'uid:gid' to ids.
    A bare user name takes that user's primary group.
    """
    user, _, group = owner.partition(":")
    try:
        if user.isdigit():
            uid = int(user)
            default_gid = pwd.getpwuid(uid).pw_gid if not group else None
        else:
            entry = pwd.getpwnam(user)
            uid, default_gid = entry.pw_uid, entry.pw_gid
        if not group:
            gid = default_gid
        elif group.isdigit():
            gid = int(group)
        else:
            gid = grp.getgrnam(group).gr_gid
    except KeyError as e:
        raise OwnershipError(f"unknown user or group in {owner!r}: {e}")
    return uid, gid


class OwnershipManager:
    """
    Reassigns and checks ownership of paths, like `chown -R`.
    """

    def __init__(self, root: str = "/"):
        """
        Args:
            root: Filesystem root the paths are relative to.
        """
        self.root = root

    def host_path(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip("/"))

    def apply(self, path: str, owner: str, recursive: bool = True,
              missing_ok: bool = False) -> int:
        """
        Changes ownership of a path.

        Args:
            path: Path to change.
            owner: Owner spec, 'user[:group]'.
            recursive: Descend into directories.
            missing_ok: Skip a missing path instead of failing.

        Returns:
            Number of filesystem entries changed.

        Raises:
            OwnershipError: If the path is missing or ownership cannot be changed.
        """
        uid, gid = resolve_owner(owner)
        target = self.host_path(path)
        if not os.path.lexists(target):
            if missing_ok:
                logger.warning("Skipping chown of missing path %s", path)
                return 0
            raise OwnershipError(f"cannot chown {path}: no such file or directory")

        changed = 0
        try:
            for entry in self._walk(target, recursive):
                os.chown(entry, uid, gid, follow_symlinks=False)
                changed += 1
        except OSError as e:
            raise OwnershipError(f"cannot chown {path} to {owner}: {e}") from e
        logger.info("Changed ownership of %s (%d entries) to %s", path, changed, owner)
        return changed

    def offenders(self, path: str, owner: str, recursive: bool = True) -> List[str]:
        """
        Lists entries under a path not owned by the given owner.

        Raises:
            OwnershipError: If the path does not exist.
        """
        uid, gid = resolve_owner(owner)
        target = self.host_path(path)
        if not os.path.lexists(target):
            raise OwnershipError(f"{path} does not exist")
        wrong = []
        for entry in self._walk(target, recursive):
            st = os.lstat(entry)
            if st.st_uid != uid or st.st_gid != gid:
                wrong.append(entry)
        return wrong

    @staticmethod
    def _walk(target: str, recursive: bool):
        yield target
        if not recursive or os.path.islink(target) or not os.path.isdir(target):
            return
        for dirpath, dirnames, filenames in os.walk(target):
            for name in dirnames + filenames:
                yield os.path.join(dirpath, name)
