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
Base image reference parsing.
Parses references like 'mcr.microsoft.com/quantum/iqsharp-base:0.21.2112180703'
or 'debian@sha256:...' and reports how firmly they are pinned.
"""

import re
from typing import Optional
from dataclasses import dataclass

DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[0-9a-fA-F]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    Examples:
        - debian -> docker.io/library/debian:latest
        - mcr.microsoft.com/quantum/iqsharp-base:0.21.2112180703
        - debian:bullseye@sha256:abc... keeps both tag and digest
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference (e.g., 'debian:bullseye', 'registry:5000/team/img@sha256:...')

        Returns:
            Parsed ImageReference object.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")
        if any(c.isspace() for c in reference):
            raise ValueError(f"Invalid image reference: {reference!r}")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not DIGEST_PATTERN.match(digest):
                raise ValueError(f"Invalid digest in image reference: {digest!r}")

        # A colon after the last slash is a tag; before it, a registry port.
        tag = None
        last_slash = reference.rfind("/")
        last_colon = reference.rfind(":")
        if last_colon > last_slash:
            tag = reference[last_colon + 1:]
            reference = reference[:last_colon]
            if not tag:
                raise ValueError("Empty tag in image reference")

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference if len(parts) > 1 else f"library/{reference}"

        if not repository:
            raise ValueError("Empty repository in image reference")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def is_pinned(self) -> bool:
        """
        True when the reference names a fixed snapshot: a content digest,
        or an explicit tag other than 'latest'.
        """
        if self.digest:
            return True
        return bool(self.tag) and self.tag != self.DEFAULT_TAG

    @property
    def pin_kind(self) -> str:
        """One of 'digest', 'tag' or 'floating'."""
        if self.digest:
            return "digest"
        if self.is_pinned:
            return "tag"
        return "floating"

    @property
    def full_name(self) -> str:
        """Full image name with registry, tag and digest."""
        name = f"{self.registry}/{self.repository}"
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name

    @property
    def short_name(self) -> str:
        """Image name as it would be written in a FROM line."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.tag:
            repo = f"{repo}:{self.tag}"
        if self.digest:
            repo = f"{repo}@{self.digest}"
        return repo

    def __str__(self) -> str:
        return self.short_name
