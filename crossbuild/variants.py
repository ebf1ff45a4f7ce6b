# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import dataclasses
import enum
from typing import Optional

from .platforms import ConfigParseError, PlatformDescriptor


class AllocatorVariant(enum.Enum):
    DEFAULT = "default"
    JEMALLOC = "jemalloc"
    HARDENED_MALLOC = "hmalloc"

    @property
    def label(self) -> str:
        return self.value

    @property
    def features(self):
        """Cargo features enabling this allocator."""
        if self is AllocatorVariant.JEMALLOC:
            return ["jemalloc"]
        elif self is AllocatorVariant.HARDENED_MALLOC:
            return ["hardened_malloc"]
        else:
            return []

    @property
    def storage_build(self) -> str:
        """Name of the storage engine build to link against."""
        if self is AllocatorVariant.JEMALLOC:
            return "jemalloc"
        else:
            return "default"


def parse_allocator(value: Optional[str]) -> AllocatorVariant:
    if value is None:
        return AllocatorVariant.DEFAULT

    try:
        return AllocatorVariant(value)
    except ValueError:
        raise ConfigParseError("unknown allocator: %s" % value) from None


@dataclasses.dataclass(frozen=True)
class PackageVariant:
    """One cell of the build matrix.

    ``target`` is None for the native build.
    """

    target: Optional[PlatformDescriptor]
    allocator: AllocatorVariant

    @property
    def is_native(self) -> bool:
        return self.target is None

    @property
    def name(self) -> str:
        if self.target is None:
            return self.allocator.label

        name = self.target.triple
        if self.allocator is not AllocatorVariant.DEFAULT:
            name += "-%s" % self.allocator.label

        return name
