"""Version and range arithmetic used for conflict detection."""

from monorail.versioning.ranges import Bound, Interval, Version, VersionRange

__all__ = ["Bound", "Interval", "Version", "VersionRange"]
