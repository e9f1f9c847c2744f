"""
Boot image selection for test platforms.

A platform token such as "centos-7-x86_64" is mapped to the public project
that publishes its images, and the newest non-deprecated image of the
matching family and architecture is picked from that project's image
listing. Tokens without an ARM suffix only ever get non-ARM images.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Pattern, Tuple, Union

from errors import NoMatchingImage, UnsupportedPlatform
from models import ImageCandidate

logger = logging.getLogger(__name__)

ARCH_SUFFIX = re.compile(r"-(x86_64|amd64|i386|aarch64|arm64|64|32)$")
ARM_ARCHES = frozenset(["aarch64", "arm64"])
ARM_MARKER = re.compile(r"-(?:aarch64|arm64)(?:-|$)")


@dataclass(frozen=True)
class PlatformRule:
    """Platform prefixes published by one image project."""

    prefixes: Tuple[str, ...]
    owner_project: Optional[str]  # None marks the custom/default row

    def matches(self, platform: str) -> bool:
        return any(platform.startswith(p) for p in self.prefixes)


class PlatformImagePolicy:
    """Read-only table mapping platform tokens to image owner projects."""

    def __init__(self, rules: Iterable[PlatformRule]):
        self._rules = tuple(rules)

    @property
    def rules(self) -> Tuple[PlatformRule, ...]:
        return self._rules

    def owner_for(self, platform: str) -> str:
        """
        Return the project that publishes images for a platform.

        Raises:
            ValueError: If platform is empty
            UnsupportedPlatform: If no known project publishes the platform
        """
        if not platform:
            raise ValueError("A platform name is required")
        token = platform.lower()
        for rule in self._rules:
            if rule.matches(token) and rule.owner_project:
                return rule.owner_project
        raise UnsupportedPlatform(platform)

    @staticmethod
    def family_stem(platform: str) -> str:
        """Strip the architecture suffix: "centos-7-x86_64" -> "centos-7"."""
        return ARCH_SUFFIX.sub("", platform.lower())

    def pattern_for(self, platform: str) -> Pattern:
        """Regex an image family or name must match to serve the platform."""
        self.owner_for(platform)
        stem = re.escape(self.family_stem(platform))
        return re.compile(rf"^{stem}(?:-|$)")

    @staticmethod
    def wants_arm(platform: str) -> bool:
        """True when the token names an ARM architecture, e.g. "debian-11-arm64"."""
        match = ARCH_SUFFIX.search(platform.lower())
        return bool(match) and match.group(1) in ARM_ARCHES

    @staticmethod
    def is_arm_image(candidate: ImageCandidate) -> bool:
        """
        True when an image is built for ARM.

        The image's architecture field wins; images listed without one are
        classified by an -arm64 or -aarch64 segment in their family or name.
        """
        arch = str(candidate.raw.get("architecture") or "").upper()
        if arch:
            return arch == "ARM64"
        return bool(
            ARM_MARKER.search(candidate.family or "")
            or ARM_MARKER.search(candidate.name or "")
        )


DEFAULT_POLICY = PlatformImagePolicy(
    [
        PlatformRule(("debian",), "debian-cloud"),
        PlatformRule(("centos",), "centos-cloud"),
        PlatformRule(("rhel",), "rhel-cloud"),
        PlatformRule(("sles", "suse"), "sles-cloud"),
        PlatformRule(("",), None),
    ]
)


def resolve_latest_image(
    platform: str,
    candidates: Iterable[Union[ImageCandidate, Dict[str, Any]]],
    policy: PlatformImagePolicy = DEFAULT_POLICY,
) -> ImageCandidate:
    """
    Pick the newest usable image for a platform.

    Args:
        platform: Platform token, e.g. "centos-7-x86_64"
        candidates: Raw image documents or ImageCandidate objects, any order
        policy: Platform table to classify the token with

    Returns:
        The single selected image

    Raises:
        UnsupportedPlatform: If the platform has no known owner project
        NoMatchingImage: If no non-deprecated candidate of the platform's
            architecture matches it
    """
    owner = policy.owner_for(platform)
    pattern = policy.pattern_for(platform)
    arm = policy.wants_arm(platform)

    raw = [
        c if isinstance(c, ImageCandidate) else ImageCandidate.from_dict(c)
        for c in candidates
    ]
    matching = [
        c
        for c in raw
        if not c.deprecated
        and (pattern.match(c.family or "") or pattern.match(c.name or ""))
        and policy.is_arm_image(c) == arm
    ]
    logger.debug(
        f"{platform}: {len(matching)} of {len(raw)} image(s) in {owner} match"
    )

    if not matching:
        raise NoMatchingImage(platform, len(raw))
    if len(matching) == 1:
        return matching[0]
    return max(matching, key=lambda c: (c.creation_timestamp, c.name))
