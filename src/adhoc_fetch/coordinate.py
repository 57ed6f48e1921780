"""
Artifact coordinates and pattern layouts.

A pattern layout turns a coordinate into a URL path. Tokens in square
brackets are substituted; a parenthesized segment is dropped entirely when
any token inside it has no value, so optional fields never leave a dangling
separator behind.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import quote

from .error_handling import BuildConfigurationError, sanitize_authority

AD_HOC_PATTERN = "/[artifact](-[revision])(-[classifier])(.[ext])"
MAVEN_PATTERN = "/[organisation]/[module]/[revision]/[artifact]-[revision](-[classifier]).[ext]"

RESERVED_CHARACTERS = frozenset("[]()/")

_TOKEN = re.compile(r"\[([a-z]+)\]")
_OPTIONAL = re.compile(r"\(([^()]*)\)")


def _blank(value: Optional[str]) -> bool:
    return value is None or value == ""


@dataclass(frozen=True)
class ArtifactCoordinate:
    """The tuple identifying one desired artifact."""

    group: str
    name: str
    version: Optional[str] = None
    classifier: Optional[str] = None
    extension: str = "jar"

    def __post_init__(self):
        # Empty strings and None are the same thing: the segment is omitted
        if self.version == "":
            object.__setattr__(self, "version", None)
        if self.classifier == "":
            object.__setattr__(self, "classifier", None)
        self.validate()

    def validate(self) -> None:
        if not self.group:
            raise BuildConfigurationError(f"artifact {self.name!r} has no group")
        if not self.name or not self.name.strip():
            raise BuildConfigurationError(
                f"artifact name must be a non-empty string (group {sanitize_authority(self.group)!r})"
            )
        if not self.extension:
            raise BuildConfigurationError(
                f"artifact {sanitize_authority(self.group)}:{self.name} needs a file extension"
            )
        for field_name in ("name", "version", "classifier", "extension"):
            value = getattr(self, field_name)
            if value is not None and RESERVED_CHARACTERS.intersection(value):
                raise BuildConfigurationError(
                    f"artifact {field_name} {value!r} contains a pattern-reserved "
                    f"character (one of {''.join(sorted(RESERVED_CHARACTERS))})"
                )

    def tokens(self) -> Dict[str, Optional[str]]:
        """Pattern token values for this coordinate."""
        return {
            "organisation": self.group,
            "organization": self.group,
            "module": self.name,
            "artifact": self.name,
            "revision": self.version,
            "classifier": self.classifier,
            "ext": self.extension,
            "type": self.extension,
        }

    @property
    def file_name(self) -> str:
        """File name the ad-hoc layout gives this coordinate."""
        return render_pattern(AD_HOC_PATTERN, self, escape=False).lstrip("/")

    def __str__(self) -> str:
        parts = [sanitize_authority(self.group), self.name]
        if self.version is not None:
            parts.append(self.version)
        text = ":".join(parts)
        if self.classifier is not None:
            text += f":{self.classifier}"
        return f"{text}@{self.extension}"


def _substitute(segment: str, values: Dict[str, Optional[str]]) -> Optional[str]:
    missing = False

    def replace(match: "re.Match[str]") -> str:
        nonlocal missing
        token = match.group(1)
        if token not in values:
            raise BuildConfigurationError(f"unknown pattern token [{token}]")
        value = values[token]
        if _blank(value):
            missing = True
            return ""
        return value

    rendered = _TOKEN.sub(replace, segment)
    return None if missing else rendered


def render_pattern(
    pattern: str,
    coordinate: ArtifactCoordinate,
    escape: bool = True,
    group_as_path: bool = False,
) -> str:
    """
    Render a pattern layout for a coordinate.

    Args:
        pattern: Layout such as ``/[artifact](-[revision])(.[ext])``
        coordinate: Coordinate supplying the token values
        escape: Percent-encode substituted values for use in a URL
        group_as_path: Spell the group as directories (``org.foo`` -> ``org/foo``)

    Returns:
        str: The rendered path

    Raises:
        BuildConfigurationError: If the pattern is malformed or a required
            (non-optional) token has no value
    """
    values = coordinate.tokens()
    if escape:
        values = {
            token: None if value is None else quote(value, safe="")
            for token, value in values.items()
        }
    if group_as_path:
        path = "/".join(values["organisation"].split("."))
        values["organisation"] = values["organization"] = path

    def optional(match: "re.Match[str]") -> str:
        return _substitute(match.group(1), values) or ""

    rendered = _OPTIONAL.sub(optional, pattern)
    if "(" in rendered or ")" in rendered:
        raise BuildConfigurationError(f"malformed pattern layout {pattern!r}")

    required = _substitute(rendered, values)
    if required is None:
        raise BuildConfigurationError(
            f"pattern {pattern!r} needs a value that {coordinate} does not provide"
        )
    return required
