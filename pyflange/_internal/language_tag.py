"""Language tag scalar (BCP 47 style locale identifier).

Marshalled as its canonical tag string. The root tag (empty string) stands for
the language-agnostic locale and is treated as absent by the codec.
"""

from __future__ import annotations

import re
from typing import ClassVar

_SUBTAG = re.compile(r"^[A-Za-z0-9]{1,8}$")


class LanguageTag:
    """Immutable language tag such as ``en`` or ``en-US``."""

    __slots__ = ("_subtags",)

    ROOT: ClassVar[LanguageTag]

    def __init__(self, tag: str = "") -> None:
        if not isinstance(tag, str):
            raise TypeError(f"Language tag must be a string, got {type(tag).__name__}")
        tag = tag.replace("_", "-").strip()
        subtags: tuple[str, ...] = tuple(tag.split("-")) if tag else ()
        for subtag in subtags:
            if not _SUBTAG.match(subtag):
                raise ValueError(f"Invalid language tag `{tag}`.")
        object.__setattr__(self, "_subtags", _canonicalize(subtags))

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("LanguageTag is immutable")

    @classmethod
    def parse(cls, tag: str) -> LanguageTag:
        return cls(tag)

    @property
    def language(self) -> str:
        return self._subtags[0] if self._subtags else ""

    @property
    def region(self) -> str | None:
        for subtag in self._subtags[1:]:
            if len(subtag) == 2 and subtag.isalpha() or len(subtag) == 3 and subtag.isdigit():
                return subtag
        return None

    @property
    def is_root(self) -> bool:
        return not self._subtags

    def to_tag(self) -> str:
        return "-".join(self._subtags)

    def __str__(self) -> str:
        return self.to_tag()

    def __repr__(self) -> str:
        return f"LanguageTag({self.to_tag()!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LanguageTag):
            return NotImplemented
        return self._subtags == other._subtags

    def __hash__(self) -> int:
        return hash(self._subtags)


def _canonicalize(subtags: tuple[str, ...]) -> tuple[str, ...]:
    # language lowercase, script titlecase, region uppercase, the rest lowercase
    result = []
    for index, subtag in enumerate(subtags):
        if index == 0:
            result.append(subtag.lower())
        elif len(subtag) == 4 and subtag.isalpha():
            result.append(subtag.title())
        elif len(subtag) == 2 and subtag.isalpha():
            result.append(subtag.upper())
        else:
            result.append(subtag.lower())
    return tuple(result)


LanguageTag.ROOT = LanguageTag("")
