"""Tag classification into comparable version families."""

import re
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .exceptions import IncomparableError

MAJOR_PATTERN = re.compile(r"^v?(\d+)(?:-(.+))?$")
MAJOR_MINOR_PATTERN = re.compile(r"^v?(\d+)\.(\d+)(?:-(.+))?$")
MAJOR_MINOR_PATCH_PATTERN = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:-(.+))?$")
NAME_DATE_PATTERN = re.compile(r"^(\w*)-(\d{8})$")

STATIC_TAGS = frozenset({"latest", "mainline", "master", "stable"})


class VersionParser:
    """A classified tag.

    Parsers of the same kind and distinction form a family that can be
    ordered with ``is_greater_than``. Anything else raises IncomparableError.
    """

    kind = "unknown"

    def __init__(self, raw: str) -> None:
        self.raw = raw

    @property
    def distinction(self) -> str:
        return f"{self.kind}-{self.raw}"

    def is_greater_than(self, other: "VersionParser") -> bool:
        if type(other) is not type(self):
            raise IncomparableError(
                f"Cannot compare {self.kind} tag {self.raw!r} with {other.kind} tag {other.raw!r}"
            )
        if other.distinction != self.distinction:
            raise IncomparableError(
                f"Cannot compare {self.distinction!r} with {other.distinction!r}"
            )
        return self._key() > other._key()

    def _key(self) -> Tuple:
        return ()

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.raw!r})"


class _Numeric(VersionParser):
    """Dotted numeric versions with an optional ``-suffix``."""

    def __init__(self, raw: str, numbers: Sequence[int], suffix: Optional[str]) -> None:
        super().__init__(raw)
        self.numbers = tuple(numbers)
        self.suffix = suffix

    @property
    def distinction(self) -> str:
        if self.suffix:
            return f"{self.kind}-{self.suffix}"
        return self.kind

    def _key(self) -> Tuple:
        return self.numbers


class Major(_Numeric):
    kind = "major"


class MajorMinor(_Numeric):
    kind = "majorMinor"


class MajorMinorPatch(_Numeric):
    kind = "majorMinorPatch"


class NameDate(VersionParser):
    """``<name>-<yyyymmdd>`` tags, ordered by date."""

    kind = "nameDate"

    def __init__(self, raw: str, name: str, date: int) -> None:
        super().__init__(raw)
        self.name = name
        self.date = date

    @property
    def distinction(self) -> str:
        return f"{self.kind}-{self.name}"

    def _key(self) -> Tuple:
        return (self.date,)


class Static(VersionParser):
    """Rolling aliases like ``latest``; never greater than another."""

    kind = "static"

    def is_greater_than(self, other: VersionParser) -> bool:
        super().is_greater_than(other)
        return False


class Unknown(VersionParser):
    """Fallback for tags no other parser accepts; never greater."""

    kind = "unknown"

    def is_greater_than(self, other: VersionParser) -> bool:
        super().is_greater_than(other)
        return False


ParserFactory = Callable[[str], Optional[VersionParser]]


def _numeric_factory(pattern, parser_type, groups: int) -> ParserFactory:
    def factory(tag: str) -> Optional[VersionParser]:
        match = pattern.match(tag)
        if not match:
            return None
        numbers = [int(match.group(i)) for i in range(1, groups + 1)]
        return parser_type(tag, numbers, match.group(groups + 1))

    return factory


major_factory = _numeric_factory(MAJOR_PATTERN, Major, 1)
major_minor_factory = _numeric_factory(MAJOR_MINOR_PATTERN, MajorMinor, 2)
major_minor_patch_factory = _numeric_factory(MAJOR_MINOR_PATCH_PATTERN, MajorMinorPatch, 3)


def name_date_factory(tag: str) -> Optional[VersionParser]:
    match = NAME_DATE_PATTERN.match(tag)
    if not match:
        return None
    return NameDate(tag, match.group(1), int(match.group(2)))


def static_factory(tag: str) -> Optional[VersionParser]:
    if tag not in STATIC_TAGS:
        return None
    return Static(tag)


DEFAULT_FACTORIES: Tuple[ParserFactory, ...] = (
    major_factory,
    major_minor_factory,
    major_minor_patch_factory,
    name_date_factory,
    static_factory,
)


class VersionResolver:
    """Classifies tags with the first factory that accepts them."""

    def __init__(self, factories: Iterable[ParserFactory] = DEFAULT_FACTORIES) -> None:
        self.factories = tuple(factories)

    def classify(self, tag: str) -> VersionParser:
        for factory in self.factories:
            parser = factory(tag)
            if parser is not None:
                return parser
        return Unknown(tag)

    def find_latest(self, reference: str, candidates: Iterable[str]) -> VersionParser:
        """Return the greatest tag of the reference's distinction.

        The reference itself is the starting candidate. Tags of another
        distinction are ignored and incomparable pairs leave the running
        maximum unchanged.
        """
        latest = self.classify(reference)
        for tag in candidates:
            parser = self.classify(tag)
            if parser.distinction != latest.distinction:
                continue
            try:
                if parser.is_greater_than(latest):
                    latest = parser
            except IncomparableError:
                continue
        return latest


default_resolver = VersionResolver()


def classify(tag: str) -> VersionParser:
    """태그 문자열을 버전 파서로 분류합니다.

    Args:
        tag: 태그 이름 (예: "1.25", "v2-alpine", "ubuntu-20180913")

    Returns:
        VersionParser: distinction과 비교 연산을 제공하는 파서

    Examples:
        classify("2").is_greater_than(classify("1"))  # True
        classify("1.2-alpine").distinction  # "majorMinor-alpine"
    """
    return default_resolver.classify(tag)


def find_latest(reference: str, candidates: Iterable[str]) -> VersionParser:
    """Fold ``candidates`` with the default resolver, see VersionResolver.find_latest."""
    return default_resolver.find_latest(reference, candidates)
