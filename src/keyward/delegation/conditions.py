"""
Delegation conditions (NIP-26).
Conditions are pure values with a single canonical string form.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import InvalidConditions

KIND_FIELD = "kind"
SINCE_FIELD = "created_at>"
UNTIL_FIELD = "created_at<"


def _check_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConditions(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidConditions(f"{name} must be non-negative, got {value}")
    return value


@dataclass(frozen=True)
class DelegationConditions:
    """
    Constraints under which a delegatee may publish for the delegator.

    Attributes:
        kind: Event kind the delegatee may publish, or None for any
        since: Exclusive lower bound on created_at, or None
        until: Exclusive upper bound on created_at, or None
    """

    kind: Optional[int] = None
    since: Optional[int] = None
    until: Optional[int] = None

    def __post_init__(self):
        validate_conditions(self.kind, self.since, self.until)

    def to_string(self) -> str:
        """
        Serialize to the canonical conditions string.
        Field order is fixed: kind, created_at>, created_at<.

        Returns:
            e.g. "kind=1&created_at>1674834236&created_at<1677426236"
        """
        parts = []
        if self.kind is not None:
            parts.append(f"{KIND_FIELD}={self.kind}")
        if self.since is not None:
            parts.append(f"{SINCE_FIELD}{self.since}")
        if self.until is not None:
            parts.append(f"{UNTIL_FIELD}{self.until}")
        return "&".join(parts)

    def __str__(self) -> str:
        return self.to_string()

    def to_dict(self) -> Dict[str, Any]:
        """Convert conditions to dictionary (absent fields omitted)."""
        data = {}
        if self.kind is not None:
            data['kind'] = self.kind
        if self.since is not None:
            data['since'] = self.since
        if self.until is not None:
            data['until'] = self.until
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelegationConditions':
        """
        Create conditions from a dictionary with optional kind/since/until.

        Raises:
            InvalidConditions: If the dictionary has unknown or invalid fields
        """
        if not isinstance(data, dict):
            raise InvalidConditions("Conditions must be a dictionary")
        unknown = set(data) - {'kind', 'since', 'until'}
        if unknown:
            raise InvalidConditions(f"Unknown condition fields: {sorted(unknown)}")
        return cls(kind=data.get('kind'), since=data.get('since'), until=data.get('until'))

    @classmethod
    def parse(cls, text: str) -> 'DelegationConditions':
        """
        Parse a canonical conditions string.

        Args:
            text: Conditions string, may be empty

        Returns:
            DelegationConditions object

        Raises:
            InvalidConditions: If the string is malformed, repeats a field or
                is not in canonical order
        """
        if not isinstance(text, str):
            raise InvalidConditions("Conditions must be a string")
        values: Dict[str, int] = {}
        for part in filter(None, text.split("&")):
            if part.startswith(KIND_FIELD + "="):
                name, raw = 'kind', part[len(KIND_FIELD) + 1:]
            elif part.startswith(SINCE_FIELD):
                name, raw = 'since', part[len(SINCE_FIELD):]
            elif part.startswith(UNTIL_FIELD):
                name, raw = 'until', part[len(UNTIL_FIELD):]
            else:
                raise InvalidConditions(f"Unknown condition: {part!r}")
            if name in values:
                raise InvalidConditions(f"Condition repeated: {name}")
            if not (raw.isascii() and raw.isdigit()):
                raise InvalidConditions(f"Condition value must be a non-negative integer: {part!r}")
            values[name] = int(raw)

        conditions = cls(**values)
        if conditions.to_string() != text:
            raise InvalidConditions(f"Conditions not in canonical form: {text!r}")
        return conditions

    def allows(self, kind: int, created_at: int) -> bool:
        """
        Check whether an event satisfies these conditions.

        Args:
            kind: Event kind
            created_at: Event timestamp

        Returns:
            True if the event falls within the delegation
        """
        if self.kind is not None and kind != self.kind:
            return False
        if self.since is not None and not created_at > self.since:
            return False
        if self.until is not None and not created_at < self.until:
            return False
        return True


def validate_conditions(
    kind: Optional[int],
    since: Optional[int],
    until: Optional[int],
) -> bool:
    """
    Validate that delegation conditions are well-formed.

    Args:
        kind: Optional event kind
        since: Optional lower time bound
        until: Optional upper time bound

    Returns:
        True if valid

    Raises:
        InvalidConditions: If validation fails
    """
    if kind is not None:
        _check_int("kind", kind)
    if since is not None:
        _check_int("since", since)
    if until is not None:
        _check_int("until", until)
    if since is not None and until is not None and not since < until:
        raise InvalidConditions(f"Lower time bound {since} must be before upper bound {until}")
    return True
