import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

ERROR = "error"
WARNING = "warning"

UNKNOWN_FAILURE = ("unknown", "no error recorded")


class _Placeholders(dict):
    def __missing__(self, key):
        return "{" + key + "}"


@dataclass(frozen=True)
class StatusEntry:
    type: str
    message: str
    params: Tuple[str, ...] = ()

    def as_tuple(self) -> Tuple[str, ...]:
        return (self.message, *self.params)


@dataclass
class BackendStatus:
    """Outcome of a blob backend call.

    A status is OK as long as it holds no error entries; warnings alone do not
    fail an operation. It is "good" only when it holds no entries at all.
    """

    entries: List[StatusEntry] = field(default_factory=list)
    value: Any = None

    @classmethod
    def good(cls, value: Any = None) -> "BackendStatus":
        return cls(value=value)

    @classmethod
    def new_fatal(cls, message: str, *params: Any) -> "BackendStatus":
        status = cls()
        status.fatal(message, *params)
        return status

    def fatal(self, message: str, *params: Any) -> None:
        self.entries.append(StatusEntry(ERROR, message, tuple(str(p) for p in params)))

    def warning(self, message: str, *params: Any) -> None:
        self.entries.append(StatusEntry(WARNING, message, tuple(str(p) for p in params)))

    def merge(self, other: "BackendStatus") -> "BackendStatus":
        self.entries.extend(other.entries)
        return self

    @property
    def errors(self) -> List[StatusEntry]:
        return [e for e in self.entries if e.type == ERROR]

    @property
    def warnings(self) -> List[StatusEntry]:
        return [e for e in self.entries if e.type == WARNING]

    def is_ok(self) -> bool:
        return not self.errors

    def is_good(self) -> bool:
        return not self.entries

    def first_failure(self) -> Tuple[str, ...]:
        """First error, else first warning, else a generic placeholder."""
        for entry in self.entries:
            if entry.type == ERROR:
                return entry.as_tuple()
        for entry in self.entries:
            if entry.type == WARNING:
                return entry.as_tuple()
        return UNKNOWN_FAILURE


def log_backend_status(
    logger: logging.Logger,
    status: BackendStatus,
    log_message: str,
    context: Optional[dict] = None,
) -> Tuple[str, ...]:
    """Log every entry of a backend status and return the entry to report.

    ``{type}`` in ``log_message`` is replaced by the entry's message key so
    each backend failure situation aggregates on its own; the entry
    parameters (datacenter names, paths) go into ``{details}``.
    """
    context = dict(context or {})
    for entry in status.entries:
        line = log_message.replace("{type}", entry.message)
        context["details"] = "; ".join(entry.params)
        line = line.format_map(_Placeholders(context))
        if entry.type == ERROR:
            logger.error(line)
        else:
            logger.warning(line)
    return status.first_failure()
