from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import EndOfStream


@dataclass(frozen=True)
class OutputEvent:
    """One unit delivered on a session's output channel.

    Either `line` carries data, or `error` signals that its producer is done.
    """

    line: str = ""
    error: Optional[BaseException] = None
    is_stderr: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def is_eof(self) -> bool:
        return isinstance(self.error, EndOfStream)

    @property
    def failed(self) -> bool:
        """True for errors other than a normal end-of-stream."""
        return self.error is not None and not self.is_eof

    @property
    def stream(self) -> str:
        return "stderr" if self.is_stderr else "stdout"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stream": self.stream,
            "line": self.line,
            "error": str(self.error) if self.error is not None else None,
            "error_type": type(self.error).__name__ if self.error is not None else None,
            "eof": self.is_eof,
        }
