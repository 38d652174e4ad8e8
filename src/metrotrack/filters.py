"""Stream filter for the lines currently shown."""

from typing import Iterable, List, Union

from .models import LineCode


def _code(line: Union[LineCode, str]) -> str:
    return line.value if isinstance(line, LineCode) else str(line)


def build_line_filter_clause(active_lines: Iterable[Union[LineCode, str]]) -> str:
    """
    Build the where clause requesting only the active lines.

    Args:
        active_lines: Line codes in activation order.

    Returns:
        e.g. "LineCode = 'RD' OR LineCode = 'BL'", or "" for no lines.
    """
    return " OR ".join(f"LineCode = '{_code(line)}'" for line in active_lines)


class LineFilter:
    """Ordered set of active lines. All lines start active."""

    def __init__(self, lines: Iterable[LineCode] = tuple(LineCode)):
        self._active: List[LineCode] = []
        for line in lines:
            self.show(line)

    @property
    def active_lines(self) -> List[LineCode]:
        return list(self._active)

    def is_active(self, line: LineCode) -> bool:
        return line in self._active

    def show(self, line: LineCode) -> str:
        if line not in self._active:
            self._active.append(line)
        return self.clause

    def hide(self, line: LineCode) -> str:
        if line in self._active:
            self._active.remove(line)
        return self.clause

    @property
    def clause(self) -> str:
        return build_line_filter_clause(self._active)
