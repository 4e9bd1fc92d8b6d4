"""
Splitting of RUN shell strings into individual commands.
"""
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..exceptions import PlanError

SEPARATORS = ("&&", ";")
REDIRECTS = (">", ">>")


@dataclass
class ShellSegment:
    """One command of a RUN instruction, with an optional output redirect."""
    argv: List[str] = field(default_factory=list)
    redirect: Optional[Tuple[str, str]] = None

    @property
    def program(self) -> str:
        return self.argv[0] if self.argv else ""

    def matches(self, *prefix: str) -> bool:
        """True if argv starts with the given words, ignoring option flags."""
        words = [a for a in self.argv if not a.startswith("-")]
        return words[:len(prefix)] == list(prefix)

    def __str__(self) -> str:
        text = shlex.join(self.argv)
        if self.redirect:
            text = f"{text} {self.redirect[0]} {shlex.quote(self.redirect[1])}"
        return text


class ShellCommandParser:
    """
    Tokenizes RUN shell strings. Only sequential lists (`&&`, `;`) and
    output redirection are understood; pipes and `||` are rejected.
    """
    def split(self, command: str, line: Optional[int] = None) -> List[ShellSegment]:
        """
        Splits a shell string into segments.

        :param command: The RUN arguments in shell form.
        :param line: Source line, used in error messages.
        :return: The segments in execution order.
        :raises PlanError: On unbalanced quotes or unsupported operators.
        """
        lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
        lexer.whitespace_split = True
        try:
            tokens = list(lexer)
        except ValueError as e:
            raise PlanError(f"cannot tokenize RUN command: {e}", line=line)

        segments = []
        current = ShellSegment()
        pending_redirect = None
        for token in tokens:
            if token in SEPARATORS:
                if pending_redirect:
                    raise PlanError(f"redirect {pending_redirect} has no target", line=line)
                if current.argv:
                    segments.append(current)
                current = ShellSegment()
            elif token in REDIRECTS:
                pending_redirect = token
            elif token and set(token) <= set("();<>|&"):
                raise PlanError(f"unsupported shell operator {token!r}", line=line)
            elif pending_redirect:
                current.redirect = (pending_redirect, token)
                pending_redirect = None
            else:
                current.argv.append(token)

        if pending_redirect:
            raise PlanError(f"redirect {pending_redirect} has no target", line=line)
        if current.argv:
            segments.append(current)
        return segments
