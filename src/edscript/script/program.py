"""Compiled function bodies and the balance scan over them."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional, Sequence

from ..rcfile.preprocess import (
    BLOCK_OPEN,
    BLOCK_CLOSE,
    BLOCK_ELSE,
    LOOP,
)


class Op(Enum):
    LITERAL = "literal"
    OPEN = "open"
    CLOSE = "close"
    ELSE = "else"


@dataclass(frozen=True)
class Instruction:
    """One line of a function body."""
    op: Op
    text: str = ""      # command template, literal lines only
    kind: str = ""      # block kind, open lines only
    count: int = 0      # iteration count, loop openers only

    @classmethod
    def decode(cls, line: str) -> "Instruction":
        code = line[:1]
        if code == BLOCK_CLOSE:
            return cls(Op.CLOSE)
        if code == BLOCK_ELSE:
            return cls(Op.ELSE)
        if code == BLOCK_OPEN:
            kind = line[1:2]
            count = int(line[2:] or 0) if kind == LOOP else 0
            return cls(Op.OPEN, kind=kind, count=count)
        return cls(Op.LITERAL, text=line)

    def encode(self) -> str:
        if self.op is Op.CLOSE:
            return BLOCK_CLOSE
        if self.op is Op.ELSE:
            return BLOCK_ELSE
        if self.op is Op.OPEN:
            payload = str(self.count) if self.kind == LOOP else ""
            return BLOCK_OPEN + self.kind + payload
        return self.text


class Program:
    """
    A function body as a flat sequence of instructions.

    Nesting is never materialized as a tree; the interpreter finds the
    other end of a block with balance().
    """

    def __init__(self, instructions: Sequence[Instruction]):
        self._code = tuple(instructions)

    @classmethod
    def from_encoded(cls, lines: Iterable[str]) -> "Program":
        return cls([Instruction.decode(line) for line in lines])

    def __len__(self) -> int:
        return len(self._code)

    def __getitem__(self, ip: int) -> Instruction:
        return self._code[ip]

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._code)

    def literal_lines(self) -> list[str]:
        return [i.text for i in self._code if i.op is Op.LITERAL]

    def encoded_lines(self) -> list[str]:
        return [i.encode() for i in self._code]

    def balance(self, ip: int, direction: int) -> int:
        """
        Find the other end of the block at ip.

        Forward from an opener (or else) this stops at the matching else
        or close; backward from a close it stops at the matching opener.
        """
        nest = 0
        while True:
            ip += direction
            if ip < 0 or ip >= len(self._code):
                raise ValueError("unbalanced block in function body")
            op = self._code[ip].op
            if op is Op.ELSE:
                if nest:
                    continue
                break
            if op is Op.OPEN:
                nest += direction
            elif op is Op.CLOSE:
                nest -= direction
            if nest < 0:
                break
        return ip


class FunctionBody:
    """Body of a function, sealed once its closing brace has been read."""

    def __init__(self):
        self._program: Optional[Program] = None

    @property
    def sealed(self) -> bool:
        return self._program is not None

    def seal(self, lines: Iterable[str]) -> None:
        if self._program is not None:
            raise RuntimeError("function body already sealed")
        self._program = Program.from_encoded(lines)

    @property
    def program(self) -> Program:
        if self._program is None:
            raise RuntimeError("function body not sealed")
        return self._program
