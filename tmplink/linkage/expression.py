"""
Trigger expression syntax tree.

Trigger expressions reference functions through ``{<functionid>}``
placeholders. Expressions are parsed once into a small tree whose leaves
are function references, constants, macros and calls, and whose inner
nodes are operators. Rewriting replaces function leaves by id and keeps
every other byte of the source text, so a rewritten expression can be
compared textually with another one.

Operator precedence, tightest first: unary minus, not, * /, + -,
< <= > >=, = <>, and, or.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union


class ExpressionError(ValueError):
    """Raised for expressions that cannot be parsed."""


@dataclass(frozen=True)
class FunctionRef:
    functionid: int
    start: int
    end: int


@dataclass(frozen=True)
class Constant:
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]
    start: int
    end: int


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"
    start: int
    end: int


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"
    start: int
    end: int


Node = Union[FunctionRef, Constant, Call, UnaryOp, BinaryOp]

BINARY_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "=": 3, "<>": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6,
}
NOT_PRECEDENCE = 7

_NUMBER = re.compile(r"\d+(?:\.\d+)?(?:[KMGTsmhdw])?|\.\d+(?:[KMGTsmhdw])?")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")
_HISTORY = re.compile(r"#\d+")
_OPERATORS = ("<>", "<=", ">=", "<", ">", "=", "+", "-", "*", "/", "(", ")", ",")


@dataclass(frozen=True)
class Token:
    kind: str  # func, const, op, word, query, end
    text: str
    start: int
    end: int


def _scan_braces(text: str, pos: int) -> int:
    """Return the index after the brace group starting at ``pos``."""
    i = pos + 1
    quoted = False
    while i < len(text):
        ch = text[i]
        if quoted:
            if ch == "\\":
                i += 1
            elif ch == '"':
                quoted = False
        elif ch == '"':
            quoted = True
        elif ch == "}":
            return i + 1
        i += 1
    raise ExpressionError(f"unterminated '{{' at position {pos}")


def _scan_string(text: str, pos: int) -> int:
    i = pos + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i + 1
        i += 1
    raise ExpressionError(f"unterminated string at position {pos}")


def _scan_query(text: str, pos: int) -> int:
    """Item query argument such as ``/host/key[a,"b"]``: ends at a top-level ',' or ')'."""
    i = pos
    depth = 0
    while i < len(text):
        ch = text[i]
        if ch == '"':
            i = _scan_string(text, i)
            continue
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif depth == 0 and ch in ",)":
            break
        i += 1
    return i


def tokenize(text: str) -> Iterator[Token]:
    i = 0
    call_depth: List[bool] = []
    prev: Optional[Token] = None
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch == "{":
            end = _scan_braces(text, i)
            body = text[i + 1:end - 1]
            token = Token("func" if body.isdigit() else "const", text[i:end], i, end)
        elif ch == '"':
            end = _scan_string(text, i)
            token = Token("const", text[i:end], i, end)
        elif ch == "/" and call_depth and call_depth[-1] and prev is not None and prev.text in ("(", ","):
            end = _scan_query(text, i)
            token = Token("query", text[i:end], i, end)
        elif ch == "#" and _HISTORY.match(text, i):
            m = _HISTORY.match(text, i)
            token = Token("const", m.group(0), i, m.end())
        elif ch.isdigit() or (ch == "." and i + 1 < len(text) and text[i + 1].isdigit()):
            m = _NUMBER.match(text, i)
            token = Token("const", m.group(0), i, m.end())
        elif _WORD.match(text, i):
            m = _WORD.match(text, i)
            token = Token("word", m.group(0), i, m.end())
        else:
            for op in _OPERATORS:
                if text.startswith(op, i):
                    token = Token("op", op, i, i + len(op))
                    break
            else:
                raise ExpressionError(f"unexpected character {ch!r} at position {i}")

        if token.kind == "op" and token.text == "(":
            call_depth.append(prev is not None and prev.kind == "word")
        elif token.kind == "op" and token.text == ")" and call_depth:
            call_depth.pop()

        yield token
        prev = token
        i = token.end

    yield Token("end", "", len(text), len(text))


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = list(tokenize(text))
        self.pos = 0

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def expect(self, text: str) -> Token:
        token = self.advance()
        if token.text != text:
            raise ExpressionError(f"expected {text!r} at position {token.start}, got {token.text!r}")
        return token

    def parse(self) -> Node:
        node = self.expression(0)
        token = self.peek()
        if token.kind != "end":
            raise ExpressionError(f"unexpected {token.text!r} at position {token.start}")
        return node

    def _binary_op(self, token: Token) -> Optional[str]:
        if token.kind == "op" and token.text in BINARY_PRECEDENCE:
            return token.text
        if token.kind == "word" and token.text in ("and", "or"):
            return token.text
        return None

    def expression(self, min_precedence: int) -> Node:
        left = self.unary()
        while True:
            op = self._binary_op(self.peek())
            if op is None or BINARY_PRECEDENCE[op] <= min_precedence:
                return left
            self.advance()
            right = self.expression(BINARY_PRECEDENCE[op])
            left = BinaryOp(op, left, right, left.start, right.end)

    def unary(self) -> Node:
        token = self.peek()
        if token.kind == "op" and token.text == "-":
            self.advance()
            operand = self.unary()
            return UnaryOp("-", operand, token.start, operand.end)
        if token.kind == "word" and token.text == "not":
            self.advance()
            operand = self.expression(NOT_PRECEDENCE)
            return UnaryOp("not", operand, token.start, operand.end)
        return self.primary()

    def primary(self) -> Node:
        token = self.advance()
        if token.kind == "func":
            return FunctionRef(int(token.text[1:-1]), token.start, token.end)
        if token.kind in ("const", "query"):
            return Constant(token.text, token.start, token.end)
        if token.kind == "op" and token.text == "(":
            inner = self.expression(0)
            close = self.expect(")")
            # parentheses only group; spans keep the source text intact
            return _regroup(inner, token.start, close.end)
        if token.kind == "word" and self.peek().text == "(":
            self.advance()
            args: List[Node] = []
            if self.peek().text != ")":
                args.append(self.expression(0))
                while self.peek().text == ",":
                    self.advance()
                    args.append(self.expression(0))
            close = self.expect(")")
            return Call(token.text, tuple(args), token.start, close.end)
        if token.kind == "end":
            raise ExpressionError("unexpected end of expression")
        raise ExpressionError(f"unexpected {token.text!r} at position {token.start}")


def _regroup(node: Node, start: int, end: int) -> Node:
    if isinstance(node, FunctionRef):
        return node
    if isinstance(node, Constant):
        return Constant(node.text, node.start, node.end)
    if isinstance(node, Call):
        return Call(node.name, node.args, start, end)
    if isinstance(node, UnaryOp):
        return UnaryOp(node.op, node.operand, start, end)
    return BinaryOp(node.op, node.left, node.right, start, end)


def iter_nodes(node: Optional[Node]) -> Iterator[Node]:
    if node is None:
        return
    yield node
    if isinstance(node, Call):
        for arg in node.args:
            yield from iter_nodes(arg)
    elif isinstance(node, UnaryOp):
        yield from iter_nodes(node.operand)
    elif isinstance(node, BinaryOp):
        yield from iter_nodes(node.left)
        yield from iter_nodes(node.right)


class Expression:
    """Parsed trigger expression. An empty string parses to an empty tree."""

    def __init__(self, text: str, root: Optional[Node]):
        self.text = text
        self.root = root

    @classmethod
    def parse(cls, text: Optional[str]) -> "Expression":
        text = text or ""
        if not text.strip():
            return cls(text, None)
        return cls(text, _Parser(text).parse())

    def function_refs(self) -> List[FunctionRef]:
        refs = [node for node in iter_nodes(self.root) if isinstance(node, FunctionRef)]
        return sorted(refs, key=lambda ref: ref.start)

    def function_ids(self) -> List[int]:
        seen: List[int] = []
        for ref in self.function_refs():
            if ref.functionid not in seen:
                seen.append(ref.functionid)
        return seen

    def rewrite(self, mapping: Dict[int, int]) -> "Expression":
        """Substitute function references; ids missing from ``mapping`` stay as they are."""
        parts: List[str] = []
        cursor = 0
        for ref in self.function_refs():
            if ref.functionid not in mapping:
                continue
            parts.append(self.text[cursor:ref.start])
            parts.append("{%d}" % mapping[ref.functionid])
            cursor = ref.end
        parts.append(self.text[cursor:])
        return Expression.parse("".join(parts))

    def __str__(self) -> str:
        return self.text

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Expression):
            return self.text == other.text
        if isinstance(other, str):
            return self.text == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"
