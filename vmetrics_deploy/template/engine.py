"""Text templates in the syntax of Go's text/template package.

The bundled assets, and any override template supplied by a caller, are
written for Go's template language. This module implements the part of that
language they rely on:

- ``{{.Field}}``, ``{{.A.B}}``, ``{{.}}``, ``{{$}}``, ``{{$var.Field}}`` and
  ``{{(pipeline).Field}}``
- ``{{if}}``, ``{{else if}}``, ``{{else}}``, ``{{with}}``, ``{{end}}``
- ``{{range}}`` with an optional ``$index, $elem :=`` declaration, an
  ``{{else}}`` branch, ``{{break}}`` and ``{{continue}}``
- pipelines (``|``), variable declaration and assignment, literals
- ``{{- trim markers -}}`` and ``{{/* comments */}}``
- the builtin functions and, or, not, eq, ne, lt, le, gt, ge, len, index,
  print, printf and println

Data is looked up by key in mappings and by attribute on other objects.
Unlike Go's maps, a missing key is an execution error: the records rendered
here are struct-like and a missing name is a typo in the template.

Nested template definitions (``define``, ``template``, ``block``) are not
supported and fail to parse.
"""

import ast
import math
import re
from collections.abc import Callable, Mapping, Sequence, Sized
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from vmetrics_deploy.errors import TemplateExecError, TemplateParseError

LEFT_DELIM = "{{"
RIGHT_DELIM = "}}"

_SPACE = " \t\r\n"
_KEYWORDS = frozenset(
    {"if", "else", "end", "range", "with", "break", "continue", "define", "template", "block"}
)
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(
    r"[+-]?(?:0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+"
    r"|(?:[0-9][0-9_]*(?:\.[0-9_]*)?|\.[0-9][0-9_]*)(?:[eE][+-]?[0-9]+)?)"
)
_OCTAL_RE = re.compile(r"[+-]?0[0-7]+")


class TokenType(StrEnum):
    TEXT = "text"
    LEFT_DELIM = "left delim"
    RIGHT_DELIM = "right delim"
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    FIELD = "field"
    VARIABLE = "variable"
    DOT = "dot"
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    NIL = "nil"
    PIPE = "pipe"
    LEFT_PAREN = "left paren"
    RIGHT_PAREN = "right paren"
    DECLARE = "declare"
    ASSIGN = "assign"
    COMMA = "comma"
    EOF = "EOF"


@dataclass(frozen=True, slots=True)
class Token:
    type: TokenType
    value: str
    line: int
    spaced: bool = False

    def __str__(self) -> str:
        if self.type is TokenType.EOF:
            return "EOF"
        return repr(self.value)


class _Lexer:
    def __init__(self, name: str, source: str) -> None:
        self.name = name
        self.source = source
        self.pos = 0
        self.tokens: list[Token] = []
        self.trim_next_text = False

    def _line(self, pos: int) -> int:
        return self.source.count("\n", 0, pos) + 1

    def _error(self, pos: int, message: str) -> TemplateParseError:
        return TemplateParseError(self.name, self._line(pos), message)

    def _emit(self, type_: TokenType, value: str, pos: int, spaced: bool = False) -> None:
        self.tokens.append(Token(type_, value, self._line(pos), spaced))

    def _has_left_trim(self, start: int) -> bool:
        marker = start + len(LEFT_DELIM)
        following = self.source[marker + 1 : marker + 2]
        return self.source.startswith("-", marker) and following != "" and following in _SPACE

    def lex(self) -> list[Token]:
        src = self.source
        while self.pos < len(src):
            start = src.find(LEFT_DELIM, self.pos)
            end = len(src) if start < 0 else start
            text = src[self.pos : end]
            trim_left = start >= 0 and self._has_left_trim(start)
            if self.trim_next_text:
                text = text.lstrip(_SPACE)
                self.trim_next_text = False
            if trim_left:
                text = text.rstrip(_SPACE)
            if text:
                self._emit(TokenType.TEXT, text, self.pos)
            if start < 0:
                break
            self.pos = start + len(LEFT_DELIM) + (2 if trim_left else 0)
            if src.startswith("/*", self.pos):
                self._lex_comment(start)
            else:
                self._lex_action(start)
        self._emit(TokenType.EOF, "", len(src))
        return self.tokens

    def _lex_comment(self, start: int) -> None:
        src = self.source
        end = src.find("*/", self.pos + 2)
        if end < 0:
            raise self._error(start, "unclosed comment")
        after = end + 2
        following = src[after : after + 1]
        if following != "" and following in _SPACE and src.startswith("-" + RIGHT_DELIM, after + 1):
            self.pos = after + 1 + 1 + len(RIGHT_DELIM)
            self.trim_next_text = True
        elif src.startswith(RIGHT_DELIM, after):
            self.pos = after + len(RIGHT_DELIM)
        else:
            raise self._error(start, "comment ends before closing delimiter")

    def _lex_action(self, start: int) -> None:
        src = self.source
        self._emit(TokenType.LEFT_DELIM, LEFT_DELIM, start)
        spaced = False
        depth = 0
        while True:
            if self.pos >= len(src):
                raise self._error(start, "unclosed action")
            ch = src[self.pos]
            if ch in _SPACE:
                ws_end = self.pos
                while ws_end < len(src) and src[ws_end] in _SPACE:
                    ws_end += 1
                if src.startswith("-" + RIGHT_DELIM, ws_end):
                    if depth:
                        raise self._error(start, "unclosed left paren")
                    self._emit(TokenType.RIGHT_DELIM, RIGHT_DELIM, ws_end)
                    self.pos = ws_end + 1 + len(RIGHT_DELIM)
                    self.trim_next_text = True
                    return
                self.pos = ws_end
                spaced = True
                continue
            if src.startswith(RIGHT_DELIM, self.pos):
                if depth:
                    raise self._error(start, "unclosed left paren")
                self._emit(TokenType.RIGHT_DELIM, RIGHT_DELIM, self.pos)
                self.pos += len(RIGHT_DELIM)
                return
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth < 0:
                    raise self._error(self.pos, "unexpected right paren")
            self._lex_token(spaced)
            spaced = False

    def _lex_token(self, spaced: bool) -> None:
        src = self.source
        pos = self.pos
        ch = src[pos]
        nxt = src[pos + 1 : pos + 2]

        simple = {
            "|": TokenType.PIPE,
            "(": TokenType.LEFT_PAREN,
            ")": TokenType.RIGHT_PAREN,
            ",": TokenType.COMMA,
            "=": TokenType.ASSIGN,
        }
        if ch in simple:
            self._emit(simple[ch], ch, pos, spaced)
            self.pos += 1
        elif ch == ":":
            if nxt != "=":
                raise self._error(pos, "expected :=")
            self._emit(TokenType.DECLARE, ":=", pos, spaced)
            self.pos += 2
        elif ch == '"':
            self._lex_quote(pos, spaced)
        elif ch == "`":
            end = src.find("`", pos + 1)
            if end < 0:
                raise self._error(pos, "unterminated raw quoted string")
            self._emit(TokenType.STRING, src[pos + 1 : end], pos, spaced)
            self.pos = end + 1
        elif ch == "'":
            self._lex_char(pos, spaced)
        elif ch.isdigit() or (ch in "+-." and nxt.isdigit()):
            self._lex_number(pos, spaced)
        elif ch == ".":
            match = _IDENT_RE.match(src, pos + 1)
            if match:
                self._emit(TokenType.FIELD, match.group(), pos, spaced)
                self.pos = match.end()
            else:
                self._emit(TokenType.DOT, ".", pos, spaced)
                self.pos += 1
        elif ch == "$":
            match = _IDENT_RE.match(src, pos + 1)
            end = match.end() if match else pos + 1
            self._emit(TokenType.VARIABLE, src[pos:end], pos, spaced)
            self.pos = end
        elif match := _IDENT_RE.match(src, pos):
            word = match.group()
            if word in _KEYWORDS:
                type_ = TokenType.KEYWORD
            elif word in ("true", "false"):
                type_ = TokenType.BOOL
            elif word == "nil":
                type_ = TokenType.NIL
            else:
                type_ = TokenType.IDENTIFIER
            self._emit(type_, word, pos, spaced)
            self.pos = match.end()
        else:
            raise self._error(pos, f"unrecognized character in action: {ch!r}")

    def _scan_quoted(self, pos: int, quote: str, what: str) -> str:
        src = self.source
        i = pos + 1
        while True:
            if i >= len(src) or src[i] == "\n":
                raise self._error(pos, f"unterminated {what}")
            if src[i] == "\\":
                i += 2
                continue
            if src[i] == quote:
                break
            i += 1
        self.pos = i + 1
        try:
            return ast.literal_eval(src[pos : i + 1])
        except (SyntaxError, ValueError) as e:
            raise self._error(pos, f"invalid syntax in {what}: {src[pos : i + 1]}") from e

    def _lex_quote(self, pos: int, spaced: bool) -> None:
        value = self._scan_quoted(pos, '"', "quoted string")
        self._emit(TokenType.STRING, value, pos, spaced)

    def _lex_char(self, pos: int, spaced: bool) -> None:
        value = self._scan_quoted(pos, "'", "character constant")
        if len(value) != 1:
            raise self._error(pos, f"malformed character constant: {value!r}")
        self._emit(TokenType.NUMBER, str(ord(value)), pos, spaced)

    def _lex_number(self, pos: int, spaced: bool) -> None:
        src = self.source
        match = _NUMBER_RE.match(src, pos)
        end = match.end() if match else pos
        if end == pos or (end < len(src) and (src[end].isalnum() or src[end] in "_.")):
            raise self._error(pos, f"bad number syntax: {src[pos : end + 1]!r}")
        self._emit(TokenType.NUMBER, src[pos:end], pos, spaced)
        self.pos = end


# Parse tree


@dataclass(slots=True)
class ListNode:
    line: int
    nodes: list[Any] = field(default_factory=list)


@dataclass(slots=True)
class TextNode:
    line: int
    text: str


@dataclass(slots=True)
class FieldNode:
    line: int
    ident: list[str]

    def __str__(self) -> str:
        return "".join(f".{name}" for name in self.ident)


@dataclass(slots=True)
class VariableNode:
    line: int
    name: str
    fields: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return self.name + "".join(f".{name}" for name in self.fields)


@dataclass(slots=True)
class DotNode:
    line: int

    def __str__(self) -> str:
        return "."


@dataclass(slots=True)
class NilNode:
    line: int

    def __str__(self) -> str:
        return "nil"


@dataclass(slots=True)
class IdentifierNode:
    line: int
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(slots=True)
class LiteralNode:
    line: int
    value: str | int | float | bool

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return _quote(self.value)
        return _format(self.value)


@dataclass(slots=True)
class CommandNode:
    line: int
    args: list[Any]

    def __str__(self) -> str:
        return " ".join(str(arg) for arg in self.args)


@dataclass(slots=True)
class PipeNode:
    line: int
    decl: list[str] = field(default_factory=list)
    is_assign: bool = False
    cmds: list[CommandNode] = field(default_factory=list)

    def __str__(self) -> str:
        text = " | ".join(str(cmd) for cmd in self.cmds)
        if self.decl:
            operator = "=" if self.is_assign else ":="
            text = f"{', '.join(self.decl)} {operator} {text}"
        return f"({text})"


@dataclass(slots=True)
class ChainNode:
    line: int
    node: Any
    fields: list[str]

    def __str__(self) -> str:
        return str(self.node) + "".join(f".{name}" for name in self.fields)


@dataclass(slots=True)
class ActionNode:
    line: int
    pipe: PipeNode


@dataclass(slots=True)
class BranchNode:
    line: int
    kind: str
    pipe: PipeNode
    body: ListNode
    else_body: ListNode | None = None


@dataclass(slots=True)
class BreakNode:
    line: int


@dataclass(slots=True)
class ContinueNode:
    line: int


@dataclass(slots=True)
class _End:
    line: int

    def __str__(self) -> str:
        return "{{end}}"


@dataclass(slots=True)
class _Else:
    line: int
    chained: Token | None = None

    def __str__(self) -> str:
        if self.chained:
            return f"{{{{else {self.chained.value}}}}}"
        return "{{else}}"


class _Parser:
    def __init__(self, name: str, tokens: list[Token]) -> None:
        self.name = name
        self.tokens = tokens
        self.pos = 0
        self.vars = ["$"]
        self.range_depth = 0

    def _peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _next(self) -> Token:
        token = self._peek()
        self.pos += 1
        return token

    def _error(self, line: int, message: str) -> TemplateParseError:
        return TemplateParseError(self.name, line, message)

    def parse(self) -> ListNode:
        root = ListNode(1)
        while self._peek().type is not TokenType.EOF:
            node = self._text_or_action()
            if isinstance(node, (_End, _Else)):
                raise self._error(node.line, f"unexpected {node}")
            root.nodes.append(node)
        return root

    def _item_list(self) -> tuple[ListNode, _End | _Else]:
        nodes = ListNode(self._peek().line)
        while True:
            if self._peek().type is TokenType.EOF:
                raise self._error(self._peek().line, "unexpected EOF")
            node = self._text_or_action()
            if isinstance(node, (_End, _Else)):
                return nodes, node
            nodes.nodes.append(node)

    def _text_or_action(self) -> Any:
        token = self._next()
        match token.type:
            case TokenType.TEXT:
                return TextNode(token.line, token.value)
            case TokenType.LEFT_DELIM:
                return self._action()
        raise self._error(token.line, f"unexpected {token} in input")

    def _expect_right_delim(self, context: str) -> None:
        token = self._next()
        if token.type is not TokenType.RIGHT_DELIM:
            raise self._error(token.line, f"unexpected {token} in {context}")

    def _action(self) -> Any:
        token = self._peek()
        if token.type is not TokenType.KEYWORD:
            return ActionNode(token.line, self._pipeline("command", TokenType.RIGHT_DELIM))

        self._next()
        match token.value:
            case "if" | "range" | "with":
                return self._control(token)
            case "else":
                following = self._peek()
                if following.type is TokenType.KEYWORD and following.value in ("if", "with"):
                    self._next()
                    return _Else(token.line, following)
                self._expect_right_delim("else")
                return _Else(token.line)
            case "end":
                self._expect_right_delim("end")
                return _End(token.line)
            case "break" | "continue":
                if not self.range_depth:
                    raise self._error(token.line, f"{{{{{token.value}}}}} outside {{{{range}}}}")
                self._expect_right_delim(token.value)
                return BreakNode(token.line) if token.value == "break" else ContinueNode(token.line)
        raise self._error(token.line, f"unsupported action: {token.value}")

    def _control(self, keyword: Token) -> BranchNode:
        kind = keyword.value
        mark = len(self.vars)
        pipe = self._pipeline(kind, TokenType.RIGHT_DELIM)

        if kind == "range":
            self.range_depth += 1
        try:
            body, stop = self._item_list()
        finally:
            if kind == "range":
                self.range_depth -= 1

        else_body = None
        if isinstance(stop, _Else):
            if stop.chained is not None:
                if stop.chained.value != kind:
                    raise self._error(stop.line, f"unexpected {stop} in {kind}")
                # The nested branch consumes the shared {{end}}.
                else_body = ListNode(stop.line, [self._control(stop.chained)])
            else:
                else_body, stop = self._item_list()
                if not isinstance(stop, _End):
                    raise self._error(stop.line, f"expected end; found {stop}")

        del self.vars[mark:]
        return BranchNode(keyword.line, kind, pipe, body, else_body)

    def _declarations(self, context: str, pipe: PipeNode) -> None:
        while self._peek().type is TokenType.VARIABLE:
            variable, following = self._peek(), self._peek(1)
            if following.type in (TokenType.DECLARE, TokenType.ASSIGN):
                self.pos += 2
                pipe.is_assign = following.type is TokenType.ASSIGN
                if pipe.is_assign and variable.value not in self.vars:
                    raise self._error(variable.line, f"undefined variable {variable.value!r}")
                pipe.decl.append(variable.value)
                self.vars.append(variable.value)
                return
            if following.type is TokenType.COMMA:
                if context != "range" or pipe.decl:
                    raise self._error(variable.line, f"too many declarations in {context}")
                self.pos += 2
                pipe.decl.append(variable.value)
                self.vars.append(variable.value)
                if self._peek().type is not TokenType.VARIABLE:
                    raise self._error(variable.line, "range can only initialize variables")
                continue
            break
        if pipe.decl:
            raise self._error(pipe.line, f"missing := in {context} declaration")

    def _pipeline(self, context: str, end: TokenType) -> PipeNode:
        pipe = PipeNode(self._peek().line)
        self._declarations(context, pipe)

        while True:
            token = self._peek()
            if token.type is end:
                self._next()
                break
            pipe.cmds.append(self._command(end))
            token = self._peek()
            if token.type is TokenType.PIPE:
                self._next()
                if self._peek().type is end:
                    raise self._error(token.line, "missing command after |")
            elif token.type is not end:
                raise self._error(token.line, f"unexpected {token} in operand")

        if not pipe.cmds:
            raise self._error(pipe.line, f"missing value for {context}")
        for stage, cmd in enumerate(pipe.cmds[1:], start=2):
            if isinstance(cmd.args[0], (LiteralNode, DotNode, NilNode)):
                raise self._error(cmd.line, f"non executable command in pipeline stage {stage}")
        return pipe

    def _command(self, end: TokenType) -> CommandNode:
        cmd = CommandNode(self._peek().line, [])
        while True:
            token = self._peek()
            if token.type in (TokenType.PIPE, end):
                break
            if cmd.args and not token.spaced:
                raise self._error(token.line, f"missing space? unexpected {token} in operand")
            cmd.args.append(self._operand())
        if not cmd.args:
            raise self._error(cmd.line, "empty command")
        return cmd

    def _operand(self) -> Any:
        token = self._next()
        line = token.line
        node: Any
        match token.type:
            case TokenType.IDENTIFIER:
                if token.value not in FUNCTIONS:
                    raise self._error(line, f"function {token.value!r} not defined")
                node = IdentifierNode(line, token.value)
            case TokenType.DOT:
                node = DotNode(line)
            case TokenType.NIL:
                node = NilNode(line)
            case TokenType.BOOL:
                node = LiteralNode(line, token.value == "true")
            case TokenType.NUMBER:
                node = LiteralNode(line, self._number(token))
            case TokenType.STRING:
                node = LiteralNode(line, token.value)
            case TokenType.VARIABLE:
                if token.value not in self.vars:
                    raise self._error(line, f"undefined variable {token.value!r}")
                node = VariableNode(line, token.value)
            case TokenType.FIELD:
                node = FieldNode(line, [token.value])
            case TokenType.LEFT_PAREN:
                node = self._pipeline("parenthesized pipeline", TokenType.RIGHT_PAREN)
            case _:
                raise self._error(line, f"unexpected {token} in operand")

        fields = []
        while self._peek().type is TokenType.FIELD and not self._peek().spaced:
            fields.append(self._next().value)
        if not fields:
            return node
        match node:
            case FieldNode():
                node.ident.extend(fields)
            case VariableNode():
                node.fields.extend(fields)
            case PipeNode() | IdentifierNode():
                node = ChainNode(line, node, fields)
            case _:
                raise self._error(line, f"unexpected . after term {str(node)!r}")
        return node

    def _number(self, token: Token) -> int | float:
        text = token.value.replace("_", "")
        try:
            if _OCTAL_RE.fullmatch(text):
                return int(text, 8)
            if text.lstrip("+-")[:2].lower() not in ("0x", "0o", "0b") and any(
                c in text for c in ".eE"
            ):
                return float(text)
            return int(text, 0)
        except ValueError as e:
            raise self._error(token.line, f"illegal number syntax: {token.value!r}") from e


# Values


def _type_name(value: Any) -> str:
    match value:
        case None:
            return "<nil>"
        case bool():
            return "bool"
        case int():
            return "int"
        case float():
            return "float64"
        case str():
            return "string"
        case Mapping():
            return "map"
        case list() | tuple():
            return "slice"
    return type(value).__name__


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    number = Decimal(repr(value)).normalize()
    sign, digits, exponent = number.as_tuple()
    assert isinstance(exponent, int)
    exp = len(digits) + exponent - 1
    # Shortest formatting switches to an exponent at 1e+06, like Go's %v.
    if -4 <= exp < 6 or digits == (0,):
        return format(number, "f")
    mantissa = str(digits[0])
    if len(digits) > 1:
        mantissa += "." + "".join(str(d) for d in digits[1:])
    return f"{'-' if sign else ''}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"


def _format(value: Any) -> str:
    """Format a value the way Go's ``%v`` verb does."""
    match value:
        case None:
            return "<nil>"
        case bool():
            return "true" if value else "false"
        case int():
            return str(value)
        case float():
            return _format_float(value)
        case str():
            return value
        case bytes():
            return "[" + " ".join(str(b) for b in value) + "]"
        case Mapping():
            items = sorted(value.items(), key=lambda item: str(item[0]))
            return "map[" + " ".join(f"{_format(k)}:{_format(v)}" for k, v in items) + "]"
        case list() | tuple():
            return "[" + " ".join(_format(item) for item in value) + "]"
    return str(value)


def _print_value(value: Any) -> str:
    if value is None:
        return "<no value>"
    return _format(value)


def is_true(value: Any) -> bool:
    """Report whether a value is "true" in the sense of Go templates."""
    match value:
        case None:
            return False
        case bool():
            return value
        case int() | float() | complex():
            return value != 0
        case Sized():
            return len(value) > 0
    return True


# Builtin functions


class _FuncError(Exception):
    pass


def _basic_kind(value: Any) -> str | None:
    match value:
        case None:
            return "nil"
        case bool():
            return "bool"
        case int():
            return "int"
        case float():
            return "float"
        case str():
            return "string"
    return None


def _not(value: Any) -> bool:
    return not is_true(value)


def _eq(arg1: Any, *args: Any) -> bool:
    kind1 = _basic_kind(arg1)
    for arg in args:
        kind2 = _basic_kind(arg)
        if kind1 is None or kind2 is None:
            if not isinstance(arg1, Mapping | list | tuple) and not isinstance(
                arg, Mapping | list | tuple
            ):
                if arg1 == arg:
                    return True
                continue
            raise _FuncError("non-comparable type")
        if "nil" in (kind1, kind2):
            if kind1 == kind2:
                return True
            continue
        if kind1 != kind2:
            raise _FuncError("incompatible types for comparison")
        if arg1 == arg:
            return True
    return False


def _ne(arg1: Any, arg2: Any) -> bool:
    return not _eq(arg1, arg2)


def _lt(arg1: Any, arg2: Any) -> bool:
    kind1, kind2 = _basic_kind(arg1), _basic_kind(arg2)
    if kind1 not in ("int", "float", "string") or kind2 not in ("int", "float", "string"):
        raise _FuncError("invalid type for comparison")
    if kind1 != kind2:
        raise _FuncError("incompatible types for comparison")
    return arg1 < arg2


def _le(arg1: Any, arg2: Any) -> bool:
    return _lt(arg1, arg2) or _eq(arg1, arg2)


def _gt(arg1: Any, arg2: Any) -> bool:
    return not _le(arg1, arg2)


def _ge(arg1: Any, arg2: Any) -> bool:
    return not _lt(arg1, arg2)


def _len(item: Any) -> int:
    match item:
        case None:
            raise _FuncError("len of nil pointer")
        case str():
            return len(item.encode(errors="surrogateescape"))
        case bytes() | Mapping() | list() | tuple():
            return len(item)
    raise _FuncError(f"len of type {_type_name(item)}")


def _index(item: Any, *indices: Any) -> Any:
    for index in indices:
        match item:
            case None:
                raise _FuncError("index of untyped nil")
            case Mapping():
                item = item.get(index)
            case str() | bytes() | list() | tuple():
                if isinstance(index, bool) or not isinstance(index, int):
                    raise _FuncError(f"cannot index slice/array with type {_type_name(index)}")
                data = item.encode(errors="surrogateescape") if isinstance(item, str) else item
                if not 0 <= index < len(data):
                    raise _FuncError(f"index out of range: {index}")
                item = data[index]
            case _:
                raise _FuncError(f"can't index item of type {_type_name(item)}")
    return item


def _print(*args: Any) -> str:
    parts = []
    for i, arg in enumerate(args):
        if i and not isinstance(arg, str) and not isinstance(args[i - 1], str):
            parts.append(" ")
        parts.append(_format(arg))
    return "".join(parts)


def _println(*args: Any) -> str:
    return " ".join(_format(arg) for arg in args) + "\n"


_VERB_RE = re.compile(r"%([-+# 0]*)(\d+)?(?:\.(\d+))?([a-zA-Z%])")


_QUOTE_ESCAPES = {
    "\a": r"\a",
    "\b": r"\b",
    "\f": r"\f",
    "\n": r"\n",
    "\r": r"\r",
    "\t": r"\t",
    "\v": r"\v",
    "\\": r"\\",
    '"': r"\"",
}


def _quote(text: str) -> str:
    """Quote a string with Go's ``strconv.Quote`` escapes."""
    parts = ['"']
    for ch in text:
        code = ord(ch)
        if ch in _QUOTE_ESCAPES:
            parts.append(_QUOTE_ESCAPES[ch])
        elif 0xDC80 <= code <= 0xDCFF:
            # Undecodable source byte carried as a surrogate escape.
            parts.append(f"\\x{code - 0xDC00:02x}")
        elif ch.isprintable():
            parts.append(ch)
        elif code < 0x80:
            parts.append(f"\\x{code:02x}")
        elif code <= 0xFFFF:
            parts.append(f"\\u{code:04x}")
        else:
            parts.append(f"\\U{code:08x}")
    parts.append('"')
    return "".join(parts)


def _bad_verb(verb: str, arg: Any) -> str:
    if arg is None:
        return f"%!{verb}(<nil>)"
    return f"%!{verb}({_type_name(arg)}={_format(arg)})"


def _format_verb(verb: str, arg: Any, precision: str | None) -> str:
    is_int = isinstance(arg, int) and not isinstance(arg, bool)
    match verb:
        case "v":
            return _format(arg)
        case "s" if isinstance(arg, str):
            return arg
        case "s" if isinstance(arg, Mapping | list | tuple):
            return _format(arg)
        case "d" if is_int:
            return str(arg)
        case "q" if isinstance(arg, str):
            return _quote(arg)
        case "t" if isinstance(arg, bool):
            return _format(arg)
        case "f" | "F" if isinstance(arg, float):
            return f"{arg:.{precision or 6}f}"
        case "e" if isinstance(arg, float):
            return f"{arg:.{precision or 6}e}"
        case "g" if isinstance(arg, float):
            return _format_float(arg) if precision is None else f"{arg:.{precision}g}"
        case "x" | "X" if is_int:
            return format(arg, verb)
        case "x" | "X" if isinstance(arg, str):
            text = arg.encode(errors="surrogateescape").hex()
            return text.upper() if verb == "X" else text
        case "c" if is_int:
            return chr(arg)
    return _bad_verb(verb, arg)


def _printf(fmt: str, *args: Any) -> str:
    if not isinstance(fmt, str):
        raise _FuncError(f"format must be a string, got {_type_name(fmt)}")
    parts = []
    pos = 0
    remaining = list(args)
    for match in _VERB_RE.finditer(fmt):
        parts.append(fmt[pos : match.start()])
        pos = match.end()
        flags, width, precision, verb = match.groups()
        if verb == "%":
            parts.append("%")
            continue
        if not remaining:
            parts.append(f"%!{verb}(MISSING)")
            continue
        arg = remaining.pop(0)
        text = _format_verb(verb, arg, precision)
        if width:
            if "-" in flags:
                text = text.ljust(int(width))
            elif "0" in flags and isinstance(arg, int | float) and not isinstance(arg, bool):
                text = text.zfill(int(width))
            else:
                text = text.rjust(int(width))
        parts.append(text)
    parts.append(fmt[pos:])
    if remaining:
        extra = ", ".join(f"{_type_name(arg)}={_format(arg)}" for arg in remaining)
        parts.append(f"%!(EXTRA {extra})")
    return "".join(parts)


# and/or have no callable: the executor evaluates their arguments lazily.
FUNCTIONS: dict[str, tuple[Callable[..., Any] | None, int, int | None]] = {
    "and": (None, 1, None),
    "or": (None, 1, None),
    "not": (_not, 1, 1),
    "eq": (_eq, 2, None),
    "ne": (_ne, 2, 2),
    "lt": (_lt, 2, 2),
    "le": (_le, 2, 2),
    "gt": (_gt, 2, 2),
    "ge": (_ge, 2, 2),
    "len": (_len, 1, 1),
    "index": (_index, 1, None),
    "print": (_print, 0, None),
    "println": (_println, 0, None),
    "printf": (_printf, 1, None),
}


# Execution

_MISSING = object()
_PLAIN_TYPES = (str, bytes, bool, int, float, list, tuple, set, frozenset)


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


class _Executor:
    def __init__(self, name: str, data: Any) -> None:
        self.name = name
        self.out: list[str] = []
        self.vars: list[tuple[str, Any]] = [("$", data)]

    def _error(self, node: Any, message: str) -> TemplateExecError:
        return TemplateExecError(self.name, node.line, message)

    def walk(self, dot: Any, node: Any) -> None:
        match node:
            case ListNode():
                for child in node.nodes:
                    self.walk(dot, child)
            case TextNode():
                self.out.append(node.text)
            case ActionNode():
                value = self._eval_pipeline(dot, node.pipe)
                if not node.pipe.decl:
                    self.out.append(_print_value(value))
            case BranchNode(kind="range"):
                self._walk_range(dot, node)
            case BranchNode():
                self._walk_if_or_with(dot, node)
            case BreakNode():
                raise _Break
            case ContinueNode():
                raise _Continue
            case _:
                raise self._error(node, f"unknown node: {node!r}")

    def _walk_if_or_with(self, dot: Any, node: BranchNode) -> None:
        mark = len(self.vars)
        value = self._eval_pipeline(dot, node.pipe)
        if is_true(value):
            self.walk(value if node.kind == "with" else dot, node.body)
        elif node.else_body is not None:
            self.walk(dot, node.else_body)
        del self.vars[mark:]

    def _range_items(self, node: BranchNode, value: Any) -> list[tuple[Any, Any]]:
        match value:
            case None:
                return []
            case Mapping():
                try:
                    keys = sorted(value)
                except TypeError as e:
                    raise self._error(node, "range over map with unordered keys") from e
                return [(key, value[key]) for key in keys]
            case bool() | str() | bytes():
                pass
            case int():
                return [(i, i) for i in range(value)]
            case Sequence():
                return list(enumerate(value))
        raise self._error(node, f"range can't iterate over {_format(value)}")

    def _walk_range(self, dot: Any, node: BranchNode) -> None:
        mark = len(self.vars)
        value = self._eval_pipeline(dot, node.pipe, declare=False)
        items = self._range_items(node, value)
        if not items:
            if node.else_body is not None:
                self.walk(dot, node.else_body)
            return

        decl = node.pipe.decl
        for key, elem in items:
            if len(decl) == 1:
                self.vars.append((decl[0], elem))
            elif len(decl) == 2:
                self.vars.extend([(decl[0], key), (decl[1], elem)])
            try:
                self.walk(elem, node.body)
            except _Break:
                break
            except _Continue:
                continue
            finally:
                del self.vars[mark:]

    def _eval_pipeline(self, dot: Any, pipe: PipeNode, declare: bool = True) -> Any:
        value: Any = _MISSING
        for cmd in pipe.cmds:
            value = self._eval_command(dot, cmd, value)
        if declare:
            for name in pipe.decl:
                if pipe.is_assign:
                    self._set_var(pipe, name, value)
                else:
                    self.vars.append((name, value))
        return value

    def _set_var(self, node: Any, name: str, value: Any) -> None:
        for i in range(len(self.vars) - 1, -1, -1):
            if self.vars[i][0] == name:
                self.vars[i] = (name, value)
                return
        raise self._error(node, f"undefined variable: {name}")

    def _var_value(self, node: VariableNode) -> Any:
        for name, value in reversed(self.vars):
            if name == node.name:
                return value
        raise self._error(node, f"undefined variable: {node.name}")

    def _not_a_function(self, cmd: CommandNode, final: Any) -> None:
        if len(cmd.args) > 1 or final is not _MISSING:
            raise self._error(cmd, f"can't give argument to non-function {cmd.args[0]}")

    def _eval_command(self, dot: Any, cmd: CommandNode, final: Any) -> Any:
        first = cmd.args[0]
        args = cmd.args[1:]
        match first:
            case IdentifierNode():
                return self._eval_function(dot, first, args, final)
            case FieldNode():
                return self._eval_field_chain(dot, dot, first, first.ident, args, final)
            case VariableNode():
                return self._eval_variable(dot, first, args, final)
            case ChainNode():
                return self._eval_chain(dot, first, args, final)
            case PipeNode():
                self._not_a_function(cmd, final)
                return self._eval_pipeline(dot, first)
            case DotNode():
                self._not_a_function(cmd, final)
                return dot
            case LiteralNode():
                self._not_a_function(cmd, final)
                return first.value
        raise self._error(cmd, f"{first} is not a command")

    def _eval_arg(self, dot: Any, node: Any) -> Any:
        match node:
            case DotNode():
                return dot
            case NilNode():
                return None
            case FieldNode():
                return self._eval_field_chain(dot, dot, node, node.ident, [], _MISSING)
            case VariableNode():
                return self._eval_variable(dot, node, [], _MISSING)
            case PipeNode():
                return self._eval_pipeline(dot, node)
            case ChainNode():
                return self._eval_chain(dot, node, [], _MISSING)
            case IdentifierNode():
                return self._eval_function(dot, node, [], _MISSING)
            case LiteralNode():
                return node.value
        raise self._error(node, f"can't handle {node} as argument")

    def _eval_variable(self, dot: Any, node: VariableNode, args: list[Any], final: Any) -> Any:
        value = self._var_value(node)
        if not node.fields:
            if args or final is not _MISSING:
                raise self._error(node, f"can't give argument to non-function {node}")
            return value
        return self._eval_field_chain(dot, value, node, node.fields, args, final)

    def _eval_chain(self, dot: Any, node: ChainNode, args: list[Any], final: Any) -> Any:
        receiver = self._eval_arg(dot, node.node)
        return self._eval_field_chain(dot, receiver, node, node.fields, args, final)

    def _eval_field_chain(
        self,
        dot: Any,
        receiver: Any,
        node: Any,
        idents: list[str],
        args: list[Any],
        final: Any,
    ) -> Any:
        for name in idents[:-1]:
            receiver = self._eval_field(dot, node, name, receiver, [], _MISSING)
        return self._eval_field(dot, node, idents[-1], receiver, args, final)

    def _eval_field(
        self, dot: Any, node: Any, name: str, receiver: Any, args: list[Any], final: Any
    ) -> Any:
        has_args = bool(args) or final is not _MISSING
        if receiver is None:
            raise self._error(node, f"nil pointer evaluating .{name}")
        if isinstance(receiver, Mapping):
            if has_args:
                raise self._error(node, f"{name} is not a method but has arguments")
            if name not in receiver:
                raise self._error(node, f"can't evaluate field {name} in type map")
            return receiver[name]
        if isinstance(receiver, _PLAIN_TYPES) or name.startswith("_"):
            raise self._error(node, f"can't evaluate field {name} in type {_type_name(receiver)}")
        try:
            attr = getattr(receiver, name)
        except AttributeError as e:
            raise self._error(
                node, f"can't evaluate field {name} in type {type(receiver).__name__}"
            ) from e
        if callable(attr):
            values = [self._eval_arg(dot, arg) for arg in args]
            if final is not _MISSING:
                values.append(final)
            try:
                return attr(*values)
            except TypeError as e:
                raise self._error(node, f"error calling {name}: {e}") from e
        if has_args:
            raise self._error(node, f"{name} has arguments but cannot be invoked as function")
        return attr

    def _eval_function(self, dot: Any, node: IdentifierNode, args: list[Any], final: Any) -> Any:
        func, min_args, max_args = FUNCTIONS[node.name]
        count = len(args) + (final is not _MISSING)
        if count < min_args or (max_args is not None and count > max_args):
            want = f"at least {min_args}" if max_args is None else str(min_args)
            raise self._error(
                node, f"wrong number of args for {node.name}: want {want} got {count}"
            )

        if func is None:
            return self._eval_logical(dot, node.name == "and", args, final)

        values = [self._eval_arg(dot, arg) for arg in args]
        if final is not _MISSING:
            values.append(final)
        try:
            return func(*values)
        except _FuncError as e:
            raise self._error(node, f"error calling {node.name}: {e}") from e

    def _eval_logical(self, dot: Any, is_and: bool, args: list[Any], final: Any) -> Any:
        value: Any = None
        for arg in args:
            value = self._eval_arg(dot, arg)
            if is_true(value) != is_and:
                return value
        if final is not _MISSING:
            value = final
        return value


class Template:
    """A parsed template, ready to be executed against data."""

    def __init__(self, name: str, root: ListNode) -> None:
        self.name = name
        self.root = root

    def __repr__(self) -> str:
        return f"<Template name={self.name}>"

    @classmethod
    def parse(cls, name: str, source: str) -> "Template":
        tokens = _Lexer(name, source).lex()
        return cls(name, _Parser(name, tokens).parse())

    def execute(self, data: Any) -> str:
        executor = _Executor(self.name, data)
        executor.walk(data, self.root)
        return "".join(executor.out)


def render_template(name: str, source: str, data: Any) -> bytes:
    return Template.parse(name, source).execute(data).encode(errors="surrogateescape")
