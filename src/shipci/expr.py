# expr.py
"""
`${{ <expr> }}` expressions.

A small, pure evaluator: parse() turns an expression into a tuple AST
(cached), evaluate() walks it against a read-only context mapping.
Nothing here mutates the context; callers pass a snapshot.

Supported:
  literals        'text' (quote escaped as ''), 42, 1.5, true, false, null
  property access github.ref, steps.get_tag.outputs.git_tag, matrix['os']
  operators       ! == != < <= > >= && || ( )
  functions       startsWith endsWith contains format join toJSON fromJSON
                  success failure always cancelled
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Mapping, Set, Tuple

from .errors import ExpressionError

# A block body never contains `}}`, so adjacent blocks stay separate.
TEMPLATE_RE = re.compile(r"\$\{\{((?:(?!\}\}).)*?)\}\}", re.S)

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^']|'')*')
      | (?P<number>\d+(?:\.\d+)?)
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!().,\[\]])
      | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*)
    )
    """,
    re.X,
)

STATUS_FUNCTIONS = {"success", "failure", "always", "cancelled"}

# Key under which the runner places a StatusView for status functions.
STATUS_KEY = "__status__"


@dataclass(frozen=True)
class StatusView:
    """What success()/failure()/cancelled() report for the current scope."""
    success: bool = True
    failure: bool = False
    cancelled: bool = False


class Lenient(dict):
    """Mapping whose missing keys read as ''. Used for `outputs` objects."""

    def __missing__(self, key):
        return ""


Node = Tuple[Any, ...]


# ---------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------

def _tokenize(expr: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = expr.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(expr, f"unexpected character at offset {pos}: {text[pos:pos + 10]!r}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, expr: str):
        self.expr = expr
        self.tokens = _tokenize(expr)
        self.pos = 0

    def peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, value: str | None = None) -> Tuple[str, str]:
        tok = self.peek()
        if tok is None:
            raise ExpressionError(self.expr, "unexpected end of expression")
        if value is not None and tok[1] != value:
            raise ExpressionError(self.expr, f"expected {value!r}, got {tok[1]!r}")
        self.pos += 1
        return tok

    def accept(self, *values: str) -> str | None:
        tok = self.peek()
        if tok is not None and tok[0] == "op" and tok[1] in values:
            self.pos += 1
            return tok[1]
        return None

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError(self.expr, "empty expression")
        node = self.or_expr()
        if self.peek() is not None:
            raise ExpressionError(self.expr, f"unexpected token {self.peek()[1]!r}")
        return node

    def or_expr(self) -> Node:
        node = self.and_expr()
        while self.accept("||"):
            node = ("or", node, self.and_expr())
        return node

    def and_expr(self) -> Node:
        node = self.comparison()
        while self.accept("&&"):
            node = ("and", node, self.comparison())
        return node

    def comparison(self) -> Node:
        node = self.unary()
        op = self.accept("==", "!=", "<", "<=", ">", ">=")
        if op:
            node = ("cmp", op, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.accept("!"):
            return ("not", self.unary())
        return self.postfix()

    def postfix(self) -> Node:
        node = self.primary()
        while True:
            if self.accept("."):
                kind, name = self.take()
                if kind != "ident":
                    raise ExpressionError(self.expr, f"expected property name after '.', got {name!r}")
                node = ("prop", node, ("lit", name))
            elif self.accept("["):
                key = self.or_expr()
                self.take("]")
                node = ("prop", node, key)
            else:
                return node

    def primary(self) -> Node:
        kind, value = self.take()
        if kind == "string":
            return ("lit", value[1:-1].replace("''", "'"))
        if kind == "number":
            return ("lit", float(value) if "." in value else int(value))
        if kind == "op" and value == "(":
            node = self.or_expr()
            self.take(")")
            return node
        if kind == "ident":
            lowered = value.lower()
            if lowered in ("true", "false"):
                return ("lit", lowered == "true")
            if lowered == "null":
                return ("lit", None)
            if self.accept("("):
                args: List[Node] = []
                if not self.accept(")"):
                    args.append(self.or_expr())
                    while self.accept(","):
                        args.append(self.or_expr())
                    self.take(")")
                return ("call", lowered, tuple(args))
            return ("ctx", value)
        raise ExpressionError(self.expr, f"unexpected token {value!r}")


@lru_cache(maxsize=1024)
def parse(expr: str) -> Node:
    return _Parser(expr.strip()).parse()


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------

def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if value.strip() == "":
            return 0.0
        try:
            return float(value)
        except ValueError:
            return float("nan")
    return float("nan")


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left.lower()
        b: Any = right.lower()
    elif type(left) is type(right) and not isinstance(left, (int, float)):
        a, b = left, right
    else:
        a, b = _to_number(left), _to_number(right)
    if op == "==":
        return a == b
    if op == "!=":
        return a != b
    try:
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        return a >= b
    except TypeError:
        return False


def to_str(value: Any) -> str:
    """Render a value the way it appears when interpolated into a string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(_plain(value), sort_keys=True)
    return str(value)


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items() if k != STATUS_KEY}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, StatusView):
        return None
    return value


def _fmt(expr: str, template: Any, *args: Any) -> str:
    text = to_str(template)
    out: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if text.startswith("{{", i):
            out.append("{")
            i += 2
        elif text.startswith("}}", i):
            out.append("}")
            i += 2
        elif ch == "{":
            end = text.find("}", i)
            if end == -1 or not text[i + 1:end].isdigit():
                raise ExpressionError(expr, f"invalid format placeholder in {text!r}")
            idx = int(text[i + 1:end])
            if idx >= len(args):
                raise ExpressionError(expr, f"format index {idx} out of range")
            out.append(to_str(args[idx]))
            i = end + 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _contains(search: Any, item: Any) -> bool:
    if isinstance(search, (list, tuple)):
        return any(_compare("==", v, item) for v in search)
    return to_str(item).lower() in to_str(search).lower()


def _join(value: Any, sep: Any = ",") -> str:
    if isinstance(value, (list, tuple)):
        return to_str(sep).join(to_str(v) for v in value)
    return to_str(value)


def _status(context: Mapping[str, Any]) -> StatusView:
    status = context.get(STATUS_KEY)
    return status if isinstance(status, StatusView) else StatusView()


def _functions(expr: str, context: Mapping[str, Any]) -> Dict[str, Callable[..., Any]]:
    def from_json(text: Any) -> Any:
        try:
            return json.loads(to_str(text))
        except ValueError as e:
            raise ExpressionError(expr, f"fromJSON: {e}") from e

    return {
        "startswith": lambda s, p: to_str(s).lower().startswith(to_str(p).lower()),
        "endswith": lambda s, p: to_str(s).lower().endswith(to_str(p).lower()),
        "contains": _contains,
        "format": lambda t, *a: _fmt(expr, t, *a),
        "join": _join,
        "tojson": lambda v: json.dumps(_plain(v), indent=2, sort_keys=True),
        "fromjson": from_json,
        "success": lambda: _status(context).success and not _status(context).cancelled,
        "failure": lambda: _status(context).failure,
        "always": lambda: True,
        "cancelled": lambda: _status(context).cancelled,
    }


def _eval(node: Node, context: Mapping[str, Any], expr: str, funcs: Dict[str, Callable[..., Any]]) -> Any:
    tag = node[0]
    if tag == "lit":
        return node[1]
    if tag == "ctx":
        name = node[1]
        if name not in context or name == STATUS_KEY:
            raise ExpressionError(expr, f"unknown context '{name}'")
        return context[name]
    if tag == "prop":
        target = _eval(node[1], context, expr, funcs)
        key = _eval(node[2], context, expr, funcs)
        if isinstance(target, Mapping):
            if isinstance(target, Lenient):
                return target[to_str(key)]
            if to_str(key) not in target:
                raise ExpressionError(expr, f"cannot resolve property '{to_str(key)}'")
            return target[to_str(key)]
        if isinstance(target, (list, tuple)) and isinstance(key, (int, float)):
            idx = int(key)
            if 0 <= idx < len(target):
                return target[idx]
            raise ExpressionError(expr, f"index {idx} out of range")
        raise ExpressionError(expr, f"cannot read property '{to_str(key)}' of {to_str(target)!r}")
    if tag == "not":
        return not _eval(node[1], context, expr, funcs)
    if tag == "and":
        left = _eval(node[1], context, expr, funcs)
        return _eval(node[2], context, expr, funcs) if left else left
    if tag == "or":
        left = _eval(node[1], context, expr, funcs)
        return left if left else _eval(node[2], context, expr, funcs)
    if tag == "cmp":
        return _compare(node[1], _eval(node[2], context, expr, funcs), _eval(node[3], context, expr, funcs))
    if tag == "call":
        fn = funcs.get(node[1])
        if fn is None:
            raise ExpressionError(expr, f"unknown function '{node[1]}'")
        args = [_eval(a, context, expr, funcs) for a in node[2]]
        try:
            return fn(*args)
        except TypeError as e:
            raise ExpressionError(expr, f"bad arguments to {node[1]}(): {e}") from e
    raise ExpressionError(expr, f"unknown node {tag!r}")


def evaluate(expr: str, context: Mapping[str, Any]) -> Any:
    """Evaluate a bare expression (no `${{ }}` wrapper)."""
    tree = parse(expr)
    return _eval(tree, context, expr, _functions(expr, context))


def interpolate(text: str, context: Mapping[str, Any]) -> str:
    """Replace every `${{ expr }}` in text with its evaluated string form."""
    if "${{" not in text:
        return text
    return TEMPLATE_RE.sub(lambda m: to_str(evaluate(m.group(1), context)), text)


def condition_expression(condition: str) -> str:
    """
    Normalize an `if:` value to a bare expression.

    `if:` accepts a bare expression, one wrapped in `${{ }}`, or several
    blocks joined by operators (`${{ a }} && ${{ b }}`), where each block
    becomes a parenthesized sub-expression.
    """
    text = condition.strip()
    m = TEMPLATE_RE.fullmatch(text)
    if m:
        return m.group(1).strip()
    if "${{" in text:
        return TEMPLATE_RE.sub(lambda b: f"({b.group(1).strip()})", text)
    return text


def evaluate_condition(condition: str | None, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a run condition. None means success(); a condition that does
    not call a status function is implicitly `success() && (...)`.
    """
    if condition is None or not condition.strip():
        return bool(evaluate("success()", context))
    result = evaluate(condition_expression(condition), context)
    if not uses_status_function(condition):
        return bool(evaluate("success()", context)) and bool(result)
    return bool(result)


# ---------------------------------------------------------------------
# Static inspection (validation before a run starts)
# ---------------------------------------------------------------------

def _walk(node: Node) -> Iterator[Node]:
    yield node
    for part in node[1:]:
        if isinstance(part, tuple) and part and isinstance(part[0], str):
            yield from _walk(part)
        elif isinstance(part, tuple):
            for sub in part:
                if isinstance(sub, tuple):
                    yield from _walk(sub)


def _expressions_in(text: str) -> List[str]:
    if "${{" in text:
        return [m.group(1) for m in TEMPLATE_RE.finditer(text)]
    return []


def uses_status_function(condition: str | None) -> bool:
    if not condition:
        return False
    for node in _walk(parse(condition_expression(condition))):
        if node[0] == "call" and node[1] in STATUS_FUNCTIONS:
            return True
    return False


def context_keys(text: str, root: str, *, bare: bool = False) -> Set[str]:
    """
    Literal first-level keys read from a context, e.g.
    context_keys("${{ needs.release.outputs.x }}", "needs") == {"release"}.
    """
    exprs = [condition_expression(text)] if bare else _expressions_in(text)
    keys: Set[str] = set()
    for e in exprs:
        for node in _walk(parse(e)):
            if node[0] == "prop" and node[1] == ("ctx", root) and node[2][0] == "lit":
                keys.add(str(node[2][1]))
    return keys


def check(text: str, known_contexts: Set[str], *, bare: bool = False) -> None:
    """
    Parse every expression in text and verify it only refers to known
    contexts and functions. Raises ExpressionError.
    """
    exprs = [condition_expression(text)] if bare else _expressions_in(text)
    names = set(_functions("", {}))
    for e in exprs:
        for node in _walk(parse(e)):
            if node[0] == "ctx" and node[1] not in known_contexts:
                raise ExpressionError(e, f"unknown context '{node[1]}'")
            if node[0] == "call" and node[1] not in names:
                raise ExpressionError(e, f"unknown function '{node[1]}'")
