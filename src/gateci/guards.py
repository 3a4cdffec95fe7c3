# guards.py
"""
Guard (`if:`) expressions.

Grammar (a subset of the hosted-runner expression syntax):

    expr    := or
    or      := and ('||' and)*
    and     := unary ('&&' unary)*
    unary   := '!' unary | compare
    compare := operand (('==' | '!=') operand)?
    operand := '(' expr ')' | NAME '(' ')' | NAME | STRING | 'true' | 'false'

The whole expression may be wrapped in ``${{ ... }}``.

Names are resolved against the trigger context (`event`, `branch`,
`base_branch` and their `github.*` aliases). Functions look at the statuses of
the job's dependencies: `success()` (every direct dependency succeeded),
`failure()` (some ancestor failed), `always()`.

Evaluation is three-valued. While the graph is being built the dependency
statuses do not exist yet, so status functions evaluate to UNKNOWN; a guard
that is already False at that point can be skipped at build time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from .errors import GuardEvaluationError
from .model import JobInstance, JobStatus, TriggerContext


class _Unknown:
    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        raise TypeError("UNKNOWN has no truth value")


UNKNOWN = _Unknown()

Value = Union[str, bool, _Unknown]

VARIABLES: Dict[str, str] = {
    "event": "event",
    "github.event_name": "event",
    "branch": "branch",
    "github.ref_name": "branch",
    "base_branch": "base_branch",
    "github.base_ref": "base_branch",
}

STATUS_FUNCTIONS = ("success", "failure", "always")


# ----------------------------------------------------------------------
# Evaluation scope
# ----------------------------------------------------------------------

@dataclass
class _Scope:
    ctx: TriggerContext
    dependencies: Optional[Sequence[JobInstance]]
    ancestors: Optional[Sequence[JobInstance]] = None

    def variable(self, name: str) -> str:
        field_name = VARIABLES[name]
        if field_name == "event":
            return self.ctx.event_name
        return getattr(self.ctx, field_name) or ""

    def call(self, fn: str) -> Value:
        if fn == "always":
            return True
        if self.dependencies is None:
            return UNKNOWN
        if fn == "success":
            return all(d.status is JobStatus.SUCCESS for d in self.dependencies)
        # failure() looks at every ancestor, not only the direct needs
        upstream = self.ancestors if self.ancestors is not None else self.dependencies
        return any(d.failed_upstream for d in upstream)


def _truth(v: Value) -> Union[bool, _Unknown]:
    if v is UNKNOWN:
        return UNKNOWN
    if isinstance(v, bool):
        return v
    return v != ""


def _text(v: Value) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v).lower()


# ----------------------------------------------------------------------
# AST
# ----------------------------------------------------------------------

class _Node:
    def evaluate(self, scope: _Scope) -> Value:
        raise NotImplementedError


@dataclass
class _Literal(_Node):
    value: Union[str, bool]

    def evaluate(self, scope: _Scope) -> Value:
        return self.value


@dataclass
class _Var(_Node):
    name: str

    def evaluate(self, scope: _Scope) -> Value:
        return scope.variable(self.name)


@dataclass
class _Call(_Node):
    fn: str

    def evaluate(self, scope: _Scope) -> Value:
        return scope.call(self.fn)


@dataclass
class _Not(_Node):
    operand: _Node

    def evaluate(self, scope: _Scope) -> Value:
        v = _truth(self.operand.evaluate(scope))
        return UNKNOWN if v is UNKNOWN else not v


@dataclass
class _And(_Node):
    left: _Node
    right: _Node

    def evaluate(self, scope: _Scope) -> Value:
        a = _truth(self.left.evaluate(scope))
        b = _truth(self.right.evaluate(scope))
        if a is False or b is False:
            return False
        if a is UNKNOWN or b is UNKNOWN:
            return UNKNOWN
        return True


@dataclass
class _Or(_Node):
    left: _Node
    right: _Node

    def evaluate(self, scope: _Scope) -> Value:
        a = _truth(self.left.evaluate(scope))
        b = _truth(self.right.evaluate(scope))
        if a is True or b is True:
            return True
        if a is UNKNOWN or b is UNKNOWN:
            return UNKNOWN
        return False


@dataclass
class _Compare(_Node):
    op: str
    left: _Node
    right: _Node

    def evaluate(self, scope: _Scope) -> Value:
        a = self.left.evaluate(scope)
        b = self.right.evaluate(scope)
        if a is UNKNOWN or b is UNKNOWN:
            return UNKNOWN
        equal = _text(a) == _text(b)
        return equal if self.op == "==" else not equal


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<op>&&|\|\||==|!=|!|\(|\))
      | (?P<str>'(?:[^']|'')*'|"[^"]*")
      | (?P<name>[A-Za-z_][A-Za-z0-9_-]*(?:\.[A-Za-z_][A-Za-z0-9_-]*)*)
    )""",
    re.VERBOSE,
)


def _tokenize(text: str, job: str | None) -> List[tuple[str, str]]:
    tokens: List[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise GuardEvaluationError(
                f"unexpected character {text[pos:].strip()[0]!r} at offset {pos}",
                expression=text,
                job=job,
            )
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, text: str, job: str | None):
        self.text = text
        self.job = job
        self.tokens = _tokenize(text, job)
        self.pos = 0
        self.uses_status = False

    def _error(self, message: str) -> GuardEvaluationError:
        return GuardEvaluationError(message, expression=self.text, job=self.job)

    def _peek(self) -> Optional[tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, value: str) -> bool:
        tok = self._peek()
        if tok is not None and tok[0] == "op" and tok[1] == value:
            self.pos += 1
            return True
        return False

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            raise self._error(f"expected {value!r}")

    def parse(self) -> _Node:
        if not self.tokens:
            raise self._error("empty guard expression")
        node = self._or()
        if self._peek() is not None:
            raise self._error(f"unexpected token {self._peek()[1]!r}")
        return node

    def _or(self) -> _Node:
        node = self._and()
        while self._accept("||"):
            node = _Or(node, self._and())
        return node

    def _and(self) -> _Node:
        node = self._unary()
        while self._accept("&&"):
            node = _And(node, self._unary())
        return node

    def _unary(self) -> _Node:
        if self._accept("!"):
            return _Not(self._unary())
        return self._compare()

    def _compare(self) -> _Node:
        left = self._operand()
        for op in ("==", "!="):
            if self._accept(op):
                return _Compare(op, left, self._operand())
        return left

    def _operand(self) -> _Node:
        if self._accept("("):
            node = self._or()
            self._expect(")")
            return node

        tok = self._peek()
        if tok is None:
            raise self._error("unexpected end of expression")
        kind, value = tok
        self.pos += 1

        if kind == "str":
            body = value[1:-1]
            return _Literal(body.replace("''", "'") if value[0] == "'" else body)
        if kind == "op":
            raise self._error(f"unexpected token {value!r}")

        if value in ("true", "false"):
            return _Literal(value == "true")
        if self._accept("("):
            self._expect(")")
            if value not in STATUS_FUNCTIONS:
                raise self._error(f"unknown function {value}()")
            self.uses_status = True
            return _Call(value)
        if value not in VARIABLES:
            raise self._error(f"undefined name {value!r}")
        return _Var(value)


def _unwrap(text: str) -> str:
    s = text.strip()
    if s.startswith("${{") and s.endswith("}}"):
        s = s[3:-2].strip()
    return s


class Guard:
    """A parsed, validated guard expression."""

    def __init__(self, source: str, node: _Node, uses_status: bool):
        self.source = source
        self._node = node
        self.uses_status = uses_status

    @classmethod
    def parse(cls, text: str, *, job: str | None = None) -> "Guard":
        parser = _Parser(_unwrap(text), job)
        node = parser.parse()
        return cls(text, node, parser.uses_status)

    def evaluate(
        self,
        ctx: TriggerContext,
        dependencies: Optional[Sequence[JobInstance]] = None,
        ancestors: Optional[Sequence[JobInstance]] = None,
    ) -> Union[bool, _Unknown]:
        """
        Evaluate against the trigger context and, once known, the dependency
        instances. `ancestors` (every transitive dependency) widens `failure()`;
        without it only the direct dependencies are consulted. Returns UNKNOWN
        only when `dependencies` is None and the result hinges on a status
        function.
        """
        return _truth(self._node.evaluate(_Scope(ctx, dependencies, ancestors)))

    def __repr__(self) -> str:
        return f"Guard({self.source!r})"


def compile_guard(text: str | bool | None, *, job: str | None = None) -> Optional[Guard]:
    if isinstance(text, bool):
        text = "true" if text else "false"
    if text is None or not str(text).strip():
        return None
    return Guard.parse(str(text), job=job)
