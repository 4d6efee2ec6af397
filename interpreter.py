from __future__ import annotations
import json
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from lexer import MiniError, Lexer, Token
from parser import (
    ArrayLiteral,
    Assignment,
    BinaryExpression,
    Block,
    CallExpression,
    EmptyStatement,
    Expression,
    ExpressionStatement,
    FuncLiteral,
    Identifier,
    IfStatement,
    IndexExpression,
    KeyValue,
    NumberLiteral,
    ParenExpression,
    Parser,
    Program,
    ReturnStatement,
    SelectorExpression,
    SourceLocation,
    Statement,
    StringLiteral,
    UnaryExpression,
    WhileStatement,
)


TYPE_ERROR = "error"
TYPE_NUMBER = "number"
TYPE_STRING = "string"
TYPE_BOOLEAN = "boolean"
TYPE_ARRAY = "array"
TYPE_FUNCTION = "function"

# Python stack limit while a program runs. One Mini call takes roughly ten
# Python frames, so this allows about 1500 nested calls.
RECURSION_LIMIT = 16000


@dataclass(frozen=True, eq=False)
class Value:
    type: str
    value: Any = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        if self.type != other.type:
            return False
        # Function values are equal only when they come from the same literal.
        if self.type == TYPE_FUNCTION:
            return self.value is other.value
        return self.value == other.value

    def __str__(self) -> str:
        return format_value(self)


NO_VALUE = Value(TYPE_ERROR)


class AssocArray:
    """Insertion-ordered association list with linear-scan lookup."""

    def __init__(self, pairs: Optional[List[Tuple[Value, Value]]] = None) -> None:
        self.pairs: List[Tuple[Value, Value]] = list(pairs) if pairs else []

    def get(self, key: Value) -> Value:
        for existing, value in self.pairs:
            if existing == key:
                return value
        return NO_VALUE

    def set(self, key: Value, value: Value) -> None:
        for i, (existing, _) in enumerate(self.pairs):
            if existing == key:
                self.pairs[i] = (existing, value)
                return
        self.pairs.append((key, value))

    def __iter__(self) -> Iterator[Tuple[Value, Value]]:
        return iter(self.pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AssocArray):
            return NotImplemented
        return self.pairs == other.pairs

    def __repr__(self) -> str:
        return f"AssocArray({self.pairs!r})"


def format_value(value: Value) -> str:
    vtype = value.type
    if vtype == TYPE_NUMBER:
        return str(value.value)
    if vtype == TYPE_BOOLEAN:
        return "true" if value.value else "false"
    if vtype == TYPE_STRING:
        return value.value
    if vtype == TYPE_ARRAY:
        items = ",".join(f"{format_value(k)}:{format_value(v)}" for k, v in value.value)
        return f"[{items}]"
    return vtype


class MiniRuntimeError(MiniError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


@dataclass
class Scope:
    parent: Optional[int]
    values: Dict[str, Value] = field(default_factory=dict)


class Scopes:
    """Scope frames stored in an arena and linked by parent handle.

    A new frame always takes the active frame as its parent, for blocks and
    for function calls alike, so free names inside a function body resolve
    against the caller's bindings.
    """

    def __init__(self) -> None:
        self.frames: List[Scope] = []
        self.current: Optional[int] = None

    def begin(self) -> int:
        self.frames.append(Scope(parent=self.current))
        self.current = len(self.frames) - 1
        return self.current

    def end(self) -> None:
        if self.current is None:
            return
        frame = self.frames.pop()
        self.current = frame.parent

    def lookup(self, name: str) -> Optional[int]:
        handle = self.current
        while handle is not None:
            frame = self.frames[handle]
            if name in frame.values:
                return handle
            handle = frame.parent
        return None

    def get(self, name: str) -> Value:
        handle = self.lookup(name)
        if handle is not None:
            return self.frames[handle].values[name]
        raise MiniRuntimeError(f"Undefined identifier '{name}'", rule="IDENT")

    def bind(self, name: str, value: Value) -> None:
        handle = self.lookup(name)
        if handle is None:
            handle = self._require_current()
        self.frames[handle].values[name] = value

    def declare(self, name: str, value: Value) -> None:
        self.frames[self._require_current()].values[name] = value

    def snapshot(self) -> Dict[str, str]:
        if self.current is None:
            return {}

        def _render(val: Value) -> str:
            rendered = format_value(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.frames[self.current].values.items()}

    def _require_current(self) -> int:
        if self.current is None:
            raise MiniRuntimeError("No active scope", rule="SCOPE")
        return self.current


BinaryImpl = Callable[[Any, Any, SourceLocation], Value]
UnaryImpl = Callable[[Any], Value]


class Operators:
    def __init__(self) -> None:
        self.binary: Dict[Tuple[str, str], BinaryImpl] = {}
        self.unary: Dict[Tuple[str, str], UnaryImpl] = {}
        self._register_binary("PLUS", TYPE_NUMBER, lambda a, b, _: Value(TYPE_NUMBER, a + b))
        self._register_binary("PLUS", TYPE_STRING, lambda a, b, _: Value(TYPE_STRING, a + b))
        self._register_binary("MINUS", TYPE_NUMBER, lambda a, b, _: Value(TYPE_NUMBER, a - b))
        self._register_binary("STAR", TYPE_NUMBER, lambda a, b, _: Value(TYPE_NUMBER, a * b))
        self._register_binary("SLASH", TYPE_NUMBER, self._div)
        self._register_binary("PERCENT", TYPE_NUMBER, self._mod)
        self._register_binary("LAND", TYPE_BOOLEAN, lambda a, b, _: Value(TYPE_BOOLEAN, a and b))
        self._register_binary("LOR", TYPE_BOOLEAN, lambda a, b, _: Value(TYPE_BOOLEAN, a or b))
        for kind in (TYPE_NUMBER, TYPE_BOOLEAN, TYPE_STRING):
            self._register_binary("EQL", kind, lambda a, b, _: Value(TYPE_BOOLEAN, a == b))
            self._register_binary("NEQ", kind, lambda a, b, _: Value(TYPE_BOOLEAN, a != b))
        self._register_binary("LSS", TYPE_NUMBER, lambda a, b, _: Value(TYPE_BOOLEAN, a < b))
        self._register_binary("GTR", TYPE_NUMBER, lambda a, b, _: Value(TYPE_BOOLEAN, a > b))
        self._register_binary("LEQ", TYPE_NUMBER, lambda a, b, _: Value(TYPE_BOOLEAN, a <= b))
        self._register_binary("GEQ", TYPE_NUMBER, lambda a, b, _: Value(TYPE_BOOLEAN, a >= b))
        self._register_unary("MINUS", TYPE_NUMBER, lambda a: Value(TYPE_NUMBER, -a))
        self._register_unary("NOT", TYPE_BOOLEAN, lambda a: Value(TYPE_BOOLEAN, not a))

    def _register_binary(self, op: str, kind: str, impl: BinaryImpl) -> None:
        self.binary[(op, kind)] = impl

    def _register_unary(self, op: str, kind: str, impl: UnaryImpl) -> None:
        self.unary[(op, kind)] = impl

    def apply_binary(self, op: Token, left: Value, right: Value, location: SourceLocation) -> Value:
        if left.type != right.type:
            raise MiniRuntimeError(
                f"Type mismatch in binary expression: {left.type} {op.value} {right.type}",
                location=location,
                rule=op.type,
            )
        impl = self.binary.get((op.type, left.type))
        if impl is None:
            raise MiniRuntimeError(f"Invalid operator {op.value} for {left.type}", location=location, rule=op.type)
        return impl(left.value, right.value, location)

    def apply_unary(self, op: Token, operand: Value, location: SourceLocation) -> Value:
        if op.type == "PLUS":
            return operand
        impl = self.unary.get((op.type, operand.type))
        if impl is None:
            raise MiniRuntimeError(f"Invalid operator {op.value} for {operand.type}", location=location, rule=op.type)
        return impl(operand.value)

    def _div(self, a: int, b: int, location: SourceLocation) -> Value:
        if b == 0:
            raise MiniRuntimeError("Integer divide by zero", location=location, rule="SLASH")
        return Value(TYPE_NUMBER, self._truncated_quotient(a, b))

    def _mod(self, a: int, b: int, location: SourceLocation) -> Value:
        if b == 0:
            raise MiniRuntimeError("Integer remainder by zero", location=location, rule="PERCENT")
        return Value(TYPE_NUMBER, a - b * self._truncated_quotient(a, b))

    def _truncated_quotient(self, a: int, b: int) -> int:
        # Rounds toward zero; the remainder takes the sign of the dividend.
        q = abs(a) // abs(b)
        return q if (a < 0) == (b < 0) else -q


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    step_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        # Full history is only kept in verbose mode; loops may run unbounded.
        self.entries: List[StateEntry] = []
        self.last_entry: Optional[StateEntry] = None
        self.next_state_index = 0
        # Only frames still on the call stack keep an entry here.
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        step_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            step_record=step_record,
        )
        if self.verbose:
            self.entries.append(entry)
        self.last_entry = entry
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def release_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self._source_lines = source.splitlines()
        self.filename = filename
        self.verbose = verbose
        self.output_sink = output_sink or (lambda text: print(text))
        self.operators = Operators()
        self.scopes = Scopes()
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(frame=None, location=None, statement="<seed>", step_record={"rule": "SEED"})
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        # Written by `return`, read and cleared when the enclosing call finishes.
        self.pending_return: Value = NO_VALUE
        self.error: Optional[MiniRuntimeError] = None

    def parse(self) -> Program:
        lexer = Lexer(self.source, self.filename)
        tokens = lexer.tokenize()
        parser = Parser(tokens, self.filename, self._source_lines)
        return parser.parse()

    def run(self) -> None:
        program = self.parse()
        top_frame = self._new_frame("<top-level>", None)
        self.call_stack.append(top_frame)
        previous_limit = sys.getrecursionlimit()
        sys.setrecursionlimit(max(previous_limit, RECURSION_LIMIT))
        try:
            self._execute_block(program.statements)
        except MiniRuntimeError as error:
            if self.logger.last_entry is not None:
                error.step_index = self.logger.last_entry.step_index
            self.error = error
            raise
        except Exception as exc:
            # e.g. RecursionError from runaway recursion
            last = self.logger.last_entry
            wrapped = MiniRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.source_location if last else None,
                rule="internal",
            )
            if last is not None:
                wrapped.step_index = last.step_index
            self.error = wrapped
            raise wrapped from exc
        else:
            self.call_stack.pop()
            self.logger.release_frame(top_frame.frame_id)
        finally:
            sys.setrecursionlimit(previous_limit)

    def _execute_block(self, statements: List[Statement]) -> None:
        execute_stmt = self._execute_statement
        self.scopes.begin()
        try:
            for statement in statements:
                execute_stmt(statement)
        finally:
            self.scopes.end()

    def _execute_statement(self, statement: Statement) -> None:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, Assignment):
            value = self._evaluate_expression(statement.expression)
            self._assign(statement.target, value)
            return
        if isinstance(statement, ExpressionStatement):
            self._evaluate_expression(statement.expression)
            return
        if isinstance(statement, Block):
            self._execute_block(statement.statements)
            return
        if isinstance(statement, IfStatement):
            self._execute_if(statement)
            return
        if isinstance(statement, WhileStatement):
            self._execute_while(statement)
            return
        if isinstance(statement, ReturnStatement):
            if statement.expression is not None:
                self.pending_return = self._evaluate_expression(statement.expression)
            else:
                self.pending_return = NO_VALUE
            return
        if isinstance(statement, EmptyStatement):
            return
        raise MiniRuntimeError("Unsupported statement", location=statement.location)

    def _execute_if(self, statement: IfStatement) -> None:
        if self._is_true(self._evaluate_expression(statement.condition)):
            self._execute_block(statement.then_block.statements)
            return
        if statement.else_branch is not None:
            self._execute_statement(statement.else_branch)

    def _execute_while(self, statement: WhileStatement) -> None:
        eval_expr = self._evaluate_expression
        is_true = self._is_true
        while is_true(eval_expr(statement.condition)):
            self._execute_block(statement.block.statements)

    def _is_true(self, value: Value) -> bool:
        # Anything but a boolean true is false; non-boolean conditions are not errors.
        return value.type == TYPE_BOOLEAN and value.value is True

    def _assign(self, target: Expression, value: Value) -> None:
        if isinstance(target, Identifier):
            self.scopes.bind(target.name, value)
            return
        if isinstance(target, IndexExpression):
            container = self._expect_array(self._evaluate_expression(target.base), "ASSIGN", target.location)
            key = self._evaluate_expression(target.index)
            container.set(key, value)
            return
        if isinstance(target, SelectorExpression):
            container = self._expect_array(self._evaluate_expression(target.base), "ASSIGN", target.location)
            key = self._evaluate_expression(target.selector)
            container.set(key, value)
            return
        raise MiniRuntimeError(
            f"Cannot assign to {target.__class__.__name__}",
            location=target.location,
            rule="ASSIGN",
        )

    def _expect_array(self, value: Value, rule: str, location: SourceLocation) -> AssocArray:
        if value.type != TYPE_ARRAY:
            raise MiniRuntimeError(f"{rule} expects array value but got {value.type}", location=location, rule=rule)
        return value.value

    def _build_array(self, literal: ArrayLiteral) -> AssocArray:
        eval_expr = self._evaluate_expression
        array = AssocArray()
        for position, element in enumerate(literal.elements):
            if isinstance(element, KeyValue):
                key = eval_expr(element.key)
                array.set(key, eval_expr(element.value))
            else:
                array.set(Value(TYPE_NUMBER, position), eval_expr(element))
        return array

    def _evaluate_expression(self, expression: Expression) -> Value:
        if isinstance(expression, NumberLiteral):
            return Value(TYPE_NUMBER, expression.value)
        if isinstance(expression, StringLiteral):
            return Value(TYPE_STRING, expression.value)
        if isinstance(expression, Identifier):
            if expression.name == "true":
                return Value(TYPE_BOOLEAN, True)
            if expression.name == "false":
                return Value(TYPE_BOOLEAN, False)
            try:
                return self.scopes.get(expression.name)
            except MiniRuntimeError as err:
                err.location = expression.location
                raise
        if isinstance(expression, BinaryExpression):
            left = self._evaluate_expression(expression.left)
            right = self._evaluate_expression(expression.right)
            return self.operators.apply_binary(expression.op, left, right, expression.location)
        if isinstance(expression, UnaryExpression):
            operand = self._evaluate_expression(expression.operand)
            return self.operators.apply_unary(expression.op, operand, expression.location)
        if isinstance(expression, ParenExpression):
            return self._evaluate_expression(expression.expression)
        if isinstance(expression, FuncLiteral):
            return Value(TYPE_FUNCTION, expression)
        if isinstance(expression, ArrayLiteral):
            return Value(TYPE_ARRAY, self._build_array(expression))
        if isinstance(expression, IndexExpression):
            container = self._expect_array(self._evaluate_expression(expression.base), "INDEX", expression.location)
            return container.get(self._evaluate_expression(expression.index))
        if isinstance(expression, SelectorExpression):
            container = self._expect_array(self._evaluate_expression(expression.base), "SELECT", expression.location)
            # The selector name is looked up like any other variable.
            return container.get(self._evaluate_expression(expression.selector))
        if isinstance(expression, CallExpression):
            return self._evaluate_call(expression)
        raise MiniRuntimeError(
            f"Unsupported expression {expression.__class__.__name__}",
            location=expression.location,
        )

    def _evaluate_call(self, expression: CallExpression) -> Value:
        callee = expression.callee
        if isinstance(callee, Identifier) and callee.name == "print":
            return self._print(expression)
        function = self._evaluate_expression(callee)
        if function.type != TYPE_FUNCTION:
            raise MiniRuntimeError(f"Cannot call {function.type} value", location=expression.location, rule="CALL")
        literal: FuncLiteral = function.value
        if len(literal.params) != len(expression.args):
            raise MiniRuntimeError(
                f"Function expects {len(literal.params)} arguments but received {len(expression.args)}",
                location=expression.location,
                rule="CALL",
            )
        eval_expr = self._evaluate_expression
        args = [eval_expr(arg) for arg in expression.args]
        name = callee.name if isinstance(callee, Identifier) else "<func>"
        self._log_step(
            rule="CALL",
            location=expression.location,
            extra=self._call_details(name, args),
        )
        return self._call_function(name, literal, args, expression.location)

    def _call_function(
        self,
        name: str,
        literal: FuncLiteral,
        args: List[Value],
        call_location: SourceLocation,
    ) -> Value:
        frame = self._new_frame(name, call_location)
        self.call_stack.append(frame)
        self.scopes.begin()
        try:
            for param, arg in zip(literal.params, args):
                self.scopes.declare(param.name, arg)
            for statement in literal.body.statements:
                self._execute_statement(statement)
            result = self.pending_return
        finally:
            self.pending_return = NO_VALUE
            self.scopes.end()
        self.call_stack.pop()
        self.logger.release_frame(frame.frame_id)
        return result

    def _print(self, expression: CallExpression) -> Value:
        if len(expression.args) != 1:
            raise MiniRuntimeError(
                f"print expects exactly 1 argument but received {len(expression.args)}",
                location=expression.location,
                rule="PRINT",
            )
        value = self._evaluate_expression(expression.args[0])
        text = format_value(value)
        self._log_step(rule="PRINT", location=expression.location, extra={"output": text})
        self.output_sink(text)
        return NO_VALUE

    def _call_details(self, name: str, args: List[Value]) -> Dict[str, Any]:
        details: Dict[str, Any] = {"function": name}
        if self.verbose:
            details["args"] = [format_value(a) for a in args]
        return details

    def _new_frame(self, name: str, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = self.scopes.snapshot() if self.verbose else None
        statement = location.statement if location else None
        record = {"rule": rule}
        if extra:
            record.update(extra)
        self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            step_record=record,
        )


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    location=location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: MiniRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        where = f" at {error.location}" if error.location else ""
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message}{where} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: MiniRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.step_record is not None:
                    entry["step_record"] = frame.state_entry.step_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
