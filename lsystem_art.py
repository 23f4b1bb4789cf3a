#!/usr/bin/env python3
"""lsystem_art.py

Procedural line-art from deterministic L-systems, rendered to SVG.

A generation is a sequence of symbols. Variable symbols are rewritten through
a rule table on every generation; constant symbols pass through untouched.
Every symbol carries an ordered list of turtle actions, and the turtle
interpreter replays those actions to produce line and circle primitives.

Key features:
- Explicit, validated rule tables over any hashable alphabet.
- Symbol-count ceiling checked before each rewrite is allocated.
- Color inheritance through the turtle cursor.
- Recoverable stack-underflow errors with the partial drawing attached.
- Bounding-box pass for centering the drawing.
- JSON run settings, built-in presets, random balanced grammars.

Run:
  python lsystem_art.py render example/tree.json output.svg
  python lsystem_art.py validate example/tree.json
  python lsystem_art.py presets
  python lsystem_art.py --help
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import random
import sys
from collections import Counter
from collections.abc import Callable, Hashable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union, cast

logger = logging.getLogger(__name__)

Point = tuple[float, float]
Color = tuple[float, float, float]
Variant = Hashable

BLACK: Color = (0.0, 0.0, 0.0)
ORIGIN: Point = (0.0, 0.0)
DEFAULT_HEADING = math.pi * 0.5
DEFAULT_CIRCLE_RADIUS = 5.0
DEFAULT_MAX_SYMBOLS = 1_000_000


# -------------------------
# Errors / Validation
# -------------------------


class LSystemError(Exception):
    pass


class ConfigError(LSystemError, ValueError):
    pass


class UnknownVariantError(ConfigError):
    """A variant is used without a production in the rule table."""


class SymbolLimitError(LSystemError):
    """The next generation would exceed the configured symbol ceiling."""

    def __init__(self, generation: int, size: int, limit: int) -> None:
        super().__init__(
            f"generation {generation} would hold {size} symbols "
            f"(limit {limit})"
        )
        self.generation = generation
        self.size = size
        self.limit = limit


class StackUnderflowError(LSystemError):
    """A Pop action ran with an empty save stack.

    `primitives` holds everything the interpreter emitted before the failing
    action; `bounds` holds the extent seen so far by the bounding-box pass.
    """

    def __init__(
        self,
        symbol_index: int,
        action_index: int,
        *,
        primitives: tuple[Primitive, ...] = (),
        bounds: Bounds | None = None,
    ) -> None:
        super().__init__(
            f"pop with empty stack at symbol {symbol_index} "
            f"(action {action_index})"
        )
        self.symbol_index = symbol_index
        self.action_index = action_index
        self.primitives = primitives
        self.bounds = bounds


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _as_float(x: Any, path: str) -> float:
    _require(_is_number(x), f"{path} must be a number")
    _require(math.isfinite(x), f"{path} must be finite, got {x!r}")
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_bool(x: Any, path: str) -> bool:
    _require(isinstance(x, bool), f"{path} must be a boolean")
    return cast(bool, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _as_color(x: Any, path: str) -> Color:
    _require(
        isinstance(x, (list, tuple)) and len(x) == 3,
        f"{path} must be a list of three numbers",
    )
    r, g, b = (_as_float(c, f"{path}[{i}]") for i, c in enumerate(x))
    for i, c in enumerate((r, g, b)):
        _require(0.0 <= c <= 1.0, f"{path}[{i}] must be between 0 and 1")
    return (r, g, b)


# -------------------------
# Symbol model
# -------------------------


@dataclass(frozen=True)
class Explicit:
    r: float
    g: float
    b: float

    def __post_init__(self) -> None:
        _as_color((self.r, self.g, self.b), "Explicit")

    @property
    def color(self) -> Color:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class Inherit:
    pass


@dataclass(frozen=True)
class Background:
    pass


FillMode = Union[Explicit, Inherit, Background]

INHERIT = Inherit()
BACKGROUND = Background()


@dataclass(frozen=True)
class Rotate:
    angle: float  # radians


@dataclass(frozen=True)
class DrawLine:
    length: float
    fill: FillMode = INHERIT


@dataclass(frozen=True)
class DrawCircle:
    fill: FillMode = INHERIT


@dataclass(frozen=True)
class Push:
    pass


@dataclass(frozen=True)
class Pop:
    pass


Action = Union[Rotate, DrawLine, DrawCircle, Push, Pop]
_ACTION_TYPES = (Rotate, DrawLine, DrawCircle, Push, Pop)

PUSH = Push()
POP = Pop()


def _as_actions(actions: Iterable[Action], path: str) -> tuple[Action, ...]:
    out = tuple(actions)
    for i, action in enumerate(out):
        _require(
            isinstance(action, _ACTION_TYPES),
            f"{path}[{i}] must be an action, got {type(action).__name__}",
        )
    return out


@dataclass(frozen=True)
class Variable:
    variant: Variant
    actions: tuple[Action, ...] = ()

    def __post_init__(self) -> None:
        try:
            hash(self.variant)
        except TypeError:
            raise ConfigError(
                f"variant {self.variant!r} must be hashable"
            ) from None
        object.__setattr__(
            self, "actions", _as_actions(self.actions, f"Variable({self.variant!r})")
        )


@dataclass(frozen=True)
class Constant:
    actions: tuple[Action, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", _as_actions(self.actions, "Constant"))


Symbol = Union[Variable, Constant]


def as_generation(
    symbols: Symbol | Iterable[Symbol], path: str = "axiom"
) -> tuple[Symbol, ...]:
    """Normalize one symbol or an iterable of symbols to a generation tuple."""
    if isinstance(symbols, (Variable, Constant)):
        return (symbols,)
    out = tuple(symbols)
    for i, sym in enumerate(out):
        _require(
            isinstance(sym, (Variable, Constant)),
            f"{path}[{i}] must be a Variable or Constant, got {type(sym).__name__}",
        )
    return out


@dataclass(frozen=True)
class Cursor:
    position: Point
    heading: float  # radians, 0 = +x
    color: Color


@dataclass(frozen=True)
class Line:
    start: Point
    end: Point
    color: Color


@dataclass(frozen=True)
class Circle:
    center: Point
    radius: float
    color: Color


Primitive = Union[Line, Circle]


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return ((self.min_x + self.max_x) * 0.5, (self.min_y + self.max_y) * 0.5)

    @property
    def extent(self) -> tuple[float, float]:
        return (self.width, self.height)


# -------------------------
# Grammar engine
# -------------------------


class RuleTable:
    """Production table mapping each variant to an ordered symbol sequence.

    Every variant that can appear must be listed; terminals are declared with
    an empty production. When an `alphabet` is given (any iterable of
    variants, an Enum class included) the table must cover it exactly.
    """

    def __init__(
        self,
        productions: Mapping[Variant, Symbol | Iterable[Symbol]],
        *,
        alphabet: Iterable[Variant] | None = None,
    ) -> None:
        table: dict[Variant, tuple[Symbol, ...]] = {}
        for variant, production in productions.items():
            table[variant] = as_generation(production, f"production for {variant!r}")
        self._table = table

        if alphabet is not None:
            members = list(alphabet)
            missing = [v for v in members if v not in table]
            if missing:
                raise UnknownVariantError(
                    f"no production for {missing!r}; declare terminal variants "
                    "with an empty production"
                )
            known = set(members)
            extra = [v for v in table if v not in known]
            if extra:
                raise UnknownVariantError(f"variants {extra!r} are not in the alphabet")

        for variant, production in table.items():
            self.check_symbols(production, f"production for {variant!r}")

    @classmethod
    def from_function(
        cls,
        rule: Callable[[Variant], Symbol | Iterable[Symbol]],
        alphabet: Iterable[Variant],
    ) -> RuleTable:
        members = list(alphabet)
        return cls({v: rule(v) for v in members}, alphabet=members)

    @property
    def variants(self) -> tuple[Variant, ...]:
        return tuple(self._table)

    def __contains__(self, variant: object) -> bool:
        return variant in self._table

    def __len__(self) -> int:
        return len(self._table)

    def production(self, variant: Variant) -> tuple[Symbol, ...]:
        try:
            return self._table[variant]
        except KeyError:
            raise UnknownVariantError(
                f"no production for variant {variant!r}"
            ) from None

    def check_symbols(self, symbols: Iterable[Symbol], path: str = "axiom") -> None:
        for i, sym in enumerate(symbols):
            if isinstance(sym, Variable) and sym.variant not in self._table:
                raise UnknownVariantError(
                    f"{path}[{i}] uses variant {sym.variant!r} with no production"
                )


def rewrite(state: Iterable[Symbol], rules: RuleTable) -> tuple[Symbol, ...]:
    """Produce the next generation.

    Constants are copied unchanged; every variable is replaced by its
    production, and its own actions are discarded.
    """
    out: list[Symbol] = []
    for sym in state:
        if isinstance(sym, Constant):
            out.append(sym)
        else:
            out.extend(rules.production(sym.variant))
    return tuple(out)


def next_size(state: Iterable[Symbol], rules: RuleTable) -> int:
    """Symbol count of the next generation, without building it."""
    total = 0
    for sym in state:
        if isinstance(sym, Constant):
            total += 1
        else:
            total += len(rules.production(sym.variant))
    return total


def _checked_rewrite(
    state: tuple[Symbol, ...], rules: RuleTable, generation: int, max_symbols: int
) -> tuple[Symbol, ...]:
    size = next_size(state, rules)
    if size > max_symbols:
        raise SymbolLimitError(generation, size, max_symbols)
    out = rewrite(state, rules)
    logger.debug("generation %d: %d symbols", generation, len(out))
    return out


def expand(
    axiom: Symbol | Iterable[Symbol],
    rules: RuleTable,
    generations: int,
    *,
    max_symbols: int = DEFAULT_MAX_SYMBOLS,
) -> tuple[Symbol, ...]:
    """Apply `rewrite` exactly `generations` times, starting from the axiom."""
    _require(generations >= 0, "generations must be >= 0")
    _require(max_symbols > 0, "max_symbols must be > 0")

    state = as_generation(axiom)
    rules.check_symbols(state)
    for gen in range(1, generations + 1):
        state = _checked_rewrite(state, rules, gen, max_symbols)
    return state


def _iter_actions(symbols: Iterable[Symbol]) -> Iterator[tuple[int, int, Action]]:
    for i, sym in enumerate(symbols):
        for j, action in enumerate(sym.actions):
            yield i, j, action


def count_actions(symbols: Iterable[Symbol]) -> Counter[str]:
    return Counter(type(action).__name__ for _, _, action in _iter_actions(symbols))


def first_underflow(symbols: Iterable[Symbol]) -> int | None:
    """Index of the first symbol whose Pop finds an empty stack, if any."""
    depth = 0
    for i, _, action in _iter_actions(symbols):
        if isinstance(action, Push):
            depth += 1
        elif isinstance(action, Pop):
            depth -= 1
            if depth < 0:
                return i
    return None


# -------------------------
# Color resolver
# -------------------------


def resolve_color(
    cursor_color: Color, fill: FillMode, background: Color | None = None
) -> Color:
    """Concrete color for a draw action.

    `Background` uses the configured background color; with none configured
    it falls back to the cursor color, matching `Inherit`.
    """
    if isinstance(fill, Explicit):
        return fill.color
    if isinstance(fill, Background) and background is not None:
        return background
    return cursor_color


# -------------------------
# Turtle machine
# -------------------------


class Turtle:
    """Cursor plus an explicit stack of cursor snapshots.

    Cursors are immutable, so a pushed snapshot can never be altered by later
    moves and a pop restores position, heading and color together.
    """

    def __init__(
        self,
        start: Cursor,
        *,
        background: Color | None = None,
        circle_radius: float = DEFAULT_CIRCLE_RADIUS,
    ) -> None:
        self.cursor = start
        self.stack: list[Cursor] = []
        self.background = background
        self.circle_radius = circle_radius

    def step(
        self, symbol_index: int, action_index: int, action: Action
    ) -> Primitive | None:
        cur = self.cursor

        if isinstance(action, Rotate):
            self.cursor = replace(cur, heading=cur.heading + action.angle)
            return None

        if isinstance(action, DrawLine):
            x, y = cur.position
            end = (
                x + math.cos(cur.heading) * action.length,
                y + math.sin(cur.heading) * action.length,
            )
            color = resolve_color(cur.color, action.fill, self.background)
            self.cursor = Cursor(end, cur.heading, color)
            return Line(cur.position, end, color)

        if isinstance(action, DrawCircle):
            color = resolve_color(cur.color, action.fill, self.background)
            self.cursor = replace(cur, color=color)
            return Circle(cur.position, self.circle_radius, color)

        if isinstance(action, Push):
            self.stack.append(cur)
            return None

        if isinstance(action, Pop):
            if not self.stack:
                raise StackUnderflowError(symbol_index, action_index)
            self.cursor = self.stack.pop()
            return None

        raise ConfigError(
            f"unknown action {action!r} at symbol {symbol_index} "
            f"(action {action_index})"
        )


# -------------------------
# Bounding-box pass
# -------------------------


def compute_bounds(
    symbols: Iterable[Symbol],
    *,
    start: Cursor | None = None,
    include_circles: bool = False,
    circle_radius: float = DEFAULT_CIRCLE_RADIUS,
) -> Bounds:
    """Replay the actions to find the spatial extent of the drawing.

    Min/max start at the start position and follow every position change.
    Circles only count when `include_circles` is set, in which case each one
    grows the bounds by its radius.
    """
    if start is None:
        start = Cursor(ORIGIN, DEFAULT_HEADING, BLACK)
    turtle = Turtle(start, circle_radius=circle_radius)

    min_x = max_x = start.position[0]
    min_y = max_y = start.position[1]

    for i, j, action in _iter_actions(symbols):
        before = turtle.cursor.position
        try:
            prim = turtle.step(i, j, action)
        except StackUnderflowError:
            raise StackUnderflowError(
                i, j, bounds=Bounds(min_x, min_y, max_x, max_y)
            ) from None

        if include_circles and isinstance(prim, Circle):
            cx, cy = prim.center
            min_x = min(min_x, cx - prim.radius)
            max_x = max(max_x, cx + prim.radius)
            min_y = min(min_y, cy - prim.radius)
            max_y = max(max_y, cy + prim.radius)
            continue

        x, y = turtle.cursor.position
        if (x, y) == before:
            continue
        if x < min_x:
            min_x = x
        if x > max_x:
            max_x = x
        if y < min_y:
            min_y = y
        if y > max_y:
            max_y = y

    return Bounds(min_x, min_y, max_x, max_y)


def compute_extent(symbols: Iterable[Symbol], **kwargs: Any) -> tuple[float, float]:
    return compute_bounds(symbols, **kwargs).extent


# -------------------------
# Turtle interpreter
# -------------------------


def centered_start(
    bounds: Bounds,
    *,
    origin: Point = ORIGIN,
    heading: float = DEFAULT_HEADING,
    color: Color = BLACK,
) -> Cursor:
    """Initial cursor that puts the center of `bounds` on `origin`.

    `bounds` must have been computed from a cursor starting at (0, 0).
    """
    cx, cy = bounds.center
    return Cursor((origin[0] - cx, origin[1] - cy), heading, color)


def interpret(
    symbols: Iterable[Symbol],
    *,
    start: Cursor | None = None,
    background: Color | None = None,
    circle_radius: float = DEFAULT_CIRCLE_RADIUS,
) -> list[Primitive]:
    """Walk every action of every symbol in order and emit primitives.

    Constants and variables are interpreted identically.
    """
    if start is None:
        start = Cursor(ORIGIN, DEFAULT_HEADING, BLACK)
    turtle = Turtle(start, background=background, circle_radius=circle_radius)

    out: list[Primitive] = []
    for i, j, action in _iter_actions(symbols):
        try:
            prim = turtle.step(i, j, action)
        except StackUnderflowError:
            raise StackUnderflowError(i, j, primitives=tuple(out)) from None
        if prim is not None:
            out.append(prim)

    logger.debug(
        "interpreted %d primitives, %d snapshots left on stack",
        len(out),
        len(turtle.stack),
    )
    return out


# -------------------------
# Generation state
# -------------------------


@dataclass(frozen=True)
class TurtleSettings:
    heading: float = DEFAULT_HEADING
    color: Color = BLACK
    background: Color | None = None
    circle_radius: float = DEFAULT_CIRCLE_RADIUS
    include_circles: bool = False


class LSystem:
    """Current generation of an L-system plus its cached bounds.

    The bounds are recomputed every time the symbol sequence changes. When a
    generation pops an empty stack, the bounds seen up to that point are kept
    and the error is recorded in `fault`.
    """

    def __init__(
        self,
        axiom: Symbol | Iterable[Symbol],
        rules: RuleTable,
        *,
        turtle: TurtleSettings | None = None,
        max_symbols: int = DEFAULT_MAX_SYMBOLS,
    ) -> None:
        _require(max_symbols > 0, "max_symbols must be > 0")
        self.axiom = as_generation(axiom)
        rules.check_symbols(self.axiom)
        self.rules = rules
        self.turtle = turtle or TurtleSettings()
        self.max_symbols = max_symbols

        self.symbols: tuple[Symbol, ...] = ()
        self.generation = 0
        self.bounds = Bounds(0.0, 0.0, 0.0, 0.0)
        self.fault: StackUnderflowError | None = None
        self.reset()

    def reset(self) -> None:
        self._update(self.axiom, 0)

    def step(self) -> None:
        gen = self.generation + 1
        symbols = _checked_rewrite(self.symbols, self.rules, gen, self.max_symbols)
        self._update(symbols, gen)

    def advance(self, generations: int) -> None:
        _require(generations >= 0, "generations must be >= 0")
        for _ in range(generations):
            self.step()

    @property
    def extent(self) -> tuple[float, float]:
        return self.bounds.extent

    def _update(self, symbols: tuple[Symbol, ...], generation: int) -> None:
        self.symbols = symbols
        self.generation = generation
        self.fault = None
        try:
            self.bounds = compute_bounds(
                symbols,
                start=Cursor(ORIGIN, self.turtle.heading, self.turtle.color),
                include_circles=self.turtle.include_circles,
                circle_radius=self.turtle.circle_radius,
            )
        except StackUnderflowError as e:
            logger.warning("generation %d is unbalanced: %s", generation, e)
            self.fault = e
            self.bounds = e.bounds or Bounds(0.0, 0.0, 0.0, 0.0)

    def start_cursor(self, origin: Point = ORIGIN) -> Cursor:
        return centered_start(
            self.bounds,
            origin=origin,
            heading=self.turtle.heading,
            color=self.turtle.color,
        )

    def draw(self, origin: Point = ORIGIN) -> list[Primitive]:
        return interpret(
            self.symbols,
            start=self.start_cursor(origin),
            background=self.turtle.background,
            circle_radius=self.turtle.circle_radius,
        )


# -------------------------
# Presets
# -------------------------


@dataclass(frozen=True)
class Grammar:
    name: str
    axiom: tuple[Symbol, ...]
    rules: RuleTable
    generations: int


class TreeVariant(Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    G = "G"
    H = "H"


def tree() -> Grammar:
    A, B = TreeVariant.A, TreeVariant.B
    quarter = math.pi * 0.25
    productions: dict[Variant, list[Symbol]] = {
        A: [
            Variable(B, [DrawLine(10.0, Explicit(0.6, 0.2, 0.8))]),
            Constant([PUSH, Rotate(quarter)]),
            Variable(A, [DrawLine(10.0, Explicit(1.0, 0.2, 0.5)), DrawCircle(INHERIT)]),
            Constant([POP, Rotate(-quarter)]),
            Variable(
                A,
                [
                    DrawLine(10.0, Explicit(0.1, 0.7, 0.7)),
                    DrawCircle(Explicit(0.0, 0.8, 0.2)),
                ],
            ),
        ],
        B: [
            Variable(B, [DrawLine(10.0, Explicit(0.3, 0.5, 0.8))]),
            Variable(B, [DrawLine(10.0, INHERIT)]),
        ],
        # terminals
        TreeVariant.C: [],
        TreeVariant.D: [],
        TreeVariant.E: [],
        TreeVariant.F: [],
        TreeVariant.G: [],
        TreeVariant.H: [],
    }
    return Grammar(
        name="tree",
        axiom=(Variable(A, [DrawLine(10.0, INHERIT)]),),
        rules=RuleTable(productions, alphabet=TreeVariant),
        generations=6,
    )


def _uncolored(production: Iterable[Symbol]) -> list[Symbol]:
    out: list[Symbol] = []
    for sym in production:
        actions = [
            DrawLine(a.length) if isinstance(a, DrawLine) else a
            for a in sym.actions
            if not isinstance(a, DrawCircle)
        ]
        if isinstance(sym, Variable):
            out.append(Variable(sym.variant, actions))
        else:
            out.append(Constant(actions))
    return out


def plain_tree() -> Grammar:
    colored = tree()
    return Grammar(
        name="plain-tree",
        axiom=colored.axiom,
        rules=RuleTable.from_function(
            lambda v: _uncolored(colored.rules.production(v)), TreeVariant
        ),
        generations=colored.generations,
    )


class KochVariant(Enum):
    F = "F"


def koch() -> Grammar:
    F = KochVariant.F
    turn = math.pi / 3
    segment = Variable(F, [DrawLine(10.0)])
    left = Constant([Rotate(turn)])
    right = Constant([Rotate(-turn)])
    return Grammar(
        name="koch",
        axiom=(segment,),
        rules=RuleTable(
            {F: [segment, left, segment, right, right, segment, left, segment]},
            alphabet=KochVariant,
        ),
        generations=3,
    )


PRESETS: dict[str, Callable[[], Grammar]] = {
    "tree": tree,
    "plain-tree": plain_tree,
    "koch": koch,
}


# -------------------------
# Random grammar generator
# -------------------------


def _random_balanced_word(
    rng: random.Random, length: int, *, p_branch: float = 0.20
) -> str:
    """Generate a random production word with balanced brackets.

    Produces tokens from: F, +, -, [, ]
    Brackets are balanced and the depth never goes negative.
    """
    word: list[str] = []
    depth = 0

    for _ in range(length):
        r = rng.random()
        if r < p_branch and depth < 3:
            word.append("[")
            depth += 1
            continue
        # At depth 0 the p_branch * 2 mass for ']' falls through to the
        # forward/turn choices below.
        if r < p_branch * 2 and depth > 0:
            word.append("]")
            depth -= 1
            continue

        t = rng.random()
        if t < 0.55:
            word.append("F")
        elif t < 0.775:
            word.append("+")
        else:
            word.append("-")

    word.extend("]" * depth)

    if "F" not in word:
        word.append("F")

    return "".join(word)


def generate_random_grammar(seed: int | None = None) -> Grammar:
    rng = random.Random(seed)

    angle = math.radians(rng.choice([15, 20, 22.5, 25, 30, 36, 45, 60, 90]))
    generations = rng.randint(3, 5)
    step = float(rng.choice([5, 8, 10, 12, 15]))
    palette = [
        Explicit(round(rng.random(), 3), round(rng.random(), 3), round(rng.random(), 3))
        for _ in range(3)
    ]

    def fill() -> FillMode:
        return INHERIT if rng.random() < 0.6 else rng.choice(palette)

    def symbol(token: str) -> Symbol:
        if token == "F":
            return Variable("F", [DrawLine(step, fill())])
        if token == "X":
            return Variable("X", [DrawCircle(fill())] if rng.random() < 0.3 else [])
        if token == "+":
            return Constant([Rotate(angle)])
        if token == "-":
            return Constant([Rotate(-angle)])
        if token == "[":
            return Constant([PUSH])
        return Constant([POP])

    use_x = rng.random() < 0.5

    if use_x:
        rule_f = _random_balanced_word(rng, rng.randint(8, 18))
        x_parts = []
        for _ in range(rng.randint(3, 6)):
            roll = rng.random()
            if roll < 0.45:
                x_parts.append("F")
            elif roll < 0.65:
                x_parts.append("X")
            elif roll < 0.80:
                x_parts.append("+")
            elif roll < 0.95:
                x_parts.append("-")
            else:
                x_parts.append("[X]")
        if "F" not in x_parts:
            x_parts.append("F")
        words = {"F": rule_f, "X": "".join(x_parts)}
        axiom = symbol("X")
    else:
        words = {"F": _random_balanced_word(rng, rng.randint(10, 22))}
        axiom = symbol("F")

    rules = RuleTable(
        {variant: [symbol(t) for t in word] for variant, word in words.items()},
        alphabet=words,
    )
    return Grammar(name="random", axiom=(axiom,), rules=rules, generations=generations)


# -------------------------
# SVG writing
# -------------------------


@dataclass(frozen=True)
class SvgOptions:
    margin: float = 10.0
    precision: int = 3
    flip_y: bool = True
    width: float | None = None
    height: float | None = None
    stroke_width: float = 1.0
    background: str | None = "#fff"


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def primitive_bounds(primitives: Iterable[Primitive]) -> Bounds:
    min_x = min_y = math.inf
    max_x = max_y = -math.inf
    for prim in primitives:
        if isinstance(prim, Line):
            points = [prim.start, prim.end]
        else:
            cx, cy = prim.center
            r = prim.radius
            points = [(cx - r, cy - r), (cx + r, cy + r)]
        for x, y in points:
            min_x = min(min_x, x)
            max_x = max(max_x, x)
            min_y = min(min_y, y)
            max_y = max(max_y, y)
    _require(min_x <= max_x, "No drawable geometry produced.")
    return Bounds(min_x, min_y, max_x, max_y)


def _fmt(x: float, precision: int) -> str:
    # Normalise -0.0 so it never produces "-0" in SVG output.
    if not x:
        x = 0.0
    s = f"{x:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s == "-0":
        s = "0"
    return s or "0"


def _hex(color: Color) -> str:
    r, g, b = (max(0, min(255, round(c * 255))) for c in color)
    return f"#{r:02x}{g:02x}{b:02x}"


def write_svg(
    primitives: list[Primitive],
    *,
    out_path: str,
    options: SvgOptions = SvgOptions(),
    title: str | None = None,
) -> None:
    bounds = primitive_bounds(primitives)
    precision = options.precision
    margin = options.margin

    minx = bounds.min_x - margin
    miny = bounds.min_y - margin
    maxx = bounds.max_x + margin
    maxy = bounds.max_y + margin
    w = maxx - minx
    h = maxy - miny
    _require(
        w > 0 and h > 0,
        "Degenerate bounds after margin (width or height is zero). "
        "Set svg.margin > 0 to render collinear or single-point geometry.",
    )

    def f(v: float) -> str:
        return _fmt(v, precision)

    svg_w_attr = f' width="{f(options.width)}"' if options.width else ""
    svg_h_attr = f' height="{f(options.height)}"' if options.height else ""
    view_box = f"{f(minx)} {f(miny)} {f(w)} {f(h)}"

    lines: list[str] = []
    lines.append('<?xml version="1.0" encoding="UTF-8"?>')
    lines.append(
        "<svg xmlns=\"http://www.w3.org/2000/svg\" version=\"1.1\" "
        f"viewBox=\"{view_box}\"{svg_w_attr}{svg_h_attr}>"
    )

    if title:
        safe_title = (
            title.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        )
        lines.append(f"  <title>{safe_title}</title>")

    if options.background and options.background.lower() != "none":
        lines.append(
            f'  <rect x="{f(minx)}" y="{f(miny)}" width="{f(w)}" height="{f(h)}" '
            f'fill="{options.background}" />'
        )

    group_attrs = (
        f'stroke-width="{f(options.stroke_width)}" stroke-linecap="round"'
    )
    if options.flip_y:
        # Turtle math is y-up; flip about y = (miny + maxy).
        lines.append(
            f'  <g transform="translate(0,{f(miny + maxy)}) scale(1,-1)" {group_attrs}>'
        )
    else:
        lines.append(f"  <g {group_attrs}>")

    # Emission order is paint order.
    for prim in primitives:
        if isinstance(prim, Line):
            (x1, y1), (x2, y2) = prim.start, prim.end
            lines.append(
                f'    <line x1="{f(x1)}" y1="{f(y1)}" x2="{f(x2)}" y2="{f(y2)}" '
                f'stroke="{_hex(prim.color)}" />'
            )
        else:
            cx, cy = prim.center
            lines.append(
                f'    <circle cx="{f(cx)}" cy="{f(cy)}" r="{f(prim.radius)}" '
                f'fill="{_hex(prim.color)}" />'
            )

    lines.append("  </g>")
    lines.append("</svg>")

    _ensure_parent_dir(out_path)
    with open(out_path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines))
        fh.write("\n")


# -------------------------
# Config parsing
# -------------------------


@dataclass(frozen=True)
class RunConfig:
    name: str
    grammar: str
    seed: int | None
    generations: int | None
    max_symbols: int
    origin: Point
    turtle: TurtleSettings = field(default_factory=TurtleSettings)
    svg: SvgOptions = field(default_factory=SvgOptions)


def parse_config(obj: dict[str, Any]) -> RunConfig:
    obj = _as_dict(obj, "root")

    grammar = _as_str(obj.get("grammar", "tree"), "grammar")
    _require(
        grammar == "random" or grammar in PRESETS,
        f"grammar must be one of {sorted(PRESETS) + ['random']}, got {grammar!r}",
    )
    name = _as_str(obj.get("name", grammar), "name")

    seed = obj.get("seed")
    if seed is not None:
        seed = _as_int(seed, "seed")

    generations = obj.get("generations")
    if generations is not None:
        generations = _as_int(generations, "generations")
        _require(generations >= 0, "generations must be >= 0")

    max_symbols = _as_int(obj.get("max_symbols", DEFAULT_MAX_SYMBOLS), "max_symbols")
    _require(max_symbols > 0, "max_symbols must be > 0")

    turtle = _as_dict(obj.get("turtle", {}), "turtle")
    heading = _as_float(turtle.get("heading", 90), "turtle.heading")
    color = _as_color(turtle.get("color", list(BLACK)), "turtle.color")
    background = turtle.get("background")
    if background is not None:
        background = _as_color(background, "turtle.background")
    circle_radius = _as_float(
        turtle.get("circle_radius", DEFAULT_CIRCLE_RADIUS), "turtle.circle_radius"
    )
    _require(circle_radius > 0, "turtle.circle_radius must be > 0")
    include_circles = _as_bool(
        turtle.get("include_circles", False), "turtle.include_circles"
    )

    origin_obj = _as_dict(turtle.get("origin", {}), "turtle.origin")
    origin = (
        _as_float(origin_obj.get("x", 0), "turtle.origin.x"),
        _as_float(origin_obj.get("y", 0), "turtle.origin.y"),
    )

    svg = _as_dict(obj.get("svg", {}), "svg")
    margin = _as_float(svg.get("margin", 10), "svg.margin")
    precision = _as_int(svg.get("precision", 3), "svg.precision")
    _require(0 <= precision <= 10, "svg.precision must be between 0 and 10")
    flip_y = _as_bool(svg.get("flip_y", True), "svg.flip_y")

    width = svg.get("width")
    height = svg.get("height")
    if width is not None:
        width = _as_float(width, "svg.width")
        _require(width > 0, "svg.width must be > 0")
    if height is not None:
        height = _as_float(height, "svg.height")
        _require(height > 0, "svg.height must be > 0")

    stroke_width = _as_float(svg.get("stroke_width", 1.0), "svg.stroke_width")
    _require(stroke_width > 0, "svg.stroke_width must be > 0")

    svg_background = svg.get("background", "#fff")
    if svg_background is not None:
        svg_background = _as_str(svg_background, "svg.background")

    return RunConfig(
        name=name,
        grammar=grammar,
        seed=seed,
        generations=generations,
        max_symbols=max_symbols,
        origin=origin,
        turtle=TurtleSettings(
            heading=math.radians(heading),
            color=color,
            background=background,
            circle_radius=circle_radius,
            include_circles=include_circles,
        ),
        svg=SvgOptions(
            margin=margin,
            precision=precision,
            flip_y=flip_y,
            width=width,
            height=height,
            stroke_width=stroke_width,
            background=svg_background,
        ),
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


def build_grammar(cfg: RunConfig) -> Grammar:
    if cfg.grammar == "random":
        return generate_random_grammar(cfg.seed)
    return PRESETS[cfg.grammar]()


def build_system(cfg: RunConfig, generations: int | None = None) -> LSystem:
    """Create the configured system and advance it to its generation count.

    Precedence for the count: explicit argument, then the config file, then
    the grammar's own default.
    """
    grammar = build_grammar(cfg)
    if generations is None:
        generations = cfg.generations
    if generations is None:
        generations = grammar.generations

    system = LSystem(
        grammar.axiom, grammar.rules, turtle=cfg.turtle, max_symbols=cfg.max_symbols
    )
    system.advance(generations)
    return system


def render_primitives(
    system: LSystem, *, origin: Point = ORIGIN, partial: bool = False
) -> list[Primitive]:
    try:
        return system.draw(origin)
    except StackUnderflowError as e:
        if not partial:
            raise
        logger.warning(
            "%s; keeping %d primitives drawn before it", e, len(e.primitives)
        )
        return list(e.primitives)


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
RUN SETTINGS JSON

Grammars are built in; the settings file picks one and controls how it is
expanded, interpreted and written out.

Top-level keys

  grammar: string (default "tree")
      One of the built-in presets (see `presets`) or "random".

  name: string (optional)
      Title written into the SVG <title>. Defaults to the grammar name.

  seed: integer (optional)
      Seed for the "random" grammar.

  generations: integer >= 0 (optional)
      Number of rewriting steps. Defaults to the grammar's own value.

  max_symbols: integer > 0 (default 1000000)
      Ceiling on the symbol count of any generation. Rewriting stops with an
      error before a larger generation is built.

  turtle: object (optional)

    turtle.heading: number degrees (default 90)
        Initial heading; 0 = +X, 90 = +Y.

    turtle.color: [r, g, b] in 0..1 (default [0, 0, 0])
        Initial cursor color, picked up by inheriting draw actions.

    turtle.background: [r, g, b] or null (default null)
        Color for background-filled draw actions. When null those actions
        inherit the cursor color.

    turtle.circle_radius: number > 0 (default 5)

    turtle.include_circles: boolean (default false)
        Whether circles extend the bounding box used for centering.

    turtle.origin: {"x": number, "y": number} (default 0, 0)
        Point the drawing is centered on.

  svg: object (optional)

    svg.margin: number (default 10)
    svg.precision: integer 0..10 (default 3)
    svg.flip_y: boolean (default true)
    svg.width / svg.height: number (optional)
    svg.stroke_width: number > 0 (default 1)
    svg.background: string color or null (default "#fff")

Example

    {
      "grammar": "tree",
      "generations": 6,
      "turtle": {"heading": 90, "color": [0, 0, 0]},
      "svg": {"margin": 10, "stroke_width": 1.5}
    }
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lsystem-art",
        description="Deterministic L-system line-art renderer that outputs SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Log each rewrite step."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser(
        "render",
        help="Render a run-settings JSON file to an SVG file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("config", help="Path to the run-settings JSON.")
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument(
        "--generations",
        type=int,
        default=None,
        help="Override the number of rewriting steps.",
    )
    pr.add_argument(
        "--partial",
        action="store_true",
        help=(
            "On a pop with an empty stack, write the primitives drawn before "
            "it instead of failing."
        ),
    )

    pv = sub.add_parser(
        "validate",
        help="Expand a run-settings JSON and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("config", help="Path to the run-settings JSON.")
    pv.add_argument(
        "--generations",
        type=int,
        default=None,
        help="Override the number of rewriting steps.",
    )

    sub.add_parser("presets", help="List the built-in grammars.")

    return p


# -------------------------
# Commands
# -------------------------


def cmd_render(
    config_path: str, output_path: str, generations: int | None, partial: bool
) -> None:
    cfg = parse_config(load_json(config_path))
    system = build_system(cfg, generations)
    primitives = render_primitives(system, origin=cfg.origin, partial=partial)
    write_svg(primitives, out_path=output_path, options=cfg.svg, title=cfg.name)


def cmd_validate(config_path: str, generations: int | None) -> None:
    cfg = parse_config(load_json(config_path))
    system = build_system(cfg, generations)
    counts = count_actions(system.symbols)
    width, height = system.extent

    print(f"name: {cfg.name}")
    print(f"grammar: {cfg.grammar}")
    print(f"generation: {system.generation}")
    print(f"symbols: {len(system.symbols)}")
    print(f"extent: {width:.3f} x {height:.3f}")
    print(f"push/pop: {counts['Push']}/{counts['Pop']}")

    if system.fault is not None:
        raise system.fault
    primitives = system.draw(cfg.origin)
    print(f"primitives: {len(primitives)}")
    if not primitives:
        raise ConfigError("Config produces no drawable geometry")


def cmd_presets() -> None:
    for name, factory in PRESETS.items():
        grammar = factory()
        print(
            f"{name}: {len(grammar.rules)} variants, "
            f"{grammar.generations} generations"
        )
    print("random: seeded, see `seed` in the settings file")


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.cmd == "render":
            cmd_render(args.config, args.output, args.generations, args.partial)
        elif args.cmd == "validate":
            cmd_validate(args.config, args.generations)
        elif args.cmd == "presets":
            cmd_presets()
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except SymbolLimitError as e:
        print(f"Limit error: {e}", file=sys.stderr)
        return 2
    except StackUnderflowError as e:
        print(f"Stack error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
