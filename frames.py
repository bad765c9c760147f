from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union, TYPE_CHECKING
import asyncio, itertools

if TYPE_CHECKING:
    from engine import Engine, Fact

# ====== Terms ======

Value = Union[str, int, float, bool, None, list, dict]

_var_ids = itertools.count(1)

class Var:
    """Pattern variable. Identity is the numeric id, so two syncs can both
    use a variable called ``user`` without colliding."""
    __slots__ = ("id", "name")
    def __init__(self, name: str = "_"):
        self.id = next(_var_ids)
        self.name = name
    def __eq__(self, other: object) -> bool:
        return isinstance(other, Var) and other.id == self.id
    def __hash__(self) -> int:
        return hash(("Var", self.id))
    def __repr__(self) -> str:
        return f"?{self.name}"

@dataclass(frozen=True)
class Literal:
    value: Any

class _Wildcard:
    def __repr__(self) -> str:
        return "ANY"

ANY = _Wildcard()
Term = Union[Var, Literal, _Wildcard]

def as_term(x: Any) -> Term:
    if isinstance(x, (Var, Literal, _Wildcard)):
        return x
    return Literal(x)

def fresh(*names: str) -> Tuple[Var, ...]:
    """Allocate extra variables inside a sync factory (``where`` scratch slots)."""
    return tuple(Var(n) for n in names)

# ====== Action references & patterns ======

@dataclass(frozen=True)
class ActionRef:
    concept: str
    action: str
    @property
    def key(self) -> Tuple[str, str]:
        return (self.concept, self.action)
    def __repr__(self) -> str:
        return f"{self.concept}.{self.action}"

class ConceptRef:
    """``Feedback = ConceptRef("Feedback")``; ``Feedback.submitFeedback`` is an ActionRef."""
    def __init__(self, name: str):
        self.name = name
    def __getattr__(self, action: str) -> ActionRef:
        if action.startswith("__"):
            raise AttributeError(action)
        return ActionRef(self.name, action)
    def __repr__(self) -> str:
        return f"ConceptRef({self.name!r})"

@dataclass(frozen=True)
class Pattern:
    action: ActionRef
    input: Dict[str, Term] = field(default_factory=dict)
    output: Dict[str, Term] = field(default_factory=dict)
    def variables(self) -> List[Var]:
        terms = list(self.input.values()) + list(self.output.values())
        return [t for t in terms if isinstance(t, Var)]
    def __repr__(self) -> str:
        return f"[{self.action!r}, {self.input!r}, {self.output!r}]"

def actions(*items: Sequence[Any]) -> List[Pattern]:
    """Build patterns from ``(ref, input[, output])`` tuples.

    Used for both ``when`` (input and output are matched) and ``then``
    (only the input template is used)."""
    out: List[Pattern] = []
    for item in items:
        if len(item) not in (2, 3):
            raise ValueError(f"pattern must be (action, input[, output]), got {item!r}")
        ref = item[0]
        if not isinstance(ref, ActionRef):
            raise TypeError(f"first element of a pattern must be an ActionRef, got {ref!r}")
        inp = {k: as_term(v) for k, v in dict(item[1]).items()}
        outp = {k: as_term(v) for k, v in dict(item[2]).items()} if len(item) == 3 else {}
        out.append(Pattern(ref, inp, outp))
    return out

# ====== Frames ======

class Frame(Mapping):
    """Immutable binding of Vars to values plus the ids of the facts it was matched from."""
    __slots__ = ("_vars", "facts")
    def __init__(self, bindings: Optional[Mapping[Var, Any]] = None, facts: Iterable[str] = ()):
        self._vars: Dict[Var, Any] = dict(bindings or {})
        self.facts: Tuple[str, ...] = tuple(facts)
    def __getitem__(self, var: Var) -> Any:
        return self._vars[var]
    def __iter__(self) -> Iterator[Var]:
        return iter(self._vars)
    def __len__(self) -> int:
        return len(self._vars)
    def bind(self, var: Var, value: Any) -> Optional["Frame"]:
        # First bind wins; a conflicting rebind kills the frame.
        if var in self._vars:
            return self if self._vars[var] == value else None
        return Frame({**self._vars, var: value}, self.facts)
    def bind_all(self, pairs: Mapping[Var, Any]) -> Optional["Frame"]:
        fr: Optional[Frame] = self
        for var, value in pairs.items():
            fr = fr.bind(var, value)
            if fr is None:
                return None
        return fr
    def with_fact(self, fact_id: str) -> "Frame":
        return Frame(self._vars, self.facts + (fact_id,))
    def resolve(self, t: Any) -> Any:
        t = as_term(t)
        if isinstance(t, Var):
            return self._vars[t]
        if isinstance(t, Literal):
            return t.value
        raise KeyError(t)
    def extends(self, other: "Frame") -> bool:
        """True when every binding of ``other`` is present unchanged here."""
        for var, value in other._vars.items():
            if var not in self._vars or self._vars[var] != value:
                return False
        return True
    def named(self) -> Dict[str, Any]:
        return {v.name: val for v, val in self._vars.items()}
    def __repr__(self) -> str:
        return f"Frame({self.named()!r})"

class Frames(List[Frame]):
    """Ordered frame set handed to ``where`` clauses."""
    def __init__(self, frames: Iterable[Frame] = (), engine: Optional["Engine"] = None):
        super().__init__(frames)
        self.engine = engine
    def _derive(self, frames: Iterable[Frame]) -> "Frames":
        return Frames(frames, engine=self.engine)
    def filter(self, pred: Callable[[Frame], bool]) -> "Frames":
        return self._derive(f for f in self if pred(f))
    def map(self, fn: Callable[[Frame], Optional[Frame]]) -> "Frames":
        return self._derive(f2 for f2 in (fn(f) for f in self) if f2 is not None)
    def values(self, var: Var) -> List[Any]:
        return [f[var] for f in self if var in f]
    def collect(self, key: Var, value: Var) -> Dict[Any, List[Any]]:
        """Group ``value`` bindings by ``key`` in frame order."""
        grouped: Dict[Any, List[Any]] = {}
        for f in self:
            if key in f and value in f:
                grouped.setdefault(f[key], []).append(f[value])
        return grouped
    async def query(self, ref: ActionRef, input: Mapping[str, Any], output: Mapping[str, Var]) -> "Frames":
        """Semi-join against concept state: one extended frame per returned record.

        Frames with an unbound input variable, or whose query returns nothing,
        are dropped. Output fields missing from a record stay unbound."""
        if self.engine is None:
            raise RuntimeError("Frames.query needs an engine")
        engine = self.engine
        async def one(frame: Frame) -> List[Frame]:
            try:
                args = {k: frame.resolve(t) for k, t in input.items()}
            except KeyError:
                return []
            records = await engine.query(ref.concept, ref.action, **args)
            extended: List[Frame] = []
            for rec in records:
                fr: Optional[Frame] = frame
                for fname, var in output.items():
                    if fname in rec:
                        fr = fr.bind(var, rec[fname])
                        if fr is None:
                            break
                if fr is not None:
                    extended.append(fr)
            return extended
        groups = await asyncio.gather(*(one(f) for f in self))
        return self._derive(f for group in groups for f in group)

# ====== Matcher ======

def match_pattern(pattern: Pattern, fact: "Fact", frame: Frame) -> Optional[Frame]:
    if pattern.action.key != (fact.concept, fact.action) or fact.output is None:
        return None
    for terms, record in ((pattern.input, fact.input), (pattern.output, fact.output)):
        for fname, t in terms.items():
            if t is ANY:
                continue
            if fname not in record:
                return None
            value = record[fname]
            if isinstance(t, Literal):
                if value != t.value:
                    return None
                continue
            frame = frame.bind(t, value)
            if frame is None:
                return None
    return frame.with_fact(fact.id)

def index_facts(facts: Iterable["Fact"]) -> Dict[Tuple[str, str], List["Fact"]]:
    index: Dict[Tuple[str, str], List["Fact"]] = {}
    for f in facts:
        index.setdefault((f.concept, f.action), []).append(f)
    return index

def match_when(patterns: Sequence[Pattern], facts: Sequence["Fact"], trigger: "Fact") -> List[Frame]:
    """Join ``patterns`` left to right over ``facts`` (log order).

    Every produced frame uses ``trigger`` in some slot and no fact twice."""
    index = index_facts(facts)
    partial: List[Tuple[Frame, bool]] = [(Frame(), False)]
    for pattern in patterns:
        candidates = index.get(pattern.action.key, [])
        nxt: List[Tuple[Frame, bool]] = []
        for frame, used in partial:
            for fact in candidates:
                if fact.id in frame.facts:
                    continue
                ext = match_pattern(pattern, fact, frame)
                if ext is not None:
                    nxt.append((ext, used or fact.id == trigger.id))
        partial = nxt
        if not partial:
            return []
    return [frame for frame, used in partial if used]
