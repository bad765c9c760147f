from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union
from uuid import uuid4
import inspect, itertools, json, logging, threading, time

from frames import ANY, Frame, Frames, Literal, Pattern, Var, match_when

logger = logging.getLogger(__name__)

# ====== Errors ======

class EngineError(Exception):
    pass

class UnknownActionError(EngineError, AttributeError):
    pass

class SyncEvaluationError(EngineError):
    """One or more syncs failed while evaluating ``where`` for ``fact``."""
    def __init__(self, fact: "Fact", failures: Dict[str, BaseException]):
        self.fact = fact
        self.failures = failures
        names = ", ".join(failures)
        super().__init__(f"sync evaluation failed for {fact.concept}.{fact.action} in {names}")

class CascadeLimitError(EngineError):
    pass

# ====== Engine ======

class Logging(IntEnum):
    OFF = 0
    TRACE = 1    # one line per action
    VERBOSE = 2  # plus matched syncs and frames

@dataclass(frozen=True)
class Fact:
    id: str
    seq: int
    concept: str
    action: str
    input: Dict[str, Any]
    output: Optional[Dict[str, Any]]
    flow: str
    t: float = field(default_factory=lambda: time.time())

class Concept:
    """Base for concepts. Public methods are actions, ``_``-prefixed methods are queries."""
    _reserved = frozenset({"perform", "query"})
    def __init__(self, name: str):
        self.name = name
    def _lookup(self, name: str) -> Callable[..., Any]:
        fn = getattr(self, name, None) if name not in self._reserved else None
        if fn is None or not callable(fn):
            raise UnknownActionError(f"{self.name}.{name} not found")
        return fn
    async def perform(self, action: str, input_map: Mapping[str, Any]) -> Dict[str, Any]:
        if action.startswith("_"):
            raise ValueError(f"{self.name}.{action} is a query, not an action")
        result = self._lookup(action)(**input_map)
        if inspect.isawaitable(result):
            result = await result
        return dict(result or {})
    async def query(self, qname: str, input_map: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if not qname.startswith("_"):
            raise ValueError("Query names must start with '_' to be pure")
        result = self._lookup(qname)(**input_map)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            return []
        if isinstance(result, Mapping):
            return [dict(result)]
        return [dict(r) for r in result]

WhereFn = Callable[[Frames], Union[Frames, List[Frame], Awaitable[Union[Frames, List[Frame]]]]]

@dataclass
class Sync:
    when: List[Pattern]
    then: List[Pattern]
    where: Optional[WhereFn] = None
    name: str = ""

SyncFactory = Callable[..., Sync]

def build_sync(name: str, spec: Union[Sync, SyncFactory]) -> Sync:
    """Call a sync factory with a fresh Var per parameter name."""
    if isinstance(spec, Sync):
        sync = spec
    else:
        params = inspect.signature(spec).parameters
        sync = spec(**{p: Var(p) for p in params})
        if not isinstance(sync, Sync):
            raise TypeError(f"sync factory {name} returned {type(sync).__name__}, expected Sync")
    if not sync.when:
        raise ValueError(f"sync {name} has an empty when clause")
    sync.name = name
    return sync

def _frame_key(frame: Frame) -> str:
    return json.dumps({str(v.id): frame[v] for v in frame}, sort_keys=True, default=str)

class Engine:
    def __init__(self, logging_level: Logging = Logging.OFF, max_passes: int = 100):
        self.concepts: Dict[str, Concept] = {}
        self.syncs: Dict[str, Sync] = {}
        self.facts: List[Fact] = []
        self.flow_log: Dict[str, List[Fact]] = {}
        self.logging = logging_level
        self.max_passes = max_passes
        self._by_action: Dict[Tuple[str, str], List[str]] = {}
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        # flow -> (sync, fact ids, bindings) already fired; dropped once the flow settles
        self._fired: Dict[str, Set[Tuple[str, Tuple[str, ...], str]]] = {}
        self._active: Dict[str, int] = {}
        self._started = False
    def register_concept(self, concept: Concept) -> None:
        self.concepts[concept.name] = concept
    def register(self, syncs: Mapping[str, Union[Sync, SyncFactory]]) -> None:
        if self._started:
            raise EngineError("syncs must be registered before the first action is invoked")
        for name, spec in syncs.items():
            self.syncs[name] = build_sync(name, spec)
        self._reindex()
    def _reindex(self) -> None:
        self._by_action = {}
        for name, sync in self.syncs.items():
            for key in dict.fromkeys(p.action.key for p in sync.when):
                self._by_action.setdefault(key, []).append(name)
    def start_flow(self) -> str:
        return str(uuid4())
    def _concept(self, concept: str) -> Concept:
        try:
            return self.concepts[concept]
        except KeyError:
            raise UnknownActionError(f"concept {concept} not registered") from None
    async def invoke(self, concept: str, action: str, input_map: Mapping[str, Any], *, flow: Optional[str] = None) -> Fact:
        """Run an action, record it, and drive every sync it triggers to quiescence."""
        fact = await self._perform(concept, action, input_map, flow or self.start_flow())
        await self._cascade(fact)
        return fact
    async def query(self, concept: str, qname: str, **kwargs: Any) -> List[Dict[str, Any]]:
        return await self._concept(concept).query(qname, kwargs)
    async def _perform(self, concept: str, action: str, input_map: Mapping[str, Any], flow: str) -> Fact:
        self._started = True
        inp = dict(input_map)
        output = await self._concept(concept).perform(action, inp)
        with self._lock:
            fact = Fact(id=str(uuid4()), seq=next(self._seq), concept=concept, action=action,
                        input=inp, output=output, flow=flow)
            self.facts.append(fact)
            self.flow_log.setdefault(flow, []).append(fact)
        if self.logging >= Logging.TRACE:
            logger.info("%s.%s %s => %s", concept, action, _fmt(inp), _fmt(output))
        return fact
    def _snapshot(self, fact: Fact) -> List[Fact]:
        with self._lock:
            return [f for f in self.flow_log.get(fact.flow, []) if f.seq <= fact.seq]
    async def _cascade(self, fact: Fact) -> None:
        """Fire syncs pass by pass until nothing new is produced.

        A failing ``where`` does not stop the cascade; failures are collected and
        raised together once the flow has settled.
        """
        flow = fact.flow
        with self._lock:
            self._active[flow] = self._active.get(flow, 0) + 1
            self._fired.setdefault(flow, set())
        failed: Optional[Fact] = None
        failures: Dict[str, BaseException] = {}
        try:
            pending = [fact]
            passes = 0
            while pending:
                passes += 1
                if passes > self.max_passes:
                    raise CascadeLimitError(f"cascade in flow {flow} did not settle after {self.max_passes} passes")
                produced: List[Fact] = []
                for f in pending:
                    out, errors = await self._fire(f)
                    produced.extend(out)
                    if errors and failed is None:
                        failed = f
                    for name, e in errors.items():
                        failures.setdefault(name, e)
                pending = produced
        finally:
            with self._lock:
                self._active[flow] -= 1
                if not self._active[flow]:
                    del self._active[flow]
                    self._fired.pop(flow, None)
        if failed is not None:
            raise SyncEvaluationError(failed, failures)
    async def _fire(self, fact: Fact) -> Tuple[List[Fact], Dict[str, BaseException]]:
        produced: List[Fact] = []
        failures: Dict[str, BaseException] = {}
        names = self._by_action.get((fact.concept, fact.action), [])
        if not names:
            return produced, failures
        snapshot = self._snapshot(fact)
        for name in names:
            sync = self.syncs[name]
            try:
                frames = await self._evaluate(sync, fact, snapshot)
            except Exception as e:
                logger.error("sync %s failed on %s.%s", name, fact.concept, fact.action, exc_info=True)
                failures[name] = e
                continue
            for calls in frames:
                for concept, action, params in calls:
                    produced.append(await self._perform(concept, action, params, fact.flow))
        return produced, failures
    async def _evaluate(self, sync: Sync, fact: Fact, snapshot: List[Fact]) -> List[List[Tuple[str, str, Dict[str, Any]]]]:
        matched = Frames(match_when(sync.when, snapshot, fact), engine=self)
        if not matched:
            return []
        if self.logging >= Logging.VERBOSE:
            logger.debug("sync %s matched %d frame(s): %s", sync.name, len(matched), list(matched))
        frames = matched
        if sync.where is not None:
            result = sync.where(matched)
            if inspect.isawaitable(result):
                result = await result
            frames = result if isinstance(result, Frames) else Frames(result, engine=self)
            _check_refinement(sync, matched, frames)
            if self.logging >= Logging.VERBOSE:
                logger.debug("sync %s where kept %d frame(s): %s", sync.name, len(frames), list(frames))
        fired = self._fired.setdefault(fact.flow, set())
        firing: List[List[Tuple[str, str, Dict[str, Any]]]] = []
        for frame in frames:
            key = (sync.name, frame.facts, _frame_key(frame))
            if key in fired:
                continue
            calls = _instantiate(sync, frame)
            if calls is None:
                continue
            fired.add(key)
            firing.append(calls)
        return firing

def _check_refinement(sync: Sync, before: Frames, after: List[Frame]) -> None:
    """``where`` may drop frames or add bindings, never rebind."""
    by_facts: Dict[Tuple[str, ...], List[Frame]] = {}
    for f in before:
        by_facts.setdefault(f.facts, []).append(f)
    for f in after:
        if not isinstance(f, Frame) or not any(f.extends(src) for src in by_facts.get(f.facts, [])):
            raise EngineError(f"where clause of {sync.name} returned a frame that does not extend its input: {f!r}")

def _instantiate(sync: Sync, frame: Frame) -> Optional[List[Tuple[str, str, Dict[str, Any]]]]:
    calls: List[Tuple[str, str, Dict[str, Any]]] = []
    for pattern in sync.then:
        params: Dict[str, Any] = {}
        for fname, t in pattern.input.items():
            if t is ANY:
                continue
            if isinstance(t, Literal):
                params[fname] = t.value
            elif t in frame:
                params[fname] = frame[t]
            else:
                logger.warning("sync %s: %s unbound for %s, frame dropped", sync.name, t, pattern.action)
                return None
        calls.append((pattern.action.concept, pattern.action.action, params))
    return calls

def _fmt(record: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(record, sort_keys=True, default=str)
