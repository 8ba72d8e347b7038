from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union
from collections.abc import Mapping
from uuid import uuid4
import asyncio
import inspect
import itertools
import logging
import threading
import time

from config import Config, EngineConfig

logger = logging.getLogger(__name__)

# ====== Errors ======

class EngineError(Exception):
    """Base class for engine failures (never used for domain errors)."""

class SyncDefinitionError(EngineError):
    """A synchronization rule is malformed: an authoring defect, fatal at startup or first use."""

class ActionFault(EngineError):
    """A collaborator failed unexpectedly or timed out."""
    def __init__(self, event: "ActionEvent"):
        super().__init__(f"{event.concept}.{event.action} faulted: {event.fault}")
        self.event = event

class QueryFault(EngineError):
    """A query raised or timed out. Not matchable: queries leave no event."""
    def __init__(self, concept: str, qname: str, reason: str):
        super().__init__(f"{concept}.{qname} faulted: {reason}")
        self.concept = concept
        self.qname = qname
        self.reason = reason

class CascadeDepthExceeded(EngineError):
    def __init__(self, depth: int, concept: str, action: str):
        super().__init__(f"Cascade depth {depth} exceeded while invoking {concept}.{action}")
        self.depth = depth

# ====== Patterns ======

class Var:
    """A variable handle. Two handles are the same variable only if they are the same object."""
    __slots__ = ("name", "scope")
    def __init__(self, name: str, scope: str = ""):
        self.name = name
        self.scope = scope
    def __repr__(self) -> str:
        return f"?{self.name}"

@dataclass(frozen=True)
class Literal:
    value: Any

PatternField = Union[Var, Literal]

def as_field(value: Any) -> PatternField:
    if isinstance(value, (Var, Literal)):
        return value
    return Literal(value)

@dataclass(frozen=True)
class ActionPattern:
    concept: str
    action: str
    inputs: Dict[str, PatternField] = field(default_factory=dict)
    outputs: Dict[str, PatternField] = field(default_factory=dict)
    def __post_init__(self):
        object.__setattr__(self, "inputs", {k: as_field(v) for k, v in self.inputs.items()})
        object.__setattr__(self, "outputs", {k: as_field(v) for k, v in self.outputs.items()})
    @property
    def ref(self) -> str:
        return f"{self.concept}.{self.action}"
    @property
    def expects_error(self) -> bool:
        return "error" in self.outputs
    def variables(self) -> List[Var]:
        found = [f for f in itertools.chain(self.inputs.values(), self.outputs.values()) if isinstance(f, Var)]
        return list(dict.fromkeys(found))

def split_ref(ref: str) -> Tuple[str, str]:
    concept, sep, action = ref.partition(".")
    if not sep or not concept or not action:
        raise SyncDefinitionError(f"Action reference must look like 'Concept.action', got {ref!r}")
    return concept, action

def actions(*specs: Tuple[Any, ...]) -> List[ActionPattern]:
    """Build patterns from ("Concept.action", inputs[, outputs]) tuples."""
    out: List[ActionPattern] = []
    for spec in specs:
        if not 2 <= len(spec) <= 3:
            raise SyncDefinitionError(f"Malformed action spec {spec!r}")
        concept, action = split_ref(spec[0])
        out.append(ActionPattern(concept, action, dict(spec[1]), dict(spec[2]) if len(spec) == 3 else {}))
    return out

# ====== Frames & events ======

class Frame(Mapping):
    """One consistent assignment of variables to values. Immutable."""
    __slots__ = ("_vars", "events")
    def __init__(self, bindings: Optional[Dict[Var, Any]] = None, events: Tuple[int, ...] = ()):
        self._vars: Dict[Var, Any] = dict(bindings or {})
        self.events = events
    def __getitem__(self, var: Var) -> Any:
        return self._vars[var]
    def __iter__(self):
        return iter(self._vars)
    def __len__(self) -> int:
        return len(self._vars)
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Frame):
            return NotImplemented
        return self._vars == other._vars and self.events == other.events
    __hash__ = None
    def __repr__(self) -> str:
        inner = ", ".join(f"{k!r}={v!r}" for k, v in self._vars.items())
        return f"Frame({inner}; events={list(self.events)})"
    def bind(self, var: Var, value: Any) -> Optional["Frame"]:
        # write-once: a conflicting rebinding kills the frame
        if var in self._vars:
            return self if self._vars[var] == value else None
        bindings = dict(self._vars)
        bindings[var] = value
        return Frame(bindings, self.events)
    def with_event(self, seq: int) -> "Frame":
        return Frame(self._vars, self.events + (seq,))

@dataclass(frozen=True)
class ActionEvent:
    seq: int
    flow: str
    concept: str
    action: str
    input: Dict[str, Any]
    output: Optional[Dict[str, Any]]
    fault: Optional[str] = None
    t: float = field(default_factory=lambda: time.time())
    @property
    def is_fault(self) -> bool:
        return self.fault is not None
    @property
    def is_error(self) -> bool:
        return self.output is not None and "error" in self.output

class EventLog:
    """Sequence-numbered action log, partitioned by flow."""
    def __init__(self):
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._flows: Dict[str, List[ActionEvent]] = {}
    def append(self, flow: str, concept: str, action: str, input_map: Dict[str, Any],
               output: Optional[Dict[str, Any]], fault: Optional[str] = None) -> ActionEvent:
        with self._lock:
            event = ActionEvent(next(self._seq), flow, concept, action, dict(input_map),
                                dict(output) if output is not None else None, fault)
            self._flows.setdefault(flow, []).append(event)
        return event
    def history(self, flow: str, upto: Optional[int] = None) -> List[ActionEvent]:
        with self._lock:
            events = list(self._flows.get(flow, ()))
        if upto is not None:
            events = [e for e in events if e.seq <= upto]
        return events
    def discard(self, flow: str) -> None:
        with self._lock:
            self._flows.pop(flow, None)

# ====== Matching ======

def _unify(pf: PatternField, value: Any, frame: Frame) -> Optional[Frame]:
    if isinstance(pf, Literal):
        return frame if pf.value == value else None
    return frame.bind(pf, value)

def match(pattern: ActionPattern, event: ActionEvent, base: Frame) -> Optional[Frame]:
    """Unify one pattern against one event, extending ``base``. Pure."""
    if event.is_fault or event.output is None:
        return None
    if pattern.concept != event.concept or pattern.action != event.action:
        return None
    if pattern.expects_error != event.is_error:
        return None
    frame: Optional[Frame] = base
    for source, fields in ((event.input, pattern.inputs), (event.output, pattern.outputs)):
        for name, pf in fields.items():
            if name not in source:
                return None
            frame = _unify(pf, source[name], frame)
            if frame is None:
                return None
    return frame.with_event(event.seq)

# ====== Syncs ======

WhereFn = Callable[["Queries", Frame], Awaitable[Union[bool, Iterable[Frame]]]]

@dataclass(frozen=True)
class Sync:
    name: str
    when: Tuple[ActionPattern, ...]
    then: Tuple[ActionPattern, ...]
    where: Optional[WhereFn] = None
    variables: Tuple[Var, ...] = ()
    def when_variables(self) -> List[Var]:
        return list(dict.fromkeys(v for p in self.when for v in p.variables()))
    def then_variables(self) -> List[Var]:
        return list(dict.fromkeys(v for p in self.then for v in p.inputs.values() if isinstance(v, Var)))

def sync(builder: Callable[..., Dict[str, Any]]) -> Sync:
    """Decorator: instantiate a rule builder with one fresh Var per parameter.

        @sync
        def CreateFavorites(user):
            return {
                "when": actions(("UserAuthentication.register", {}, {"user": user})),
                "then": actions(("Playlist.createPlaylist", {"user": user, "playlistName": "Favorites"})),
            }
    """
    name = builder.__name__
    scope = f"{name}:{uuid4().hex[:8]}"
    variables = tuple(Var(p, scope) for p in inspect.signature(builder).parameters)
    body = builder(*variables)
    unknown = set(body) - {"when", "where", "then"}
    if unknown:
        raise SyncDefinitionError(f"{name}: unexpected keys {sorted(unknown)}")
    if not body.get("when") or not body.get("then"):
        raise SyncDefinitionError(f"{name}: a sync needs both 'when' and 'then'")
    return Sync(name=name, when=tuple(body["when"]), then=tuple(body["then"]),
                where=body.get("where"), variables=variables)

# ====== Concepts ======

class Concept:
    def __init__(self, name: str):
        self.name = name
        # guards the subclass storage; held only around synchronous sections
        self._lock = threading.RLock()
    def _exposed(self, name: str) -> bool:
        # only coroutine methods of the subclass; helpers and the base API stay private
        if name.startswith("__") or hasattr(Concept, name):
            return False
        return inspect.iscoroutinefunction(getattr(self, name, None))
    def has_action(self, action: str) -> bool:
        return not action.startswith("_") and self._exposed(action)
    def has_query(self, qname: str) -> bool:
        return qname.startswith("_") and self._exposed(qname)
    async def perform(self, action: str, input_map: Dict[str, Any]) -> Dict[str, Any]:
        if not self.has_action(action):
            raise AttributeError(f"{self.name}.{action} not found")
        return await getattr(self, action)(**input_map)
    async def query(self, qname: str, input_map: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not qname.startswith("_"):
            raise ValueError("Query names must start with '_' to be pure")
        if not self.has_query(qname):
            raise AttributeError(f"{self.name}.{qname} not found")
        return list(await getattr(self, qname)(**input_map))

# ====== Refinement ======

def _substitute(sync_name: str, fields: Dict[str, PatternField], frame: Frame) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name, pf in fields.items():
        if isinstance(pf, Literal):
            out[name] = pf.value
        elif pf in frame:
            out[name] = frame[pf]
        else:
            raise SyncDefinitionError(f"{sync_name}: variable {pf!r} for field '{name}' is not bound")
    return out

class Queries:
    """Read-only view handed to where-clauses. Exposes queries, never actions."""
    def __init__(self, engine: "Engine", sync_name: str):
        self._engine = engine
        self._sync_name = sync_name
    async def rows(self, ref: str, input_map: Dict[str, Any]) -> List[Dict[str, Any]]:
        concept, qname = split_ref(ref)
        if not qname.startswith("_"):
            raise SyncDefinitionError(f"{self._sync_name}: where-clauses may only call queries, not {ref}")
        return await self._engine.query(concept, qname, **input_map)
    async def bind(self, frame: Frame, ref: str, inputs: Dict[str, Any], outputs: Dict[str, Any]) -> List[Frame]:
        """Run a query and extend ``frame`` once per result row that unifies with ``outputs``."""
        in_fields = {k: as_field(v) for k, v in inputs.items()}
        out_fields = {k: as_field(v) for k, v in outputs.items()}
        rows = await self.rows(ref, _substitute(self._sync_name, in_fields, frame))
        wants_error = "error" in out_fields
        result: List[Frame] = []
        for row in rows:
            if ("error" in row) != wants_error:
                continue
            extended: Optional[Frame] = frame
            for name, pf in out_fields.items():
                if name not in row:
                    extended = None
                    break
                extended = _unify(pf, row[name], extended)
                if extended is None:
                    break
            if extended is not None:
                result.append(extended)
        return result

# ====== Engine ======

class Engine:
    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or Config.engine
        self.concepts: Dict[str, Concept] = {}
        self.syncs: List[Sync] = []
        self.log = EventLog()
        self._sealed = False
        self._lock = threading.Lock()

    def register_concept(self, concept: Concept) -> None:
        with self._lock:
            if self._sealed:
                raise SyncDefinitionError(f"Cannot register concept {concept.name} after the engine started")
            self.concepts[concept.name] = concept

    def register_sync(self, s: Sync) -> None:
        with self._lock:
            if self._sealed:
                raise SyncDefinitionError(f"Cannot register sync {s.name} after the engine started")
            if s.where is None:
                bound = set(s.when_variables())
                missing = [v for v in s.then_variables() if v not in bound]
                if missing:
                    raise SyncDefinitionError(f"{s.name}: then-clause uses unbound variables {missing}")
            self.syncs.append(s)
        logger.info(f"Registered sync {s.name}")

    def seal(self) -> None:
        """Freeze the registry, checking every pattern against the registered concepts."""
        with self._lock:
            if self._sealed:
                return
            for s in self.syncs:
                for p in itertools.chain(s.when, s.then):
                    concept = self.concepts.get(p.concept)
                    if concept is None:
                        raise SyncDefinitionError(f"{s.name}: unknown concept {p.concept}")
                    if not concept.has_action(p.action):
                        raise SyncDefinitionError(f"{s.name}: unknown action {p.ref}")
            self.syncs = list(self.syncs)
            self._sealed = True
        logger.info(f"Engine sealed with {len(self.concepts)} concepts and {len(self.syncs)} syncs")

    def start_flow(self) -> str:
        return str(uuid4())

    async def invoke(self, concept: str, action: str, input_map: Dict[str, Any], *, flow: Optional[str] = None) -> ActionEvent:
        """Invoke an action and process every cascading sync before returning."""
        self.seal()
        top_level = flow is None
        if flow is None:
            flow = self.start_flow()
        try:
            return await self._perform(concept, action, input_map, flow, 0)
        finally:
            if top_level and not self.config.RETAIN_HISTORY:
                self.log.discard(flow)

    async def query(self, concept: str, qname: str, **kwargs) -> List[Dict[str, Any]]:
        target = self.concepts.get(concept)
        if target is None or not target.has_query(qname):
            raise SyncDefinitionError(f"Unknown query {concept}.{qname}")
        try:
            return await self._call(target.query(qname, kwargs))
        except asyncio.TimeoutError:
            reason = f"timed out after {self.config.ACTION_TIMEOUT}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
        logger.error(f"Query {concept}.{qname} {kwargs} fault: {reason}")
        raise QueryFault(concept, qname, reason)

    async def _call(self, aw: Awaitable[Any]) -> Any:
        timeout = self.config.ACTION_TIMEOUT
        if timeout and timeout > 0:
            return await asyncio.wait_for(aw, timeout)
        return await aw

    async def _perform(self, concept: str, action: str, input_map: Dict[str, Any], flow: str, depth: int) -> ActionEvent:
        if depth > self.config.MAX_CASCADE_DEPTH:
            logger.error(f"Aborting flow {flow}: cascade depth {depth} at {concept}.{action}")
            raise CascadeDepthExceeded(depth, concept, action)
        target = self.concepts.get(concept)
        if target is None or not target.has_action(action):
            raise SyncDefinitionError(f"Unknown action {concept}.{action}")
        output: Optional[Dict[str, Any]] = None
        fault: Optional[str] = None
        try:
            output = await self._call(target.perform(action, input_map))
            if not isinstance(output, dict):
                fault = f"returned {type(output).__name__}, expected a record"
                output = None
        except asyncio.TimeoutError:
            fault = f"timed out after {self.config.ACTION_TIMEOUT}s"
        except Exception as e:
            fault = f"{type(e).__name__}: {e}"
        event = self.log.append(flow, concept, action, input_map, output, fault)
        if event.is_fault:
            logger.error(f"[{flow}] #{event.seq} {concept}.{action} fault: {fault}")
            raise ActionFault(event)
        logger.debug(f"[{flow}] #{event.seq} {concept}.{action} {event.input} -> {event.output}")
        await self._evaluate_syncs(event, depth)
        return event

    def _join(self, s: Sync, trigger: ActionEvent) -> List[Frame]:
        if not any(p.concept == trigger.concept and p.action == trigger.action for p in s.when):
            return []
        history = self.log.history(trigger.flow, upto=trigger.seq)
        frames = [Frame()]
        for pattern in s.when:
            extended: List[Frame] = []
            for frame in frames:
                for event in history:
                    if event.seq in frame.events:
                        continue
                    m = match(pattern, event, frame)
                    if m is not None:
                        extended.append(m)
            frames = extended
            if not frames:
                return []
        # only combinations this event completes; older ones already fired
        return [f for f in frames if trigger.seq in f.events]

    async def _refine(self, s: Sync, frame: Frame) -> List[Frame]:
        if s.where is None:
            return [frame]
        result = await s.where(Queries(self, s.name), frame)
        if isinstance(result, bool):
            return [frame] if result else []
        return list(result)

    async def _evaluate_syncs(self, trigger: ActionEvent, depth: int) -> None:
        matched: List[Tuple[Sync, List[Frame]]] = []
        for s in self.syncs:
            refined: List[Frame] = []
            for frame in self._join(s, trigger):
                refined.extend(await self._refine(s, frame))
            if refined:
                matched.append((s, refined))
        for s, frames in matched:
            for frame in frames:
                await self._dispatch(s, frame, trigger, depth + 1)

    async def _dispatch(self, s: Sync, frame: Frame, trigger: ActionEvent, depth: int) -> None:
        for pattern in s.then:
            params = _substitute(s.name, pattern.inputs, frame)
            logger.debug(f"[{trigger.flow}] {s.name} (#{trigger.seq}) -> {pattern.ref} {params}")
            await self._perform(pattern.concept, pattern.action, params, trigger.flow, depth)
