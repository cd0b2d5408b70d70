"""
Formal data structures for the workload EFSM generator.

Defines all core types used across the generator:
  - Recorded sessions & invocations
  - Request templates and the protocol layer EFSM
  - Session layer EFSM (navigational states, guards, actions)
  - Markov-chain behavior models
  - Temporal invariants
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, Optional, Union


class GeneratorError(Exception):
    """Raised when the generator inputs are missing or malformed."""


# ---------------------------------------------------------------------------
# Sessions & invocations
# ---------------------------------------------------------------------------

NO_QUERY_STRING = "<no-query-string>"
"""Parameter name recorded by the session logger for requests without a query."""


@dataclass(frozen=True, slots=True)
class Service:
    """An application service; identity is its name."""

    name: str


@dataclass(frozen=True, slots=True)
class ConnectionAttributes:
    """Network-level attributes of one service invocation.

    The default instance (empty strings, port 0) stands for a service
    without any observed traffic.
    """

    host: str = ""
    port: int = 0
    path: str = ""
    method: str = ""
    encoding: str = ""
    protocol: str = ""


@dataclass(frozen=True, slots=True)
class InvocationRecord:
    """One observed call of a service.

    Attributes:
        service:      Name of the invoked service.
        connection:   Connection attributes of the call.
        query_string: Raw URL query string (``&``-separated pairs,
                      percent-encoded).
        session_id:   Identifier of the recorded session.
        timestamp:    Entry time of the call (arbitrary monotonic unit).
    """

    service: str
    connection: ConnectionAttributes = field(default_factory=ConnectionAttributes)
    query_string: str = ""
    session_id: str = ""
    timestamp: int = 0


@dataclass(slots=True)
class Session:
    """A recorded user session: an ordered sequence of invocations."""

    session_id: str
    invocations: list[InvocationRecord] = field(default_factory=list)

    def service_names(self) -> list[str]:
        return [inv.service for inv in self.invocations]


# ---------------------------------------------------------------------------
# Request templates & protocol layer
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RequestTemplate:
    """Synthesised, parameterised request of one service.

    Attributes:
        service_name:     The service this template describes.
        connection:       Connection attributes (first observation wins).
        parameter_values: Parameter name → distinct observed values in
                          discovery order.  ``None`` marks a key that was
                          observed without a value.
    """

    service_name: str
    connection: ConnectionAttributes = field(default_factory=ConnectionAttributes)
    parameter_values: dict[str, tuple[Optional[str], ...]] = field(default_factory=dict)

    @property
    def parameters(self) -> dict[str, str]:
        """Parameter table: name → values joined with ``;``.

        Every value is followed by the delimiter, e.g. ``"1;2;"``.
        """
        return {
            name: "".join(f"{value or ''};" for value in values)
            for name, values in self.parameter_values.items()
        }

    def is_empty(self) -> bool:
        return not self.parameter_values and self.connection == ConnectionAttributes()


@dataclass(slots=True)
class Request:
    """A request issued by a protocol state."""

    eid: str
    template: RequestTemplate


@dataclass(slots=True, eq=False)
class ProtocolExitState:
    eid: str = "$"


@dataclass(slots=True, eq=False)
class ProtocolTransition:
    target: ProtocolExitState
    guard: str = ""
    action: str = ""


@dataclass(slots=True, eq=False)
class ProtocolState:
    eid: str
    request: Request
    outgoing_transitions: list[ProtocolTransition] = field(default_factory=list)


@dataclass(slots=True, eq=False)
class ProtocolLayerEFSM:
    """Protocol sub-machine executed while an application state is active."""

    exit_state: ProtocolExitState = field(default_factory=ProtocolExitState)
    protocol_states: list[ProtocolState] = field(default_factory=list)
    initial_state: Optional[ProtocolState] = None


# ---------------------------------------------------------------------------
# Guards & actions
# ---------------------------------------------------------------------------

class ParameterType(Enum):
    """Value domain of a guard-action parameter."""

    BOOLEAN = auto()
    INTEGER = auto()


@dataclass(slots=True, eq=False)
class GuardActionParameter:
    """Shared variable read by guards and written by actions.

    Parameters are compared by identity; the owning
    ``SessionLayerEFSM`` guarantees that names are unique.

    Attributes:
        name:           Unique parameter name.
        parameter_type: ``BOOLEAN`` or ``INTEGER``.
        source_name:    Service whose invariant introduced the parameter.
        target_name:    Second service of a counting invariant, else ``None``.
    """

    name: str
    parameter_type: ParameterType
    source_name: str
    target_name: Optional[str] = None


@dataclass(slots=True, eq=False)
class Guard:
    """Condition on a parameter evaluated before a transition fires.

    ``negate`` follows the workload-model convention: ``True`` requires
    the parameter to hold (flag set, counter above ``diff_minimum``),
    ``False`` requires it not to hold.
    """

    parameter: GuardActionParameter
    negate: bool
    diff_minimum: Optional[int] = None


@dataclass(slots=True, eq=False)
class Action:
    """Update of a parameter performed when a transition fires."""

    parameter: GuardActionParameter


# ---------------------------------------------------------------------------
# Session layer EFSM
# ---------------------------------------------------------------------------

@dataclass(slots=True, eq=False)
class ApplicationExitState:
    eid: str = "$"


@dataclass(slots=True, eq=False)
class ApplicationTransition:
    """Navigational edge between two application states (or to the exit)."""

    source: ApplicationState
    target: Union[ApplicationState, ApplicationExitState]
    guards: list[Guard] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)

    @property
    def target_service(self) -> Optional[str]:
        """Service name of the target, ``None`` for the exit state."""
        if isinstance(self.target, ApplicationState):
            return self.target.service.name
        return None

    def has_action_for(self, parameter: GuardActionParameter) -> bool:
        return any(a.parameter is parameter for a in self.actions)

    def __repr__(self) -> str:
        target = self.target_service or self.target.eid
        return f"ApplicationTransition({self.source.service.name} → {target})"


@dataclass(slots=True, eq=False)
class ApplicationState:
    """Navigational state; one per service."""

    eid: str
    service: Service
    outgoing_transitions: list[ApplicationTransition] = field(default_factory=list)
    protocol_details: Optional[ProtocolLayerEFSM] = None

    def __repr__(self) -> str:
        return f"ApplicationState({self.eid}, {self.service.name})"


@dataclass(slots=True, eq=False)
class SessionLayerEFSM:
    """Navigational state machine ``M = (S, s₀, T, P)``.

    Owns its application states, the outgoing transitions hanging off
    them and the name-keyed registry ``P`` of guard-action parameters.
    """

    application_states: list[ApplicationState] = field(default_factory=list)
    initial_state: Optional[ApplicationState] = None
    exit_state: ApplicationExitState = field(default_factory=ApplicationExitState)
    guard_action_parameters: dict[str, GuardActionParameter] = field(default_factory=dict)

    # ----- construction helpers ------------------------------------------

    def add_state(self, service_name: str, *, initial: bool = False) -> ApplicationState:
        """Create (or return) the application state of *service_name*."""
        state = self.state_for_service(service_name)
        if state is None:
            state = ApplicationState(
                eid=f"ASId{len(self.application_states) + 1}",
                service=Service(service_name),
            )
            self.application_states.append(state)
        if initial:
            self.initial_state = state
        return state

    def add_transition(
        self,
        source: ApplicationState,
        target: Union[ApplicationState, ApplicationExitState],
    ) -> ApplicationTransition:
        transition = ApplicationTransition(source=source, target=target)
        source.outgoing_transitions.append(transition)
        return transition

    # ----- queries ---------------------------------------------------------

    def state_for_service(self, service_name: str) -> Optional[ApplicationState]:
        """Return the application state of *service_name*, or ``None``."""
        for state in self.application_states:
            if state.service.name == service_name:
                return state
        return None

    def transitions(self) -> Iterator[ApplicationTransition]:
        """Iterate over all transitions, grouped by source state."""
        for state in self.application_states:
            yield from state.outgoing_transitions

    def transitions_into(self, service_name: str) -> list[ApplicationTransition]:
        """Return all transitions entering the state of *service_name*."""
        return [t for t in self.transitions() if t.target_service == service_name]

    def transition_between(
        self, source_name: str, target_name: str,
    ) -> Optional[ApplicationTransition]:
        source = self.state_for_service(source_name)
        if source is None:
            return None
        for t in source.outgoing_transitions:
            if t.target_service == target_name:
                return t
        return None

    # ----- guard-action parameter registry ---------------------------------

    def get_or_create_parameter(
        self,
        name: str,
        parameter_type: ParameterType,
        source_name: str,
        target_name: Optional[str] = None,
    ) -> GuardActionParameter:
        """Return the parameter called *name*, creating it on first request.

        A later request with the same name returns the existing instance
        unchanged, whatever type or service names it passes.
        """
        parameter = self.guard_action_parameters.get(name)
        if parameter is None:
            parameter = GuardActionParameter(
                name=name,
                parameter_type=parameter_type,
                source_name=source_name,
                target_name=target_name,
            )
            self.guard_action_parameters[name] = parameter
        return parameter


# ---------------------------------------------------------------------------
# Behavior models (Markov chains)
# ---------------------------------------------------------------------------

@dataclass(slots=True, eq=False)
class MarkovExitState:
    eid: str = "$"


@dataclass(slots=True, eq=False)
class MarkovTransition:
    """Probabilistic edge of a behavior model.

    Attributes:
        target:               Target Markov state or the exit state.
        probability:          Transition probability in [0, 1].
        think_time_mean:      Mean think time before the next request.
        think_time_deviation: Standard deviation of the think time.
    """

    target: Union[MarkovState, MarkovExitState]
    probability: float
    think_time_mean: float = 0.0
    think_time_deviation: float = 0.0


@dataclass(slots=True, eq=False)
class MarkovState:
    eid: str
    service: Service
    outgoing_transitions: list[MarkovTransition] = field(default_factory=list)


@dataclass(slots=True, eq=False)
class BehaviorModel:
    """Markov chain describing the navigation of one user class."""

    name: str
    markov_states: list[MarkovState] = field(default_factory=list)
    initial_state: Optional[MarkovState] = None
    exit_state: MarkovExitState = field(default_factory=MarkovExitState)
    frequency: float = 1.0

    def service_pairs(self) -> set[tuple[Service, Service]]:
        """Return every (source, target) service pair with a Markov edge.

        Edges into the exit state are not service pairs and are skipped.
        """
        pairs: set[tuple[Service, Service]] = set()
        for state in self.markov_states:
            for t in state.outgoing_transitions:
                if isinstance(t.target, MarkovState):
                    pairs.add((state.service, t.target.service))
        return pairs


# ---------------------------------------------------------------------------
# Temporal invariants
# ---------------------------------------------------------------------------

class InvariantKind(Enum):
    """Temporal relation expressed by a binary invariant."""

    ALWAYS_PRECEDES = "always_precedes"
    NEVER_FOLLOWED = "never_followed"
    COUNTING = "counting"


@dataclass(frozen=True, slots=True)
class Invariant:
    """Binary temporal invariant over two service names.

    Attributes:
        kind:               The temporal relation.
        first:              First service name.
        second:             Second service name.
        minimum_difference: Minimum ``#first - #second`` over all traces;
                            only meaningful for ``COUNTING``.
    """

    kind: InvariantKind
    first: str
    second: str
    minimum_difference: int = 0

    def __str__(self) -> str:
        if self.kind is InvariantKind.COUNTING:
            return f"{self.first} {self.kind.value}({self.minimum_difference}) {self.second}"
        return f"{self.first} {self.kind.value} {self.second}"
