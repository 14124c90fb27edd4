"""In-memory audio graph: node wiring and parameter automation timelines.

The engine never renders samples itself. It issues connect/disconnect and
automation commands against this graph, which mirrors the primitive set of a
native audio-processing graph (oscillators, gains, biquads, constant sources,
delay and convolution) and can evaluate any parameter at any point in time.
"""
import bisect
import time
from typing import Callable, List, Optional, Union

import numpy as np


WAVE_TYPES = ("sine", "square", "sawtooth", "triangle")
FILTER_TYPES = ("lowpass", "highpass", "bandpass", "lowshelf", "highshelf", "peaking", "notch", "allpass")

_SET = "set"
_LINEAR = "linear"
_EXPONENTIAL = "exponential"


class GraphError(Exception):
    """Base error for invalid audio graph operations."""


class InvalidStateError(GraphError):
    """Raised when a node is asked to do something its state forbids."""


class _Event:
    __slots__ = ("time", "kind", "value")

    def __init__(self, when: float, kind: str, value: float):
        self.time = when
        self.kind = kind
        self.value = value

    def __repr__(self):
        return f"_Event({self.kind}, {self.value:.6g} @ {self.time:.6g})"


class AudioParam:
    """An automatable parameter with a time-ordered event list.

    Reading ``value`` returns the computed value at the graph's current time,
    so a ramp that is half-way through reports its instantaneous level.
    Nodes connected into the parameter are tracked in ``inputs``.
    """

    def __init__(self, graph: 'AudioGraph', name: str, default_value: float, owner: Optional['AudioNode'] = None):
        self._graph = graph
        self.name = name
        self.owner = owner
        self.default_value = float(default_value)
        self._value = float(default_value)
        self._events: List[_Event] = []
        self.inputs: List['AudioNode'] = []

    def __repr__(self):
        owner = type(self.owner).__name__ if self.owner is not None else "?"
        return f"AudioParam({owner}.{self.name})"

    @property
    def value(self) -> float:
        return self.value_at(self._graph.current_time)

    @value.setter
    def value(self, new_value: float):
        if not self._events:
            self._value = float(new_value)
        else:
            self.set_value_at_time(new_value, self._graph.current_time)

    @property
    def events(self) -> list:
        """Scheduled events as ``(kind, value, time)`` tuples."""
        return [(e.kind, e.value, e.time) for e in self._events]

    def set_value_at_time(self, value: float, when: float) -> 'AudioParam':
        self._insert(_Event(when, _SET, float(value)))
        return self

    def linear_ramp_to_value_at_time(self, value: float, when: float) -> 'AudioParam':
        self._insert(_Event(when, _LINEAR, float(value)))
        return self

    def exponential_ramp_to_value_at_time(self, value: float, when: float) -> 'AudioParam':
        if value <= 0:
            raise GraphError(f"exponential ramp target must be positive, got {value}")
        self._insert(_Event(when, _EXPONENTIAL, float(value)))
        return self

    def cancel_scheduled_values(self, when: float) -> 'AudioParam':
        """Drop every event scheduled at or after ``when``."""
        self._events = [e for e in self._events if e.time < when]
        return self

    def value_at(self, when: float) -> float:
        """Evaluate the automation timeline at ``when``."""
        value = self._value
        prev_time = 0.0
        for event in self._events:
            if event.time <= when:
                value = event.value
                prev_time = event.time
                continue
            span = event.time - prev_time
            if event.kind == _SET or span <= 0:
                return value
            frac = (when - prev_time) / span
            if event.kind == _LINEAR:
                return value + (event.value - value) * frac
            # Exponential ramps cannot leave zero or cross zero; the value holds.
            if value <= 0:
                return value
            return value * (event.value / value) ** frac
        return value

    def render(self, start: float, end: float, count: int = 64) -> np.ndarray:
        """Sample the automation curve at ``count`` evenly spaced times."""
        times = np.linspace(start, end, count)
        return np.fromiter((self.value_at(t) for t in times), dtype=np.float64, count=count)

    def _insert(self, event: _Event):
        times = [e.time for e in self._events]
        self._events.insert(bisect.bisect_right(times, event.time), event)
        self._compact(self._graph.current_time)

    def _compact(self, now: float):
        # Everything before the last elapsed event is irrelevant to future evaluation.
        last_past = -1
        for i, e in enumerate(self._events):
            if e.time > now:
                break
            last_past = i
        if last_past > 0:
            del self._events[:last_past]


Destination = Union['AudioNode', AudioParam]


class AudioNode:
    """Base node: connection bookkeeping shared by every primitive."""

    def __init__(self, graph: 'AudioGraph'):
        self.graph = graph
        self.outputs: List[Destination] = []
        self.inputs: List['AudioNode'] = []

    def connect(self, destination: Destination) -> Destination:
        """Connect this node's output to a node or a parameter.

        Connecting twice to the same destination is a no-op.
        """
        if destination in self.outputs:
            return destination
        self.outputs.append(destination)
        destination.inputs.append(self)
        return destination

    def disconnect(self, destination: Optional[Destination] = None):
        """Disconnect from ``destination``, or from everything when omitted.

        Raises:
            InvalidStateError: If ``destination`` is not currently connected.
        """
        if destination is None:
            for dest in self.outputs:
                dest.inputs.remove(self)
            self.outputs.clear()
            return
        if destination not in self.outputs:
            raise InvalidStateError(f"{self!r} is not connected to {destination!r}")
        self.outputs.remove(destination)
        destination.inputs.remove(self)

    def is_connected_to(self, destination: Destination) -> bool:
        return destination in self.outputs


class ScheduledSourceNode(AudioNode):
    """A source that can be started and stopped at a given time."""

    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self.start_time: Optional[float] = None
        self.stop_time: Optional[float] = None

    def start(self, when: Optional[float] = None):
        if self.start_time is not None:
            raise InvalidStateError("source node already started")
        self.start_time = self.graph.current_time if when is None else when

    def stop(self, when: Optional[float] = None):
        """Schedule the source to stop.

        A pending stop may be moved; a stop that has already taken effect may not.
        """
        now = self.graph.current_time
        if self.start_time is None:
            raise InvalidStateError("source node was never started")
        if self.stop_time is not None and self.stop_time <= now:
            raise InvalidStateError("source node already stopped")
        self.stop_time = now if when is None else when

    def is_playing_at(self, when: float) -> bool:
        if self.start_time is None or when < self.start_time:
            return False
        return self.stop_time is None or when < self.stop_time

    @property
    def is_playing(self) -> bool:
        return self.is_playing_at(self.graph.current_time)


class OscillatorNode(ScheduledSourceNode):
    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self._type = "sine"
        self.frequency = AudioParam(graph, "frequency", 440.0, self)
        self.detune = AudioParam(graph, "detune", 0.0, self)

    @property
    def type(self) -> str:
        return self._type

    @type.setter
    def type(self, wave_type: str):
        if wave_type not in WAVE_TYPES:
            raise GraphError(f"unknown oscillator type: {wave_type!r}")
        self._type = wave_type


class ConstantSourceNode(ScheduledSourceNode):
    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self.offset = AudioParam(graph, "offset", 1.0, self)


class GainNode(AudioNode):
    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self.gain = AudioParam(graph, "gain", 1.0, self)


class BiquadFilterNode(AudioNode):
    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self._type = "lowpass"
        self.frequency = AudioParam(graph, "frequency", 350.0, self)
        self.Q = AudioParam(graph, "Q", 1.0, self)
        self.gain = AudioParam(graph, "gain", 0.0, self)

    @property
    def type(self) -> str:
        return self._type

    @type.setter
    def type(self, filter_type: str):
        if filter_type not in FILTER_TYPES:
            raise GraphError(f"unknown filter type: {filter_type!r}")
        self._type = filter_type


class DelayNode(AudioNode):
    def __init__(self, graph: 'AudioGraph', max_delay_time: float = 1.0):
        super().__init__(graph)
        self.max_delay_time = max_delay_time
        self.delay_time = AudioParam(graph, "delayTime", 0.0, self)


class ConvolverNode(AudioNode):
    """Convolution reverb; the native graph synthesises the impulse from size and damping."""

    def __init__(self, graph: 'AudioGraph'):
        super().__init__(graph)
        self.size = 0.5
        self.damping = 0.5


class DestinationNode(AudioNode):
    pass


class AudioGraph:
    """Factory and clock for graph nodes.

    Args:
        clock: Callable returning the current time in seconds. Defaults to a
            monotonic clock starting at zero when the graph is created.
        sample_rate: Nominal sample rate reported to collaborators.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, sample_rate: int = 48000):
        if clock is None:
            origin = time.monotonic()
            clock = lambda: time.monotonic() - origin
        self._clock = clock
        self.sample_rate = sample_rate
        self.destination = DestinationNode(self)

    @property
    def current_time(self) -> float:
        return self._clock()

    def create_oscillator(self) -> OscillatorNode:
        return OscillatorNode(self)

    def create_gain(self) -> GainNode:
        return GainNode(self)

    def create_biquad_filter(self) -> BiquadFilterNode:
        return BiquadFilterNode(self)

    def create_constant_source(self) -> ConstantSourceNode:
        return ConstantSourceNode(self)

    def create_delay(self, max_delay_time: float = 1.0) -> DelayNode:
        return DelayNode(self, max_delay_time)

    def create_convolver(self) -> ConvolverNode:
        return ConvolverNode(self)
