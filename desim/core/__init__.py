from .events import FIRST, HIGHEST, LAST, LOWEST, NORMAL, ConditionalEvent, Event
from .event_queue import EventQueue
from .state import CompletedEvent, SimState, SimTimes, module_state, param, set_param
from .time_units import DEFAULT_TIMEUNITS, TimeUnitRegistry

__all__ = [
    "Event", "ConditionalEvent", "EventQueue",
    "HIGHEST", "FIRST", "NORMAL", "LAST", "LOWEST",
    "SimState", "SimTimes", "CompletedEvent",
    "module_state", "param", "set_param",
    "TimeUnitRegistry", "DEFAULT_TIMEUNITS",
]
