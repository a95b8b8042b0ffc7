from typing import Optional

from ..incidents.engine import IncidentEngine

# Set by main.py once the engine's collaborators are wired.
_engine_ref: Optional[IncidentEngine] = None


def register_engine(engine: IncidentEngine) -> None:
    global _engine_ref
    _engine_ref = engine


def get_engine() -> IncidentEngine:
    if _engine_ref is None:
        raise RuntimeError("IncidentEngine not registered")
    return _engine_ref
