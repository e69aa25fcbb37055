from __future__ import annotations
from typing import Any, Union

from .transport import TransportEngine


def make_engine(engine: Union[str, TransportEngine] = "enet", **engine_kwargs: Any) -> TransportEngine:
    """
    Resolve an engine label or pass an instance through:
      make_engine("enet")                       # pyenet bindings
      make_engine("loopback", network=my_net)   # in-process engine
      make_engine(my_engine)                    # any TransportEngine

    Each session needs its own engine instance; labels always build a new one.
    """
    if isinstance(engine, TransportEngine):
        return engine
    if not isinstance(engine, str):
        raise TypeError(f"engine must be a label or TransportEngine, not {type(engine).__name__}")

    label = engine.lower()
    if label == "enet":
        from .transports.enet import EnetEngine
        return EnetEngine(**engine_kwargs)
    if label == "loopback":
        from .transports.loopback import LoopbackEngine
        return LoopbackEngine(**engine_kwargs)
    raise ValueError(f"Unknown engine label: {engine}")
