from dataclasses import replace
from typing import List, Tuple

from .model import OutboundMessage, Unit, UnitMessage, UnitStatus
from .rng import DRNG

CHATTER_PROBABILITY = 0.005
CHATTER_PHRASES = (
    "All clear.",
    "Requesting status update.",
    "Position confirmed.",
    "Acknowledged.",
)


def emit_chatter(units: List[Unit], rng: DRNG, ts_ms: int,
                 p: float = CHATTER_PROBABILITY) -> Tuple[List[Unit], List[OutboundMessage]]:
    """Let each eligible unit send a random status phrase with probability p."""
    out: List[Unit] = []
    messages: List[OutboundMessage] = []
    for u in units:
        if not u.is_active or u.status == UnitStatus.OFFLINE or not rng.bernoulli(p):
            out.append(u)
            continue
        text = rng.choice(CHATTER_PHRASES)
        out.append(replace(u, last_message=UnitMessage(text=text, timestamp=ts_ms, source="unit")))
        messages.append(OutboundMessage(unit_id=u.id, unit_name=u.name, text=text, timestamp=ts_ms))
    return out, messages
