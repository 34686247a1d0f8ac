"""Mesh topology reconstruction.

Every tick the whole population is re-linked to the gateway:

  1. powered units are reset to "unconnected"; unpowered ones are dropped
  2. units within range of the gateway connect directly (hop 1)
  3. relay passes: each unconnected unit attaches to the nearest connected
     unit in range, until a full pass makes no new connection
  4. anything still unconnected is stranded and goes offline

This is a greedy nearest-parent relaxation, not a shortest-path search.
Units are visited in ascending id order so results are reproducible.
"""
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from .geo import Position, distance_km
from .model import SIGNAL_FLOOR, Unit, UnitStatus

UNCONNECTED = math.inf


def link_signal(dist_km: float) -> int:
    """Synthetic dBm for a link of the given length."""
    # Halves round up, so -51.5 dBm reports as -51
    return int(math.floor(max(SIGNAL_FLOOR, -50 - dist_km * 20) + 0.5))


@dataclass
class TopologyResult:
    units: List[Unit]
    passes: int  # relay passes run, including the final one that made no connection
    stranded: int


def build_topology(units: List[Unit], gateway: Position, max_range_km: float) -> TopologyResult:
    """Assign hop count and signal strength to every unit relative to the gateway."""
    order = sorted(range(len(units)), key=lambda i: units[i].id)
    hops: Dict[int, float] = {}
    signal: Dict[int, int] = {}
    powered = {i for i in order if units[i].is_powered}

    for i in order:
        hops[i] = UNCONNECTED if i in powered else 0
        signal[i] = SIGNAL_FLOOR

    # Direct links
    for i in order:
        if i not in powered:
            continue
        d = distance_km(units[i].position, gateway)
        if d <= max_range_km:
            hops[i] = 1
            signal[i] = link_signal(d)

    # Relay passes
    passes = 0
    connected_any = True
    while connected_any:
        passes += 1
        connected_any = False
        for child in order:
            if hops[child] != UNCONNECTED:
                continue
            parent, parent_dist = _nearest_connected(child, order, units, hops, max_range_km)
            if parent is None:
                continue
            hops[child] = hops[parent] + 1
            signal[child] = link_signal(parent_dist)
            connected_any = True

    result: List[Unit] = []
    stranded = 0
    for i, u in enumerate(units):
        if i not in powered or hops[i] == UNCONNECTED:
            if i in powered:
                stranded += 1
            result.append(replace(u, hop_count=0, signal_strength=SIGNAL_FLOOR,
                                  is_active=False, status=UnitStatus.OFFLINE.value))
            continue
        status = u.status
        if status == UnitStatus.OFFLINE:
            status = UnitStatus.ONLINE.value
        result.append(replace(u, hop_count=int(hops[i]), signal_strength=signal[i],
                              is_active=True, status=status))
    return TopologyResult(units=result, passes=passes, stranded=stranded)


def _nearest_connected(child: int, order: List[int], units: List[Unit], hops: Dict[int, float],
                       max_range_km: float) -> Tuple[Optional[int], float]:
    best: Optional[int] = None
    best_dist = math.inf
    for j in order:
        if j == child or hops[j] == UNCONNECTED or hops[j] <= 0:
            continue
        d = distance_km(units[child].position, units[j].position)
        # strict < keeps the first unit in id order on ties
        if d <= max_range_km and d < best_dist:
            best = j
            best_dist = d
    return best, best_dist
