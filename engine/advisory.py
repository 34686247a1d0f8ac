"""Request/response contract with the external advisory (network analysis) service.

Units are sent in a compact form to keep payloads small:

  i  id              t  type code       s  status code
  p  {a: lat, o: lng}                   v  speed km/h
  h  heading deg     b  battery %       ts timestamp (epoch ms)
  si send interval   a  active (1/0)    ss signal dBm     hc hop count

Type and status codes come from the current mappings; names the mappings do
not know are sent as -1.
"""
from typing import Dict, List, Literal, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .errors import AdvisoryUnavailableError


class CompactPosition(BaseModel):
    a: float
    o: float


class CompactUnit(BaseModel):
    i: int
    t: int
    s: int
    p: CompactPosition
    v: float
    h: float
    b: float
    ts: int
    si: float
    a: Literal[0, 1]
    ss: int
    hc: int


class AnalysisRequest(BaseModel):
    units: List[CompactUnit]
    unitNames: Dict[str, str]
    typeMapping: Dict[str, str]
    statusMapping: Dict[str, str]


class AnalysisResult(BaseModel):
    summary: str
    details: str = Field(default="")


def _reverse(mapping: Dict[int, str]) -> Dict[str, int]:
    return {name: code for code, name in mapping.items()}


def build_analysis_request(units, type_mapping: Dict[int, str],
                           status_mapping: Dict[int, str]) -> AnalysisRequest:
    """Encode engine units into the compact advisory payload."""
    type_codes = _reverse(type_mapping)
    status_codes = _reverse(status_mapping)
    compact = [
        CompactUnit(
            i=u.id,
            t=type_codes.get(u.type, -1),
            s=status_codes.get(u.status, -1),
            p=CompactPosition(a=u.position[0], o=u.position[1]),
            v=round(u.speed, 2),
            h=round(u.heading, 1),
            b=round(u.battery, 2),
            ts=u.timestamp,
            si=u.send_interval,
            a=1 if u.is_active else 0,
            ss=u.signal_strength,
            hc=u.hop_count,
        )
        for u in units
    ]
    return AnalysisRequest(
        units=compact,
        unitNames={str(u.id): u.name for u in units},
        typeMapping={str(k): v for k, v in type_mapping.items()},
        statusMapping={str(k): v for k, v in status_mapping.items()},
    )


class AdvisoryClient:
    """Async HTTP client for the advisory service."""

    def __init__(self, url: Optional[str], timeout_s: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        if not self.url:
            raise AdvisoryUnavailableError("No advisory service configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(self.url, json=request.model_dump())
                response.raise_for_status()
                return AnalysisResult.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning(f"[Advisory] Analysis request failed: {e}")
            raise AdvisoryUnavailableError(f"Advisory service failed: {e}") from e
