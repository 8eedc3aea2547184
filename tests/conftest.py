from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
import pytest

from emergency_app.fetcher import SourceConfig

DISPATCH_HTML = """
<html><body>
<table class="table">
  <thead><tr><th>Parte</th><th>Fecha</th><th>Direccion</th><th>Tipo</th></tr></thead>
  <tbody>
    <tr>
      <td><span>2026001565</span></td>
      <td><span>12/01/2026 08:30:54 p.m.</span></td>
      <td><p>AV. SAN FELIPE (-12.0828,-77.0513) Nro. 601 - JESUS MARIA</p></td>
      <td><span>EMERGENCIA MEDICA</span></td>
    </tr>
    <tr>
      <td><span></span></td>
      <td><span>12/01/2026 08:10:00 p.m.</span></td>
      <td><p>AV. ARICA 500 - BREÑA</p></td>
      <td><span>INCENDIO URBANO</span></td>
    </tr>
    <tr>
      <td><span>2026001563</span></td>
      <td><span>12/01/2026 02:35:00 p.m.</span></td>
      <td>Av. Abancay cdra. 5 (-12.0486,-77.0431) - Cercado de Lima</td>
      <td><span>INCENDIO URBANO</span></td>
    </tr>
    <tr>
      <td><span>2026001562</span></td>
      <td><span>12/01/2026 02:30:00 p.m.</span></td>
      <td><p></p></td>
      <td><span>RESCATE</span></td>
    </tr>
    <tr><td colspan="4">Sin datos</td></tr>
    <tr>
      <td><span>2026001561</span></td>
      <td><span>hace un momento</span></td>
      <td><p>Av. Javier Prado Este (-12.0893,-76.9981) - San Borja</p></td>
      <td><span>ACCIDENTE DE TRANSITO</span></td>
    </tr>
  </tbody>
</table>
</body></html>
"""

EMPTY_HTML = "<html><body><p>Mantenimiento</p></body></html>"


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 13, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class RecordingFactory:
    """client_factory that serves every request from one handler and records proxies."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.proxies: List[Optional[str]] = []
        self.requests: List[httpx.Request] = []

    def __call__(self, proxy, config):
        self.proxies.append(proxy)

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_record))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def source_config() -> SourceConfig:
    return SourceConfig(
        name="Dispatch",
        url="https://portal.test/24horas",
        referer="https://portal.test/",
        proxies=["10.0.0.1:8080", "10.0.0.2:8080", "10.0.0.3:3128"],
    )
