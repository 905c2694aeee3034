import asyncio
import json
from typing import Any, Dict, Optional, Type

import httpx
import pytest
from fastapi.testclient import TestClient

from fastest_cep.main import create_app
from fastest_cep.settings import Settings

VIACEP_HOST = "viacep.test"
BRASILAPI_HOST = "brasilapi.test"

VIACEP_BODY = {
    "cep": "01001-000",
    "logradouro": "Praça da Sé",
    "complemento": "lado ímpar",
    "unidade": "",
    "bairro": "Sé",
    "localidade": "São Paulo",
    "uf": "SP",
    "ibge": "3550308",
    "gia": "1004",
    "ddd": "11",
    "siafi": "7107",
}

BRASILAPI_BODY = {
    "cep": "01001000",
    "state": "SP",
    "city": "São Paulo",
    "neighborhood": "Sé",
    "street": "Praça da Sé",
    "service": "open-cep",
}


class BrokenStream(httpx.AsyncByteStream):
    """Body that dies half way through."""

    async def __aiter__(self):
        yield b'{"cep": '
        raise httpx.ReadError("connection reset by peer")


class Behaviour:
    def __init__(
            self,
            status: int = 200,
            body: Any = None,
            raw: Optional[bytes] = None,
            delay: float = 0.0,
            error: Optional[Type[httpx.RequestError]] = None,
            broken_body: bool = False
    ):
        self.status = status
        self.body = body
        self.raw = raw
        self.delay = delay
        self.error = error
        self.broken_body = broken_body


class StubUpstream:
    """Fake ViaCEP and BrasilAPI behind an httpx.MockTransport, counting calls."""

    def __init__(self):
        self.calls: Dict[str, int] = {"ViaCEP": 0, "BrasilAPI": 0}
        self.paths: Dict[str, list] = {"ViaCEP": [], "BrasilAPI": []}
        self.behaviours: Dict[str, Behaviour] = {
            "ViaCEP": Behaviour(body=VIACEP_BODY),
            "BrasilAPI": Behaviour(body=BRASILAPI_BODY),
        }
        self.transport = httpx.MockTransport(self.handler)

    def set(self, provider: str, **kwargs) -> None:
        self.behaviours[provider] = Behaviour(**kwargs)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def handler(self, request: httpx.Request) -> httpx.Response:
        provider = "ViaCEP" if request.url.host == VIACEP_HOST else "BrasilAPI"
        self.calls[provider] += 1
        self.paths[provider].append(request.url.raw_path.decode("ascii"))
        behaviour = self.behaviours[provider]

        if behaviour.delay:
            await asyncio.sleep(behaviour.delay)
        if behaviour.error is not None:
            raise behaviour.error("upstream unreachable", request=request)
        if behaviour.broken_body:
            return httpx.Response(behaviour.status, stream=BrokenStream())
        content = behaviour.raw if behaviour.raw is not None else json.dumps(behaviour.body).encode()
        return httpx.Response(
            behaviour.status,
            content=content,
            headers={"Content-Type": "application/json"},
        )


def make_settings(race_timeout: float = 1.0, **providers) -> Settings:
    config = {
        "timeouts": {"race_timeout": race_timeout, "http_client_timeout": 5.0},
        "providers": {
            "viacep": {"base_url": f"http://{VIACEP_HOST}/ws"},
            "brasilapi": {"base_url": f"http://{BRASILAPI_HOST}/api/cep/v1"},
        },
    }
    for name, section in providers.items():
        config["providers"][name].update(section)
    return Settings(config)


@pytest.fixture
def upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def client(upstream: StubUpstream, settings: Settings):
    app = create_app(settings, transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client


def run(coro):
    return asyncio.run(coro)
