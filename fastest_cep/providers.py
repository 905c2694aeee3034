"""
Provider clients for the upstream CEP lookup services.

Each client issues exactly one GET per lookup and turns whatever happens into
a ProviderResult. Upstream problems never escape as exceptions; they come
back as failure results tagged with the stage that broke.
"""

import json
import time
from typing import Any, Dict, List, Optional, Type
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from fastest_cep.errors import (
    BodyReadError,
    DecodeError,
    ProviderError,
    RequestConstructionError,
    TransportError,
)
from fastest_cep.models import BrasilApiAddress, ProviderResult, ViaCepAddress
from fastest_cep.settings import Settings


class CepProvider:
    """Base class for a single upstream lookup service."""

    name: str = "provider"
    record_model: Type[BaseModel] = BaseModel

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def build_url(self, cep: str) -> str:
        raise NotImplementedError

    def check_payload(self, data: Dict[str, Any]) -> None:
        """Hook for provider-level error markers inside a 2xx body."""

    def decode(self, body: bytes) -> BaseModel:
        """Parse a response body into this provider's record model."""
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(self.name, f"invalid JSON body: {e}") from e

        if not isinstance(data, dict):
            raise DecodeError(self.name, f"expected a JSON object, got {type(data).__name__}")

        self.check_payload(data)

        try:
            return self.record_model.model_validate(data)
        except SchemaError as e:
            raise DecodeError(self.name, f"unexpected response schema: {e.error_count()} error(s)") from e

    async def fetch(
            self,
            client: httpx.AsyncClient,
            cep: str,
            timeout: Optional[float] = None
    ) -> ProviderResult:
        """
        Look up one CEP against this provider.

        Args:
            client: shared HTTP client
            cep: the lookup key, passed through as-is
            timeout: seconds left in the race, applied to this request
        """
        start_time = time.monotonic()
        try:
            record = await self._fetch(client, cep, timeout)
        except ProviderError as error:
            elapsed = time.monotonic() - start_time
            logger.warning(
                f"Provider {self.name} FAILED for CEP {cep}:\n"
                f"  Stage: {error.stage}\n"
                f"  Error: {error.message}\n"
                f"  Time elapsed: {elapsed:.2f}s"
            )
            return ProviderResult(source=self.name, error=error, elapsed=elapsed)

        elapsed = time.monotonic() - start_time
        logger.debug(
            f"Provider {self.name} answered CEP {cep} in {elapsed:.2f}s "
            f"({record.locality}/{record.region})"
        )
        return ProviderResult(source=self.name, payload=record.model_dump(), elapsed=elapsed)

    async def _fetch(self, client: httpx.AsyncClient, cep: str, timeout: Optional[float]) -> BaseModel:
        request_kwargs: Dict[str, Any] = {}
        if timeout is not None:
            request_kwargs["timeout"] = httpx.Timeout(timeout)

        try:
            request = client.build_request("GET", self.build_url(cep), **request_kwargs)
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            raise RequestConstructionError(self.name, f"could not build request: {e}") from e

        try:
            response = await client.send(request, stream=True)
        except httpx.RequestError as e:
            raise TransportError(self.name, f"{type(e).__name__}: {e}") from e

        try:
            if not response.is_success:
                raise TransportError(
                    self.name, f"HTTP {response.status_code} {response.reason_phrase}".rstrip()
                )
            try:
                body = await response.aread()
            except (httpx.StreamError, httpx.RequestError) as e:
                raise BodyReadError(self.name, f"{type(e).__name__}: {e}") from e
        finally:
            await response.aclose()

        return self.decode(body)


class ViaCepProvider(CepProvider):
    """https://viacep.com.br"""

    name = "ViaCEP"
    record_model = ViaCepAddress

    def build_url(self, cep: str) -> str:
        return f"{self.base_url}/{quote(cep, safe='')}/json/"

    def check_payload(self, data: Dict[str, Any]) -> None:
        # Unknown CEPs come back as 200 {"erro": true}
        if data.get("erro"):
            raise DecodeError(self.name, "CEP not found")


class BrasilApiProvider(CepProvider):
    """https://brasilapi.com.br"""

    name = "BrasilAPI"
    record_model = BrasilApiAddress

    def build_url(self, cep: str) -> str:
        return f"{self.base_url}/{quote(cep, safe='')}"


PROVIDER_CLASSES: Dict[str, Type[CepProvider]] = {
    ViaCepProvider.name: ViaCepProvider,
    BrasilApiProvider.name: BrasilApiProvider,
}


def build_providers(settings: Settings) -> List[CepProvider]:
    """Instantiate every provider enabled in settings."""
    providers = []
    for name, provider_settings in settings.providers.items():
        if not provider_settings.enabled:
            logger.info(f"Provider {name} disabled in configuration")
            continue
        providers.append(PROVIDER_CLASSES[name](provider_settings.base_url))
    return providers
