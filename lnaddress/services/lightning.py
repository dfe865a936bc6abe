import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import bolt11 as bolt11_lib
import httpx

from config import settings
from lnaddress.errors import BackendUnavailable

logger = logging.getLogger(__name__)

# BOLT11 default when the invoice carries no expiry field
DEFAULT_BOLT11_EXPIRY = 3600


def _hex_to_b64(value: str) -> str:
    return base64.b64encode(bytes.fromhex(value)).decode('ascii')


def _b64_to_hex(value: str) -> str:
    return base64.b64decode(value).hex()


@dataclass
class PaymentRequest:
    bolt11: str
    payment_hash: str


class LNDRestBackend:
    """LND REST client: invoice creation, settlement stream and lookups"""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        macaroon_hex: Optional[str] = None,
        tls_cert_path: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.endpoint = (endpoint or settings.LND_REST_URL).rstrip('/')
        macaroon_hex = macaroon_hex if macaroon_hex is not None else settings.LND_MACAROON_HEX
        self.headers = {'Grpc-Metadata-macaroon': macaroon_hex} if macaroon_hex else {}
        tls_cert_path = tls_cert_path if tls_cert_path is not None else settings.LND_TLS_CERT_PATH
        # LND ships a self-signed certificate; without a pinned cert we skip verification
        self.verify = tls_cert_path or False
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout=None) -> httpx.AsyncClient:
        kwargs = {}
        if self.transport is not None:
            kwargs['transport'] = self.transport
        return httpx.AsyncClient(
            base_url=self.endpoint,
            headers=self.headers,
            verify=self.verify,
            timeout=timeout if timeout is not None else self.timeout,
            **kwargs
        )

    async def create_payment_request(
        self,
        amount_msats: int,
        payment_hash: str,
        preimage: str,
        description_hash: str,
        expiry: int
    ) -> PaymentRequest:
        """Ask LND for a BOLT11 invoice committed to our preimage"""

        payload = {
            'value_msat': str(amount_msats),
            'r_preimage': _hex_to_b64(preimage),
            'description_hash': _hex_to_b64(description_hash),
            'expiry': str(expiry)
        }

        async with self._client() as client:
            try:
                response = await client.post("/v1/invoices", json=payload)
                response.raise_for_status()

                data = response.json()
                return PaymentRequest(
                    bolt11=data['payment_request'],
                    payment_hash=_b64_to_hex(data['r_hash'])
                )
            except httpx.HTTPError as e:
                raise BackendUnavailable(f"LND API error: {str(e)}") from e
            except (KeyError, ValueError) as e:
                raise BackendUnavailable("Invalid response from LND API") from e

    async def is_settled(self, payment_hash: str) -> bool:
        """Check whether LND reports the invoice for payment_hash as settled"""

        async with self._client() as client:
            try:
                response = await client.get(f"/v1/invoice/{payment_hash}")
                if response.status_code == 404:
                    return False
                response.raise_for_status()

                data = response.json()
                return data.get('state') == 'SETTLED'
            except httpx.HTTPError as e:
                raise BackendUnavailable(f"LND API error: {str(e)}") from e
            except ValueError as e:
                raise BackendUnavailable("Invalid response from LND API") from e

    async def subscribe_settlements(self) -> AsyncIterator[str]:
        """Yield the hex preimage of every invoice LND reports as settled"""

        # No read timeout: the stream stays idle between settlements
        async with self._client(timeout=httpx.Timeout(self.timeout, read=None)) as client:
            async with client.stream("GET", "/v1/invoices/subscribe") as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue

                    try:
                        message = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Invalid JSON on LND invoice stream")
                        continue

                    if 'error' in message:
                        raise BackendUnavailable(f"LND invoice stream error: {message['error']}")

                    invoice = message.get('result', {})
                    if invoice.get('state') == 'SETTLED' and invoice.get('r_preimage'):
                        yield _b64_to_hex(invoice['r_preimage'])

    def get_amount_msats(self, bolt11: str) -> Optional[int]:
        """Amount encoded in a BOLT11 payment request, None for an amountless invoice"""
        try:
            decoded = bolt11_lib.decode(bolt11)
        except Exception as e:
            raise ValueError(f"Invalid bolt11: {str(e)}") from e

        return decoded.amount_msat

    def get_expiry(self, bolt11: str) -> datetime:
        """Expiry time encoded in a BOLT11 payment request"""
        try:
            decoded = bolt11_lib.decode(bolt11)
        except Exception as e:
            raise ValueError(f"Invalid bolt11: {str(e)}") from e

        expiry = decoded.expiry or DEFAULT_BOLT11_EXPIRY
        return datetime.fromtimestamp(decoded.date + expiry, tz=timezone.utc)


# Global backend instance
lightning_backend = LNDRestBackend()
