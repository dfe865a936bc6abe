import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional

from bech32 import bech32_decode, bech32_encode, convertbits
from secp256k1 import PrivateKey, PublicKey

from config import settings

logger = logging.getLogger(__name__)


def nsec_to_hex(nsec: str) -> str:
    """Convert nsec (bech32) to hex private key"""
    if not nsec.startswith('nsec1'):
        raise ValueError("Invalid nsec format")

    hrp, data = bech32_decode(nsec)
    if hrp != 'nsec' or data is None:
        raise ValueError("Invalid nsec format")

    # Convert from 5-bit to 8-bit
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        raise ValueError("Invalid nsec data")

    return bytes(decoded).hex()


def pubkey_to_npub(pubkey_hex: str) -> str:
    """Convert x-only hex pubkey to npub (bech32)"""
    if len(pubkey_hex) != 64:
        raise ValueError("Pubkey must be 64 hex characters")

    data = convertbits(bytes.fromhex(pubkey_hex), 8, 5)
    npub = bech32_encode('npub', data) if data is not None else None
    if npub is None:
        raise ValueError("Failed to encode npub")
    return npub


def normalize_private_key(value: str) -> str:
    """Accept a private key as nsec or 64 hex characters and return hex"""
    value = value.strip()
    if value.startswith('nsec1'):
        return nsec_to_hex(value)

    if len(value) != 64:
        raise ValueError("Private key must be nsec or 64 hex characters")
    bytes.fromhex(value)
    return value.lower()


def compute_event_id(event: Dict[str, Any]) -> str:
    """NIP-01 event id: sha256 of the canonical serialization"""
    serialized = json.dumps([
        0,
        event["pubkey"],
        event["created_at"],
        event["kind"],
        event["tags"],
        event["content"]
    ], separators=(',', ':'), ensure_ascii=False)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


def verify_event(event: Dict[str, Any]) -> bool:
    """Check an event's id and BIP-340 signature"""
    try:
        if compute_event_id(event) != event["id"]:
            return False

        # Any valid prefix works; verification only uses the x coordinate
        public_key = PublicKey(bytes.fromhex("02" + event["pubkey"]), raw=True)
        return public_key.schnorr_verify(
            bytes.fromhex(event["id"]),
            bytes.fromhex(event["sig"]),
            None,
            raw=True
        )
    except Exception as e:
        logger.debug(f"Event verification failed: {e}")
        return False


class NostrSigner:
    """Holds the service's Nostr key and signs events with it"""

    def __init__(self, private_key: Optional[str] = None):
        self.private_key = None
        self.public_key_hex = None

        if not private_key:
            logger.warning("NOSTR_PRIVATE_KEY not set - zap receipts disabled")
            return

        try:
            private_key_bytes = bytes.fromhex(normalize_private_key(private_key))
            self.private_key = PrivateKey(private_key_bytes, raw=True)

            # x-only public key
            self.public_key_hex = self.private_key.pubkey.serialize(compressed=True)[1:].hex()
            logger.info(f"Nostr signer initialized with pubkey: {self.public_key_hex[:16]}...")
        except Exception as e:
            logger.error(f"Failed to initialize Nostr signer: {str(e)}")
            self.private_key = None
            self.public_key_hex = None

    def is_enabled(self) -> bool:
        return self.private_key is not None

    def sign(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of the unsigned event with pubkey, id and sig filled in"""
        if not self.private_key:
            raise ValueError("Private key not initialized")

        signed = {
            "kind": event["kind"],
            "created_at": event.get("created_at") or int(time.time()),
            "tags": event.get("tags", []),
            "content": event.get("content", ""),
            "pubkey": self.public_key_hex
        }
        signed["id"] = compute_event_id(signed)

        signature = self.private_key.schnorr_sign(bytes.fromhex(signed["id"]), None, raw=True)
        signed["sig"] = signature.hex()

        return signed


# Global signer instance
nostr_signer = NostrSigner(settings.NOSTR_PRIVATE_KEY)
