import os
import hashlib
import logging
import dataclasses
from typing import (
    Callable,
    List,
)

from Crypto.Hash import RIPEMD160
from eth_account import Account
from eth_keys import keys as eth_keys
from eth_utils.exceptions import ValidationError

from .error import ProvisioningError

COSMOS_HD_PATH = "m/44'/118'/0'/0/0"
COSMOS_ADDRESS_PREFIX = "cosmos"

# Lines the key generation tool prints around every mnemonic
SEED_BOILERPLATE_MARKERS = (
    "write this mnemonic phrase",
    "recover your account if",
)

Account.enable_unaudited_hdwallet_features()


BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_GENERATOR = (0x3b6a57b2, 0x26508e6d, 0x1ea119fa, 0x3d4233dd, 0x2a1462b3)


def _bech32_polymod(values: List[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1ffffff) << 5 ^ value
        for i, generator in enumerate(BECH32_GENERATOR):
            if (top >> i) & 1:
                chk ^= generator
    return chk


def bech32_encode(hrp: str, data: bytes) -> str:
    """BIP-173 encoding of data under the human readable prefix hrp."""
    words = []
    acc = 0
    bits = 0
    for byte in data:
        acc = (acc << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            words.append((acc >> bits) & 31)
    if bits:
        words.append((acc << (5 - bits)) & 31)
    expanded_hrp = [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]
    polymod = _bech32_polymod(expanded_hrp + words + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + '1' + ''.join(BECH32_CHARSET[w] for w in words + checksum)


def cosmos_public_key(private_key: bytes) -> bytes:
    return eth_keys.PrivateKey(private_key).public_key.to_compressed_bytes()


def cosmos_raw_address(private_key: bytes) -> bytes:
    sha = hashlib.sha256(cosmos_public_key(private_key)).digest()
    return RIPEMD160.new(sha).digest()


def cosmos_address(private_key: bytes, prefix: str = COSMOS_ADDRESS_PREFIX) -> str:
    return bech32_encode(prefix, cosmos_raw_address(private_key))


def eth_address(private_key: bytes) -> str:
    return Account.from_key(private_key).address


@dataclasses.dataclass(frozen=True)
class ValidatorKeys:
    cosmos_key: bytes
    eth_key: bytes

    @property
    def cosmos_address(self) -> str:
        return cosmos_address(self.cosmos_key)

    @property
    def eth_address(self) -> str:
        return eth_address(self.eth_key)

    def __repr__(self) -> str:
        return '<ValidatorKeys(cosmos={}, eth={})>'.format(self.cosmos_address, self.eth_address)


def is_seed_phrase(line: str) -> bool:
    if line.strip() == '':
        return False
    return not any(marker in line for marker in SEED_BOILERPLATE_MARKERS)


def read_seed_phrases(path: str) -> List[str]:
    """Validator mnemonics are dumped by the chain setup in increasing order,
    so the first phrase belongs to validator 1 and so on. Validators may later
    fail to start but every validator has a phrase in this file.
    """
    try:
        with open(path) as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise ProvisioningError(path, 'Failed to find phrases ({})'.format(e.strerror)) from e
    except UnicodeDecodeError as e:
        raise ProvisioningError(path, 'Error reading phrase file') from e
    return [line.strip() for line in lines if is_seed_phrase(line)]


def cosmos_key_from_phrase(phrase: str) -> bytes:
    account = Account.from_mnemonic(phrase, passphrase="", account_path=COSMOS_HD_PATH)
    return bytes(account.key)


def generate_eth_private_key(random_bytes: Callable[[int], bytes] = os.urandom) -> bytes:
    key = random_bytes(32)
    # Out of range for secp256k1 with negligible probability, but then draw again
    while not _is_valid_secp256k1_key(key):
        key = random_bytes(32)
    return key


def _is_valid_secp256k1_key(key: bytes) -> bool:
    try:
        eth_keys.PrivateKey(key)
    except ValidationError:
        return False
    return True


def provision(path: str, random_bytes: Callable[[int], bytes] = os.urandom) -> List[ValidatorKeys]:
    result = []
    for i, phrase in enumerate(read_seed_phrases(path), start=1):
        try:
            cosmos_key = cosmos_key_from_phrase(phrase)
        except (ValidationError, ValueError) as e:
            raise ProvisioningError(path, 'Bad phrase for validator {}: {}'.format(i, e)) from e
        keys = ValidatorKeys(cosmos_key=cosmos_key, eth_key=generate_eth_private_key(random_bytes))
        logging.info("Validator %d is %s with Eth address %s", i, keys.cosmos_address, keys.eth_address)
        result.append(keys)
    return result
