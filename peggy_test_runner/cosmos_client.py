import json
import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys as eth_keys

from .common import Fee
from .error import HttpRequestException
from .keys import (
    cosmos_address,
    cosmos_public_key,
    cosmos_raw_address,
    eth_address,
)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

logger = logging.getLogger("cosmos_client")


@dataclass
class AccountInfo:
    address: str
    account_number: int
    sequence: int


@dataclass
class TxResponse:
    txhash: str
    height: int
    code: int
    raw_log: str

    @property
    def ok(self) -> bool:
        return self.code == 0


def _check_reponse(response: requests.Response) -> None:
    if response.status_code != requests.codes.ok:  # pylint: disable=no-member
        raise HttpRequestException(response.status_code, response.text)


def amino_json(document: Any) -> bytes:
    return json.dumps(document, sort_keys=True, separators=(',', ':')).encode('utf8')


def sign_amino(document: Dict[str, Any], private_key: bytes) -> bytes:
    """Signs the canonical JSON of a StdSignDoc, returning the 64 byte r || s
    form Tendermint expects, normalized to the lower s value.
    """
    digest = hashlib.sha256(amino_json(document)).digest()
    signature = eth_keys.PrivateKey(private_key).sign_msg_hash(digest)
    s = signature.s
    if s > SECP256K1_N // 2:
        s = SECP256K1_N - s
    return signature.r.to_bytes(32, 'big') + s.to_bytes(32, 'big')


def msg_set_eth_address(cosmos_key: bytes, eth_key: bytes) -> Dict[str, Any]:
    # the Eth key signs the validator's Cosmos address to prove both are held by the same party
    signed = Account.sign_message(encode_defunct(primitive=cosmos_raw_address(cosmos_key)), private_key=eth_key)
    return {
        "type": "peggy/MsgSetEthAddress",
        "value": {
            "address": eth_address(eth_key),
            "validator": cosmos_address(cosmos_key),
            "signature": bytes(signed.signature).hex(),
        },
    }


def msg_valset_request(cosmos_key: bytes) -> Dict[str, Any]:
    return {
        "type": "peggy/MsgValsetRequest",
        "value": {
            "requester": cosmos_address(cosmos_key),
        },
    }


class CosmosClient():
    def __init__(self, url: str, timeout: float, gas: int = 200000) -> None:
        super().__init__()
        self.url = url.rstrip('/')
        self.timeout = timeout
        self.gas = gas
        self._chain_id: Optional[str] = None

    def __repr__(self) -> str:
        return '<CosmosClient(url={})>'.format(repr(self.url))

    def _get(self, path: str) -> Any:
        rep = requests.get(self.url + path, timeout=self.timeout)
        _check_reponse(rep)
        return rep.json()

    def latest_block_height(self) -> int:
        message = self._get('/blocks/latest')
        return int(message['block']['header']['height'])

    def chain_id(self) -> str:
        if self._chain_id is None:
            message = self._get('/node_info')
            self._chain_id = message['node_info']['network']
        return self._chain_id

    def get_account(self, address: str) -> AccountInfo:
        message = self._get('/auth/accounts/{}'.format(address))
        value = message['result']['value']
        return AccountInfo(
            address=address,
            account_number=int(value.get('account_number', 0)),
            sequence=int(value.get('sequence', 0)))

    def broadcast(self, msgs: List[Dict[str, Any]], private_key: bytes, fee: Fee, memo: str = '') -> TxResponse:
        """Signs and submits a transaction in block mode, so this returns once
        the transaction is committed or rejected.
        """
        address = cosmos_address(private_key)
        account = self.get_account(address)
        std_fee = {"amount": [fee.to_amino()], "gas": str(self.gas)}
        sign_doc = {
            "account_number": str(account.account_number),
            "chain_id": self.chain_id(),
            "fee": std_fee,
            "memo": memo,
            "msgs": msgs,
            "sequence": str(account.sequence),
        }
        signature = sign_amino(sign_doc, private_key)
        tx = {
            "msg": msgs,
            "fee": std_fee,
            "memo": memo,
            "signatures": [{
                "pub_key": {
                    "type": "tendermint/PubKeySecp256k1",
                    "value": base64.b64encode(cosmos_public_key(private_key)).decode('ascii'),
                },
                "signature": base64.b64encode(signature).decode('ascii'),
            }],
        }
        logger.debug("Broadcasting %s from %s with sequence %d", [m["type"] for m in msgs], address, account.sequence)
        rep = requests.post(self.url + '/txs', json={"tx": tx, "mode": "block"}, timeout=self.timeout)
        _check_reponse(rep)
        message = rep.json()
        return TxResponse(
            txhash=message.get('txhash', ''),
            height=int(message.get('height', 0)),
            code=int(message.get('code', 0)),
            raw_log=message.get('raw_log', ''))

    def update_eth_address(self, cosmos_key: bytes, eth_key: bytes, fee: Fee) -> TxResponse:
        return self.broadcast([msg_set_eth_address(cosmos_key, eth_key)], cosmos_key, fee)

    def send_valset_request(self, cosmos_key: bytes, fee: Fee) -> TxResponse:
        return self.broadcast([msg_valset_request(cosmos_key)], cosmos_key, fee)
