"""Decode chains for obfuscated host payloads.

Hosts hide their real download/manifest URLs behind stacked reversible
transforms. A chain is an ordered tuple of ``DecodeStep``; every op is a
pure function and any malformed intermediate value aborts the whole
chain with ``DecodeError``.

Chains used in practice:

- gateway payload: base64 -> base64 -> rot13 -> base64 (JSON object)
- player cipher:   hex -> AES-CBC (JSON object with manifest + subtitles)
- packed player:   Dean Edwards packer -> JWPlayer setup script
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

import structlog
from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from resolvarr.domain.exceptions import DecodeError

log = structlog.get_logger(__name__)

Value = bytes | str
Validator = Callable[[str], bool]


class DecodeOp(Enum):
    BASE64 = "base64"
    ROT13 = "rot13"
    HEX = "hex"
    AES_CBC = "aes_cbc"
    UNPACK = "unpack"


def is_json_object(text: str) -> bool:
    """Default plaintext check: the payload parses as a JSON object."""
    try:
        return isinstance(json.loads(text), dict)
    except ValueError:
        return False


@dataclass(frozen=True)
class DecodeStep:
    """One named transform; AES steps carry their key material."""

    op: DecodeOp
    key: bytes = b""
    ivs: tuple[bytes, ...] = ()
    validator: Validator = is_json_object


# ---------------------------------------------------------------------------
# Pure ops
# ---------------------------------------------------------------------------


def _as_text(value: Value, op: DecodeOp) -> str:
    if isinstance(value, str):
        return value
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"{op.value}: input is not valid UTF-8") from exc


def b64decode(value: Value) -> bytes:
    """Standard-alphabet base64 with padding fix."""
    data = "".join(_as_text(value, DecodeOp.BASE64).split())
    if not data:
        raise DecodeError("base64: empty input")
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"base64: {exc}") from exc


def rot13(value: Value) -> str:
    """ROT13 on ASCII letters only; everything else passes through."""
    result: list[str] = []
    for ch in _as_text(value, DecodeOp.ROT13):
        code = ord(ch)
        if 0x41 <= code <= 0x5A:  # A-Z
            code = (code - 0x41 + 13) % 26 + 0x41
        elif 0x61 <= code <= 0x7A:  # a-z
            code = (code - 0x61 + 13) % 26 + 0x61
        result.append(chr(code))
    return "".join(result)


def hex_to_bytes(value: Value) -> bytes:
    text = _as_text(value, DecodeOp.HEX).strip()
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise DecodeError(f"hex: {exc}") from exc


def aes_cbc_decrypt(
    value: Value,
    key: bytes,
    ivs: Sequence[bytes],
    validator: Validator = is_json_object,
) -> str:
    """Decrypt with each candidate IV in order; first valid plaintext wins.

    A candidate is accepted only if PKCS#7 unpadding succeeds, the
    plaintext is strict UTF-8 and *validator* accepts it.
    """
    ciphertext = value.encode("latin-1") if isinstance(value, str) else value
    if not ciphertext or len(ciphertext) % AES.block_size:
        raise DecodeError("aes: ciphertext length is not a multiple of 16")
    if not ivs:
        raise DecodeError("aes: no candidate IVs")

    for index, iv in enumerate(ivs):
        try:
            cipher = AES.new(key, AES.MODE_CBC, iv)
            plain = unpad(cipher.decrypt(ciphertext), AES.block_size)
            text = plain.decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            log.debug("aes_iv_rejected", iv_index=index, reason="padding_or_utf8")
            continue
        if validator(text):
            return text
        log.debug("aes_iv_rejected", iv_index=index, reason="validator")

    raise DecodeError(f"aes: none of {len(ivs)} candidate IVs produced valid output")


# }('payload',radix,count,'w0|w1|...'.split('|') closing an
# eval(function(p,a,c,k,e,d){...}) block.
_PACKER_ARGS_RE = re.compile(
    r"}\s*\(\s*'(?P<payload>(?:\\.|[^'\\])*)'\s*,\s*(?P<radix>\d+)\s*,"
    r"\s*(?P<count>\d+)\s*,\s*'(?P<words>[^']*)'\s*\.split\(\s*'\|'\s*\)",
    re.DOTALL,
)
_PACKER_TOKEN_RE = re.compile(r"\b\w+\b")
_RADIX_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _from_radix(token: str, radix: int) -> int | None:
    number = 0
    for ch in token:
        digit = _RADIX_DIGITS.find(ch)
        if digit < 0 or digit >= radix:
            return None
        number = number * radix + digit
    return number


def unpack_packed_js(value: Value) -> str:
    """Unpack every Dean Edwards packed block in *value*.

    Each base-N token of the packed payload is replaced by its entry in
    the word list; tokens with an empty entry stay as they are. The
    unpacked blocks are joined with newlines.
    """
    text = _as_text(value, DecodeOp.UNPACK)
    blocks: list[str] = []
    for m in _PACKER_ARGS_RE.finditer(text):
        radix = int(m.group("radix"))
        if not 2 <= radix <= len(_RADIX_DIGITS):
            raise DecodeError(f"unpack: unsupported radix {radix}")
        words = m.group("words").split("|")
        count = int(m.group("count"))
        if len(words) < count:
            words.extend([""] * (count - len(words)))
        payload = m.group("payload").replace("\\\\", "\\").replace("\\'", "'")

        def _word(token: re.Match[str]) -> str:
            index = _from_radix(token.group(0), radix)
            if index is not None and index < len(words) and words[index]:
                return words[index]
            return token.group(0)

        blocks.append(_PACKER_TOKEN_RE.sub(_word, payload))

    if not blocks:
        raise DecodeError("unpack: no packed script found")
    return "\n".join(blocks)


# ---------------------------------------------------------------------------
# Chain runner
# ---------------------------------------------------------------------------


def _apply(step: DecodeStep, value: Value) -> Value:
    if step.op is DecodeOp.BASE64:
        return b64decode(value)
    if step.op is DecodeOp.ROT13:
        return rot13(value)
    if step.op is DecodeOp.HEX:
        return hex_to_bytes(value)
    if step.op is DecodeOp.AES_CBC:
        return aes_cbc_decrypt(value, step.key, step.ivs, step.validator)
    if step.op is DecodeOp.UNPACK:
        return unpack_packed_js(value)
    raise DecodeError(f"unsupported op: {step.op!r}")


def decode(raw: str, steps: Sequence[DecodeStep]) -> str:
    """Run *raw* through *steps* and return the final text."""
    value: Value = raw
    for step in steps:
        value = _apply(step, value)
    return _as_text(value, steps[-1].op if steps else DecodeOp.BASE64)


def decode_json(raw: str, steps: Sequence[DecodeStep]) -> dict[str, Any]:
    """Run a chain whose final output must be a JSON object."""
    text = decode(raw, steps)
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise DecodeError(f"decoded payload is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError("decoded payload is not a JSON object")
    return data


# ---------------------------------------------------------------------------
# Named chains
# ---------------------------------------------------------------------------

GATEWAY_PAYLOAD_CHAIN: tuple[DecodeStep, ...] = (
    DecodeStep(DecodeOp.BASE64),
    DecodeStep(DecodeOp.BASE64),
    DecodeStep(DecodeOp.ROT13),
    DecodeStep(DecodeOp.BASE64),
)

PLAYER_CIPHER_KEY = b"kiemtienmua911ca"
PLAYER_CIPHER_IVS: tuple[bytes, ...] = (b"0123456789abcdef", b"1234567890oiuytr")


def player_cipher_chain(
    key: bytes = PLAYER_CIPHER_KEY,
    ivs: tuple[bytes, ...] = PLAYER_CIPHER_IVS,
) -> tuple[DecodeStep, ...]:
    return (
        DecodeStep(DecodeOp.HEX),
        DecodeStep(DecodeOp.AES_CBC, key=key, ivs=ivs),
    )


PLAYER_CIPHER_CHAIN = player_cipher_chain()

PACKED_PLAYER_CHAIN: tuple[DecodeStep, ...] = (DecodeStep(DecodeOp.UNPACK),)


def encode_gateway_payload(plain: str) -> str:
    """Inverse of ``GATEWAY_PAYLOAD_CHAIN``."""
    step = base64.b64encode(plain.encode("utf-8")).decode("ascii")
    step = rot13(step)
    step = base64.b64encode(step.encode("ascii")).decode("ascii")
    return base64.b64encode(step.encode("ascii")).decode("ascii")
