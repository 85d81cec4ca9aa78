"""Wire encodings used by the MPC signing protocol and JSON-RPC."""

import base64


def remove_hex_leading_zero(hex_str: str, keep_one_zero: bool = False) -> str:
    """Strip leading zero digits from a hex string, keeping any ``0x`` prefix.

        Example:
            remove_hex_leading_zero("0x00", keep_one_zero=True) == "0x0"
            remove_hex_leading_zero("0x00") == "0x"
            remove_hex_leading_zero("0x0a1") == "0xa1"

    Input is not validated as hex.
    """
    prefixed = hex_str.startswith("0x")
    digits = hex_str[2:] if prefixed else hex_str
    digits = digits.lstrip("0")
    if not digits and keep_one_zero:
        digits = "0"
    return "0x" + digits if prefixed else digits


def base64_to_hex(base64_string: str) -> str:
    """Decode standard base64 and re-encode it as ``0x``-prefixed lowercase hex.

    Raises:
        binascii.Error: the input is not valid base64.
    """
    raw = base64.b64decode(base64_string, validate=True)
    return "0x" + raw.hex()


def to_hex_quantity(value: int) -> str:
    """JSON-RPC quantity encoding: no leading zeros, ``0x0`` for zero."""
    if value < 0:
        raise ValueError(f"quantity must be non-negative, got {value}")
    return remove_hex_leading_zero(f"0x{value:x}", keep_one_zero=True)


def hex_to_int(value: str | int | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    return int(value, 16)
