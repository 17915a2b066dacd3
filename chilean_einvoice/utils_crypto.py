import base64
import hashlib

from cryptography.hazmat.primitives.asymmetric import rsa


def int_to_unsigned_bytes(value: int) -> bytes:
    """Minimal big-endian bytes, without the sign byte DER adds when the high bit is set."""
    length = max(1, (value.bit_length() + 7) // 8)
    return value.to_bytes(length, "big")


def int_to_b64(value: int) -> str:
    return base64.b64encode(int_to_unsigned_bytes(value)).decode("ascii")


def b64_to_int(value: str) -> int:
    return int.from_bytes(base64.b64decode("".join(value.split())), "big")


def rsa_modexp_b64(public_key: rsa.RSAPublicKey) -> tuple[str, str]:
    numbers = public_key.public_numbers()
    return int_to_b64(numbers.n), int_to_b64(numbers.e)


def rsa_public_key_from_modexp(modulus_b64: str, exponent_b64: str) -> rsa.RSAPublicKey:
    public_numbers = rsa.RSAPublicNumbers(b64_to_int(exponent_b64), b64_to_int(modulus_b64))
    return public_numbers.public_key()


def thumbprint_sha1_b64(der: bytes) -> str:
    return base64.b64encode(hashlib.sha1(der).digest()).decode("ascii")
