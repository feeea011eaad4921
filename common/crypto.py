import binascii

from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, modes

ENC = "utf-8"
KEY_SIZE = 8      # DES key length in bytes
BLOCK_SIZE = 8    # DES block length in bytes


class KeyValidationError(ValueError):
    """Raised when a shared key is not exactly KEY_SIZE bytes long."""
    pass


class CipherDecodeError(ValueError):
    """Raised when an incoming body cannot be hex-decoded, decrypted or unpadded."""
    pass


def validate_key(text: str) -> bytes:
    '''
    This function checks a user-typed key and returns its byte form.
    Input:
        - text: the key as typed (surrounding whitespace is ignored)
    Output: the key as 8 bytes
    Raises KeyValidationError when the trimmed key is not exactly 8 bytes.
    '''
    key = text.strip().encode(ENC)
    if len(key) != KEY_SIZE:
        raise KeyValidationError(
            f"invalid key: key length must be {KEY_SIZE} bytes (got {len(key)})")
    return key


def _cipher(key: bytes) -> Cipher:
    # A 3DES key made of one 8-byte key repeated three times is single DES.
    # The key doubles as the IV to stay wire compatible with existing clients.
    if len(key) != KEY_SIZE:
        raise KeyValidationError(f"invalid key: key length must be {KEY_SIZE} bytes")
    return Cipher(TripleDES(key * 3), modes.CBC(key))


def encrypt(plaintext: str, key: bytes) -> str:
    '''
    This function encrypts a chat body with DES-CBC.
    Input:
        - plaintext: text to encrypt
        - key: 8-byte key from validate_key (also used as IV)
    Output: lowercase hex string of the ciphertext
    Padding is always appended, so an input that is already a multiple of
    the block size grows by one full block.
    '''
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    data = padder.update(plaintext.encode(ENC)) + padder.finalize()
    enc = _cipher(key).encryptor()
    ct = enc.update(data) + enc.finalize()
    return ct.hex()


def decrypt(hex_text: str, key: bytes) -> str:
    '''
    This function reverses encrypt().
    Input:
        - hex_text: hex string produced by encrypt()
        - key: the same 8-byte key
    Output: the original text
    Raises CipherDecodeError for malformed hex, a ciphertext that is not a
    whole number of blocks, bad padding or a plaintext that is not UTF-8.
    '''
    try:
        ct = binascii.unhexlify(hex_text.strip())
    except (binascii.Error, ValueError) as exc:
        raise CipherDecodeError(f"body is not valid hex: {exc}") from exc
    if not ct or len(ct) % BLOCK_SIZE:
        raise CipherDecodeError(
            f"ciphertext length {len(ct)} is not a positive multiple of {BLOCK_SIZE}")

    dec = _cipher(key).decryptor()
    data = dec.update(ct) + dec.finalize()

    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        data = unpadder.update(data) + unpadder.finalize()
    except ValueError as exc:
        # wrong key or corrupted ciphertext
        raise CipherDecodeError("invalid padding") from exc

    try:
        return data.decode(ENC)
    except UnicodeDecodeError as exc:
        raise CipherDecodeError("decrypted body is not valid UTF-8") from exc
