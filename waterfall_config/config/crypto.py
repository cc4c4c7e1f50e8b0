"""
加密/解密模块

- SecretCipherEngine: 配置值解密引擎 (算法、密钥、IV 在初始化后固定)
- seal / unseal: 口令派生密钥 (PBKDF2-SHA256) + AES-256-GCM，用于密钥库
- SecureBytes: 密钥材料容器 (尽量 mlock，过零，禁止 pickle)
"""

import base64
import binascii
import ctypes
import ctypes.util
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionFailed, InitializationFailed

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 600_000  # OWASP 2023 推荐
SALT_SIZE = 16
NONCE_SIZE = 12  # GCM 推荐
SEAL_KEY_SIZE = 32  # AES-256


def _load_libc() -> Optional[ctypes.CDLL]:
    name = ctypes.util.find_library("c")
    if not name:
        return None
    try:
        return ctypes.CDLL(name)
    except OSError:
        return None


_LIBC = _load_libc()


class EncryptionError(Exception):
    """口令封装的数据无法打开 (口令错误或数据被篡改)"""


class SecureBytes:
    """
    密钥材料

    构造时尝试 mlock 防止换出到 swap，zero() 或回收时清零。
    """

    def __init__(self, data: bytes):
        self._buffer = bytearray(data)
        self._locked = self._memlock("mlock")
        if not self._locked:
            logger.debug("mlock unavailable, key material stays swappable")

    def _memlock(self, call: str) -> bool:
        if _LIBC is None or not self._buffer:
            return False
        try:
            view = (ctypes.c_char * len(self._buffer)).from_buffer(self._buffer)
            ok = getattr(_LIBC, call)(
                ctypes.c_void_p(ctypes.addressof(view)), ctypes.c_size_t(len(self._buffer))
            ) == 0
            del view
            return ok
        except (AttributeError, OSError, TypeError, ValueError, ctypes.ArgumentError):
            return False

    @property
    def bytes(self) -> bytes:
        """字节副本"""
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def zero(self) -> None:
        self._buffer[:] = bytes(len(self._buffer))

    def __del__(self):
        if not hasattr(self, "_buffer"):
            return
        self.zero()
        if self._locked:
            self._memlock("munlock")

    def __reduce__(self):
        raise TypeError("SecureBytes cannot be pickled")


def derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    """PBKDF2-SHA256 派生 256 位密钥"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=SEAL_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


@dataclass(frozen=True)
class Sealed:
    """口令封装结果，ciphertext 末尾带 16 字节 GCM 标签"""
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    iterations: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Sealed":
        """
        Raises:
            KeyError, ValueError, TypeError: 字段缺失或格式错误
        """
        return cls(
            salt=base64.b64decode(data["salt"], validate=True),
            nonce=base64.b64decode(data["nonce"], validate=True),
            ciphertext=base64.b64decode(data["ciphertext"], validate=True),
            iterations=int(data["iterations"]),
        )


def seal(
    password: str,
    plaintext: bytes,
    iterations: int = PBKDF2_ITERATIONS,
    associated_data: Optional[bytes] = None,
) -> Sealed:
    """用口令加密，盐值和 nonce 每次随机生成"""
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = SecureBytes(derive_key(password, salt, iterations))
    try:
        ciphertext = AESGCM(key.bytes).encrypt(nonce, plaintext, associated_data)
    finally:
        key.zero()
    return Sealed(salt=salt, nonce=nonce, ciphertext=ciphertext, iterations=iterations)


def unseal(password: str, sealed: Sealed, associated_data: Optional[bytes] = None) -> bytes:
    """
    Raises:
        EncryptionError: 口令错误、附加数据不符或数据被篡改
    """
    key = SecureBytes(derive_key(password, sealed.salt, sealed.iterations))
    try:
        return AESGCM(key.bytes).decrypt(sealed.nonce, sealed.ciphertext, associated_data)
    except (InvalidTag, ValueError) as e:
        raise EncryptionError("Cannot unseal data: wrong password or tampered content") from e
    finally:
        key.zero()


_ALGORITHMS = {
    "AES": algorithms.AES,
    "SM4": algorithms.SM4,
}

_MODES = {
    "CBC": modes.CBC,
    "CTR": modes.CTR,
    "GCM": None,  # 走 AESGCM
}

_PADDED = {"PKCS5PADDING", "PKCS7PADDING"}


@dataclass(frozen=True)
class Transformation:
    """
    算法/模式/填充，如 AES/CBC/PKCS5Padding

    只写算法名时等价于 <alg>/ECB/PKCS5Padding (ECB 不接受 IV，因此不支持)。
    """
    algorithm: str
    mode: str
    padding: str

    @classmethod
    def parse(cls, text: str) -> "Transformation":
        parts = [part.strip() for part in text.split("/")]
        if len(parts) == 1:
            parts = [parts[0], "ECB", "PKCS5Padding"]
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Invalid transformation: {text}")

        algorithm, mode, pad = parts[0].upper(), parts[1].upper(), parts[2].upper()
        if algorithm not in _ALGORITHMS:
            raise ValueError(f"Unsupported cipher algorithm: {parts[0]}")
        if mode not in _MODES:
            raise ValueError(f"Unsupported cipher mode: {parts[1]}")
        if pad not in _PADDED and pad != "NOPADDING":
            raise ValueError(f"Unsupported padding: {parts[2]}")
        if pad in _PADDED and mode != "CBC":
            raise ValueError(f"{parts[1]} mode does not take padding, use NoPadding")
        if mode == "GCM" and algorithm != "AES":
            raise ValueError("GCM mode is only supported with AES")
        return cls(algorithm=algorithm, mode=mode, padding=pad)

    @property
    def padded(self) -> bool:
        return self.padding in _PADDED

    def __str__(self) -> str:
        return f"{self.algorithm}/{self.mode}/{self.padding}"


class CipherState(str, Enum):
    """解密引擎状态"""
    DISABLED = "disabled"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SecretCipherEngine:
    """
    配置值解密引擎

    初始化一次，之后算法、密钥和 IV 都不再改变。
    每次 decrypt 都从不可变的密钥和 IV 新建变换对象，
    因此并发调用之间没有共享的可变状态。
    """

    def __init__(self, transformation: str, key_type: str, key: bytes, iv: bytes):
        self.state = CipherState.INITIALIZING
        try:
            self._transformation = Transformation.parse(transformation)
            if key_type.strip().upper() != self._transformation.algorithm:
                raise ValueError(
                    f"Key type {key_type} does not match cipher algorithm "
                    f"{self._transformation.algorithm}"
                )
            self._key = SecureBytes(key)
            self._iv = bytes(iv)
            self._probe()
        except (ValueError, UnsupportedAlgorithm) as e:
            self.state = CipherState.FAILED
            raise InitializationFailed(f"Could not initialize the encryption scheme: {e}") from e
        self.state = CipherState.READY

    @property
    def transformation(self) -> Transformation:
        return self._transformation

    @property
    def ready(self) -> bool:
        return self.state is CipherState.READY

    def _probe(self) -> None:
        """提前校验密钥长度、IV 长度和后端支持"""
        if self._transformation.mode == "GCM":
            AESGCM(self._key.bytes)
            if not 8 <= len(self._iv) <= 128:
                raise ValueError(f"Invalid GCM nonce size ({len(self._iv)} bytes)")
            return
        self._new_cipher().decryptor()

    def _new_cipher(self) -> Cipher:
        algorithm = _ALGORITHMS[self._transformation.algorithm](self._key.bytes)
        mode = _MODES[self._transformation.mode](self._iv)
        return Cipher(algorithm, mode)

    @property
    def _block_size(self) -> int:
        return _ALGORITHMS[self._transformation.algorithm].block_size

    def decrypt(self, ciphertext_b64: str) -> bytes:
        """
        解密 base64 编码的密文

        Raises:
            DecryptionFailed: base64 非法、块大小错误、填充错误或认证失败
        """
        try:
            data = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailed(f"Ciphertext is not valid base64: {e}") from e

        try:
            if self._transformation.mode == "GCM":
                return AESGCM(self._key.bytes).decrypt(self._iv, data, None)

            decryptor = self._new_cipher().decryptor()
            plaintext = decryptor.update(data) + decryptor.finalize()
            if self._transformation.padded:
                unpadder = padding.PKCS7(self._block_size).unpadder()
                plaintext = unpadder.update(plaintext) + unpadder.finalize()
            return plaintext
        except InvalidTag as e:
            raise DecryptionFailed("Could not decrypt value: authentication tag mismatch") from e
        except ValueError as e:
            raise DecryptionFailed(f"Could not decrypt value: {e}") from e

    def encrypt(self, plaintext: bytes) -> str:
        """加密并返回 base64，供工具和测试生成 cipher(...) 值"""
        if self._transformation.mode == "GCM":
            data = AESGCM(self._key.bytes).encrypt(self._iv, plaintext, None)
        else:
            if self._transformation.padded:
                padder = padding.PKCS7(self._block_size).padder()
                plaintext = padder.update(plaintext) + padder.finalize()
            encryptor = self._new_cipher().encryptor()
            data = encryptor.update(plaintext) + encryptor.finalize()
        return base64.b64encode(data).decode("ascii")


def generate_key(size_bits: int = 256) -> bytes:
    """生成随机对称密钥"""
    if size_bits % 8:
        raise ValueError("Key size must be a multiple of 8 bits")
    return os.urandom(size_bits // 8)


def generate_iv(size: int = 16) -> str:
    """生成随机 IV，返回 base64"""
    return base64.b64encode(os.urandom(size)).decode("ascii")
