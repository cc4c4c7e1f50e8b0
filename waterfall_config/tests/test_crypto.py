"""
加密与密钥库测试
"""

import base64
import json
import pickle

import pytest

from waterfall_config.config.crypto import (
    CipherState,
    EncryptionError,
    SecretCipherEngine,
    SecureBytes,
    Sealed,
    Transformation,
    generate_iv,
    generate_key,
    seal,
    unseal,
)
from waterfall_config.config.errors import DecryptionFailed, InitializationFailed
from waterfall_config.config.keystore import FileKeyStore, KeyStoreError


KEY = bytes(range(32))
IV = bytes(range(16))


class TestSeal:
    """测试口令封装"""

    def test_seal_unseal(self):
        """测试封装后可用同一口令打开"""
        sealed = seal("test_password", b"Hello, World!", iterations=1000)

        assert b"Hello, World!" not in sealed.ciphertext
        assert unseal("test_password", sealed) == b"Hello, World!"

    def test_random_salt_and_nonce(self):
        """测试每次封装的盐值和 nonce 不同"""
        first = seal("pw", b"payload", iterations=1000)
        second = seal("pw", b"payload", iterations=1000)

        assert first.salt != second.salt
        assert first.nonce != second.nonce

    def test_wrong_password(self):
        """测试口令错误"""
        sealed = seal("right", b"payload", iterations=1000)

        with pytest.raises(EncryptionError):
            unseal("wrong", sealed)

    def test_associated_data(self):
        """测试附加数据必须一致"""
        sealed = seal("pw", b"payload", iterations=1000, associated_data=b"alias-a")

        assert unseal("pw", sealed, b"alias-a") == b"payload"
        with pytest.raises(EncryptionError):
            unseal("pw", sealed, b"alias-b")

    def test_dict_form(self):
        """测试字典形式"""
        sealed = seal("pw", b"payload", iterations=1000)
        restored = Sealed.from_dict(json.loads(json.dumps(sealed.to_dict())))

        assert restored == sealed
        with pytest.raises(KeyError):
            Sealed.from_dict({"salt": "", "nonce": ""})
        with pytest.raises(ValueError):
            Sealed.from_dict({**sealed.to_dict(), "salt": "***"})


class TestSecureBytes:
    """测试安全字节容器"""

    def test_zero(self):
        """测试过零"""
        secure = SecureBytes(b"secret")
        assert secure.bytes == b"secret"
        assert len(secure) == 6

        secure.zero()
        assert secure.bytes == b"\x00" * 6

    def test_not_picklable(self):
        """测试禁止序列化"""
        with pytest.raises(TypeError):
            pickle.dumps(SecureBytes(b"secret"))


class TestTransformation:
    """测试变换描述解析"""

    def test_parse(self):
        """测试大小写不敏感"""
        transformation = Transformation.parse("aes/cbc/PKCS5Padding")

        assert transformation.algorithm == "AES"
        assert transformation.mode == "CBC"
        assert transformation.padded
        assert str(transformation) == "AES/CBC/PKCS5PADDING"

    @pytest.mark.parametrize("spec", [
        "AES",
        "AES/ECB/PKCS5Padding",
        "DES/CBC/PKCS5Padding",
        "AES/CTR/PKCS5Padding",
        "AES/CBC/ISO10126Padding",
        "Camellia/CBC/PKCS5Padding",
        "AES/OFB/NoPadding",
        "AES/CFB8/NoPadding",
        "AES/CBC",
        "AES//NoPadding",
    ])
    def test_rejected(self, spec):
        """测试不支持的变换"""
        with pytest.raises(ValueError):
            Transformation.parse(spec)


class TestSecretCipherEngine:
    """测试配置值解密引擎"""

    @pytest.mark.parametrize("spec,key_type,iv", [
        ("AES/CBC/PKCS5Padding", "AES", IV),
        ("AES/CTR/NoPadding", "AES", IV),
        ("AES/GCM/NoPadding", "AES", IV[:12]),
        ("AES/CBC/PKCS7Padding", "aes", IV),
    ])
    def test_round_trip(self, spec, key_type, iv):
        """测试各模式加密后可解密"""
        engine = SecretCipherEngine(spec, key_type, KEY, iv)

        assert engine.state is CipherState.READY
        assert engine.decrypt(engine.encrypt("秘密 value".encode("utf-8"))).decode("utf-8") == "秘密 value"

    def test_single_block_padding(self):
        """测试 PKCS7 填充长度"""
        engine = SecretCipherEngine("AES/CBC/PKCS5Padding", "AES", KEY, IV)
        ciphertext = base64.b64decode(engine.encrypt(b"secret-value"))

        # 12 字节明文填充到一个块
        assert len(ciphertext) == 16

    def test_deterministic(self):
        """测试固定密钥和 IV 时输出确定"""
        engine = SecretCipherEngine("AES/CBC/PKCS5Padding", "AES", KEY, IV)

        assert engine.encrypt(b"abc") == engine.encrypt(b"abc")

    @pytest.mark.parametrize("spec,key_type,key,iv", [
        ("AES/CBC/PKCS5Padding", "AES", KEY, IV[:8]),
        ("AES/CBC/PKCS5Padding", "AES", KEY[:20], IV),
        ("AES/CBC/PKCS5Padding", "Camellia", KEY, IV),
        ("AES/GCM/NoPadding", "AES", KEY, IV[:4]),
        ("AES", "AES", KEY, IV),
    ])
    def test_initialization_failed(self, spec, key_type, key, iv):
        """测试初始化失败"""
        with pytest.raises(InitializationFailed):
            SecretCipherEngine(spec, key_type, key, iv)

    def test_rejects_bad_input(self):
        """测试非法密文"""
        engine = SecretCipherEngine("AES/CBC/PKCS5Padding", "AES", KEY, IV)

        with pytest.raises(DecryptionFailed):
            engine.decrypt("not base64!")
        with pytest.raises(DecryptionFailed):
            engine.decrypt(base64.b64encode(b"short").decode())

    def test_gcm_tamper(self):
        """测试 GCM 认证失败"""
        engine = SecretCipherEngine("AES/GCM/NoPadding", "AES", KEY, IV[:12])
        data = bytearray(base64.b64decode(engine.encrypt(b"value")))
        data[-1] ^= 0x01

        with pytest.raises(DecryptionFailed):
            engine.decrypt(base64.b64encode(bytes(data)).decode())

    def test_generate(self):
        """测试随机密钥和 IV"""
        assert len(generate_key(128)) == 16
        assert len(base64.b64decode(generate_iv(12))) == 12
        with pytest.raises(ValueError):
            generate_key(100)


class TestFileKeyStore:
    """测试文件密钥库"""

    def test_save_and_open(self, tmp_path):
        """测试保存后重新打开"""
        path = tmp_path / "keystore.json"
        store = FileKeyStore("store-pw", iterations=1000)
        store.set_key("app", KEY, "key-pw")
        store.save(path)

        opened = FileKeyStore.open(path, "store-pw")

        assert opened.aliases() == ["app"]
        assert opened.contains_alias("app")
        assert opened.load_key("app", "key-pw") == KEY
        assert opened.entry("app").algorithm == "AES"
        assert oct(path.stat().st_mode & 0o777) == "0o600"

    def test_key_not_stored_in_clear(self, tmp_path):
        """测试文件中不出现明文密钥"""
        path = tmp_path / "keystore.json"
        store = FileKeyStore("store-pw", iterations=1000)
        store.set_key("app", KEY, "key-pw")
        store.save(path)

        content = path.read_text()
        assert KEY.hex() not in content
        assert json.loads(content)["format"] == "wconf-keystore"

    def test_wrong_store_password(self, tmp_path):
        """测试存储口令错误"""
        path = tmp_path / "keystore.json"
        FileKeyStore.create(path, "store-pw", iterations=1000)

        with pytest.raises(KeyStoreError, match="Cannot authenticate"):
            FileKeyStore.open(path, "nope")

    def test_wrong_key_password(self):
        """测试密钥口令错误"""
        store = FileKeyStore("store-pw", iterations=1000)
        store.set_key("app", KEY, "key-pw")

        with pytest.raises(KeyStoreError):
            store.load_key("app", "nope")

    def test_entry_bound_to_alias(self, tmp_path):
        """测试条目挪到其他别名下无法使用"""
        path = tmp_path / "keystore.json"
        store = FileKeyStore("store-pw", iterations=1000)
        store.set_key("app", KEY, "key-pw")
        store.save(path)

        moved = FileKeyStore.open(path, "store-pw")
        moved._entries["other"] = moved._entries["app"]

        with pytest.raises(KeyStoreError):
            moved.load_key("other", "key-pw")

    def test_missing_alias(self):
        """测试别名不存在"""
        store = FileKeyStore("store-pw", iterations=1000)

        assert not store.contains_alias("app")
        with pytest.raises(KeyStoreError):
            store.load_key("app", "key-pw")
        with pytest.raises(KeyStoreError):
            store.entry("app")

    @pytest.mark.parametrize("data", [
        b"not json",
        b'{"format": "other"}',
        b'{"format": "wconf-keystore", "version": 99}',
        b'{"format": "wconf-keystore", "version": 1}',
    ])
    def test_malformed(self, data):
        """测试格式错误"""
        with pytest.raises(KeyStoreError):
            FileKeyStore.from_bytes(data, "store-pw")

    def test_missing_file(self, tmp_path):
        """测试文件不存在"""
        with pytest.raises(KeyStoreError):
            FileKeyStore.open(tmp_path / "absent.json", "store-pw")

    def test_empty_key_rejected(self):
        """测试空密钥"""
        with pytest.raises(KeyStoreError):
            FileKeyStore("store-pw", iterations=1000).set_key("app", b"", "key-pw")
