"""
命令行工具测试
"""

import base64
import json

import pytest
import yaml

from waterfall_config.cli import main
from waterfall_config.config.keystore import FileKeyStore


STORE_PASSWORD = "store-pw"
KEY_PASSWORD = "key-pw"


@pytest.fixture
def keystore(tmp_path):
    path = tmp_path / "res" / "config" / "keystore.json"
    code = main([
        "keystore-create", str(path),
        "--alias", "app",
        "--iterations", "1000",
        "--store-password", STORE_PASSWORD,
        "--key-password", KEY_PASSWORD,
    ])
    assert code == 0
    return path


class TestCli:
    """测试 wconf 命令"""

    def test_keystore_create(self, tmp_path, capsys):
        """测试创建密钥库"""
        path = tmp_path / "keystore.json"
        code = main([
            "keystore-create", str(path),
            "--alias", "app",
            "--iterations", "1000",
            "--store-password", STORE_PASSWORD,
            "--key-password", KEY_PASSWORD,
        ])

        assert code == 0
        assert "Key app (AES, 256 bits)" in capsys.readouterr().out
        store = FileKeyStore.open(path, STORE_PASSWORD)
        assert len(store.load_key("app", KEY_PASSWORD)) == 32

    def test_keystore_add_second_key(self, keystore):
        """测试向已有密钥库添加密钥"""
        main([
            "keystore-create", str(keystore),
            "--alias", "other",
            "--key-size", "128",
            "--store-password", STORE_PASSWORD,
            "--key-password", KEY_PASSWORD,
        ])

        store = FileKeyStore.open(keystore, STORE_PASSWORD)
        assert store.aliases() == ["app", "other"]
        assert len(store.load_key("other", KEY_PASSWORD)) == 16

    def test_gen_iv(self, capsys):
        """测试生成 IV"""
        assert main(["gen-iv", "--size", "12"]) == 0

        assert len(base64.b64decode(capsys.readouterr().out.strip())) == 12

    def test_encrypt_then_get(self, keystore, tmp_path, capsys):
        """测试加密后通过 get 读取明文"""
        capsys.readouterr()
        iv = base64.b64encode(bytes(16)).decode()
        assert main([
            "encrypt", "top secret",
            "--keystore", str(keystore),
            "--alias", "app",
            "--iv", iv,
            "--store-password", STORE_PASSWORD,
            "--key-password", KEY_PASSWORD,
        ]) == 0
        value = capsys.readouterr().out.strip()
        assert value.startswith("cipher(") and value.endswith(")")

        resources = tmp_path / "res"
        (resources / "config" / "common.yaml").write_text(yaml.safe_dump({
            "wconf_encryption": {
                "enabled": True,
                "algorithm": "AES/CBC/PKCS5Padding",
                "key_type": "AES",
                "keystore_path": "config/keystore.json",
                "keystore_password": STORE_PASSWORD,
                "key_alias": "app",
                "key_password": KEY_PASSWORD,
                "iv": iv,
            },
            "api": {"token": value, "hosts": ["a", "b"]},
        }))

        args = ["--resource-dir", str(resources), "--working-dir", str(tmp_path)]
        assert main(["get", "api.token", *args]) == 0
        assert capsys.readouterr().out.strip() == "top secret"

        assert main(["get", "api.hosts", "--list", *args]) == 0
        assert json.loads(capsys.readouterr().out) == ["a", "b"]

    def test_get_with_properties(self, tmp_path, capsys):
        """测试 -D 进程属性"""
        code = main([
            "get", "app.name",
            "--resource-dir", str(tmp_path),
            "--working-dir", str(tmp_path),
            "-D", "app.name=demo",
        ])

        assert code == 0
        assert capsys.readouterr().out.strip() == "demo"

    def test_missing_key(self, tmp_path, capsys):
        """测试键不存在时返回错误码"""
        code = main(["get", "absent.key", "--resource-dir", str(tmp_path), "--working-dir", str(tmp_path)])

        assert code == 1
        assert "absent.key" in capsys.readouterr().err

    def test_bad_property(self, tmp_path, capsys):
        """测试非法 -D 参数"""
        code = main(["get", "a", "--resource-dir", str(tmp_path), "-D", "novalue"])

        assert code == 1
        assert "key=value" in capsys.readouterr().err

    def test_encrypt_wrong_password(self, keystore, capsys):
        """测试密钥库口令错误"""
        code = main([
            "encrypt", "x",
            "--keystore", str(keystore),
            "--alias", "app",
            "--iv", base64.b64encode(bytes(16)).decode(),
            "--store-password", "wrong",
            "--key-password", KEY_PASSWORD,
        ])

        assert code == 1
        assert "error:" in capsys.readouterr().err
