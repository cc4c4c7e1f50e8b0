#!/usr/bin/env python3
"""
wconf 命令行工具

- keystore-create: 创建密钥库 (或向已有密钥库添加密钥)
- gen-iv: 生成随机 IV
- encrypt: 生成 cipher(...) 配置值
- get: 解析并输出一个配置键
"""

import argparse
import base64
import binascii
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config.crypto import PBKDF2_ITERATIONS, SecretCipherEngine, generate_iv, generate_key
from .config.errors import ConfigError
from .config.keystore import FileKeyStore, KeyStoreError
from .config.loader import WaterfallConfig
from .security.sanitizer import setup_logging_with_sanitization


def _password(value: Optional[str], prompt: str) -> str:
    return value if value is not None else getpass.getpass(prompt)


def _parse_properties(pairs: list[str]) -> dict[str, str]:
    properties = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {pair!r}")
        properties[key.strip()] = value
    return properties


def cmd_keystore_create(args: argparse.Namespace) -> int:
    store_password = _password(args.store_password, "Key store password: ")
    key_password = _password(args.key_password, "Key password: ")
    path = Path(args.path)

    if path.exists():
        store = FileKeyStore.open(path, store_password)
    else:
        store = FileKeyStore(store_password, iterations=args.iterations, source=str(path))

    store.set_key(args.alias, generate_key(args.key_size), key_password, algorithm=args.algorithm)
    store.save(path)
    print(f"Key {args.alias} ({args.algorithm}, {args.key_size} bits) stored in {path}")
    return 0


def cmd_gen_iv(args: argparse.Namespace) -> int:
    print(generate_iv(args.size))
    return 0


def cmd_encrypt(args: argparse.Namespace) -> int:
    store = FileKeyStore.open(args.keystore, _password(args.store_password, "Key store password: "))
    key = store.load_key(args.alias, _password(args.key_password, "Key password: "))
    engine = SecretCipherEngine(
        args.algorithm,
        args.key_type,
        key,
        base64.b64decode(args.iv, validate=True),
    )
    print(f"cipher({engine.encrypt(args.value.encode('utf-8'))})")
    return 0


def cmd_get(args: argparse.Namespace) -> int:
    config = WaterfallConfig.load(
        resource_package=args.resource_package,
        resource_dir=args.resource_dir,
        working_dir=args.working_dir,
        properties=_parse_properties(args.define),
    )
    if args.list:
        print(json.dumps(config.get(args.key, multivalued=True), ensure_ascii=False))
    else:
        print(config.get(args.key))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wconf", description="Layered configuration tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("keystore-create", help="Create a key store or add a key to it")
    create.add_argument("path", help="Key store file")
    create.add_argument("--alias", required=True)
    create.add_argument("--algorithm", default="AES")
    create.add_argument("--key-size", type=int, default=256, choices=[128, 192, 256])
    create.add_argument("--iterations", type=int, default=PBKDF2_ITERATIONS)
    create.add_argument("--store-password")
    create.add_argument("--key-password")
    create.set_defaults(func=cmd_keystore_create)

    iv = sub.add_parser("gen-iv", help="Generate a base64 initialization vector")
    iv.add_argument("--size", type=int, default=16)
    iv.set_defaults(func=cmd_gen_iv)

    encrypt = sub.add_parser("encrypt", help="Produce a cipher(...) value")
    encrypt.add_argument("value")
    encrypt.add_argument("--keystore", required=True)
    encrypt.add_argument("--alias", required=True)
    encrypt.add_argument("--algorithm", default="AES/CBC/PKCS5Padding")
    encrypt.add_argument("--key-type", default="AES")
    encrypt.add_argument("--iv", required=True, help="Base64 initialization vector")
    encrypt.add_argument("--store-password")
    encrypt.add_argument("--key-password")
    encrypt.set_defaults(func=cmd_encrypt)

    get = sub.add_parser("get", help="Resolve a configuration key")
    get.add_argument("key")
    get.add_argument("--list", action="store_true", help="Read the key as a list")
    get.add_argument("--resource-package")
    get.add_argument("--resource-dir")
    get.add_argument("--working-dir")
    get.add_argument("-D", "--define", action="append", default=[], metavar="KEY=VALUE",
                     help="Process property")
    get.set_defaults(func=cmd_get)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        setup_logging_with_sanitization(logging.DEBUG)

    try:
        return args.func(args)
    except (ConfigError, KeyStoreError, argparse.ArgumentTypeError, binascii.Error) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
