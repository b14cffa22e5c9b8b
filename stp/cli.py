#!/usr/bin/env python3
"""
STP Command Line Interface

Usage:
    stp keygen [--secrets-dir secrets] [--trust-store trust/trust_store.json]
    stp serve vendor|provider [--port N]
    stp verify --token <file>
    stp hash --file <file>
"""

import argparse
import json
import sys


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def cmd_keygen(args):
    """Generate vendor and provider key files plus a trust store."""
    import os

    from stp import config
    from stp.keys import build_trust_store, write_party_keys
    from stp.signing import KeyPair

    vendor = KeyPair.generate(config.VENDOR_KID)
    provider = KeyPair.generate(config.PROVIDER_KID)
    write_party_keys(vendor, os.path.join(args.secrets_dir, "vendor_signing_key.json"))
    write_party_keys(provider, os.path.join(args.secrets_dir, "provider_signing_key.json"))

    trust_dir = os.path.dirname(args.trust_store)
    if trust_dir:
        os.makedirs(trust_dir, exist_ok=True)
    with open(args.trust_store, 'w') as f:
        json.dump(build_trust_store(vendor, provider), f, indent=2)

    print(f"Vendor key:   {vendor.key_id} {vendor.public_key}")
    print(f"Provider key: {provider.key_id} {provider.public_key}")
    print(f"Trust store saved to: {args.trust_store}", file=sys.stderr)


def build_vendor():
    """Vendor protocol from the configured key files."""
    from stp import config
    from stp.keys import load_party_keys, load_trust_store, trusted_public_key
    from stp.vendor import VendorProtocol

    keys = load_party_keys(config.VENDOR_KEY_PATH)
    bank_key = trusted_public_key(load_trust_store(config.TRUST_STORE_PATH), config.PROVIDER_KID)
    return VendorProtocol(keys, bank_public_key=bank_key)


def build_provider():
    """Provider protocol from the configured key files."""
    from stp import config
    from stp.keys import load_party_keys, load_trust_store, trusted_public_key
    from stp.provider import ProviderProtocol

    keys = load_party_keys(config.PROVIDER_KEY_PATH)
    vendor_key = trusted_public_key(load_trust_store(config.TRUST_STORE_PATH), config.VENDOR_KID)
    return ProviderProtocol(keys, trusted_vendor_key=vendor_key)


def cmd_serve(args):
    """Run one party as an HTTP server."""
    import uvicorn

    from stp import config
    from stp.logging_config import configure_logging
    from stp.server import create_provider_app, create_vendor_app

    configure_logging("DEBUG" if config.is_debug() else config.LOG_LEVEL, config.LOG_JSON)
    needed = ("vendor_key", "trust_store") if args.party == "vendor" else ("provider_key", "trust_store")
    missing = [name for name, ok in config.validate_config().items() if name in needed and not ok]
    if missing:
        print(f"Missing key files: {', '.join(missing)} (run `stp keygen`)", file=sys.stderr)
        return 1
    if args.party == "vendor":
        app = create_vendor_app(build_vendor())
        default_host = config.VENDOR_HOST
    else:
        app = create_provider_app(build_provider())
        default_host = config.PROVIDER_HOST
    port = args.port or int(default_host.rsplit(":", 1)[1])
    uvicorn.run(app, host=args.bind, port=port, log_config=None)
    return 0


def cmd_verify(args):
    """Verify the signatures of a token file."""
    from stp.token import Token
    from stp.verifier import verify_provider_signature, verify_vendor_signature

    try:
        token = Token.from_dict(load_json(args.token))
    except ValueError as e:
        print(f"✗ MALFORMED: {e}")
        return 1

    vendor_ok = verify_vendor_signature(token)
    provider_ok = verify_provider_signature(token)
    print(f"{'✓' if vendor_ok else '✗'} vendor signature")
    if token.has_provider_signature():
        print(f"{'✓' if provider_ok else '✗'} provider signature")
    else:
        print("- provider signature missing")
    return 0 if vendor_ok and provider_ok else 1


def cmd_hash(args):
    """Compute the SHA-512 content hash of a JSON file."""
    from stp.hashing import content_hash

    print(content_hash(load_json(args.file)))


def main():
    parser = argparse.ArgumentParser(
        description="STP Protocol CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stp keygen                          Generate demo keys and trust store
  stp serve vendor                    Run the vendor on STP_VENDOR_HOST
  stp serve provider --port 8000      Run the provider
  stp verify -t token.json            Check both token signatures
  stp hash -f token.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate party keys")
    keygen_parser.add_argument("-s", "--secrets-dir", default="secrets", help="Directory for private keys")
    keygen_parser.add_argument("-t", "--trust-store", default="trust/trust_store.json", help="Trust store file")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run a party server")
    serve_parser.add_argument("party", choices=["vendor", "provider"])
    serve_parser.add_argument("-p", "--port", type=int, help="Port (default from the party host setting)")
    serve_parser.add_argument("-b", "--bind", default="127.0.0.1", help="Bind address")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify token signatures")
    verify_parser.add_argument("-t", "--token", required=True, help="Token JSON file")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Compute content hash")
    hash_parser.add_argument("-f", "--file", required=True, help="JSON file to hash")

    args = parser.parse_args()

    if args.command == "keygen":
        cmd_keygen(args)
    elif args.command == "serve":
        sys.exit(cmd_serve(args))
    elif args.command == "verify":
        sys.exit(cmd_verify(args))
    elif args.command == "hash":
        cmd_hash(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
