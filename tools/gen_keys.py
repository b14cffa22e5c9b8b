import os, json
from stp import config
from stp.keys import build_trust_store, write_party_keys
from stp.signing import KeyPair

os.makedirs("secrets", exist_ok=True)
os.makedirs("trust", exist_ok=True)

vendor = KeyPair.generate(config.VENDOR_KID)
provider = KeyPair.generate(config.PROVIDER_KID)

write_party_keys(vendor, config.VENDOR_KEY_PATH)
write_party_keys(provider, config.PROVIDER_KEY_PATH)

trust = build_trust_store(vendor, provider)
trust["trust_store_version"] = "0.1.0"

with open(config.TRUST_STORE_PATH, "w", encoding="utf-8") as f:
    json.dump(trust, f, indent=2)

print("Generated vendor + provider keys and trust store.")
