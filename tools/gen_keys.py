import os, json
from nacl.signing import SigningKey
from pdpaudit.signing import b64e

os.makedirs("secrets", exist_ok=True)
os.makedirs("trust", exist_ok=True)

sk = SigningKey.generate()

with open("secrets/ledger_signing_key.json","w",encoding="utf-8") as f:
    json.dump({"kid":"pdp-ledger-01", "private_key_b64": b64e(bytes(sk))}, f, indent=2)

trust = {
  "trust_store_id":"pdp-trust-store-dev",
  "record_signing_keys": {
    "pdp-ledger-01": b64e(bytes(sk.verify_key))
  }
}

with open("trust/trust_store.json","w",encoding="utf-8") as f:
    json.dump(trust, f, indent=2)

print("Generated ledger signing key + trust store.")
print("export PDP_SIGNING_KEY_PATH=secrets/ledger_signing_key.json")
