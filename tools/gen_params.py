"""Generate modulus parameters for a development deployment.

Writes config/params.json with a fresh RSA modulus N and g = 5. The primes
are discarded; nothing in the service ever needs them.
"""
import json, os, sys

from cryptography.hazmat.primitives.asymmetric import rsa

from pdpaudit.params import ModulusParameters


def generate(bits: int = 2048, g: int = 5) -> ModulusParameters:
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    return ModulusParameters(n=key.public_key().public_numbers().n, g=g)


def main(path="config/params.json", bits=2048):
    params = generate(int(bits))
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(params.to_dict(), f, indent=2)
    print(f"Wrote {params.bit_length}-bit modulus parameters to {path}")


if __name__ == "__main__":
    main(*sys.argv[1:3])
