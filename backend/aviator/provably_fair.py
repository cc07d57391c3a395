import hmac
import hashlib
import secrets
from decimal import Decimal, ROUND_FLOOR

DEFAULT_HOUSE_EDGE = Decimal("0.05")
INSTANT_CRASH_PROBABILITY = Decimal("0.01")

ONE = Decimal("1.00")
CENT = Decimal("0.01")

_sysrand = secrets.SystemRandom()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_server_seed() -> str:
    return secrets.token_hex(32)


def hmac_sha256(server_seed: str, message: str) -> str:
    return hmac.new(
        key=server_seed.encode("utf-8"),
        msg=message.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def crash_point_from_uniform(r, house_edge=DEFAULT_HOUSE_EDGE) -> Decimal:
    """
    Map a uniform draw r in [0, 1) to a crash multiplier.

    1% of draws crash instantly at 1.00x. Otherwise
        e = 100 / (100 - house_edge * 100)
        crash = max(1.00, floor(e / r * 100) / 100)
    which gives a heavy tail: low multipliers are common, high ones rare.
    """
    edge = Decimal(str(house_edge))
    if not (Decimal(0) <= edge < Decimal(1)):
        raise ValueError(f"house_edge must be in [0, 1), got {house_edge}")

    r = Decimal(r)
    if not (Decimal(0) <= r < Decimal(1)):
        raise ValueError(f"r must be in [0, 1), got {r}")

    if r < INSTANT_CRASH_PROBABILITY:
        return ONE

    e = Decimal(100) / (Decimal(100) - edge * 100)
    crash = (e / r * 100).to_integral_value(rounding=ROUND_FLOOR) / 100
    return max(ONE, crash).quantize(CENT)


def generate_crash_point(house_edge=DEFAULT_HOUSE_EDGE, rand=None) -> Decimal:
    """
    One crash point per round. `rand` is any callable returning a uniform
    float in [0, 1); the OS CSPRNG is used when omitted.
    """
    r = (rand or _sysrand.random)()
    return crash_point_from_uniform(r, house_edge)


def uniform_from_hash(hash_hex: str) -> Decimal:
    # First 52 bits of the digest -> [0, 1)
    h = int(hash_hex[:13], 16)
    return Decimal(h) / Decimal(2 ** 52)


def generate_round_result(server_seed: str, client_seed: str, nonce: int,
                          house_edge=DEFAULT_HOUSE_EDGE) -> Decimal:
    message = f"{client_seed}:{nonce}"
    hash_hex = hmac_sha256(server_seed, message)
    return crash_point_from_uniform(uniform_from_hash(hash_hex), house_edge)


def verify_round(server_seed: str, client_seed: str, nonce: int, crash_point: Decimal,
                 house_edge=DEFAULT_HOUSE_EDGE, cap=None) -> bool:
    expected = generate_round_result(server_seed, client_seed, nonce, house_edge)
    if cap is not None:
        expected = min(expected, Decimal(str(cap)))
    return expected == Decimal(str(crash_point))
