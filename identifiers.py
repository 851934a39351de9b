"""Document ids and SKU suggestions."""
import random
import re
import string
import time

BASE36 = string.digits + string.ascii_lowercase


def unix_millis() -> int:
    return int(time.time() * 1000)


def random_base36(length: int = 9) -> str:
    return "".join(random.choice(BASE36) for _ in range(length))


def _timestamped(prefix: str) -> str:
    return f"{prefix}-{unix_millis()}-{random_base36()}"


def new_order_id() -> str:
    return _timestamped("ORD")


def new_variant_id() -> str:
    return _timestamped("VAR")


def new_product_id() -> str:
    return _timestamped("PROD")


def new_address_id() -> str:
    return _timestamped("ADDR")


def brand_code(brand: str) -> str:
    code = re.sub(r"[^A-Z0-9]", "", (brand or "").upper())[:10]
    return code or "PROD"


def suggest_sku(brand: str, existing_variants: int) -> str:
    """e.g. suggest_sku("Cos RX", 2) -> "COSRX-VAR-003"."""
    return f"{brand_code(brand)}-VAR-{existing_variants + 1:03d}"
