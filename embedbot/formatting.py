import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

DECIMAL_TRIM_THRESHOLD = 4
DECIMAL_TRIM_LENGTH = 5

IMAGE_WIDTH_PATTERN = re.compile(r"w=(\d)*")
HIGH_RES_IMAGE_WIDTH = "w=1000"

# "GlyphBot #1 - Vector the Kind" -> "Vector the Kind"
NFT_NAME_PATTERN = re.compile(r"^.+\s#\d+\s*-\s*")


def format_units(amount: Union[int, str], decimals: int) -> str:
    """Fixed-point rendering of a base-unit integer, always with a fractional part."""

    try:
        value = Decimal(str(amount)).scaleb(-int(decimals))
    except (InvalidOperation, TypeError, ValueError):
        value = Decimal(0)
    whole, _, fraction = format(value, "f").partition(".")
    return f"{whole}.{fraction.rstrip('0') or '0'}"


def format_amount(amount: Union[int, str], decimals: int, symbol: str) -> str:
    whole, _, fraction = format_units(amount, decimals).partition(".")
    if not fraction or fraction == "0":
        value = whole
    elif len(fraction) > DECIMAL_TRIM_THRESHOLD:
        value = f"{whole}.{fraction[:DECIMAL_TRIM_LENGTH]}"
    else:
        value = f"{whole}.{fraction}"
    return f"{value} {symbol}"


def format_short_date(when: Union[datetime, int, float]) -> str:
    if not isinstance(when, datetime):
        when = datetime.fromtimestamp(when, tz=timezone.utc)
    return when.strftime("%b '%y")


def high_res_image(image_url: Optional[str]) -> Optional[str]:
    if not image_url:
        return None
    return IMAGE_WIDTH_PATTERN.sub(HIGH_RES_IMAGE_WIDTH, image_url, count=1)


def extract_nft_subtitle(name: str) -> str:
    return NFT_NAME_PATTERN.sub("", name, count=1)


def render_template(template: Optional[str], token_id: int) -> str:
    return (template or "").replace("{id}", str(token_id))
