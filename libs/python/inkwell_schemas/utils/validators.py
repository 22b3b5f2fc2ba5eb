"""Reusable validation helpers."""

from __future__ import annotations

from typing import Any, Mapping

ISO_COUNTRY_CODES = frozenset(
    """
    AD AE AF AG AI AL AM AO AQ AR AS AT AU AW AX AZ BA BB BD BE BF BG BH BI BJ BL BM BN BO
    BQ BR BS BT BV BW BY BZ CA CC CD CF CG CH CI CK CL CM CN CO CR CU CV CW CX CY CZ DE DJ
    DK DM DO DZ EC EE EG EH ER ES ET FI FJ FK FM FO FR GA GB GD GE GF GG GH GI GL GM GN GP
    GQ GR GS GT GU GW GY HK HM HN HR HT HU ID IE IL IM IN IO IQ IR IS IT JE JM JO JP KE KG
    KH KI KM KN KP KR KW KY KZ LA LB LC LI LK LR LS LT LU LV LY MA MC MD ME MF MG MH MK ML
    MM MN MO MP MQ MR MS MT MU MV MW MX MY MZ NA NC NE NF NG NI NL NO NP NR NU NZ OM PA PE
    PF PG PH PK PL PM PN PR PS PT PW PY QA RE RO RS RU RW SA SB SC SD SE SG SH SI SJ SK SL
    SM SN SO SR SS ST SV SX SY SZ TC TD TF TG TH TJ TK TL TM TN TO TR TT TV TW TZ UA UG UM
    US UY UZ VA VC VE VG VI VN VU WF WS YE YT ZA ZM ZW
    """.split()
)

REQUIRED_ADDRESS_FIELDS = ("name", "street1", "city", "postcode", "country_code")


class WordCountError(ValueError):
    """Raised when a field exceeds the configured word count."""


class AddressError(ValueError):
    """Raised when a shipping address is incomplete or malformed."""


def ensure_max_word_count(value: str, *, limit: int, field_name: str) -> str:
    """Validate that the given string does not exceed ``limit`` words.

    Raises:
        WordCountError: If the number of words exceeds the limit.
    """

    word_count = count_words(value)
    if word_count > limit:
        raise WordCountError(
            f"{field_name} exceeds maximum word count: {word_count} > {limit}"
        )
    return value


def count_words(value: str) -> int:
    tokens = [token for token in value.strip().split() if token]
    return len(tokens)


def normalise_country_code(value: str | None) -> str:
    """Return the upper-cased ISO 3166-1 alpha-2 code or raise :class:`AddressError`."""

    code = (value or "").strip().upper()
    if code not in ISO_COUNTRY_CODES:
        raise AddressError(f"Invalid ISO country code: {value!r}")
    return code


def normalise_shipping_address(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Strip whitespace, drop empty values and check the fields every vendor requires.

    Accepts both our own field names and the payment processor's nested
    ``address`` layout (``line1``/``postal_code``/``country``).
    """

    source: dict[str, Any] = dict(raw)
    nested = source.pop("address", None)
    if isinstance(nested, Mapping):
        source.setdefault("street1", nested.get("line1"))
        source.setdefault("street2", nested.get("line2"))
        source.setdefault("city", nested.get("city"))
        source.setdefault("state_code", nested.get("state"))
        source.setdefault("postcode", nested.get("postal_code"))
        source.setdefault("country_code", nested.get("country"))

    cleaned = {
        key: value.strip() if isinstance(value, str) else value
        for key, value in source.items()
        if value not in (None, "")
    }
    missing = [field for field in REQUIRED_ADDRESS_FIELDS if not cleaned.get(field)]
    if missing:
        raise AddressError(f"Shipping address missing fields: {', '.join(missing)}")
    cleaned["country_code"] = normalise_country_code(cleaned["country_code"])
    return cleaned
