"""Supported conversion destinations"""

from decimal import Decimal
from typing import Dict, List, Optional, Union

from models import Country
from utils.error_handler import ErrorCodes, ValidationError

SUPPORTED_COUNTRIES: List[Country] = [
    Country("zm", "Zambia", "ZMW", "K", Decimal("18.5")),
    Country("za", "South Africa", "ZAR", "R", Decimal("18.2")),
    Country("bw", "Botswana", "BWP", "P", Decimal("13.4")),
    Country("na", "Namibia", "NAD", "N$", Decimal("18.2")),
    Country("sz", "Eswatini", "SZL", "E", Decimal("18.2")),
    Country("ls", "Lesotho", "LSL", "L", Decimal("18.2")),
    Country("mw", "Malawi", "MWK", "MK", Decimal("1020")),
    Country("mz", "Mozambique", "MZN", "MT", Decimal("63.8")),
]

_COUNTRIES_BY_ID: Dict[str, Country] = {country.id: country for country in SUPPORTED_COUNTRIES}

DEFAULT_COUNTRY = _COUNTRIES_BY_ID["zm"]


def get_country_by_id(country_id: str) -> Optional[Country]:
    if not isinstance(country_id, str):
        return None
    return _COUNTRIES_BY_ID.get(country_id.lower())


def resolve_country(country: Union[Country, str]) -> Country:
    """Accept a Country or a country id; anything outside the supported set raises ValidationError"""
    if isinstance(country, Country):
        supported = _COUNTRIES_BY_ID.get(country.id)
        if supported is None or supported != country:
            raise ValidationError(
                f"Unsupported country: {country.id}",
                code=ErrorCodes.UNSUPPORTED_COUNTRY,
                user_message="Conversions to this country are not supported.",
            )
        return supported

    resolved = get_country_by_id(country)
    if resolved is None:
        raise ValidationError(
            f"Unsupported country: {country!r}",
            code=ErrorCodes.UNSUPPORTED_COUNTRY,
            user_message="Conversions to this country are not supported.",
        )
    return resolved
