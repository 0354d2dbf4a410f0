"""Country-based eligibility rules for referral programs.

Pure functions; the caller supplies the id of the worldwide country record.
"""

from collections.abc import Iterable


def program_accessible_to_user(
    worldwide_id: int,
    user_country_id: int | None,
    program_country_ids: Iterable[int] | None,
) -> bool:
    """Check whether a program is available in the user's country.

    Args:
        worldwide_id: ID of the worldwide country record
        user_country_id: User's country (None = not on file)
        program_country_ids: Countries the program is limited to

    Returns:
        True if the user has no country, the program declares no countries,
        or the program includes the worldwide marker or the user's country
    """
    if user_country_id is None:
        return True

    countries = set(program_country_ids or ())
    if not countries:
        return True

    return worldwide_id in countries or user_country_id in countries


def default_program_is_worldwide(
    worldwide_id: int,
    program_country_ids: Iterable[int] | None,
) -> bool:
    """A default program must be unrestricted: no countries, or the worldwide marker."""
    countries = set(program_country_ids or ())
    if not countries:
        return True
    return worldwide_id in countries


def resolve_available_countries_for_program_search(
    worldwide_id: int,
    is_authenticated: bool,
    is_admin: bool,
    user_country_id: int | None,
    requested_country_ids: Iterable[int] | None,
) -> list[int] | None:
    """Resolve the country filter applied to a program search.

    Authenticated non-admins with a known country always see exactly their
    country plus worldwide, whatever they asked for. Otherwise an empty
    request means no filter for admins and worldwide-only for everyone else.

    Returns:
        Country IDs to filter on, or None for no restriction
    """
    requested = list(dict.fromkeys(requested_country_ids or ()))

    if is_authenticated and not is_admin and user_country_id is not None:
        return [user_country_id, worldwide_id]

    if not requested:
        return None if is_admin else [worldwide_id]

    return requested
