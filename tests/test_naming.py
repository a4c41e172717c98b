import re

import pytest

from app.features.organizations.slugs import slugify, unique_slug
from app.features.users.usernames import allocate_username, base_username


@pytest.mark.parametrize("name,slug", [
    ("Blue Wave Pools!!", "blue-wave-pools"),
    ("  Sunny   Days & Co.  ", "sunny-days-co"),
    ("--Crystal--Clear--", "crystal-clear"),
    ("ABC123", "abc123"),
])
def test_slugify(name, slug):
    assert slugify(name) == slug


def test_slugify_falls_back_for_unusable_names():
    assert re.fullmatch(r"org-\d+", slugify("!!!"))


async def test_unique_slug_appends_a_counter(db, make_organization):
    for slug in ("blue-wave", "blue-wave-2"):
        organization = await make_organization("Blue Wave")
        organization.slug = slug
    await db.commit()

    assert await unique_slug(db, "Blue Wave") == "blue-wave-3"
    assert await unique_slug(db, "Red Wave") == "red-wave"


def test_base_username():
    assert base_username("Pat.O'Neil+pools@example.com") == "pat.oneilpools"
    assert base_username("@example.com") == "user"


async def test_allocate_username(db, make_user):
    assert await allocate_username(db, "sam@example.com") == "sam"

    await make_user(None, email="sam@example.com")
    taken = await allocate_username(db, "sam@other.com")

    assert re.fullmatch(r"sam[0-9a-f]{4}", taken)
