"""Seed example users with taste profiles for local development.

Skips any user whose email already exists, so it is safe to re-run.
Usage: python -m scripts.seed_users
"""
import asyncio

from app.errors import ConflictError
from app.store.sql import sql_store_scope
from app.utils.normalization import normalize_tokens


EXAMPLE_USERS = [
    {
        "email": "alex@example.com",
        "display_name": "Alex",
        "age": 27,
        "gender": "male",
        "orientation": "female",
        "location": "Tel Aviv",
        "genres": "indie rock, alternative, dream pop",
        "artists": "Arctic Monkeys, Beach House, The Strokes",
        "songs": "Do I Wanna Know?, Space Song, Reptilia",
    },
    {
        "email": "maya@example.com",
        "display_name": "Maya",
        "age": 25,
        "gender": "female",
        "orientation": "male",
        "location": "Tel Aviv",
        "genres": "indie rock, shoegaze, dream pop",
        "artists": "Beach House, Slowdive, Arctic Monkeys",
        "songs": "Space Song, When the Sun Hits, 505",
    },
    {
        "email": "noa@example.com",
        "display_name": "Noa",
        "age": 29,
        "gender": "female",
        "orientation": "both",
        "location": "Haifa",
        "genres": "hip hop, r&b, neo soul",
        "artists": "Kendrick Lamar, SZA, Frank Ocean",
        "songs": "Alright, Good Days, Pink + White",
    },
    {
        "email": "daniel@example.com",
        "display_name": "Daniel",
        "age": 31,
        "gender": "male",
        "orientation": "both",
        "location": "Jerusalem",
        "genres": "hip hop, jazz rap, r&b",
        "artists": "Kendrick Lamar, Anderson .Paak, Frank Ocean",
        "songs": "Alright, Come Down, Nights",
    },
    {
        "email": "tamar@example.com",
        "display_name": "Tamar",
        "age": 24,
        "gender": "female",
        "orientation": "male",
        "location": "Haifa",
        "genres": "pop, dance pop, synthpop",
        "artists": "Dua Lipa, The Weeknd, Charli XCX",
        "songs": "Levitating, Blinding Lights, 360",
    },
    {
        "email": "yoni@example.com",
        "display_name": "Yoni",
        "age": 26,
        "gender": "male",
        "orientation": "female",
        "location": "Tel Aviv",
        "genres": "pop, synthpop, electropop",
        "artists": "The Weeknd, Dua Lipa, Lorde",
        "songs": "Blinding Lights, Don't Start Now, Green Light",
    },
]


async def seed():
    async with sql_store_scope() as store:
        for spec in EXAMPLE_USERS:
            fields = {k: v for k, v in spec.items() if k not in ("genres", "artists", "songs")}
            try:
                user = await store.create_user(**fields, photos=[])
            except ConflictError:
                print(f"  User {spec['email']} already exists, skipping.")
                continue

            await store.upsert_taste_profile(
                user.id,
                genres=normalize_tokens(spec["genres"]),
                artists=normalize_tokens(spec["artists"]),
                songs=normalize_tokens(spec["songs"]),
            )
            print(f"  Seeded {spec['display_name']} ({user.id})")
    print("Done seeding users.")


if __name__ == "__main__":
    asyncio.run(seed())
