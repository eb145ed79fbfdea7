import asyncio
import os
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from microbio_blog.core.config import get_settings
from microbio_blog.core.security import create_access_token
from microbio_blog.core.utils import generate_slug, utcnow
from microbio_blog.db.mongodb import create_indexes
from microbio_blog.models.user import UserRole

load_dotenv()

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_FIRST_NAME = os.getenv("ADMIN_FIRST_NAME", "Site")
ADMIN_LAST_NAME = os.getenv("ADMIN_LAST_NAME", "Administrator")

DEFAULT_CATEGORIES = [
    ("Bacteriology", "Bacterial physiology, genetics and pathogenesis"),
    ("Virology", "Viruses, phages and host interactions"),
    ("Mycology", "Fungi and yeasts"),
    ("Parasitology", "Protozoa and helminths"),
    ("Immunology", "Host defence against microbes"),
    ("Environmental Microbiology", "Microbes in soil, water and air"),
    ("Clinical Microbiology", "Diagnostics and antimicrobial resistance"),
]


async def init_db():
    settings = get_settings()
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    db = client[settings.MONGODB_DB_NAME]

    print("Creating indexes...")
    await create_indexes(db)

    print("Seeding categories...")
    for name, description in DEFAULT_CATEGORIES:
        slug = generate_slug(name)
        result = await db.categories.update_one(
            {"slug": slug},
            {"$setOnInsert": {
                "name": name,
                "slug": slug,
                "description": description,
                "is_active": True,
                "created_at": utcnow(),
            }},
            upsert=True,
        )
        if result.upserted_id:
            print(f"  + {name}")

    print("Creating admin user...")
    existing_admin = await db.users.find_one({"email": ADMIN_EMAIL})
    if existing_admin:
        admin_id = str(existing_admin["_id"])
        print("Admin user already exists")
    else:
        result = await db.users.insert_one({
            "email": ADMIN_EMAIL,
            "first_name": ADMIN_FIRST_NAME,
            "last_name": ADMIN_LAST_NAME,
            "role": UserRole.ADMIN.value,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        })
        admin_id = str(result.inserted_id)
        print(f"Admin user created with ID: {admin_id}")

    # Accounts and logins live in the auth service; this token is for local testing
    print(f"Admin access token: {create_access_token(admin_id, UserRole.ADMIN.value)}")
    print("Database initialization completed")

    client.close()


if __name__ == "__main__":
    asyncio.run(init_db())
