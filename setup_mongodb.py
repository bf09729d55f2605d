"""
MongoDB Setup Script
Tests the connection and creates the pipeline's indexes.
"""
import asyncio
from src.repositories import db_manager
from src.config import settings

REPORTED_COLLECTIONS = ["work_items", "webhook_metrics", "realtime_markers", "contacts", "projects", "messages"]


async def setup_mongodb():
    """Connect, create indexes and list what was created."""
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        if not await db_manager.ping():
            raise RuntimeError(f"MongoDB at {settings.mongodb_uri} did not answer a ping")
        print("✅ Connection successful!")
        print()

        db = db_manager.database

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in REPORTED_COLLECTIONS:
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name}: {len(indexes)} indexes")
            for idx_name in indexes:
                print(f"      - {idx_name}")

        print()
        print(f"🎉 MongoDB setup complete ({total} indexes on {len(REPORTED_COLLECTIONS)} collections)")
        if not settings.mongodb_use_transactions:
            print("⚠️  Transactions disabled: processors will apply writes without a session")
        print()

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Verify MONGODB_URI and network access to the cluster")
        print("   2. Check that the username and password are correct")
        print("   3. Standalone servers need MONGODB_USE_TRANSACTIONS=false")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    asyncio.run(setup_mongodb())
