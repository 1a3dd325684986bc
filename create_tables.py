"""
Simple script to create the users, threads and messages tables.
Run this once to set up the tables in your database.

Usage: python create_tables.py
"""

from sqlalchemy import create_engine, inspect
from models import Base, Thread, Message, User  # Import models to register them
from database import DATABASE_URL

if __name__ == "__main__":
    print("Creating database tables...")
    engine = create_engine(DATABASE_URL)

    # Create all tables
    Base.metadata.create_all(bind=engine)

    existing = set(inspect(engine).get_table_names())
    for table in (User.__tablename__, Thread.__tablename__, Message.__tablename__):
        if table in existing:
            print(f"✓ {table} table ready")
        else:
            print(f"✗ Failed to create {table} table")

    engine.dispose()
