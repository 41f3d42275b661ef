"""Development data seeder: author profiles, categories, posts and comments."""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from blogcms.database import Base, async_session, engine
from blogcms.models import Category, Comment, Post, User
from blogcms.services.post_service import normalize_tags, slugify

CATEGORIES = [
    ("Technology", "#3B82F6"),
    ("Travel", "#10B981"),
    ("Food", "#F59E0B"),
    ("Lifestyle", "#EC4899"),
    ("Science", "#8B5CF6"),
]

TAGS = ["python", "fastapi", "postgresql", "docker", "testing", "design",
        "recipes", "hiking", "europe", "productivity", "astronomy", "biology"]

TOPICS = ["getting started with", "lessons learned from", "a week of",
          "the quiet joy of", "notes on", "rethinking"]


async def seed(num_posts: int, num_users: int) -> None:
    print(f"Seeding: {num_users} users, {len(CATEGORIES)} categories, {num_posts} posts")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        categories = [Category(name=name, color=color) for name, color in CATEGORIES]
        session.add_all(categories)

        users = [
            User(
                username=f"writer{i:03d}",
                email=f"writer{i:03d}@example.com",
                display_name=f"Writer {i}",
                bio=f"Writer number {i}, mostly about {random.choice(TAGS)}.",
            )
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(categories)} categories and {len(users)} users")

        used_slugs: set[str] = set()
        total_comments = 0
        for i in range(num_posts):
            title = f"{random.choice(TOPICS).capitalize()} {random.choice(TAGS)} #{i}"
            slug = slugify(title)
            while slug in used_slugs:
                slug = f"{slug}-{i}"
            used_slugs.add(slug)

            created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
            post = Post(
                title=title,
                slug=slug,
                content=f"<p>Body of post {i}.</p>" * 10,
                excerpt=f"A short look at {title.lower()}.",
                tags=normalize_tags(random.sample(TAGS, k=random.randint(1, 4))),
                is_published=random.random() > 0.1,  # 90% published
                view_count=random.randint(0, 5000),
                created_at=created,
                updated_at=created,
                category_id=random.choice(categories).id,
                author_id=random.choice(users).id,
            )
            session.add(post)
            await session.flush()

            for n in range(random.randint(0, 4)):
                session.add(
                    Comment(
                        content=f"Comment {n} on post {i}.",
                        post_id=post.id,
                        author_id=random.choice(users).id,
                        created_at=created + timedelta(hours=n + 1),
                    )
                )
                total_comments += 1

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s ({num_posts} posts, {total_comments} comments)")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog CMS database")
    parser.add_argument("--posts", type=int, default=100, help="Number of posts to create")
    parser.add_argument("--users", type=int, default=10, help="Number of author profiles")
    args = parser.parse_args()
    asyncio.run(seed(args.posts, args.users))


if __name__ == "__main__":
    main()
