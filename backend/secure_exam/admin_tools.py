"""
Admin tools for the Secure Exam platform.

Provisions users (the API itself only consumes bearer tokens), mints
tokens and prints attempt / violation reports straight from the database.
"""
import argparse
import asyncio
import os
import sys
from typing import Optional

from dotenv import load_dotenv

dotenv_path = os.path.join(os.getcwd(), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select, func

from .core.database import AsyncSessionLocal, create_db_and_tables
from .core.security import create_user_token
from .models.attempt import AttemptStatus, ExamAttempt, Violation
from .models.exam import Exam
from .models.user import User, UserRole
from .schemas.user import UserCreate
from .services.violation_ledger import summarize_violations
from .utils.timezone import format_display_time

SEVERITY_MARKERS = {"low": "🟢", "medium": "🟡", "high": "🟠", "critical": "🔴"}


async def init_db() -> None:
    await create_db_and_tables()
    print("✅ Database tables created")


async def create_user(email: str, full_name: str, role: str, session_factory=AsyncSessionLocal) -> Optional[str]:
    """Create a user and return an access token for it, or None if the input is rejected."""
    try:
        user_data = UserCreate(email=email, full_name=full_name, role=role)
    except SchemaValidationError as e:
        print(f"❌ Invalid user data: {e.errors()[0]['msg']}")
        return None
    if user_data.role not in UserRole.ALL:
        print(f"❌ Unknown role {role}; expected one of {', '.join(UserRole.ALL)}")
        return None

    async with session_factory() as db:
        existing = await db.execute(select(User).filter(User.email == user_data.email))
        if existing.scalars().first():
            print(f"❌ User with email {email} already exists")
            return None

        user = User(email=user_data.email, full_name=user_data.full_name, role=user_data.role)
        db.add(user)
        await db.commit()

        token = create_user_token(user)
        print("✅ User created")
        print(f"   ID: {user.id}")
        print(f"   Name: {user.full_name}")
        print(f"   Email: {user.email}")
        print(f"   Role: {user.role}")
        print(f"   Token: {token}")
        return token


async def issue_token(email: str, session_factory=AsyncSessionLocal) -> Optional[str]:
    async with session_factory() as db:
        result = await db.execute(select(User).filter(User.email == email))
        user = result.scalars().first()
    if not user:
        print(f"❌ User {email} not found")
        return None
    token = create_user_token(user)
    print(token)
    return token


async def list_users(session_factory=AsyncSessionLocal) -> None:
    async with session_factory() as db:
        result = await db.execute(select(User).order_by(User.id))
        users = result.scalars().all()

    if not users:
        print("📋 No users found")
        return

    print(f"📋 Total users: {len(users)}")
    print("=" * 80)
    for user in users:
        created = format_display_time(user.created_at) if user.created_at else "-"
        print(f"ID: {user.id} | {user.role}")
        print(f"   Name: {user.full_name}")
        print(f"   Email: {user.email}")
        print(f"   Created: {created}")
        print("-" * 80)


async def show_attempts(exam_id: Optional[int] = None, session_factory=AsyncSessionLocal) -> None:
    async with session_factory() as db:
        query = select(ExamAttempt).order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        if exam_id is not None:
            query = query.filter(ExamAttempt.exam_id == exam_id)
        attempts = (await db.execute(query)).scalars().all()

    if not attempts:
        print("📋 No attempts found")
        return

    print(f"📋 Attempts: {len(attempts)}")
    print("=" * 80)
    for attempt in attempts:
        flag = "🚩" if attempt.flagged else "  "
        exam_title = attempt.exam.title if attempt.exam else attempt.exam_id
        student = attempt.student.full_name if attempt.student else attempt.student_id
        print(f"{flag} #{attempt.id} | {exam_title} | {student} | {attempt.status}")
        if attempt.status in AttemptStatus.COMPLETED:
            print(f"   Score: {attempt.score}/{attempt.total_marks} ({attempt.percentage}%) passed={attempt.passed}")
        print(f"   Violations: {len(attempt.violations)} | Tab switches: {attempt.tab_switches}")
        if attempt.flag_reason:
            print(f"   Flag: {attempt.flag_reason}")


async def show_violations_report(session_factory=AsyncSessionLocal) -> dict:
    async with session_factory() as db:
        violations = (await db.execute(select(Violation))).scalars().all()
        top_attempts = (await db.execute(
            select(ExamAttempt.id, User.full_name, func.count(Violation.id).label("violation_count"))
            .join(Violation, Violation.attempt_id == ExamAttempt.id)
            .join(User, User.id == ExamAttempt.student_id)
            .group_by(ExamAttempt.id, User.full_name)
            .order_by(func.count(Violation.id).desc())
            .limit(5)
        )).all()

    stats = summarize_violations(list(violations))
    print("\n🚨 Violations report")
    print("=" * 60)
    print(f"📊 Total violations: {stats['total_violations']}")
    if not stats["total_violations"]:
        print("✅ No violations recorded")
        return stats

    print("\n📈 By type:")
    for vtype, count in sorted(stats["by_type"].items(), key=lambda item: -item[1]):
        print(f"  {vtype}: {count}")

    print("\n⚡ By severity:")
    for severity, count in stats["by_severity"].items():
        percentage = (count / stats["total_violations"]) * 100
        print(f"  {SEVERITY_MARKERS.get(severity, '⚪')} {severity}: {count} ({percentage:.1f}%)")

    print("\n👥 Attempts with the most violations:")
    for i, (attempt_id, name, count) in enumerate(top_attempts, 1):
        print(f"  {i}. attempt #{attempt_id} ({name}): {count}")
    return stats


async def database_stats(session_factory=AsyncSessionLocal) -> dict:
    async with session_factory() as db:
        async def count(query):
            return (await db.execute(query)).scalar_one()

        stats = {
            "users": await count(select(func.count(User.id))),
            "exams": await count(select(func.count(Exam.id))),
            "published_exams": await count(select(func.count(Exam.id)).where(Exam.is_published.is_(True))),
            "attempts": await count(select(func.count(ExamAttempt.id))),
            "completed_attempts": await count(
                select(func.count(ExamAttempt.id)).where(ExamAttempt.status.in_(AttemptStatus.COMPLETED))
            ),
            "flagged_attempts": await count(
                select(func.count(ExamAttempt.id)).where(ExamAttempt.flagged.is_(True))
            ),
            "violations": await count(select(func.count(Violation.id))),
        }

    print("📊 Database statistics")
    print("=" * 50)
    print(f"👥 Users: {stats['users']}")
    print(f"📝 Exams: {stats['exams']} (published: {stats['published_exams']})")
    print(f"🧾 Attempts: {stats['attempts']} (completed: {stats['completed_attempts']}, flagged: {stats['flagged_attempts']})")
    print(f"🚨 Violations: {stats['violations']}")
    return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Admin tools for the Secure Exam platform")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init-db', help='Create database tables')

    create_user_parser = subparsers.add_parser('create-user', help='Create a user and print a token')
    create_user_parser.add_argument('--email', required=True, help='User email')
    create_user_parser.add_argument('--name', required=True, help='Full name')
    create_user_parser.add_argument('--role', default=UserRole.STUDENT, choices=UserRole.ALL, help='User role')

    token_parser = subparsers.add_parser('token', help='Print an access token for an existing user')
    token_parser.add_argument('--email', required=True, help='User email')

    subparsers.add_parser('list-users', help='List users')

    attempts_parser = subparsers.add_parser('attempts', help='List exam attempts')
    attempts_parser.add_argument('--exam-id', type=int, help='Only attempts of this exam')

    subparsers.add_parser('violations-report', help='Report on recorded violations')
    subparsers.add_parser('stats', help='Database statistics')
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'init-db':
        asyncio.run(init_db())
    elif args.command == 'create-user':
        if asyncio.run(create_user(args.email, args.name, args.role)) is None:
            return 1
    elif args.command == 'token':
        if asyncio.run(issue_token(args.email)) is None:
            return 1
    elif args.command == 'list-users':
        asyncio.run(list_users())
    elif args.command == 'attempts':
        asyncio.run(show_attempts(args.exam_id))
    elif args.command == 'violations-report':
        asyncio.run(show_violations_report())
    elif args.command == 'stats':
        asyncio.run(database_stats())
    return 0


if __name__ == "__main__":
    sys.exit(main())
