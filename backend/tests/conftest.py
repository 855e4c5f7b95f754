import pytest
from datetime import timedelta
from fakeredis import FakeServer, aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from secure_exam.core.config import settings
from secure_exam.core.database import Base, get_async_db
from secure_exam.core.security import create_user_token
from secure_exam.models import Exam, Question, QuestionType, User, UserRole
from secure_exam.services.attempt_service import AttemptLocks, AttemptService
from secure_exam.services.live_notifications import ConnectionRegistry, LiveNotifier
from secure_exam.utils.timezone import utc_now


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "upload_base_dir", str(path))
    return path


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _make_user(db, full_name, email, role):
    user = User(full_name=full_name, email=email, role=role)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def student(db):
    return await _make_user(db, "Alice Student", "alice@example.com", UserRole.STUDENT)


@pytest.fixture
async def other_student(db):
    return await _make_user(db, "Bob Student", "bob@example.com", UserRole.STUDENT)


@pytest.fixture
async def instructor(db):
    return await _make_user(db, "Carol Instructor", "carol@example.com", UserRole.INSTRUCTOR)


@pytest.fixture
async def other_instructor(db):
    return await _make_user(db, "Dan Instructor", "dan@example.com", UserRole.INSTRUCTOR)


@pytest.fixture
async def admin(db):
    return await _make_user(db, "Erin Admin", "erin@example.com", UserRole.ADMIN)


async def make_exam(db, instructor, questions=None, **overrides):
    """Persist a published two-question exam (5 marks, pass at 3) unless overridden."""
    if questions is None:
        questions = [
            Question(
                position=0,
                question_type=QuestionType.MULTIPLE_CHOICE,
                question_text="Pick B",
                options=["A", "B", "C"],
                correct_answer="B",
                marks=2,
                explanation="B is right",
            ),
            Question(
                position=1,
                question_type=QuestionType.TRUE_FALSE,
                question_text="The sky is blue",
                options=["True", "False"],
                correct_answer="True",
                marks=3,
            ),
        ]
    fields = dict(
        title="Biology midterm",
        subject="Biology",
        duration=30,
        total_marks=5,
        passing_marks=3,
        is_published=True,
        allow_multiple_attempts=False,
        tab_switch_limit=3,
    )
    fields.update(overrides)
    exam = Exam(instructor=instructor, questions=questions, **fields)
    db.add(exam)
    await db.commit()
    return exam


@pytest.fixture
async def exam(db, instructor):
    return await make_exam(db, instructor)


@pytest.fixture
def registry():
    return ConnectionRegistry(queue_size=16)


@pytest.fixture
def locks():
    return AttemptLocks()


@pytest.fixture
def service(db, registry, locks):
    return AttemptService(db, notifier=LiveNotifier(registry), locks=locks)


def fake_redis():
    return fake_aioredis.FakeRedis(server=FakeServer())


@pytest.fixture
def app(session_factory, upload_dir):
    from secure_exam.main import create_app

    application = create_app(rate_limit_redis=fake_redis())

    async def override_get_async_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_async_db] = override_get_async_db
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


def hours_from_now(hours):
    return utc_now() + timedelta(hours=hours)
